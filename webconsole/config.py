"""
Console configuration, read from the environment.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

FALSE_VALUES = ('0', 'false', 'no', 'off')


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


@dataclass
class ConsoleConfig:
    """
    Attributes:
        inactivity_timeout: Seconds without messages before a connection
            is closed, None to keep connections forever
        sweep_interval: Seconds between inactivity sweeps
        strict_resources: Fail resource setup on unsatisfied requirements
        locales: Supported locales, the first one is the fallback
        data_dir: Where the JSON key-value store lives
        render_workers: Size of the render pool, 0 renders inline
        provided: Capabilities the console page itself already loads
        secret_key: Flask secret key
    """
    inactivity_timeout: Optional[float] = 45.0
    sweep_interval: float = 5.0
    strict_resources: bool = True
    locales: List[str] = field(default_factory=lambda: ['en', 'de'])
    data_dir: str = 'data'
    render_workers: int = 8
    provided: List[str] = field(default_factory=lambda: ['socket.io'])
    secret_key: str = field(default='dev-secret-key-change-in-prod', repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ConsoleConfig':
        env = os.environ if environ is None else environ
        config = cls()

        timeout = env.get('CONSOLE_INACTIVITY_TIMEOUT')
        if timeout is not None:
            value = float(timeout)
            config.inactivity_timeout = value if value > 0 else None
        if env.get('CONSOLE_SWEEP_INTERVAL'):
            config.sweep_interval = float(env['CONSOLE_SWEEP_INTERVAL'])
        if env.get('CONSOLE_STRICT_RESOURCES'):
            config.strict_resources = env['CONSOLE_STRICT_RESOURCES'].lower() not in FALSE_VALUES
        if env.get('CONSOLE_LOCALES'):
            config.locales = _split(env['CONSOLE_LOCALES'])
        if env.get('CONSOLE_DATA_DIR'):
            config.data_dir = env['CONSOLE_DATA_DIR']
        if env.get('CONSOLE_RENDER_WORKERS'):
            config.render_workers = int(env['CONSOLE_RENDER_WORKERS'])
        if 'CONSOLE_PROVIDED' in env:
            config.provided = _split(env['CONSOLE_PROVIDED'])
        if env.get('SECRET_KEY'):
            config.secret_key = env['SECRET_KEY']

        logger.debug(f"Console configuration: {config}")
        return config
