"""
WebConsole: Wires the console core together.

One WebConsole serves every browser tab. It owns the connection
registry, the component coordinator, the message dispatcher and the
registered conlets and providers. The transport (Socket.IO in app.py)
only forwards raw messages and supplies a sender per connection.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Type

from .connections import ConnectionRegistry, ConsoleConnection, Sender
from .dispatcher import MessageDispatcher
from .errors import AlreadyOpenError, ResolutionError
from .lifecycle import ComponentCoordinator
from .protocol import MessageCodec
from .resources import ResourceDescriptor, ResourcePlan, ResourceResolver
from .storage import JsonFileKeyValueStore, KeyValueStore
from .templating import TemplateRenderer
from ..config import ConsoleConfig
from ..conlets import ALL_CONLETS, BaseConlet, ConletRegistry, mode_name
from ..providers import ALL_PROVIDERS, PageResourceProvider

logger = logging.getLogger(__name__)


class WebConsole:
    def __init__(self, config: Optional[ConsoleConfig] = None,
                 conlets: Iterable[Type[BaseConlet]] = ALL_CONLETS,
                 providers: Iterable[Type[PageResourceProvider]] = ALL_PROVIDERS,
                 store: Optional[KeyValueStore] = None,
                 templates: Optional[TemplateRenderer] = None):
        """
        Initialize the console.

        Args:
            config: Console settings, defaults apply when omitted
            conlets: Conlet classes to register, in menu order
            providers: Page resource provider classes
            store: Key-value store, a JSON file store in config.data_dir by default
            templates: Template renderer, conlet template dirs are added to it
        """
        self.config = config or ConsoleConfig()
        self.codec = MessageCodec()
        self.registry = ConnectionRegistry(
            self.codec,
            supported_locales=self.config.locales,
            sweep_interval=self.config.sweep_interval,
        )
        self.store = store if store is not None else JsonFileKeyValueStore(self.config.data_dir)
        self.templates = templates or TemplateRenderer()

        self.conlets = ConletRegistry(self.store, self.templates)
        for conlet_class in conlets:
            self.conlets.register(conlet_class)
        self.providers: List[PageResourceProvider] = [cls() for cls in providers]
        self.resolver = ResourceResolver(strict=self.config.strict_resources,
                                         provided=self.config.provided)

        self.executor = None
        if self.config.render_workers > 0:
            self.executor = ThreadPoolExecutor(max_workers=self.config.render_workers,
                                               thread_name_prefix='render')

        self.coordinator = ComponentCoordinator(self.registry, self.conlets)
        self.dispatcher = MessageDispatcher(self.registry, self.coordinator, self.codec,
                                            executor=self.executor,
                                            on_console_ready=self.console_ready)

        if self.config.inactivity_timeout is not None:
            self.registry.inactivity_timeout(self.config.inactivity_timeout)

        logger.info(f"WebConsole initialized with {len(self.conlets.conlets())} conlets "
                    f"and {len(self.providers)} providers")

    # =========================================================================
    # Connections
    # =========================================================================

    def connect(self, connection_id: str, sender: Sender, locale: Optional[str] = None,
                session: Optional[Dict[str, Any]] = None) -> ConsoleConnection:
        """Open a connection, or reattach the transport of an open one."""
        while True:
            try:
                return self.registry.open(connection_id, sender, locale=locale, session=session)
            except AlreadyOpenError:
                connection = self.registry.attach(connection_id, sender)
                if connection is not None:
                    return connection
                # Closed between open and attach, open it afresh

    def disconnect(self, connection_id: str) -> None:
        """The transport went away; state is kept until the connection times out."""
        self.registry.detach(connection_id)

    def close(self, connection_id: str) -> bool:
        return self.registry.close(connection_id)

    def handle_message(self, connection_id: str, message: Any) -> bool:
        return self.dispatcher.handle(connection_id, message)

    # =========================================================================
    # Console setup
    # =========================================================================

    def collect_resources(self, connection: ConsoleConnection) -> ResourcePlan:
        """
        Gather the page resources of all providers and conlets.

        Raises:
            ResolutionError: The resources cannot be ordered
        """
        collector = self.resolver.collector()
        for provider in self.providers:
            collector.contribute(self._contribution(provider.NAME, provider.page_resources, connection))
        for conlet in self.conlets.conlets():
            collector.contribute(self._contribution(conlet.TYPE, conlet.page_resources, connection))
        return collector.finalize()

    def _contribution(self, name: str, page_resources, connection) -> List[ResourceDescriptor]:
        try:
            return list(page_resources(connection))
        except Exception:
            logger.exception(f"Page resources of {name} unavailable")
            return []

    def console_ready(self, connection: ConsoleConnection) -> None:
        """Send the resource plan and the available conlet types."""
        try:
            plan = self.collect_resources(connection)
        except ResolutionError as e:
            logger.error(f"Resource setup for {connection.connection_id} failed: {e}")
            connection.send('resourceLoadFailed', str(e))
            return None

        connection.plan = plan
        messages = [('resourcesToLoad', [plan.to_json()])]
        for conlet in self.conlets.conlets():
            with connection.lock:
                downgraded = conlet.TYPE in connection.downgraded_types
            modes = [] if downgraded else [mode_name(m) for m in conlet.RENDER_MODES]
            messages.append(('addComponentType', [conlet.TYPE, conlet.DISPLAY_NAME, modes]))
        connection.send_all(messages)
        logger.info(f"Console {connection.connection_id} ready, {len(plan)} page resources")
        return None

    def health(self) -> Dict[str, Any]:
        return {
            'status': 'ok',
            'connections': len(self.registry),
            'conlets': [conlet.TYPE for conlet in self.conlets.conlets()],
        }

    def shutdown(self) -> None:
        # Let queued renders finish before their connections go away
        if self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None
        self.registry.shutdown()
        logger.info("WebConsole shut down")
