import os
import json
import tempfile
import threading

import pytest

# The module level app in app.py reads these when a test imports it
os.environ.setdefault('CONSOLE_DATA_DIR', tempfile.mkdtemp(prefix='webconsole-test-'))
os.environ.setdefault('CONSOLE_INACTIVITY_TIMEOUT', '0')
os.environ.setdefault('CONSOLE_RENDER_WORKERS', '0')

from webconsole.config import ConsoleConfig
from webconsole.conlets import BaseConlet, ConletRegistry, RenderMode
from webconsole.core.connections import ConnectionRegistry
from webconsole.core.lifecycle import ComponentCoordinator
from webconsole.core.protocol import MessageCodec
from webconsole.core.storage import MemoryKeyValueStore
from webconsole.core.templating import TemplateRenderer


class Outbox:
    """Collects what a connection sends, decoded."""

    def __init__(self):
        self.lock = threading.Lock()
        self.payloads = []

    def __call__(self, payload):
        with self.lock:
            self.payloads.append(json.loads(payload))

    @property
    def messages(self):
        with self.lock:
            return list(self.payloads)

    def methods(self):
        return [m['method'] for m in self.messages if 'method' in m]

    def of(self, method):
        return [m['params'] for m in self.messages if m.get('method') == method]

    def replies(self):
        return [m for m in self.messages if 'method' not in m]

    def clear(self):
        with self.lock:
            self.payloads.clear()


class EchoConlet(BaseConlet):
    """Minimal conlet used to exercise the coordinator."""
    TYPE = "Echo"
    DISPLAY_NAME = "Echo"
    RENDER_MODES = (RenderMode.PREVIEW, RenderMode.VIEW)

    UPDATES = {
        'increment': 'handle_increment',
        'explode': 'handle_explode',
    }

    def create_model(self, instance_id, properties, context):
        if properties.get('fail'):
            raise ValueError("cannot create")
        return {'count': properties.get('count', 0)}

    def render(self, modes, model, context):
        response = self.response(context)
        for mode in modes:
            if mode in (RenderMode.PREVIEW.value, RenderMode.VIEW.value):
                response.render(mode, f"<p>{mode} {model['count']}</p>")
        return response

    def handle_increment(self, params, model, context):
        model['count'] += params[0] if params else 1
        return self.response(context).notify_view('setCount', model['count'])

    def handle_explode(self, params, model, context):
        model['count'] = -1
        raise RuntimeError("boom")


class LonelyConlet(EchoConlet):
    TYPE = "Lonely"
    SINGLETON = True
    REMOVABLE = False
    RENDER_MODES = (RenderMode.CONTENT,)

    def render(self, modes, model, context):
        response = self.response(context)
        if RenderMode.CONTENT.value in modes:
            response.render(RenderMode.CONTENT, "<p>alone</p>")
        return response


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def codec():
    return MessageCodec()


@pytest.fixture
def registry(codec):
    registry = ConnectionRegistry(codec, supported_locales=['en', 'de'])
    yield registry
    registry.shutdown()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def templates():
    return TemplateRenderer()


@pytest.fixture
def conlets(store, templates):
    conlets = ConletRegistry(store, templates)
    conlets.register(EchoConlet)
    conlets.register(LonelyConlet)
    return conlets


@pytest.fixture
def coordinator(registry, conlets):
    return ComponentCoordinator(registry, conlets)


@pytest.fixture
def connection(registry, outbox):
    return registry.open('tab-1', outbox, locale='en-US')


@pytest.fixture
def console_config(tmp_path):
    return ConsoleConfig(inactivity_timeout=None, render_workers=0, data_dir=str(tmp_path))
