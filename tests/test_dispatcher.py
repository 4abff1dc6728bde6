import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from webconsole.core.dispatcher import MessageDispatcher

from .conftest import EchoConlet


def request(method, *params, msg_id=None):
    data = {'jsonrpc': '2.0', 'method': method, 'params': list(params)}
    if msg_id is not None:
        data['id'] = msg_id
    return json.dumps(data)


@pytest.fixture
def ready_calls():
    return []


@pytest.fixture
def dispatcher(registry, coordinator, codec, ready_calls):
    return MessageDispatcher(registry, coordinator, codec,
                             on_console_ready=ready_calls.append)


@pytest.fixture
def pooled_dispatcher(registry, coordinator, codec):
    executor = ThreadPoolExecutor(max_workers=4)
    yield MessageDispatcher(registry, coordinator, codec, executor=executor)
    executor.shutdown(wait=True)


class TestErrors:
    def test_malformed_message_gets_error_envelope(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', '{broken')
        reply = outbox.replies()[0]
        assert reply['id'] is None
        assert reply['error']['kind'] == 'MalformedEnvelope'

    def test_unknown_method(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('doMagic', msg_id=1))
        reply = outbox.replies()[0]
        assert reply == {'jsonrpc': '2.0', 'id': 1,
                         'error': {'kind': 'UnknownMethod', 'message': 'Unknown method: doMagic'}}

    def test_schema_mismatch_keeps_connection_usable(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('addComponent', 7, msg_id=1))
        dispatcher.handle('tab-1', request('addComponent', 'Echo', msg_id=2))
        first, second = outbox.replies()
        assert first['error']['kind'] == 'SchemaMismatch'
        assert first['error']['index'] == 0
        assert second['result'].startswith('Echo-')

    def test_lifecycle_error(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('renderComponent', 'Echo-nope', ['Preview'], msg_id=3))
        assert outbox.replies()[0]['error']['kind'] == 'UnknownInstance'

    def test_component_fault(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('addComponent', 'Echo', {'fail': True}, msg_id=1))
        assert outbox.replies()[0]['error']['kind'] == 'ComponentFault'

    def test_unexpected_exception_is_internal_error(self, dispatcher, connection, outbox):
        def broken(connection, envelope):
            raise KeyError('unexpected')
        dispatcher.register('keepAlive', broken)
        dispatcher.handle('tab-1', request('keepAlive', msg_id=5))
        assert outbox.replies()[0]['error']['kind'] == 'InternalError'

    def test_message_for_unknown_connection(self, dispatcher):
        assert dispatcher.handle('nope', request('keepAlive')) is False


class TestHandlers:
    def test_add_render_update_delete(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('addComponent', 'Echo', {'count': 1}, msg_id=1))
        instance_id = outbox.replies()[0]['result']
        dispatcher.handle('tab-1', request('renderComponent', instance_id, ['Preview'], msg_id=2))
        dispatcher.handle('tab-1', request('updateComponent', instance_id, 'increment', 2))
        dispatcher.handle('tab-1', request('deleteComponent', instance_id))
        assert outbox.methods() == ['componentAdded', 'componentRendered', 'notifyView', 'componentDeleted']
        assert outbox.replies()[1]['result'] == ['Preview']
        assert outbox.of('notifyView') == [[instance_id, 'setCount', 3]]

    def test_notifications_get_no_reply(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('keepAlive'))
        assert outbox.messages == []

    def test_console_ready_is_delegated(self, dispatcher, connection, ready_calls):
        dispatcher.handle('tab-1', request('consoleReady'))
        assert ready_calls == [connection]

    def test_set_locale(self, dispatcher, connection, outbox):
        dispatcher.handle('tab-1', request('setLocale', 'de-CH', msg_id=1))
        assert connection.locale == 'de'
        assert outbox.of('localeChanged') == [['de']]
        assert outbox.replies()[0]['result'] == 'de'

    def test_keep_alive_touches(self, dispatcher, connection):
        connection.last_seen = 0
        dispatcher.handle('tab-1', request('keepAlive'))
        assert connection.last_seen > 0

    def test_disconnect_closes(self, dispatcher, registry, connection):
        dispatcher.handle('tab-1', request('disconnect'))
        assert registry.get('tab-1') is None


class TestPooledRendering:
    def test_render_result_arrives_later(self, pooled_dispatcher, connection, outbox):
        pooled_dispatcher.handle('tab-1', request('addComponent', 'Echo', msg_id=1))
        instance_id = outbox.replies()[0]['result']
        pooled_dispatcher.handle('tab-1', request('renderComponent', instance_id, ['View'], msg_id=2))
        pooled_dispatcher.executor.shutdown(wait=True)
        assert outbox.replies()[1] == {'jsonrpc': '2.0', 'id': 2, 'result': ['View']}

    def test_update_after_render_sees_render_first(self, pooled_dispatcher, conlets,
                                                   connection, outbox, monkeypatch):
        pooled_dispatcher.handle('tab-1', request('addComponent', 'Echo', msg_id=1))
        instance_id = outbox.replies()[0]['result']
        echo = conlets.get('Echo')
        original = EchoConlet.render
        release = threading.Event()

        def slow_render(modes, model, context):
            release.wait(timeout=5)
            return original(echo, modes, model, context)
        monkeypatch.setattr(echo, 'render', slow_render)

        pooled_dispatcher.handle('tab-1', request('renderComponent', instance_id, ['Preview']))
        updater = threading.Thread(target=pooled_dispatcher.handle, args=(
            'tab-1', request('updateComponent', instance_id, 'increment')))
        updater.start()
        release.set()
        updater.join(timeout=5)
        pooled_dispatcher.executor.shutdown(wait=True)
        assert outbox.methods()[-2:] == ['componentRendered', 'notifyView']
        assert outbox.of('componentRendered') == [[instance_id, 'Preview', '<p>Preview 0</p>']]

    def test_slow_instance_does_not_hold_up_others(self, registry, coordinator, codec, conlets,
                                                   connection, outbox, monkeypatch):
        executor = ThreadPoolExecutor(max_workers=2)
        dispatcher = MessageDispatcher(registry, coordinator, codec, executor=executor)
        slow_id = coordinator.add('tab-1', 'Echo')
        other_id = coordinator.add('tab-1', 'Echo')
        echo = conlets.get('Echo')
        original = EchoConlet.render
        release = threading.Event()
        other_started = threading.Event()

        def render(modes, model, context):
            if context.instance_id == slow_id:
                release.wait(timeout=5)
            else:
                other_started.set()
            return original(echo, modes, model, context)
        monkeypatch.setattr(echo, 'render', render)

        try:
            dispatcher.handle('tab-1', request('renderComponent', slow_id, ['Preview'], msg_id=1))
            dispatcher.handle('tab-1', request('renderComponent', slow_id, ['View'], msg_id=2))
            dispatcher.handle('tab-1', request('renderComponent', other_id, ['Preview'], msg_id=3))
            assert other_started.wait(timeout=2)
        finally:
            release.set()
            executor.shutdown(wait=True)
        rendered = [(params[0], params[1]) for params in outbox.of('componentRendered')]
        assert rendered.index((slow_id, 'Preview')) < rendered.index((slow_id, 'View'))
        assert sorted(reply['id'] for reply in outbox.replies()) == [1, 2, 3]

    def test_render_after_pool_shutdown(self, pooled_dispatcher, connection, outbox):
        pooled_dispatcher.handle('tab-1', request('addComponent', 'Echo', msg_id=1))
        instance_id = outbox.replies()[0]['result']
        pooled_dispatcher.executor.shutdown(wait=True)
        pooled_dispatcher.handle('tab-1', request('renderComponent', instance_id, ['View'], msg_id=2))
        assert outbox.replies()[1]['error']['kind'] == 'InternalError'
        # The abandoned turn does not block later operations
        pooled_dispatcher.handle('tab-1', request('deleteComponent', instance_id))
        assert outbox.of('componentDeleted') == [[instance_id]]
