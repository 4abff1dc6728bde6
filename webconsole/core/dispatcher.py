"""
MessageDispatcher: Routes decoded console messages to their handlers.

Messages of one connection are handled strictly in arrival order. Render
requests reserve their turn in that order but run on a worker pool, so a
slow render only delays later operations on the same instance.
"""

import logging
from concurrent.futures import Executor
from typing import Any, Callable, Dict, Optional

from .connections import ConnectionRegistry, ConsoleConnection
from .errors import ConsoleError, InternalError, UnknownMethodError
from .lifecycle import ComponentCoordinator, RenderTicket
from .protocol import Envelope, MessageCodec

logger = logging.getLogger(__name__)

# Returned by handlers that answer later, from another thread
DEFERRED = object()

Handler = Callable[[ConsoleConnection, Envelope], Any]


class MessageDispatcher:
    def __init__(self, registry: ConnectionRegistry, coordinator: ComponentCoordinator,
                 codec: Optional[MessageCodec] = None, executor: Optional[Executor] = None,
                 on_console_ready: Optional[Callable[[ConsoleConnection], Any]] = None):
        self.registry = registry
        self.coordinator = coordinator
        self.codec = codec or registry.codec
        self.executor = executor
        self.on_console_ready = on_console_ready

        self._handlers: Dict[str, Handler] = {
            'consoleReady': self.handle_console_ready,
            'addComponent': self.handle_add_component,
            'renderComponent': self.handle_render_component,
            'updateComponent': self.handle_update_component,
            'deleteComponent': self.handle_delete_component,
            'setLocale': self.handle_set_locale,
            'keepAlive': self.handle_keep_alive,
            'disconnect': self.handle_disconnect,
        }

    def register(self, method: str, handler: Handler) -> None:
        if method in self._handlers:
            logger.warning(f"Handler for '{method}' replaced")
        self._handlers[method] = handler

    def handle(self, connection_id: str, message: Any) -> bool:
        """
        Accept an inbound message for a connection.

        Returns:
            False if the connection is not open (the message is dropped)
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            logger.warning(f"Message for unknown connection {connection_id} dropped")
            return False
        connection.touch()
        connection.submit(message, lambda raw: self.process(connection, raw))
        return True

    def process(self, connection: ConsoleConnection, message: Any) -> None:
        """Decode one message, run its handler and answer requests."""
        msg_id = None
        try:
            envelope = self.codec.decode(message)
            msg_id = envelope.id
            handler = self._handlers.get(envelope.method)
            if handler is None:
                raise UnknownMethodError(envelope.method)
            result = handler(connection, envelope)
        except ConsoleError as e:
            logger.warning(f"{connection.connection_id}: {e.kind}: {e}")
            connection.send_error(msg_id, e)
            return
        except Exception as e:
            logger.exception(f"Error handling message from {connection.connection_id}")
            connection.send_error(msg_id, InternalError(str(e)))
            return

        if result is not DEFERRED and envelope.is_request:
            connection.send_result(envelope.id, result)

    # =========================================================================
    # Handlers
    # =========================================================================

    def handle_console_ready(self, connection: ConsoleConnection, envelope: Envelope):
        if self.on_console_ready is not None:
            return self.on_console_ready(connection)
        return None

    def handle_add_component(self, connection: ConsoleConnection, envelope: Envelope):
        component_type = envelope.params[0]
        properties = envelope.params[1] if len(envelope.params) > 1 else None
        return self.coordinator.add(connection.connection_id, component_type, properties)

    def handle_render_component(self, connection: ConsoleConnection, envelope: Envelope):
        instance_id, modes = envelope.params
        if self.executor is None:
            ticket = self.coordinator.reserve_render(connection.connection_id, instance_id)
            return self.coordinator.complete_render(ticket, modes)
        # Only renders whose turn has come are handed to the pool, so a
        # slow instance never ties up workers needed by other instances
        self.coordinator.reserve_render(
            connection.connection_id, instance_id,
            on_turn=lambda ticket: self._start_render(ticket, modes, envelope.id))
        return DEFERRED

    def _start_render(self, ticket: RenderTicket, modes, msg_id) -> None:
        try:
            self.executor.submit(self._complete_render, ticket, modes, msg_id)
        except RuntimeError as e:
            # Pool already shut down
            logger.warning(f"Render of {ticket.state.instance_id} not started: {e}")
            ticket.connection.send_error(msg_id, InternalError(str(e)))
            self.coordinator.abandon_render(ticket)

    def _complete_render(self, ticket: RenderTicket, modes, msg_id) -> None:
        connection = ticket.connection
        try:
            rendered = self.coordinator.complete_render(ticket, modes)
        except ConsoleError as e:
            logger.warning(f"{connection.connection_id}: {e.kind}: {e}")
            connection.send_error(msg_id, e)
            return
        except Exception as e:
            logger.exception(f"Rendering {ticket.state.instance_id} failed")
            connection.send_error(msg_id, InternalError(str(e)))
            return
        if msg_id is not None:
            connection.send_result(msg_id, rendered)

    def handle_update_component(self, connection: ConsoleConnection, envelope: Envelope):
        instance_id, method, *params = envelope.params
        self.coordinator.invoke(connection.connection_id, instance_id, method, params)
        return None

    def handle_delete_component(self, connection: ConsoleConnection, envelope: Envelope):
        self.coordinator.delete(connection.connection_id, envelope.params[0])
        return None

    def handle_set_locale(self, connection: ConsoleConnection, envelope: Envelope):
        locale = connection.set_locale(envelope.params[0])
        logger.debug(f"{connection.connection_id} locale is now {locale}")
        connection.send('localeChanged', locale)
        return locale

    def handle_keep_alive(self, connection: ConsoleConnection, envelope: Envelope):
        return None

    def handle_disconnect(self, connection: ConsoleConnection, envelope: Envelope):
        self.registry.close(connection.connection_id)
        return None
