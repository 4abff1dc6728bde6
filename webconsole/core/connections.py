"""
ConnectionRegistry: Tracks one ConsoleConnection per browser tab.

This is the 'Console' part that every conlet shares. A connection owns
the component instances rendered in its tab, its negotiated locale and
the ordered outbound channel to the browser. Connections are locked
individually; the registry lock only guards the id -> connection map.
"""

import time
import logging
import threading
from collections import deque
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .errors import AlreadyOpenError, ConsoleError
from .protocol import MessageCodec

logger = logging.getLogger(__name__)

Sender = Callable[[str], None]


class ConsoleConnection:
    """
    State of one browser tab's console.

    Attributes:
        connection_id: Opaque id, stable for the tab's lifetime
        locale: Negotiated locale tag
        supported_locales: Locales the console offers
        session: The browser session this tab belongs to
        instances: instance_id -> ComponentInstanceState
        downgraded_types: Component types that may no longer be added
        deleted_instances: Ids deleted on this connection, never recreated
        plan: The last resolved ResourcePlan
        last_seen: Time of the last inbound message
        lock: Guards instances, downgraded_types and deleted_instances
    """

    def __init__(self, connection_id: str, codec: MessageCodec,
                 sender: Optional[Sender] = None, locale: Optional[str] = None,
                 supported_locales: Iterable[str] = (),
                 session: Optional[Dict[str, Any]] = None):
        self.connection_id = connection_id
        self.codec = codec
        self.supported_locales: List[str] = list(supported_locales)
        self.locale: str = self.negotiate_locale(locale or '')
        self.session: Dict[str, Any] = session if session is not None else {}
        self.instances: Dict[str, Any] = {}
        self.downgraded_types: Set[str] = set()
        self.deleted_instances: Set[str] = set()
        self.plan = None
        self.closed = False
        self.last_seen = time.time()
        self.lock = threading.RLock()

        self._sender = sender
        self._send_lock = threading.Lock()
        self._inbox: deque = deque()
        self._inbox_lock = threading.Lock()
        self._draining = False
        self._ops = threading.Condition()
        self._op_threads: Dict[int, int] = {}

    def __repr__(self):
        return f"ConsoleConnection({self.connection_id!r}, instances={len(self.instances)})"

    @property
    def connected(self) -> bool:
        return not self.closed and self._sender is not None

    def touch(self) -> None:
        self.last_seen = time.time()

    # =========================================================================
    # Transport
    # =========================================================================

    def attach(self, sender: Sender) -> None:
        """Attach a (new) transport, e.g. after the browser reconnected."""
        with self._send_lock:
            self._sender = sender
        self.touch()

    def detach(self) -> None:
        with self._send_lock:
            self._sender = None

    def mark_closed(self) -> None:
        self.closed = True
        self.detach()

    def send(self, method: str, *params: Any) -> None:
        self._deliver([self.codec.encode_notification(method, *params)])

    def send_all(self, messages: Iterable[Tuple[str, List[Any]]]) -> None:
        """Send several notifications as one uninterrupted, ordered batch."""
        self._deliver([self.codec.encode_notification(method, *params)
                       for method, params in messages])

    def send_result(self, msg_id, result: Any) -> None:
        self._deliver([self.codec.encode_result(msg_id, result)])

    def send_error(self, msg_id, error: ConsoleError) -> None:
        self._deliver([self.codec.encode_error(msg_id, error)])

    def _deliver(self, payloads: List[str]) -> None:
        with self._send_lock:
            if self.closed or self._sender is None:
                logger.debug(f"Dropping {len(payloads)} message(s) for disconnected {self.connection_id}")
                return
            for payload in payloads:
                try:
                    self._sender(payload)
                except Exception as e:
                    logger.warning(f"Send to {self.connection_id} failed: {e}")
                    return

    # =========================================================================
    # Inbound ordering and in-flight operations
    # =========================================================================

    def submit(self, message: Any, handler: Callable[[Any], None]) -> None:
        """
        Process inbound messages strictly in arrival order.

        The first thread to submit drains the queue; threads submitting
        while a drain is running just enqueue.
        """
        with self._inbox_lock:
            self._inbox.append(message)
            if self._draining:
                return
            self._draining = True
        while True:
            with self._inbox_lock:
                if not self._inbox:
                    self._draining = False
                    return
                message = self._inbox.popleft()
            try:
                handler(message)
            except Exception:
                logger.exception(f"Unhandled error processing message for {self.connection_id}")

    @contextmanager
    def operation(self):
        """Mark an operation in flight; close() waits for it to finish."""
        me = threading.get_ident()
        with self._ops:
            self._op_threads[me] = self._op_threads.get(me, 0) + 1
        try:
            yield self
        finally:
            with self._ops:
                self._op_threads[me] -= 1
                if not self._op_threads[me]:
                    del self._op_threads[me]
                self._ops.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no other thread has an operation in flight."""
        me = threading.get_ident()
        with self._ops:
            return self._ops.wait_for(
                lambda: all(thread == me for thread in self._op_threads), timeout)

    # =========================================================================
    # Locale and instances
    # =========================================================================

    def negotiate_locale(self, tag: str) -> str:
        """Pick the best supported locale for the requested tag."""
        if not self.supported_locales:
            return tag or 'en'
        wanted = tag.replace('_', '-').lower()
        for locale in self.supported_locales:
            if locale.lower() == wanted:
                return locale
        language = wanted.split('-')[0]
        for locale in self.supported_locales:
            if locale.split('-')[0].lower() == language:
                return locale
        return self.supported_locales[0]

    def set_locale(self, tag: str) -> str:
        self.locale = self.negotiate_locale(tag)
        return self.locale

    def find_instance_of(self, component_type: str):
        with self.lock:
            for state in self.instances.values():
                if state.component_type == component_type:
                    return state
        return None


class ConnectionRegistry:
    """
    Registry of open console connections.

    Handles:
    - Opening, reattaching and closing connections
    - Inactivity timeouts (periodic passive sweep)
    - Notifying listeners so component state is released on close
    """

    DEFAULT_SWEEP_INTERVAL = 5.0

    def __init__(self, codec: Optional[MessageCodec] = None,
                 supported_locales: Iterable[str] = (),
                 inactivity_timeout: Union[float, timedelta, None] = None,
                 sweep_interval: float = DEFAULT_SWEEP_INTERVAL):
        self.codec = codec or MessageCodec()
        self.supported_locales = list(supported_locales)

        # Guards the map only, never held while calling into a connection
        self._lock = threading.Lock()
        self._connections: Dict[str, ConsoleConnection] = {}
        self._close_listeners: List[Callable[[ConsoleConnection], None]] = []

        self._timeout: Optional[float] = None
        self._sweep_interval = sweep_interval
        self._sweep_timer: Optional[threading.Timer] = None
        self._shut_down = False

        if inactivity_timeout is not None:
            self.inactivity_timeout(inactivity_timeout)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def add_close_listener(self, listener: Callable[[ConsoleConnection], None]) -> None:
        self._close_listeners.append(listener)

    def open(self, connection_id: str, sender: Optional[Sender] = None,
             locale: Optional[str] = None,
             session: Optional[Dict[str, Any]] = None) -> ConsoleConnection:
        """
        Start tracking a new connection.

        Raises:
            AlreadyOpenError: The id is already tracked
        """
        with self._lock:
            if connection_id in self._connections:
                raise AlreadyOpenError(connection_id)
            connection = ConsoleConnection(
                connection_id, self.codec, sender=sender, locale=locale,
                supported_locales=self.supported_locales, session=session)
            self._connections[connection_id] = connection
        logger.info(f"Console connection opened: {connection_id} ({connection.locale})")
        return connection

    def get(self, connection_id: str) -> Optional[ConsoleConnection]:
        with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None or connection.closed:
            return None
        return connection

    def connections(self) -> List[ConsoleConnection]:
        with self._lock:
            return list(self._connections.values())

    def attach(self, connection_id: str, sender: Sender) -> Optional[ConsoleConnection]:
        connection = self.get(connection_id)
        if connection is not None:
            connection.attach(sender)
            logger.info(f"Console connection reattached: {connection_id}")
        return connection

    def detach(self, connection_id: str) -> None:
        connection = self.get(connection_id)
        if connection is not None:
            connection.detach()
            logger.info(f"Console connection detached: {connection_id}")

    def close(self, connection_id: str, idle_before: Optional[float] = None) -> bool:
        """
        Stop tracking a connection and release its state.

        Waits for operations in flight on other threads; their results
        are dropped. Closing an unknown or closed connection does nothing.

        Args:
            connection_id: The connection to close
            idle_before: Only close if nothing arrived since this time

        Returns:
            True if the connection was closed by this call
        """
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            if idle_before is not None and connection.last_seen >= idle_before:
                logger.debug(f"Console connection {connection_id} active again, kept")
                return False
            del self._connections[connection_id]

        connection.mark_closed()
        connection.wait_idle()
        for listener in self._close_listeners:
            try:
                listener(connection)
            except Exception:
                logger.exception(f"Close listener failed for {connection_id}")
        logger.info(f"Console connection closed: {connection_id}")
        return True

    # =========================================================================
    # Inactivity
    # =========================================================================

    def inactivity_timeout(self, duration: Union[float, timedelta]) -> None:
        """Close connections that received nothing for longer than duration."""
        if isinstance(duration, timedelta):
            duration = duration.total_seconds()
        self._timeout = float(duration)
        logger.info(f"Console inactivity timeout set to {self._timeout}s")
        self._schedule_sweep()

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """
        Close all connections idle longer than the timeout.

        Returns:
            The ids of the closed connections
        """
        if self._timeout is None:
            return []
        now = time.time() if now is None else now
        idle_before = now - self._timeout
        closed = []
        for connection_id in self._idle_connections(idle_before):
            # Re-checked on close, a message may have arrived meanwhile
            if self.close(connection_id, idle_before=idle_before):
                logger.info(f"Console connection {connection_id} timed out")
                closed.append(connection_id)
        return closed

    def _idle_connections(self, idle_before: float) -> List[str]:
        with self._lock:
            return [cid for cid, conn in self._connections.items()
                    if conn.last_seen < idle_before]

    def _schedule_sweep(self) -> None:
        if self._sweep_timer:
            self._sweep_timer.cancel()
        if self._shut_down:
            return
        self._sweep_timer = threading.Timer(self._sweep_interval, self._run_sweep)
        self._sweep_timer.daemon = True
        self._sweep_timer.start()

    def _run_sweep(self) -> None:
        try:
            self.sweep()
        except Exception as e:
            logger.error(f"Connection sweep failed: {e}")
        finally:
            self._schedule_sweep()

    def shutdown(self) -> None:
        """Stop sweeping and close every connection."""
        self._shut_down = True
        if self._sweep_timer:
            self._sweep_timer.cancel()
            self._sweep_timer = None
        for connection in self.connections():
            self.close(connection.connection_id)
