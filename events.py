"""
Socket.IO Event Handlers for the web console.

Every browser tab holds one Socket.IO connection. All console protocol
messages travel as the 'console' event in both directions; this module
only maps Socket.IO sessions to console connections and forwards.
"""

import uuid
import logging
import threading
from typing import Dict

from flask import request, session
from flask_socketio import emit

logger = logging.getLogger(__name__)

CONSOLE_EVENT = 'console'

# Socket.IO sid -> console connection id
sid_connections: Dict[str, str] = {}
_sid_lock = threading.Lock()

# Browser id -> session data shared by all tabs of one browser
browser_sessions: Dict[str, dict] = {}
# Console connection id -> browser id, to release sessions no tab uses
connection_browsers: Dict[str, str] = {}
_session_lock = threading.Lock()


def register_events(sio, console):
    """Register all Socket.IO event handlers."""
    global socketio, web_console
    socketio = sio
    web_console = console

    sio.on_event('connect', on_connect)
    sio.on_event('disconnect', on_disconnect)
    sio.on_event(CONSOLE_EVENT, on_console)
    console.registry.add_close_listener(release_browser_session)

    logger.info("Socket.IO events registered")


def make_sender(sid):
    def sender(payload):
        socketio.emit(CONSOLE_EVENT, payload, to=sid)
    return sender


def browser_session(connection_id: str) -> dict:
    """Session data of the requesting browser, created on first use."""
    browser_id = session.get('browser_id')
    if not browser_id:
        browser_id = uuid.uuid4().hex
        session['browser_id'] = browser_id
    with _session_lock:
        connection_browsers[connection_id] = browser_id
        return browser_sessions.setdefault(browser_id, {'user': session.get('user', '')})


def release_browser_session(connection):
    """Drop a browser's session data once its last console connection closed."""
    with _session_lock:
        browser_id = connection_browsers.pop(connection.connection_id, None)
        if browser_id is None or browser_id in connection_browsers.values():
            return
        browser_sessions.pop(browser_id, None)
    logger.debug(f"Session of browser {browser_id} released")


# =============================================================================
# HANDLERS
# =============================================================================

def on_connect(auth=None):
    sid = request.sid
    auth = auth if isinstance(auth, dict) else {}

    # The tab keeps its connection id across reconnects of the transport
    connection_id = str(auth.get('connectionId') or sid)
    locale = auth.get('locale') or request.accept_languages.best_match(
        web_console.config.locales)

    connection = web_console.connect(connection_id, make_sender(sid),
                                     locale=locale, session=browser_session(connection_id))
    with _sid_lock:
        sid_connections[sid] = connection_id
    logger.info(f"Socket {sid} connected as console {connection_id} ({connection.locale})")


def on_disconnect(reason=None):
    sid = request.sid
    with _sid_lock:
        connection_id = sid_connections.pop(sid, None)
        # A newer socket may have taken over the connection already
        still_attached = connection_id in sid_connections.values()
    if connection_id and not still_attached:
        web_console.disconnect(connection_id)
    logger.info(f"Socket {sid} disconnected ({reason})")


def on_console(data=None):
    sid = request.sid
    with _sid_lock:
        connection_id = sid_connections.get(sid)
    if connection_id is None:
        logger.warning(f"Console message from unconnected socket {sid}")
        emit('error', {'code': 'NOT_CONNECTED', 'message': 'No console connection'})
        return
    if data is None:
        data = {}
    web_console.handle_message(connection_id, data)
