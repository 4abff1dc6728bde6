"""
Web Console - Main Flask Application
Entry point for the console server.
"""

import logging
import argparse
from flask import Flask, render_template, jsonify, abort, send_from_directory
from flask_socketio import SocketIO

from webconsole.config import ConsoleConfig
from webconsole.core.console import WebConsole
from events import register_events

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

config = ConsoleConfig.from_env()

# Initialize Flask app
app = Flask(__name__, template_folder='webconsole/templates',
            static_folder='webconsole/static', static_url_path='/static')
app.config['SECRET_KEY'] = config.secret_key

# Initialize Socket.IO with CORS for local network access. Handlers run on
# each socket's receive loop so a tab's messages are handled in arrival order.
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading',
                    async_handlers=False)

# Initialize System
web_console = WebConsole(config)

# Register Socket.IO event handlers
register_events(socketio, web_console)


# =============================================================================
# HTTP ROUTES
# =============================================================================

@app.route('/')
def index():
    """The console page. Everything else is loaded over the socket."""
    return render_template(
        'console.html',
        provided=config.provided,
        locales=config.locales,
        conlets=web_console.conlets.conlets(),
    )


@app.route('/conlet-resource/<component_type>/<path:filename>')
def conlet_resource(component_type, filename):
    """Static files of a conlet (scripts, styles, images)."""
    conlet = web_console.conlets.get(component_type)
    if conlet is None or conlet.STATIC_DIR is None:
        abort(404)
    return send_from_directory(conlet.STATIC_DIR, filename)


@app.route('/health')
def health():
    """Health check endpoint."""
    return jsonify(web_console.health())


# =============================================================================
# MAIN
# =============================================================================

def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Web Console Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration:
  Further settings are read from the environment:

    CONSOLE_LOCALES            - Supported locales, e.g. "en,de"
    CONSOLE_STRICT_RESOURCES   - "0" to ignore unsatisfied resource requirements
    CONSOLE_DATA_DIR           - Directory of the persistent key-value store
    CONSOLE_RENDER_WORKERS     - Render threads, 0 renders inline
    SECRET_KEY                 - Flask session secret
        """
    )
    parser.add_argument(
        '--port',
        type=int,
        default=13370,
        help='Server port (default: 13370)'
    )
    parser.add_argument(
        '--host',
        type=str,
        default='0.0.0.0',
        help='Interface to listen on (default: 0.0.0.0)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help='Seconds of inactivity before a console connection is closed'
    )
    parser.add_argument(
        '--no-debug',
        action='store_true',
        help='Disable debug mode'
    )
    return parser.parse_args()


if __name__ == '__main__':
    args = parse_args()

    if args.timeout is not None:
        web_console.registry.inactivity_timeout(args.timeout)

    logger.info("Starting Web Console Server...")
    logger.info(f"Console: http://<your-ip>:{args.port}/")

    try:
        socketio.run(
            app,
            host=args.host,
            port=args.port,
            debug=not args.no_debug,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    finally:
        web_console.shutdown()
