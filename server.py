import argparse
import logging

from config import config
from stage_server.app import create_app


def parse_args():
    """Parse simple CLI arguments for running the server.

    Supports overriding the port and disabling the presence sweeper thread
    in environments where idle connections are managed separately.
    """
    parser = argparse.ArgumentParser(description='Run the Stage messaging server')
    parser.add_argument('--port', type=int, default=config.PORT, help='TCP port to bind (default: config PORT)')
    parser.add_argument('--no-sweeper', action='store_true', help='Do not start the presence sweeper thread')
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    config.validate_required()
    app = create_app()
    stage = app.extensions['stage']

    if config.PRESENCE_SWEEPER_ENABLED and not args.no_sweeper:
        stage['sweeper'].start()

    logging.info('Starting server with Socket.IO on port %s (env=%s)', args.port, config.CURRENT_ENV)
    stage['socketio'].run(app, host="0.0.0.0", port=args.port, debug=config.DEBUG,
                          allow_unsafe_werkzeug=True)
