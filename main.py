import logging
import os

from doubtdesk import create_app, socketio

logger = logging.getLogger(__name__)

app = create_app()


def _env_flag(name):
    return os.environ.get(name, 'false').lower() in ('true', '1')


if __name__ == '__main__':
    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', 8080))
    logger.info('Serving DoubtDesk on %s:%d', host, port)
    try:
        socketio.run(app, host=host, port=port, debug=_env_flag('FLASK_DEBUG'))
    finally:
        app.extensions['presence'].close()
