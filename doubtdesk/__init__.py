import logging

from flask import Flask, request, json
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFProtect

from config import Config

# flask.json so payloads carrying Firestore timestamps serialise
socketio = SocketIO(json=json)
csrf = CSRFProtect()


def _configure_logging(app):
    level = str(app.config.get('LOG_LEVEL') or 'INFO').upper()
    app.logger.setLevel(level)
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicate handlers in reloaders
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s'
        ))
        root.addHandler(handler)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    _configure_logging(app)
    csrf.init_app(app)

    # Initialize Firebase
    if not app.config.get('SKIP_FIREBASE_INIT'):
        from doubtdesk.firebase_init import init_firebase
        init_firebase(app.config)

    # Owned collaborators, looked up through app.extensions
    from doubtdesk import firestore_dao as dao
    from doubtdesk.realtime import RealtimeStore
    from doubtdesk.roles import RoleDirectory
    from doubtdesk.services.presence import PresenceTracker

    app.extensions['role_directory'] = RoleDirectory(
        dao.get_user, ttl=app.config.get('ROLE_CACHE_SECONDS', 300)
    )
    app.extensions['presence'] = PresenceTracker(RealtimeStore(), dao.get_global_settings)

    from doubtdesk.errors import register_error_handlers
    register_error_handlers(app)

    # CORS origins
    allowed_origins = []
    cors_origins = app.config.get('CORS_ALLOWED_ORIGINS', '')
    if cors_origins:
        for origin in cors_origins.split(','):
            origin = origin.strip()
            if origin:
                allowed_origins.append(origin)

    # Handlers must be queued before init_app so every server gets them
    from doubtdesk import events  # noqa: F401

    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins if allowed_origins else None,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'eventlet')
    )

    from doubtdesk.decorators import load_current_user

    @app.before_request
    def before_request():
        # Bearer-token clients are not exposed to CSRF; cookie sessions are
        if app.config.get('WTF_CSRF_ENABLED') and not request.headers.get('Authorization'):
            csrf.protect()
        load_current_user()

    # Register blueprints
    from doubtdesk.routes import auth, chat, doubts, papers, admin
    app.register_blueprint(auth.bp)
    app.register_blueprint(chat.bp)
    app.register_blueprint(doubts.bp)
    app.register_blueprint(papers.bp)
    app.register_blueprint(admin.bp)

    app.logger.info('DoubtDesk app created (async_mode=%s)', socketio.async_mode)
    return app
