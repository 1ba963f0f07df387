import logging
import sqlite3
import time
from typing import Optional

from flask import Flask, current_app, g, jsonify, request
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException

from .config import Settings
from .content import CategoryCatalog, PostService, TagCatalog
from .datastore import DataStore
from .errors import Internal, PressroomError, Unauthorized
from .gate import AccessGate, Identity
from .identity import IdentityService
from .passwords import PasswordHasher
from .tokens import TokenService


login_manager = LoginManager()
login_manager.session_protection = None

logger = logging.getLogger(__name__)
access_logger = logging.getLogger(f"{__name__}.access")


def create_app(settings: Optional[Settings] = None) -> Flask:
    settings = settings or Settings.from_env()
    _configure_logging(settings)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key

    try:
        datastore = DataStore(
            settings.database_path,
            max_lifetime=settings.conn_max_lifetime,
            busy_timeout_ms=settings.busy_timeout_ms,
        )
    except sqlite3.Error:
        logger.critical("Cannot open database at %s", settings.database_path, exc_info=True)
        raise

    tokens = TokenService(settings.jwt_secret, ttl=settings.token_ttl, issuer=settings.token_issuer)
    hasher = PasswordHasher(settings.password_hash_method)

    app.extensions["settings"] = settings
    app.extensions["datastore"] = datastore
    app.extensions["gate"] = AccessGate(tokens)
    app.extensions["identity"] = IdentityService(datastore, hasher, tokens)
    app.extensions["posts"] = PostService(datastore)
    app.extensions["categories"] = CategoryCatalog(datastore)
    app.extensions["tags"] = TagCatalog(datastore)

    login_manager.init_app(app)

    from .auth import bp as auth_bp
    from .blog import bp as blog_bp
    from .admin import bp as admin_bp
    from .tag import bp as tag_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(blog_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(tag_bp)

    @app.before_request
    def start_request_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get("request_started")
        elapsed_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        access_logger.info(
            "%s %s %s %.1fms %s",
            request.method,
            request.full_path.rstrip("?"),
            response.status_code,
            elapsed_ms,
            request.remote_addr,
        )
        return response

    @app.errorhandler(PressroomError)
    def handle_pressroom_error(exc: PressroomError):
        return jsonify(exc.to_payload()), exc.status

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        status = exc.code or 500
        return jsonify({"code": status, "message": exc.name, "data": None}), status

    @app.errorhandler(sqlite3.Error)
    def handle_database_error(exc: sqlite3.Error):
        current_app.logger.exception("Unexpected database failure")
        error = Internal()
        return jsonify(error.to_payload()), error.status

    logger.info("Pressroom ready (database=%s)", settings.database_path)
    return app


def _configure_logging(settings: Settings) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger(__name__).setLevel(settings.log_level)


@login_manager.request_loader
def load_identity(request) -> Optional[Identity]:
    gate: AccessGate = current_app.extensions["gate"]
    try:
        return gate.authenticate(request.headers.get("Authorization"))
    except Unauthorized as exc:
        g.auth_error = exc
        return None


@login_manager.unauthorized_handler
def reject_unauthenticated():
    raise g.get("auth_error") or Unauthorized("malformed header")
