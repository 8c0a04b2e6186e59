from __future__ import annotations

import atexit
import os
import weakref

from flask import Flask

from .extensions import db, login_manager, migrate
from .logging_config import get_logger, setup_logging
from .services.mailer import LogMailer, SmtpMailer
from .services.notifications import NotificationDispatcher
from .views import register_error_handlers
from .views.auth import auth_bp
from .views.groups import groups_bp
from .views.participants import participants_bp
from .views.public import public_bp

logger = get_logger(__name__)

# Dispatchers of every app built in this process; stopped once at exit.
_dispatchers: weakref.WeakSet = weakref.WeakSet()


def _shutdown_dispatchers() -> None:
    for dispatcher in list(_dispatchers):
        dispatcher.shutdown(drain=False, timeout=5)


atexit.register(_shutdown_dispatchers)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _load_config(app: Flask) -> None:
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///xbuddy.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Key for encrypting draw results at rest; derived from SECRET_KEY when empty.
    app.config["ASSIGNMENT_ENC_KEY"] = os.environ.get("ASSIGNMENT_ENC_KEY", "")

    app.config["FRONTEND_URL"] = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    app.config["ORGANIZER_REGISTRATION_OPEN"] = _env_bool("ORGANIZER_REGISTRATION_OPEN", True)
    app.config["DRAW_MAX_ATTEMPTS"] = int(os.environ.get("DRAW_MAX_ATTEMPTS", "100"))

    app.config["SMTP_HOST"] = os.environ.get("SMTP_HOST", "").strip()
    app.config["SMTP_PORT"] = int(os.environ.get("SMTP_PORT", "587"))
    app.config["SMTP_USER"] = os.environ.get("SMTP_USER") or None
    app.config["SMTP_PASS"] = os.environ.get("SMTP_PASS") or None
    app.config["SMTP_TLS"] = _env_bool("SMTP_TLS", True)
    app.config["MAIL_SENDER"] = os.environ.get("MAIL_SENDER") or app.config["SMTP_USER"]

    # 2 workers, 600 ms between sends per worker
    app.config["NOTIFY_CONCURRENCY"] = int(os.environ.get("NOTIFY_CONCURRENCY", "2"))
    app.config["NOTIFY_DELAY_MS"] = int(os.environ.get("NOTIFY_DELAY_MS", "600"))
    app.config["NOTIFY_MAX_ATTEMPTS"] = int(os.environ.get("NOTIFY_MAX_ATTEMPTS", "1"))
    app.config["NOTIFY_RETRY_BACKOFF_MS"] = int(os.environ.get("NOTIFY_RETRY_BACKOFF_MS", "1000"))
    # Seconds a resend or test e-mail request waits for its queued delivery.
    app.config["NOTIFY_WAIT_TIMEOUT"] = float(os.environ.get("NOTIFY_WAIT_TIMEOUT", "30"))
    # Optional transport override: any object with send(OutboundEmail).
    app.config["MAIL_TRANSPORT"] = None

    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO").upper()
    app.config["LOG_JSON"] = _env_bool("LOG_JSON", False)
    app.config["CONFIGURE_LOGGING"] = True


def _build_transport(app: Flask):
    if app.config["MAIL_TRANSPORT"] is not None:
        return app.config["MAIL_TRANSPORT"]
    if not app.config["SMTP_HOST"]:
        logger.warning("SMTP_HOST not set; e-mails will only be logged")
        return LogMailer()
    return SmtpMailer(
        host=app.config["SMTP_HOST"],
        port=app.config["SMTP_PORT"],
        username=app.config["SMTP_USER"],
        password=app.config["SMTP_PASS"],
        use_tls=app.config["SMTP_TLS"],
        sender=app.config["MAIL_SENDER"],
    )


def build_dispatcher(app: Flask) -> NotificationDispatcher:
    transport = _build_transport(app)
    return NotificationDispatcher(
        send=transport.send,
        concurrency=app.config["NOTIFY_CONCURRENCY"],
        delay=app.config["NOTIFY_DELAY_MS"] / 1000.0,
        max_attempts=app.config["NOTIFY_MAX_ATTEMPTS"],
        retry_backoff=app.config["NOTIFY_RETRY_BACKOFF_MS"] / 1000.0,
    )


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__)

    _load_config(app)
    if test_config:
        app.config.update(test_config)

    if app.config["CONFIGURE_LOGGING"]:
        setup_logging(app.config["LOG_LEVEL"], app.config["LOG_JSON"])

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    # One dispatcher per app, handed to the draw workflow via app.extensions.
    dispatcher = build_dispatcher(app)
    app.extensions["notifications"] = dispatcher
    _dispatchers.add(dispatcher)

    # Blueprints
    app.register_blueprint(public_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(groups_bp)
    app.register_blueprint(participants_bp)
    register_error_handlers(app)

    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        db.create_all()
        print("Database initialized.")

    return app
