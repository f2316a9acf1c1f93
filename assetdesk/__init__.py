import logging
from pathlib import Path
from typing import Any, Mapping

from flask import Flask, jsonify, request
from flask_migrate import upgrade as migrate_upgrade
from flask_wtf.csrf import CSRFError
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .access import LOGIN_PATH, bootstrap_admin, enforce_session
from .ai_service import AssistantService
from .cache import QueryCache
from .config import BASE_DIR, INSTANCE_DIR, get_config_class
from .extensions import csrf, db, login_manager, migrate
from .models import Asset, MaintenanceRecord, MaintenanceRequest, Notification, Profile, Purchase, Task
from .realtime import ChangeFeed
from .storage import ObjectStorage

MIGRATIONS_DIR = BASE_DIR / "migrations"

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}


def create_app(config_name: str | None = None, overrides: Mapping[str, Any] | None = None) -> Flask:
    """Build the AssetDesk API.

    ``overrides`` is applied on top of the selected config class, which is how
    the test suite points storage at a temporary directory.
    """
    app = Flask(__name__, instance_path=str(INSTANCE_DIR), instance_relative_config=True)
    app.config.from_object(get_config_class(config_name))
    app.config.update(overrides or {})

    if app.config["ENV"] == "production" and app.config["SECRET_KEY"] == "dev-insecure-key":
        raise RuntimeError("Set SECRET_KEY in the environment before running in production.")

    _configure_logging(app)
    Path(app.instance_path).mkdir(parents=True, exist_ok=True)
    if app.config.get("USE_PROXY_FIX"):
        hops = app.config.get("TRUSTED_PROXY_COUNT") or 1
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops, x_port=hops)  # type: ignore[method-assign]

    _register_extensions(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    _prepare_database(app)

    app.before_request(enforce_session)

    @app.after_request
    def add_security_headers(response):
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if app.config.get("SESSION_COOKIE_SECURE") and request.is_secure:
            response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains")
        return response

    @app.shell_context_processor
    def shell_context():
        models = (Profile, Asset, Purchase, MaintenanceRecord, MaintenanceRequest, Notification, Task)
        return {"db": db, **{model.__name__: model for model in models}}

    return app


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format=app.config.get("LOG_FORMAT"))
    app.logger.setLevel(level)


def _register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))
    csrf.init_app(app)
    login_manager.init_app(app)
    login_manager.login_view = None
    login_manager.session_protection = "strong"

    # Per-app services; views reach them through current_app.extensions
    app.extensions["query_cache"] = QueryCache()
    app.extensions["change_feed"] = ChangeFeed()
    app.extensions["object_storage"] = ObjectStorage.from_app(app)
    app.extensions["assistant"] = AssistantService.from_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            return db.session.get(Profile, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"message": "Authentication required", "redirect": LOGIN_PATH}), 401


def _register_blueprints(app: Flask) -> None:
    from .routes import (
        admin_bp,
        assets_bp,
        dashboard_bp,
        functions_bp,
        main_bp,
        maintenance_bp,
        notifications_bp,
        requests_bp,
    )

    for blueprint in (
        main_bp,
        assets_bp,
        maintenance_bp,
        requests_bp,
        notifications_bp,
        dashboard_bp,
        admin_bp,
        functions_bp,
    ):
        app.register_blueprint(blueprint)


def _register_error_handlers(app: Flask) -> None:
    def as_json(status: int, error: Exception):
        payload: dict[str, Any] = {"message": getattr(error, "description", None) or str(error) or "Unexpected error"}
        if status == 401:
            payload["redirect"] = LOGIN_PATH
        return jsonify(payload), status

    @app.errorhandler(CSRFError)
    def csrf_failed(error):
        return as_json(403, error)

    @app.errorhandler(HTTPException)
    def http_error(error):
        return as_json(error.code or 500, error)

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        db.session.rollback()
        app.logger.exception("Database error", exc_info=error)
        return jsonify({"message": str(getattr(error, "orig", None) or error)}), 400

    @app.errorhandler(Exception)
    def unhandled(error):
        app.logger.exception("Unhandled server error", exc_info=error)
        return jsonify({"message": "Internal server error"}), 500


def _prepare_database(app: Flask) -> None:
    with app.app_context():
        if app.config.get("RUN_DB_UPGRADE_ON_START"):
            if MIGRATIONS_DIR.exists() and any(MIGRATIONS_DIR.iterdir()):
                migrate_upgrade(directory=str(MIGRATIONS_DIR))
            else:
                app.logger.info("No migrations found in %s, skipping upgrade", MIGRATIONS_DIR)

        # First run without migrations: build the schema straight from the models
        if not inspect(db.engine).get_table_names():
            db.create_all()
        bootstrap_admin(app.config.get("BOOTSTRAP_ADMIN_EMAIL"), app.config.get("BOOTSTRAP_ADMIN_PASSWORD"))
