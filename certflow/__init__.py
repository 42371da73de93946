"""
SLF Certification Workflow Engine.

    from certflow import create_app

    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")   # in-memory SQLite, no auto create_all
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from certflow.config import config
from certflow.middleware.identity import init_identity_middleware
from certflow.middleware.logging_config import configure_logging
from certflow.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, _record):
    # SQLite ignores ON DELETE CASCADE and FK checks unless asked per connection
    if type(dbapi_conn).__module__.startswith("sqlite3"):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def create_app(config_name=None):
    """Build the Flask app for ``config_name`` (development / testing / production)."""
    config_cls = config[config_name or os.getenv("APP_ENV", "development")]
    if hasattr(config_cls, "check"):
        config_cls.check()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_cls)

    configure_logging(app)
    _init_extensions(app)
    init_identity_middleware(app)

    from certflow.models import auth, checklist, document, notification, payment, project  # noqa: F401

    if not app.config.get("TESTING"):
        _ensure_schema(app)

    _register_blueprints(app)
    _register_cli(app)
    _register_app_handlers(app)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    origins = app.config.get("CORS_ORIGINS") or ""
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _ensure_schema(app):
    """CREATE TABLE IF NOT EXISTS for local runs; Flask-Migrate owns real upgrades."""
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]) or app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
    logger.info("Schema ensured on %s", uri.split("@")[-1])


def _register_blueprints(app):
    from certflow.blueprints.notification_bp import notification_bp
    from certflow.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(notification_bp)


def _register_cli(app):

    @app.cli.command("seed-checklist")
    def seed_checklist():
        """Insert the default field inspection checklist items."""
        from certflow.services.checklist_lifecycle import seed_default_items

        added = seed_default_items()
        logger.info("Checklist seed: %d new item(s)", added)


def _register_app_handlers(app):

    @app.get("/api/v1/health")
    def health():
        return {"status": "ok", "service": "certflow"}

    @app.errorhandler(404)
    def _not_found(_e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return {"error": "Method not allowed", "code": "ERR_METHOD_NOT_ALLOWED"}, 405

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500
