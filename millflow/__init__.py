"""
MillFlow — production-order lifecycle engine
Flask Application Factory.

Usage:
    from millflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from millflow.config import config
from millflow.models import db
from millflow.middleware.logging_config import configure_logging

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from millflow.models import tenant as _tenant_models           # noqa: F401
    from millflow.models import project as _project_models         # noqa: F401
    from millflow.models import procurement as _procurement_models  # noqa: F401
    from millflow.models import production as _production_models   # noqa: F401
    from millflow.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from millflow.blueprints.procurement_bp import procurement_bp
    from millflow.blueprints.production_bp import production_bp

    app.register_blueprint(procurement_bp)
    app.register_blueprint(production_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("recompute-costs")
    @click.option("--tenant", type=int, required=True, help="Tenant id to recompute")
    @click.option("--deadline", type=float, default=None,
                  help="Seconds for the whole pass (default: REPAIR_DEADLINE_SECONDS)")
    def recompute_costs_cmd(tenant, deadline):
        """Re-run the material cost + readiness recompute for every product of a tenant."""
        from millflow.services.cascade_service import CascadeSynchronizer
        from millflow.integrations.store_gateway import SqlAlchemyStore

        if deadline is None:
            deadline = app.config["REPAIR_DEADLINE_SECONDS"]
        store = SqlAlchemyStore(tenant_id=tenant, deadline=deadline)
        summary = CascadeSynchronizer(store).recompute_all_products()
        logger.info(
            "Recomputed %d products (%d promoted, %d projects promoted) tenant_id=%s",
            len(summary.products_recomputed), len(summary.products_promoted),
            len(summary.projects_promoted), tenant,
        )

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "MillFlow"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "detail": str(e)}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    return app
