# backend/invoicebridge/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate, repository_cache
from .services.ports import NullInventoryHook


def create_app(test_config=None, *, customer_sync=None, inventory_hook=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    repository_cache.init_app(app)

    # Collaborators the core calls into; deployments swap in real ones.
    # customer_sync left as None falls back to the CUSTOMER_SYNC setting.
    app.extensions["invoicebridge"] = {
        "customer_sync": customer_sync,
        "inventory_hook": inventory_hook or NullInventoryHook(),
    }

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.invoices import invoices_bp
    from .routes.migration import migration_bp

    app.register_blueprint(invoices_bp)
    app.register_blueprint(migration_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
