# backend/cookwallet/__init__.py
from __future__ import annotations

from typing import Any, Optional

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(overrides: Optional[dict[str, Any]] = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app (engines are built there)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Replaceable collaborators (tests install fakes here)
    from .services.audit_service import DatabaseAuditSink
    from .services.payment_gateway import build_gateway
    app.extensions.setdefault("audit_sink", DatabaseAuditSink())
    app.extensions.setdefault("payment_gateway", build_gateway(app.config))

    # Register blueprints
    from .routes.wallets import wallets_bp
    from .routes.orders import orders_bp
    from .routes.clearances import clearances_bp
    from .routes.payouts import payouts_bp
    from .routes.commission import commission_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(wallets_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(clearances_bp)
    app.register_blueprint(payouts_bp)
    app.register_blueprint(commission_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
