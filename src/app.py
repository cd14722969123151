"""
Entry Service: Flask application
Ticket orders and approval, wristbands, and gate scanning.
"""

import logging
from datetime import datetime, timezone

import click
from dotenv import load_dotenv
from flasgger import Swagger
from flask import Flask, jsonify

from src.config import load_config
from src.errors import StoreUnavailable
from src.extensions import db, jwt
from src.logging_config import setup_logging

logger = logging.getLogger(__name__)

SWAGGER_TEMPLATE = {
    "info": {
        "title": "Entry Service API",
        "description": "Ticket and wristband credentials: issuance, approval and scanning",
        "version": "1.0.0",
    },
    "securityDefinitions": {
        "Bearer": {"type": "apiKey", "name": "Authorization", "in": "header"},
    },
}


def create_app(test_config=None):
    load_dotenv()

    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)

    setup_logging(app.config["LOG_LEVEL"])

    db.init_app(app)
    jwt.init_app(app)

    # Register models before create_all
    from src import models  # noqa: F401

    Swagger(app, template=SWAGGER_TEMPLATE)

    # Register Blueprints
    from src.routes.orders import orders_bp
    app.register_blueprint(orders_bp, url_prefix="/orders")

    from src.routes.tickets import tickets_bp
    app.register_blueprint(tickets_bp, url_prefix="/tickets")

    from src.routes.wristbands import wristbands_bp
    app.register_blueprint(wristbands_bp, url_prefix="/wristbands")

    from src.routes.scan import scan_bp
    app.register_blueprint(scan_bp, url_prefix="/scan")

    from src.routes.webhooks import webhooks_bp
    app.register_blueprint(webhooks_bp, url_prefix="/api/webhooks")

    @app.errorhandler(StoreUnavailable)
    def store_unavailable(e):
        return jsonify({
            "success": False,
            "error_code": "STORE_UNAVAILABLE",
            "message": "Service temporarily unavailable, please retry",
            "retryable": True,
        }), 503

    @app.route("/health")
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
            return {
                "service": "entry-service",
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }, 200
        except Exception as e:
            logger.error("Health check failed: %s", e)
            return {"service": "entry-service", "status": "unhealthy", "error": str(e)}, 503

    register_commands(app)
    return app


def register_commands(app):
    from src.services import order_service, ticket_service

    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo("Database tables created")

    @app.cli.command("expire-tickets")
    def expire_tickets():
        """Mark ACTIVE tickets of finished events as EXPIRED."""
        count = ticket_service.expire_unused_tickets()
        click.echo(f"Expired {count} tickets")

    @app.cli.command("expire-orders")
    def expire_orders():
        """Fail orders left PENDING past ORDER_PENDING_TTL_HOURS."""
        count = order_service.expire_stale_orders()
        click.echo(f"Expired {count} orders")


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=5000)
