import click
from flask import Flask, request, g, jsonify
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from models import db
from models.user import User
from routes import health_bp, booking_bp, places_bp, payments_bp, click_bp
from security.csrf import require_csrf
from security.session import create_session
from services import factory
from services.errors import DomainError, GatewayApiError, GatewayConfigError
from utils.auth_context import load_current_user
from utils.seed import grant_role, seed_roles


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(places_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(click_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        if app.config.get("CREATE_TABLES_ON_START"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        return require_csrf()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        if resp.mimetype == "application/json":
            resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_error_handlers(app)
    register_cli(app)

    return app


def register_error_handlers(app):
    @app.errorhandler(DomainError)
    def _domain_error(e):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(GatewayApiError)
    def _gateway_error(e):
        app.logger.warning("payment provider error: %s", e)
        return jsonify(error="Payment provider is unavailable"), 502

    @app.errorhandler(GatewayConfigError)
    @app.errorhandler(SQLAlchemyError)
    def _infrastructure_error(e):
        db.session.rollback()
        app.logger.exception("infrastructure failure on %s %s", request.method, request.path)
        return jsonify(error="Internal server error"), 500


def _find_user(email):
    return User.query.filter_by(email=email.strip().lower()).first()


def register_cli(app):
    @app.cli.command("make-agent")
    @click.argument("email")
    def make_agent(email):
        """Grant the AGENT role to a user by email (bootstrap)."""
        user = _find_user(email)
        if not user:
            print("User not found")
            return

        if grant_role(user, "AGENT"):
            print(f"{user.email} promoted to AGENT")
        else:
            print(f"{user.email} is already an AGENT")

    @app.cli.command("issue-session")
    @click.argument("email")
    def issue_session(email):
        """Print a bearer token for a user (login flows live outside this service)."""
        user = _find_user(email)
        if not user:
            print("User not found")
            return
        token = create_session(user.id, ip="cli", user_agent="flask issue-session")
        print(token)

    @app.cli.command("expire-bookings")
    def expire_bookings():
        """Reject pending/selected bookings whose time slots have all passed."""
        expired = factory.booking_lifecycle().expire_stale()
        for booking in expired:
            app.logger.info("booking %s expired", booking.id)
        print(f"{len(expired)} booking(s) expired")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
