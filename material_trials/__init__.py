"""
material_trials/__init__.py

Flask application factory for the Material Trial Tracker.

Requirements:
- Clear architecture, stable imports; the lifecycle core (lifecycle.py +
  commands.py) has no knowledge of HTTP or of the logged-in user.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- UI is never trusted; stage ownership is enforced server-side on every command.
"""

from __future__ import annotations

import click
from flask import Flask, jsonify
from flask_login import current_user

from .errors import configure_logging, register_error_handlers
from .extensions import csrf, db, login_manager, migrate
from .models import User

# Blueprint imports kept inside create_app() where possible to reduce import side effects.


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthorized", "message": "Login required."}), 401

    register_error_handlers(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.requests import requests_bp
    from .blueprints.settings import settings_bp
    from .blueprints.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(users_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development shortcut; use `flask db upgrade` with migrations)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-options")
    def seed_options_command():
        """Seed default material categories and purposes."""
        from .seed import seed_default_options

        seed_default_options()
        click.echo("Default reference options seeded.")

    @app.cli.command("seed-users")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True,
                  help="Password for every demo user.")
    def seed_users_command(password: str):
        """Create one demo user per role."""
        from .seed import seed_demo_users

        created = seed_demo_users(password)
        click.echo(f"{created} demo user(s) created.")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """Service info + who is logged in."""
        from .commands import current_variant

        return jsonify(
            {
                "app": app.config.get("APP_NAME"),
                "workflow": current_variant().name,
                "user": current_user.to_dict() if current_user.is_authenticated else None,
            }
        )

    return app
