import os
import logging

import click
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from werkzeug.security import generate_password_hash

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Register blueprints ---
    from app.blueprints.auth import auth_bp
    from app.blueprints.dashboard import dashboard_bp
    from app.blueprints.public import public_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(public_bp)

    # Public funnel pages post cross-origin without a session. The SPA sends
    # the token from GET /auth/csrf in an X-CSRFToken header.
    csrf.exempt(public_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        return jsonify(ok=True, service="businessos")

    # --- Error handlers ---
    @app.errorhandler(CSRFError)
    def csrf_error(e):
        return jsonify(ok=False, error="Missing or invalid CSRF token."), 400

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify(ok=False, error="Forbidden."), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(ok=False, error="Not found."), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(ok=False, error="Too many requests. Please try again later."), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(ok=False, error="Internal server error."), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-owner")
    @click.option("--email", default="owner@businessos.local", help="Owner email")
    @click.option("--password", default="owner1234", help="Owner password")
    @click.option("--business-name", default="Demo Fitness Studio", help="Business name")
    def seed_owner(email, password, business_name):
        """Create an owner account with an onboarded demo project.

        Usage:
            flask seed-owner
            flask seed-owner --email me@example.com --business-name "Joe's Pizza"
        """
        from app.models.project import new_project
        from app.models.user import User
        from app.services import storage_service
        from app.slugs import derive_slug

        user = User.query.filter_by(email=email).first()
        if user:
            click.echo(f"Owner already exists: {email}")
        else:
            user = User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name="Demo Owner",
            )
            db.session.add(user)
            db.session.commit()
            click.echo(f"Created owner: {email}")

        project = new_project({
            "businessName": business_name,
            "niche": "Fitness coaching",
            "targetAudience": "Busy professionals",
            "mission": "Make training fit into real life.",
            "websiteData": {
                "heroHeadline": f"Welcome to {business_name}",
                "heroSubhead": "Coaching that fits your schedule.",
                "ctaText": "Join the waitlist",
                "features": [],
                "pricing": [],
                "testimonials": [],
            },
            "contentPlan": [],
            "suggestedPrograms": ["12-Week Reset"],
        })
        saved = storage_service.save_project(project, tenant_id=user.id)

        base_url = app.config["APP_BASE_URL"]
        prefix = app.config["PUBLIC_PATH_PREFIX"]

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created!" if saved else "Project could NOT be saved.")
        click.echo("=" * 60)
        click.echo(f"  Owner:     {email} / {password}")
        click.echo(f"  Tenant:    {user.id}")
        click.echo(f"  Public:    {base_url}{prefix}{derive_slug(business_name)}")
        click.echo("=" * 60)

    @app.cli.command("reset-local-data")
    @click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
    def reset_local_data(yes):
        """Wipe the local fallback project store ("reset system data").

        Supabase data is not touched.
        """
        from app.services import storage_service

        if not yes:
            click.confirm("Delete the locally stored project and leads?", abort=True)
        if storage_service.reset_local_data():
            click.echo("Local data reset.")
        else:
            click.echo("ERROR: local data could not be reset.")
