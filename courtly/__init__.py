import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from courtly.config import config_by_name
from courtly.errors import CourtlyError
from courtly.extensions import (
    configure_sqlite_transactions,
    db,
    limiter,
    login_manager,
    migrate,
)


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
    limiter.init_app(app)

    # --- SQLite: lock at BEGIN; import models so Alembic can discover them ---
    with app.app_context():
        configure_sqlite_transactions(db.engine)
        from courtly import models  # noqa: F401

    # --- Register blueprints ---
    from courtly.blueprints.auth import auth_bp
    from courtly.blueprints.bookings import bookings_bp
    from courtly.blueprints.payments import payments_bp
    from courtly.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        response.headers["Cache-Control"] = "no-store"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render every error as {"error": message} JSON."""

    @app.errorhandler(CourtlyError)
    def courtly_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"error": "Authentication required."}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "You do not have access to this resource."}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found."}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed."}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests. Please slow down."}), 429

    @app.errorhandler(500)
    def server_error(e):
        app.logger.error(f"Unhandled error: {e}")
        return jsonify({"error": "Internal server error."}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-club")
    @click.option("--email", default="admin@courtly.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    @click.option("--club-name", default="Demo Tennis Club", help="Club name")
    @click.option("--courts", default=4, show_default=True, help="Number of courts")
    def seed_club(email, password, club_name, courts):
        """Create admin user + club + courts + membership plans.

        Usage:
            flask seed-club
            flask seed-club --email owner@example.com --courts 6
        """
        from courtly.models.user import User
        from courtly.models.club import Club, ClubMember, Court, MembershipPlan

        # --- 1. Admin user ---
        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
            admin = existing
        else:
            admin = User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name="Club Admin",
                is_admin=True,
            )
            db.session.add(admin)
            db.session.flush()
            click.echo(f"Created admin user: {email}")

        # --- 2. Club ---
        club = Club(name=club_name, currency=app.config["DEFAULT_CURRENCY"])
        db.session.add(club)
        db.session.flush()

        # --- 3. Admin as club owner ---
        db.session.add(ClubMember(user_id=admin.id, club_id=club.id, role="owner"))

        # --- 4. Courts ---
        for number in range(1, courts + 1):
            db.session.add(Court(club_id=club.id, name=f"Court {number}"))

        # --- 5. Membership plans ---
        monthly = MembershipPlan(
            club_id=club.id, name="Monthly Membership", price_cents=5000, interval="month"
        )
        annual = MembershipPlan(
            club_id=club.id, name="Annual Membership", price_cents=50000, interval="year"
        )
        db.session.add_all([monthly, annual])

        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Admin:   {email} / {password}")
        click.echo(f"  Club:    {club.name} (id: {club.id})")
        click.echo(f"  Courts:  {courts}")
        click.echo(f"  Plans:   {monthly.id} (month), {annual.id} (year)")
        click.echo("=" * 60)

    @app.cli.command("release-stale-payments")
    @click.option(
        "--minutes",
        type=int,
        default=None,
        help="Age in minutes (default PAYMENT_LOCK_TIMEOUT_MINUTES).",
    )
    def release_stale_payments(minutes):
        """Clear payment_in_progress on bookings whose attempt never finished.

        Usage:
            flask release-stale-payments
            flask release-stale-payments --minutes 30
        """
        from courtly.services.booking_service import release_stale_payment_locks

        released = release_stale_payment_locks(max_age_minutes=minutes)
        click.echo(f"Released {released} stale payment lock(s).")
