from __future__ import annotations

import logging
from datetime import timedelta

import click
from flask import Flask, jsonify

from app.core.auth import auth_bp
from app.core.config import Config
from app.core.errors import WorkflowError, register_error_handlers
from app.core.extensions import db, login_manager, migrate
from app.core.logging import configure_logging
from app.core.models import User, seed_demo_data, utcnow
from app.review import review_bp

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(review_bp)

    register_error_handlers(app)
    register_cli(app)
    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        return jsonify({"success": True, "status": "ok"})


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo staff accounts and default configuration."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("reject-stale")
    @click.option("--actor-email", required=True, help="Administrator recorded as the rejecting actor.")
    @click.option("--days", type=int, default=None, help="Override info_request_timeout_days.")
    def reject_stale(actor_email: str, days: int | None) -> None:
        """Reject applications whose change request went unanswered too long."""
        from app.core.context import RequestContext
        from app.review import config_store, machine
        from app.review.services import stale_change_requests

        actor = User.query.filter_by(email=actor_email.strip().lower()).first()
        if not actor or actor.role != "admin":
            raise click.ClickException(f"No administrator with email {actor_email}")

        timeout_days = days if days is not None else int(config_store.get_value("info_request_timeout_days", 45))
        cutoff = utcnow() - timedelta(days=timeout_days)
        ctx = RequestContext.system(actor.id, role=actor.role, source="cli:reject-stale")
        stale = stale_change_requests(cutoff)
        if not stale:
            click.echo("No stale change requests.")
            return

        rejected = 0
        for application_id, number in [(row.id, row.application_number) for row in stale]:
            try:
                machine.apply_transition(
                    application_id,
                    "reject",
                    ctx,
                    reason=f"No response to change request within {timeout_days} days",
                )
            except WorkflowError as exc:
                logger.warning("Could not reject stale application %s: %s", number, exc.message)
                click.echo(f"[{number}] skipped: {exc.message}")
                continue
            rejected += 1
            click.echo(f"[{number}] rejected")
        click.echo(f"Rejected {rejected} of {len(stale)} stale applications.")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "error": "unauthorized", "message": "Login required"}), 401
