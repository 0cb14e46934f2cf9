import os
import subprocess
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from marketplace.extensions import cors, db, migrate
from marketplace.integrations.payments.factory import payment_health
from marketplace.integrations.shipping.factory import shipping_health
from marketplace.segments.segment_cart import cart_bp
from marketplace.segments.segment_checkout import checkout_bp
from marketplace.segments.segment_orders import orders_bp
from marketplace.segments.segment_payment_webhooks import webhooks_bp
from marketplace.segments.segment_shipping import shipping_bp
from marketplace.segments.segment_subscriptions import subscriptions_bp
from marketplace.utils.job_runs import latest_job_run
from marketplace.utils.observability import init_otel, init_sentry, install_request_observers


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        heads = ScriptDirectory.from_config(cfg).get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(Path(__file__).resolve().parents[1]),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def _error_payload(code: str, message: str, status: int) -> dict:
    payload = {"ok": False, "error": code, "message": message, "status": int(status)}
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("MARKETPLACE_ENV", "dev") or "dev").strip().lower()
    production = env in ("prod", "production")

    if production:
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("MP_WEBHOOK_SECRET") or "").strip():
            app.logger.warning("mp_webhook_secret_missing signature verification disabled")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if production:
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        database_url = "sqlite:///" + os.path.join(instance_dir, "marketplace.db").replace(os.sep, "/")
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url

    engine_options = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and not production:
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}}, supports_credentials=True)

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)
    with app.app_context():
        init_otel(app, enabled=(os.getenv("OTEL_ENABLED") or "").strip() == "1")

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(_error_payload(error.name, error.description or error.name, status)), status

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        try:
            db.session.rollback()
        except Exception:
            app.logger.warning("rollback_after_unhandled_failed path=%s", request.path)
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500

    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(shipping_bp)
    app.register_blueprint(subscriptions_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": db_state == "ok",
            "service": "marketplace-backend",
            "env": env,
            "db": db_state,
            "payments": payment_health(),
            "shipping": shipping_health(),
            "git_sha": _resolve_git_sha(),
        }
        if db_error:
            payload["db_error"] = db_error
        else:
            try:
                payload["payment_retry"] = latest_job_run("payment_retry")
            except Exception:
                db.session.rollback()
                app.logger.warning("health_job_run_lookup_failed")
        return jsonify(payload), 200 if db_state == "ok" else 503

    @app.get("/api/version")
    def version():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": _resolve_git_sha(),
        })

    @app.before_request
    def _reset_db_session():
        try:
            db.session.rollback()
        except Exception:
            app.logger.warning("db_session_reset_failed path=%s", request.path)

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("retry-payments")
    @click.option("--limit", default=50, show_default=True, help="Maximum failed payments to retry")
    def retry_payments(limit: int):
        """Re-run reconciliation for payments whose fulfilment failed."""
        from marketplace.jobs.payment_retry import retry_failed_reconciliations

        summary = retry_failed_reconciliations(limit=limit, trigger="cli")
        click.echo(
            f"retry_payments_done attempted={summary['attempted']} completed={summary['completed']} failed={summary['failed']}"
        )

    @app.cli.command("seed-demo")
    def seed_demo():
        """Create one seller, one store, two products and a subscription plan."""
        if production:
            raise click.ClickException("seed-demo is disabled in production.")
        from marketplace.models import AccountPF, Product, Store, SubscriptionPlan

        seller = db.session.get(AccountPF, "demo-seller") or AccountPF(
            id="demo-seller",
            name="Demo Seller",
            cpf="12345678909",
            email="seller@example.com",
            postal_code="01310100",
            street="Av. Paulista",
            number="1000",
            district="Bela Vista",
            city="Sao Paulo",
            state_abbr="SP",
        )
        db.session.add(seller)
        store = Store.query.filter_by(owner_id=seller.id, owner_type="pf").first()
        if store is None:
            store = Store(owner_id=seller.id, owner_type="pf", name="Demo Store")
            db.session.add(store)
            db.session.flush()
            db.session.add(Product(name="Camiseta", price=Decimal("49.90"), stock_quantity=20,
                                   owner_id=seller.id, owner_type="pf", store_id=store.id, weight_kg=0.3))
            db.session.add(Product(name="Caneca", price=Decimal("29.90"), stock_quantity=None,
                                   owner_id=seller.id, owner_type="pf", store_id=store.id, weight_kg=0.5))
        if SubscriptionPlan.query.count() == 0:
            db.session.add(SubscriptionPlan(name="Seller monthly", price=Decimal("39.90"), periodicity="monthly"))
        db.session.commit()
        click.echo(f"seed_demo_ok store_id={store.id} at={datetime.utcnow().isoformat()}")

    return app
