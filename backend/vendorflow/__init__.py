import json
import os
import subprocess
from pathlib import Path

import click
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from vendorflow.extensions import db, migrate, cors
from vendorflow.models import User
from vendorflow.services.errors import OrderFlowError
from vendorflow.segments.segment_admin_jobs import admin_jobs_bp
from vendorflow.segments.segment_admin_orders import admin_orders_bp
from vendorflow.segments.segment_admin_reports import admin_reports_bp
from vendorflow.segments.segment_customer_orders import orders_bp
from vendorflow.segments.segment_notifications import notifications_bp
from vendorflow.segments.segment_vendor_ledger import vendor_ledger_bp
from vendorflow.segments.segment_vendor_orders import vendor_orders_bp
from vendorflow.integrations.carrier.factory import carrier_health
from vendorflow.integrations.messaging.factory import messaging_health
from vendorflow.integrations.payments.factory import payment_health
from vendorflow.utils.observability import init_sentry, install_request_observers


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except Exception:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _print_summary(result: dict) -> None:
    click.echo(json.dumps(result, default=str))
    if not result.get("ok"):
        raise SystemExit(1)


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("VENDORFLOW_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["VENDORFLOW_ENV"] = env

    # Worker tuning
    app.config["RETURN_WINDOW_DAYS"] = _env_int("RETURN_WINDOW_DAYS", 3, minimum=0, maximum=365)
    app.config["ADMIN_REVIEW_AFTER_MINUTES"] = _env_int("ADMIN_REVIEW_AFTER_MINUTES", 30, minimum=0, maximum=100000)
    app.config["STALE_CLAIM_HOURS"] = _env_int("STALE_CLAIM_HOURS", 24, minimum=1, maximum=24 * 90)
    app.config["WORKER_ITEM_DELAY_MS"] = _env_int("WORKER_ITEM_DELAY_MS", 500, minimum=0, maximum=60000)

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{os.path.join(instance_dir, 'vendorflow.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
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
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            int(engine_options.get("pool_size", 0) or 0),
            int(engine_options.get("max_overflow", 0) or 0),
            int(engine_options.get("pool_timeout", 0) or 0),
            int(engine_options.get("pool_recycle", 0) or 0),
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    def _error_payload(error: str, message: str, status: int) -> dict:
        payload = {"ok": False, "error": error, "message": message, "status": int(status)}
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return payload

    @app.errorhandler(OrderFlowError)
    def _order_flow_error(error: OrderFlowError):
        try:
            db.session.rollback()
        except Exception:
            pass
        return jsonify(_error_payload(error.code, error.message, error.http_status)), int(error.http_status)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        code = int(error.code or 500)
        return jsonify(_error_payload(error.name, error.description or error.name, code)), code

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        try:
            db.session.rollback()
        except Exception:
            pass
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500

    app.register_blueprint(vendor_orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(admin_reports_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(vendor_ledger_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_jobs_bp)

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
            "ok": True,
            "service": "vendorflow-backend",
            "env": env,
            "db": db_state,
            "integrations": {
                "carrier": carrier_health(),
                "payments": payment_health(),
                "messaging": messaging_health(),
            },
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

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
            pass

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("reconcile-shipments")
    @click.option("--limit", default=500, show_default=True, type=int)
    def reconcile_shipments_cmd(limit: int):
        from vendorflow.jobs.shipment_reconciler import run_shipment_reconciliation

        _print_summary(run_shipment_reconciliation(limit=limit))

    @app.cli.command("settle-refunds")
    @click.option("--limit", default=500, show_default=True, type=int)
    def settle_refunds_cmd(limit: int):
        from vendorflow.jobs.refund_worker import run_refund_settlement

        _print_summary(run_refund_settlement(limit=limit))

    @app.cli.command("escalate-unclaimed")
    @click.option("--limit", default=500, show_default=True, type=int)
    def escalate_unclaimed_cmd(limit: int):
        from vendorflow.jobs.admin_review_runner import run_admin_review_escalation

        _print_summary(run_admin_review_escalation(limit=limit))

    @app.cli.command("reset-stale-claims")
    @click.option("--limit", default=500, show_default=True, type=int)
    def reset_stale_claims_cmd(limit: int):
        from vendorflow.jobs.stale_claim_runner import run_stale_claim_reset

        _print_summary(run_stale_claim_reset(limit=limit))

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if env not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or VENDORFLOW_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        u = User.query.filter_by(email=email).first()
        try:
            if u:
                u.set_password(password)
                u.role = "admin"
                u.is_active = True
            else:
                u = User(name=email.split("@")[0], email=email, role="admin")
                u.set_password(password)
                db.session.add(u)
            db.session.commit()
            click.echo(f"admin_bootstrap_ok {u.email}")
        except Exception as e:
            db.session.rollback()
            if "unique" in str(e).lower():
                raise click.ClickException("Admin user already exists.")
            raise click.ClickException("Failed to bootstrap admin.")

    return app
