from models.base import init_engine_and_session, Base
import os
import logging
import uuid
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, current_app, g, jsonify
from dotenv import load_dotenv
from sqlalchemy import text

from controllers.gift_cards import gift_cards_bp
from controllers.webhooks import webhooks_bp
from models import schema  # noqa: F401 - register models on Base.metadata
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY

# --- Load .env exactly once, here ---
# If you use "flask run", Flask will also load .env automatically (when python-dotenv is installed).
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _configure_logging(app: Flask) -> None:
    # default on in containers
    log_to_stdout = os.getenv("LOG_TO_STDOUT", "1") == "1"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    if log_to_stdout:
        handler = logging.StreamHandler()
    else:
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "app.log"),
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            # read-only filesystem: fall back to stdout
            handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))

    # avoid duplicate handlers on reload
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    app.logger.setLevel(logging.INFO)


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)

    APP_ENV = os.getenv("APP_ENV", "development").lower()

    app.config.from_mapping(
        APP_ENV=APP_ENV,

        # Mercado Pago
        MERCADOPAGO_ACCESS_TOKEN=os.getenv("MERCADOPAGO_ACCESS_TOKEN", ""),
        # empty secret disables webhook signature verification
        MERCADOPAGO_WEBHOOK_SECRET=os.getenv("MERCADOPAGO_WEBHOOK_SECRET", ""),
        MERCADOPAGO_API_BASE=os.getenv(
            "MERCADOPAGO_API_BASE", "https://api.mercadopago.com"),
        MERCADOPAGO_TIMEOUT=os.getenv("MERCADOPAGO_TIMEOUT", "10"),

        # Emails
        RESEND_API_KEY=os.getenv("RESEND_API_KEY", ""),
        RESEND_FROM_EMAIL=os.getenv("RESEND_FROM_EMAIL", ""),
        RESEND_FROM_DOMAIN=os.getenv("RESEND_FROM_DOMAIN", "tapresente.com.br"),
        EMAIL_DISPATCH_MODE=os.getenv("EMAIL_DISPATCH_MODE", "inline"),
        DISPLAY_TIMEZONE=os.getenv("DISPLAY_TIMEZONE", "America/Sao_Paulo"),

        # Admin API
        ADMIN_API_TOKEN=os.getenv("ADMIN_API_TOKEN", ""),
    )
    if test_config:
        app.config.update(test_config)

    if APP_ENV == "production" and not app.config["MERCADOPAGO_WEBHOOK_SECRET"]:
        app.logger.warning(
            "MERCADOPAGO_WEBHOOK_SECRET is not set; webhook signatures will not be verified")

    # ---- Logging ----
    _configure_logging(app)

    # Ensure instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # ---- DB init ----
    engine, _Session = init_engine_and_session()
    if _env_bool("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine, checkfirst=True)

    # ---- Blueprints ----
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(gift_cards_bp)

    # Prometheus
    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    # ---- Errors ----

    @app.errorhandler(404)
    def not_found(e):
        app.logger.warning("404 %s %s", request.method, request.path)
        return jsonify(error="not found", path=request.path), 404

    @app.errorhandler(405)
    def not_allowed(e):
        app.logger.warning("405 %s %s", request.method, request.path)
        return jsonify(error="method not allowed", path=request.path), 405

    @app.errorhandler(500)
    def internal_error(e):
        app.logger.error("500 %s %s", request.method, request.path)
        return jsonify(error="internal server error"), 500

    # ---- Request bookkeeping ----

    @app.before_request
    def _start_timer():
        g._t0 = time()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _log_request(resp):
        try:
            ms = (time() - getattr(g, "_t0", time())) * 1000
            app.logger.info("%s %s %s %s %.1fms",
                            request.remote_addr, request.method, request.full_path, resp.status_code, ms)

            # --- Skip self-scrapes to keep series clean ---
            ep = request.endpoint or ""
            path = request.path or ""
            if path.startswith("/metrics"):
                return resp

            endpoint = ep.replace(".", "_") or "unknown"
            REQUEST_COUNT.labels(
                method=request.method, endpoint=endpoint, status=str(resp.status_code)).inc()
            REQUEST_LATENCY.labels(
                endpoint=endpoint, method=request.method).observe(ms / 1000.0)
        except Exception:
            app.logger.exception("Failed to log request")
        return resp

    @app.get("/healthz")
    def healthz():
        # Liveness: process is up, Flask can serve a simple request
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # Readiness: app can talk to the DB
        try:
            engine, _ = init_engine_and_session()
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return jsonify(status="ok"), 200
        except Exception as e:
            current_app.logger.exception("Readiness check failed")
            return jsonify(status="error", error=str(e)), 500

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8000")), debug=(
        app.config["APP_ENV"] != "production"))
