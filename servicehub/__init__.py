import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import event
from werkzeug.middleware.proxy_fix import ProxyFix

from servicehub.cli import register_cli
from servicehub.config import config_by_env
from servicehub.errors import register_error_handlers
from servicehub.extensions import bcrypt, db, limiter, login_manager, migrate
from servicehub.gateways import PaymentGateway
from servicehub.models import User
from servicehub.routes.api.v1 import api_v1_bp
from servicehub.services import BookingService, PaymentService, WalletService


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def create_app(config_name=None, config_overrides=None):
    load_dotenv()
    env = config_name or os.getenv("FLASK_ENV", "development")

    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_by_env.get(env, config_by_env["development"]))
    if config_overrides:
        app.config.update(config_overrides)
    app.config["ENV_NAME"] = env
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if db_uri.startswith("sqlite:///") and not db_uri.startswith("sqlite:////") and db_uri != "sqlite:///:memory:":
        relative_path = db_uri.replace("sqlite:///", "", 1)
        absolute_path = os.path.join(project_root, relative_path)
        os.makedirs(os.path.dirname(absolute_path), exist_ok=True)
        app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{absolute_path}"

    db.init_app(app)
    migrate.init_app(app, db)
    bcrypt.init_app(app)
    # Default limits come from RATELIMIT_DEFAULT ("200 per day;80 per hour").
    limiter.init_app(app)
    login_manager.init_app(app)
    _init_sentry(app, env)

    register_error_handlers(app)
    app.register_blueprint(api_v1_bp, url_prefix="/api/v1")

    with app.app_context():
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:"):
            _enable_sqlite_savepoints(db.engine)
        if env in ("development", "testing"):
            db.create_all()

    _init_services(app)

    register_cli(app)
    return app


def _init_services(app):
    gateway = PaymentGateway.from_config(app.config)
    wallets = WalletService.from_config(app.config, pending_source=BookingService.pending_total_for_provider)
    payments = PaymentService.from_config(app.config, gateway=gateway, ledger=wallets, bookings=BookingService)
    app.extensions["wallet_service"] = wallets
    app.extensions["payment_service"] = payments


def _enable_sqlite_savepoints(engine):
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; issue it ourselves.
    # Foreign keys are off by default in SQLite.
    @event.listens_for(engine, "connect")
    def _configure_pysqlite_connection(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _init_sentry(app, env):
    dsn = app.config.get("SENTRY_DSN")
    if not dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.05")),
            environment=env,
        )
        app.logger.info("Sentry initialized.")
    except Exception as exc:
        app.logger.warning("Sentry initialization failed: %s", exc)
