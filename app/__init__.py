import os
import logging
from pathlib import Path
from logging.handlers import RotatingFileHandler
from datetime import datetime
from flask import Flask, render_template
from .extensions import db, migrate, login_manager, csrf, mail
from .config import Config
from .models.gig import Gig
from .models.user import User
from .services import confirmation, paystack_service, rate_limit

# Blueprints
from .blueprints.errors import errors_bp
from .blueprints.auth import auth_bp
from .blueprints.orders import orders_bp
from .blueprints.payments import payments_bp
from .blueprints.freelancer import freelancer_bp
from .blueprints.admin import admin_bp
from .blueprints.paystack_webhook import paystack_webhook_bp


# Optional: Sentry
def _init_sentry(app):
    dsn = app.config.get("SENTRY_DSN")
    if not dsn:
        return
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration(), SqlalchemyIntegration()],
        traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.0),
        environment=os.getenv("ENV", "development"),
        release=os.getenv("GIT_COMMIT", None),
        send_default_pii=False,
    )
    app.logger.info("Sentry initialized.")

def _init_logging(app):
    # Base level
    level_name = app.config.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)

    # Ensure log dir exists
    log_dir = Path(app.config.get("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / app.config.get("LOG_FILENAME", "gigescrow.log")

    # Formatter: text or JSON
    if app.config.get("LOG_JSON", False):
        import json_log_formatter
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")

    # create_app can run many times per process (tests); don't stack handlers
    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        handler.close()

    # Rotating file handler (5MB x 5)
    file_handler = RotatingFileHandler(
        log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    app.logger.addHandler(file_handler)

    # Stream to stdout as well (useful on dev/heroku/docker)
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    app.logger.addHandler(stream_handler)

    app.logger.info("Logging initialized.")

def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # --- base config defaults ---
    app.config.setdefault("SECRET_KEY", "change-me")
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)

    # ensure instance & uploads
    Path(app.instance_path).mkdir(parents=True, exist_ok=True)
    default_upload_dir = Path(app.instance_path) / "uploads"
    app.config.setdefault("UPLOAD_FOLDER", str(default_upload_dir))
    app.config.setdefault("MAX_CONTENT_LENGTH", 50 * 1024 * 1024)
    app.config.setdefault("ALLOWED_EXTENSIONS", {"pdf","doc","docx","xls","xlsx","ppt","pptx","txt","zip","png","jpg","jpeg","psd","ai","mp4"})

    if not app.config.get("TESTING"):
        app.config.from_pyfile("config.py", silent=True)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    mail.init_app(app)
    paystack_service.init_app(app)
    rate_limit.init_app(app)
    confirmation.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    login_manager.login_view = "auth.login"

    @app.context_processor
    def inject_now():
        return {"now": datetime.utcnow}

    # Logging must come before blueprints so errors during register are captured
    _init_logging(app)
    _init_sentry(app)

    # Blueprints
    app.register_blueprint(errors_bp)  # error handlers
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp, url_prefix="/orders")
    app.register_blueprint(payments_bp, url_prefix="/payments")
    app.register_blueprint(freelancer_bp, url_prefix="/freelancer")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(paystack_webhook_bp)

    # Simple index: the active gig catalogue
    @app.route("/")
    def index():
        gigs = Gig.query.filter_by(is_active=True).order_by(Gig.created_at.desc()).limit(24).all()
        return render_template("home.html", gigs=gigs)

    return app
