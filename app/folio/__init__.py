import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.folio.config import load_config
from app.folio.db import init_db, teardown_db_session
from app.folio.models import Base  # noqa: F401  (must load before any module models)
from app.folio.routes import bp as routes_bp
from app.folio.auth import bp as auth_bp, load_current_user
from app.folio.admin import bp as admin_bp
from app.folio.modules.blog.public import bp as blog_bp
from app.folio.modules.blog.admin import bp as blog_admin_bp
from app.folio.modules.inbox.public import bp as contact_bp
from app.folio.modules.inbox.admin import bp as inbox_admin_bp
from app.folio.modules.media.public import bp as media_bp
from app.folio.modules.media.admin import bp as media_admin_bp
from app.folio.modules.settings.public import bp as site_settings_bp
from app.folio.modules.settings.admin import bp as settings_admin_bp
from app.folio.modules.portfolio.public import bp as portfolio_bp

# Tables the admin area cannot work without.
REQUIRED_TABLES = (
    "users",
    "roles",
    "permissions",
    "audit_events",
    "rate_limits",
    "posts",
    "tags",
    "post_tags",
    "inbox_messages",
    "media_assets",
    "media_variants",
    "site_settings",
    "projects",
    "skills",
    "experiences",
)

_ERROR_MESSAGES = {
    400: "Bad request",
    401: "Authentication required",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    413: "File too large",
    429: "Too many requests",
    500: "Internal server error",
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=int(app.config.get("SESSION_HOURS") or 24))
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    logging.basicConfig(level=app.config.get("LOG_LEVEL") or "INFO")
    logging.getLogger().setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # CSRF protection (minimal)
    from app.folio.security import apply_security_headers, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if not request.path.startswith("/admin"):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow safe auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = []
        for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
            if not app.config.get(key):
                missing_s3.append(key)
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.folio.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(blog_bp)
    app.register_blueprint(contact_bp)
    app.register_blueprint(media_bp)
    app.register_blueprint(site_settings_bp)
    app.register_blueprint(portfolio_bp)
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(blog_admin_bp, url_prefix="/admin")
    app.register_blueprint(inbox_admin_bp, url_prefix="/admin")
    app.register_blueprint(media_admin_bp, url_prefix="/admin")
    app.register_blueprint(settings_admin_bp, url_prefix="/admin")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)
    app.after_request(apply_security_headers)

    # Schema health: checked lazily on the first logged-in admin request and
    # re-checked until it passes (tables may be created after create_app()).
    app.config.setdefault("_schema_health_ok", False)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> bool:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in REQUIRED_TABLES if not insp.has_table(t)]
        except SQLAlchemyError as e:
            app.logger.exception("Schema health check failed: %s", e)
            return False

        app.config["_schema_health_missing"] = missing
        if missing and not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_ok"] = not missing
        return not missing

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith("/admin") and getattr(g, "current_user", None):
            if not _run_schema_health_check():
                return (
                    jsonify(
                        {
                            "error": "Database schema is out of date. Run `alembic upgrade head`.",
                            "missing": app.config.get("_schema_health_missing") or [],
                        }
                    ),
                    500,
                )
        return None

    @app.errorhandler(HTTPException)
    def _err_http(e):  # type: ignore[no-redef]
        status = e.code or 500
        body = {"error": _ERROR_MESSAGES.get(status) or e.name}
        if status == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
                body["missingPermission"] = missing
        elif status == 413:
            body["error"] = f"File too large. Maximum size is {app.config.get('UPLOAD_MAX_SIZE_MB', 50)}MB."
        resp = e.get_response()
        resp.data = jsonify(body).get_data()
        resp.content_type = "application/json"
        return resp

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": _ERROR_MESSAGES[500]}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
