import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.qms.api import error_response
from app.qms.auth import bp as auth_bp, load_current_user
from app.qms.config import load_config
from app.qms.db import init_db, teardown_db_session
from app.qms.errors import AuthorizationError, QMSError
from app.qms.modules.assessments.admin import bp as assessments_bp
from app.qms.modules.dashboard.admin import bp as dashboard_bp
from app.qms.modules.nonconformities.admin import bp as nonconformities_bp
from app.qms.modules.standards.admin import bp as standards_bp
from app.qms.routes import bp as routes_bp

REQUIRED_TABLES = (
    "organizations",
    "users",
    "iso_standard_sections",
    "audit_questions",
    "assessment_templates",
    "assessments",
    "question_responses",
    "non_conformities",
    "corrective_actions",
    "audit_events",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    # CSRF protection (minimal)
    from app.qms.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow safe auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"success": False, "error": {"code": "CSRF_FAILED", "message": "CSRF token missing or invalid."}}), 400

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

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(standards_bp, url_prefix="/api")
    app.register_blueprint(assessments_bp, url_prefix="/api")
    app.register_blueprint(nonconformities_bp, url_prefix="/api")
    app.register_blueprint(dashboard_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health (lean): log loudly when migrations have not been applied.
    def _run_schema_health_check() -> None:
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in REQUIRED_TABLES if not insp.has_table(t)]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(QMSError)
    def _err_qms(e: QMSError):  # type: ignore[no-redef]
        if isinstance(e, AuthorizationError):
            missing = getattr(g, "missing_permission", None)
            app.logger.warning(
                "Forbidden: %s missing_permission=%s request_id=%s", e.message, missing, getattr(g, "request_id", None)
            )
        return error_response(e)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        code = (e.name or "error").upper().replace(" ", "_")
        return jsonify({"success": False, "error": {"code": code, "message": e.description}}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        body = {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred."}
        if rid:
            body["request_id"] = rid
        return jsonify({"success": False, "error": body}), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
