import logging
from datetime import timedelta

from flask import Flask, g, request, session
from dotenv import load_dotenv
from pydantic import ValidationError

from app.portal.config import load_config
from app.portal.db import init_db, teardown_db_session
from app.portal.responses import fail, first_error
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.admin import bp as admin_bp
from app.portal.modules.intake.admin import bp as intake_bp
from app.portal.modules.medical_history.admin import bp as medical_history_bp
from app.portal.modules.service_agreement.admin import bp as service_agreement_bp
from app.portal.modules.consent.admin import bp as consent_bp
from app.portal.modules.onboarding.admin import bp as onboarding_bp
from app.portal.modules.patient_management.admin import bp as patient_management_bp
from app.portal.modules.billing.admin import bp as billing_bp
from app.portal.modules.lead_tasks.admin import bp as lead_tasks_bp
from app.portal.modules.patient_profile.admin import bp as patient_profile_bp


def create_app(overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(load_config())
    if overrides:
        app.config.update(overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.portal.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow safe auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return fail("CSRF token missing or invalid.", 400)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if (app.config.get("EMAIL_BACKEND") or "").strip().lower() == "resend" and not app.config.get("RESEND_API_KEY"):
            raise RuntimeError("RESEND_API_KEY is required when EMAIL_BACKEND=resend.")

    init_db(app)

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

            from app.portal.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(intake_bp, url_prefix="/api")
    app.register_blueprint(medical_history_bp, url_prefix="/api")
    app.register_blueprint(service_agreement_bp, url_prefix="/api")
    app.register_blueprint(consent_bp, url_prefix="/api")
    app.register_blueprint(onboarding_bp, url_prefix="/api")
    app.register_blueprint(patient_management_bp, url_prefix="/api")
    app.register_blueprint(billing_bp, url_prefix="/api")
    app.register_blueprint(lead_tasks_bp, url_prefix="/api")
    app.register_blueprint(patient_profile_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Service-layer errors carry a user-facing message.
    @app.errorhandler(ValueError)
    def _err_value(e):  # type: ignore[no-redef]
        return fail(str(e) or "Invalid request.", 400)

    @app.errorhandler(ValidationError)
    def _err_validation(e):  # type: ignore[no-redef]
        return fail(first_error(e), 400)

    @app.errorhandler(PermissionError)
    def _err_permission(e):  # type: ignore[no-redef]
        return fail(str(e) or "Forbidden.", 403)

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return fail("Authentication required.", 401)

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return fail("You do not have permission to perform this action.", 403)

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return fail("Not found.", 404)

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return fail("Method not allowed.", 405)

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return fail("File too large. Maximum upload size is 25MB.", 413)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in the platform logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return fail("Internal server error.", 500)

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
