import logging

from flask import render_template, request, jsonify
from werkzeug.exceptions import HTTPException
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import SQLAlchemyError
from ...exceptions import MarketplaceError
from ...extensions import db
from . import errors_bp

log = logging.getLogger(__name__)


def _wants_json() -> bool:
    return request.path.startswith("/ipn/") or request.accept_mimetypes.best == "application/json"


def _rollback():
    # a failed DB action must not leave the session stuck in a bad transaction
    try:
        db.session.rollback()
    except SQLAlchemyError:
        log.exception("rollback failed while handling an error")


# 401 – Unauthorized
@errors_bp.app_errorhandler(401)
def err_401(e):
    return render_template("errors/401.html", error=e), 401

# 403 – Forbidden
@errors_bp.app_errorhandler(403)
def err_403(e):
    return render_template("errors/403.html", error=e), 403

# 404 – Not Found
@errors_bp.app_errorhandler(404)
def err_404(e):
    return render_template("errors/404.html", path=request.path), 404

# 405 – Method Not Allowed
@errors_bp.app_errorhandler(405)
def err_405(e):
    return render_template("errors/405.html", error=e), 405

# 413 – Payload Too Large (deliverable uploads)
@errors_bp.app_errorhandler(413)
def err_413(e):
    return render_template("errors/413.html", error=e), 413

# 429 – Too Many Requests
@errors_bp.app_errorhandler(429)
def err_429(e):
    return render_template("errors/429.html", error=e), 429

# CSRF – treated as 400 Bad Request
@errors_bp.app_errorhandler(CSRFError)
def err_csrf(e):
    return render_template("errors/400_csrf.html", error=e), 400

# Domain errors that escaped a route
@errors_bp.app_errorhandler(MarketplaceError)
def err_marketplace(e: MarketplaceError):
    if e.status_code >= 500:
        _rollback()
        log.error("%s: %s", type(e).__name__, e.message)
    if _wants_json():
        return jsonify({"ok": False, "error": e.message}), e.status_code
    return render_template("errors/http_generic.html", code=e.status_code,
                           name=type(e).__name__, description=e.user_message), e.status_code

# 500 – Internal Server Error
@errors_bp.app_errorhandler(500)
def err_500(e):
    _rollback()
    return render_template("errors/500.html"), 500

# Fallback for uncaught HTTPException (shows friendly page with code/desc)
@errors_bp.app_errorhandler(HTTPException)
def err_http(e: HTTPException):
    return render_template("errors/http_generic.html", code=e.code, name=e.name, description=e.description), e.code

# Last-resort: any other Exception
@errors_bp.app_errorhandler(Exception)
def err_unexpected(e):
    _rollback()
    log.exception("unhandled error on %s %s", request.method, request.path)
    # Don't leak internals, just show generic 500
    return render_template("errors/500.html"), 500
