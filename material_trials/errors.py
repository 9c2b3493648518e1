"""
Error handling and logging configuration.

- configure_logging(app): stream handler + formatter for non-debug runs.
- register_error_handlers(app): every error leaves the app as JSON
  ({"error", "message"[, "field"]}); stack traces stay in the server log.
"""

from __future__ import annotations

import logging
import sys

from flask import jsonify, request
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from .exceptions import CommitError, LifecycleError

LOG_FORMAT = "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"


def configure_logging(app):
    """
    Configure application logging.

    Production (not debug, not testing): INFO to stdout when LOG_TO_STDOUT is
    set, otherwise ERROR to stderr. The package logger shares the handler so
    module loggers (logging.getLogger(__name__)) end up in the same stream.
    """
    if not app.debug and not app.testing:
        if app.config.get("LOG_TO_STDOUT"):
            stream_handler = logging.StreamHandler(sys.stdout)
            stream_handler.setLevel(logging.INFO)
        else:
            stream_handler = logging.StreamHandler(sys.stderr)
            stream_handler.setLevel(logging.ERROR)

        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))

        app.logger.addHandler(stream_handler)
        app.logger.setLevel(logging.INFO)

        package_logger = logging.getLogger("material_trials")
        package_logger.addHandler(stream_handler)
        package_logger.setLevel(logging.INFO)

        app.logger.info("%s startup (production mode)", app.config.get("APP_NAME"))
    else:
        app.logger.info("%s startup (development mode)", app.config.get("APP_NAME"))


def _error_response(code: str, message: str, status: int, field: str | None = None):
    body = {"error": code, "message": message}
    if field is not None:
        body["field"] = field
    return jsonify(body), status


def register_error_handlers(app):
    """Register JSON error handlers for lifecycle errors and common HTTP errors."""

    @app.errorhandler(LifecycleError)
    def lifecycle_error(error: LifecycleError):
        if isinstance(error, CommitError):
            app.logger.error("Commit failed: %s %s - %s", request.method, request.path, error.message)
        else:
            app.logger.info("%s: %s %s - %s", error.code, request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        app.logger.warning("CSRF validation failed: %s %s", request.method, request.path)
        return _error_response("csrf_failed", error.description, 400)

    @app.errorhandler(400)
    def bad_request(error):
        return _error_response("bad_request", getattr(error, "description", "Bad request."), 400)

    @app.errorhandler(401)
    def unauthorized(error):
        return _error_response("unauthorized", "Login required.", 401)

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("Forbidden: %s %s", request.method, request.path)
        return _error_response("forbidden", "You do not have access to this resource.", 403)

    @app.errorhandler(404)
    def not_found(error):
        return _error_response("not_found", "Resource not found.", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _error_response("method_not_allowed", f"Method {request.method} not allowed.", 405)

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error("Internal error: %s %s", request.method, request.path, exc_info=True)
        return _error_response("internal_error", "An unexpected error occurred.", 500)

    @app.errorhandler(Exception)
    def unhandled_exception(error):
        if isinstance(error, HTTPException):
            return _error_response(error.name.lower().replace(" ", "_"), error.description, error.code)
        app.logger.exception("Unhandled exception: %s %s", request.method, request.path)
        return _error_response("internal_error", "An unexpected error occurred.", 500)
