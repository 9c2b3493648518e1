"""
Authentication routes.

Provides:
- POST /auth/login
- POST /auth/logout
- GET  /auth/me

Rules:
- Only active users may log in.
- Credentials validated via password hash.
- Login returns a CSRF token for subsequent mutating calls.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...extensions import csrf
from ...models import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ============================================================
# LOGIN
# ============================================================

@auth_bp.route("/login", methods=["POST"])
@csrf.exempt
def login():
    """Authenticate a user from a JSON or form body."""
    data = request.get_json(silent=True) or request.form
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    user = User.query.filter_by(username=username).first()

    if not user or not user.check_password(password):
        logger.warning("Failed login for username '%s'", username)
        return jsonify({"error": "invalid_credentials", "message": "Invalid username or password."}), 401

    if not user.is_active:
        return jsonify({"error": "inactive_account", "message": "This account is disabled."}), 403

    login_user(user)
    logger.info("User %s logged in", user.username)
    return jsonify({"user": user.to_dict(), "csrf_token": generate_csrf()})


# ============================================================
# LOGOUT
# ============================================================

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    return jsonify({"message": "Logged out."})


# ============================================================
# CURRENT USER
# ============================================================

@auth_bp.route("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})
