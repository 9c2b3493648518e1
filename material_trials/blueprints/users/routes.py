"""
User management (admin only).

Rules enforced:
- Usernames are unique.
- Role must be one of the lifecycle roles.
- UI never trusted: we validate server-side.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ...extensions import db
from ...lifecycle import parse_role
from ...models import User
from ...security import admin_required
from ...utils import clean_text, parse_bool

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/users")


def _validation_error(field: str, message: str):
    return jsonify({"error": "validation_error", "message": message, "field": field}), 422


# ---------------------------------------------------------------------
# LIST USERS
# ---------------------------------------------------------------------

@users_bp.route("/", methods=["GET"])
@login_required
@admin_required
def list_users():
    users = User.query.order_by(User.username.asc()).all()
    return jsonify({"items": [u.to_dict() for u in users]})


# ---------------------------------------------------------------------
# CREATE USER
# ---------------------------------------------------------------------

@users_bp.route("/", methods=["POST"])
@login_required
@admin_required
def create_user():
    data = request.get_json(silent=True) or {}

    username = clean_text(data.get("username"))
    name = clean_text(data.get("name"))
    password = data.get("password") or ""
    role = parse_role(data.get("role"))

    if not username:
        return _validation_error("username", "Field 'username' is required.")
    if not name:
        return _validation_error("name", "Field 'name' is required.")
    if not password:
        return _validation_error("password", "Field 'password' is required.")
    if role is None:
        return _validation_error("role", "Unknown role.")
    if User.query.filter_by(username=username).first():
        return _validation_error("username", f"Username '{username}' is already taken.")

    user = User(
        username=username,
        name=name,
        role=role,
        is_active=parse_bool(data.get("is_active", True)),
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    logger.info("User %s created with role %s", username, role.value)
    return jsonify(user.to_dict()), 201
