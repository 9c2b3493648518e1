"""
Settings routes: the open reference sets behind the intake dropdowns.

- GET  /settings/options                 active material categories and purposes (any logged-in user)
- POST /settings/options/<kind>          admin: {"action": "create"|"activate"|"deactivate", "value": ...}

kind is "material-category" or "purpose". Values are never deleted:
requests keep the strings they were created with, so a retired value is
only hidden from the dropdown.
"""

import logging

from flask import Blueprint, abort, jsonify, request
from flask_login import login_required

from ...extensions import db
from ...models import OptionValue
from ...security import admin_required
from ...utils import (
    OPTION_KEY_MATERIAL_CATEGORY,
    OPTION_KEY_PURPOSE,
    clean_text,
    get_active_options,
    get_or_create_category,
    register_option_value,
)

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

OPTION_KINDS = {
    "material-category": OPTION_KEY_MATERIAL_CATEGORY,
    "purpose": OPTION_KEY_PURPOSE,
}


@settings_bp.route("/options", methods=["GET"])
@login_required
def options():
    return jsonify(
        {
            "material_categories": get_active_options(OPTION_KEY_MATERIAL_CATEGORY),
            "purposes": get_active_options(OPTION_KEY_PURPOSE),
        }
    )


@settings_bp.route("/options/<kind>", methods=["POST"])
@login_required
@admin_required
def options_update(kind: str):
    """
    Generic option values endpoint.

    Pattern:
    - create: add the value (idempotent; reactivates a hidden value)
    - activate / deactivate: toggle dropdown visibility
    """
    key = OPTION_KINDS.get(kind)
    if key is None:
        abort(404)

    data = request.get_json(silent=True) or {}
    action = clean_text(data.get("action") or "create").lower()
    value = clean_text(data.get("value"))
    if not value:
        return jsonify({"error": "validation_error", "message": "Field 'value' is required.", "field": "value"}), 422

    if action == "create":
        created = register_option_value(key, value)
        db.session.commit()
        if created:
            logger.info("Option %s '%s' added", key, value)
        return jsonify({"value": value, "created": created, "values": get_active_options(key)}), 201 if created else 200

    if action in {"activate", "deactivate"}:
        category = get_or_create_category(key)
        ov = OptionValue.query.filter_by(category_id=category.id, value=value).first()
        if not ov:
            abort(404)
        ov.is_active = action == "activate"
        db.session.commit()
        logger.info("Option %s '%s' %sd", key, value, action)
        return jsonify({"value": value, "is_active": ov.is_active, "values": get_active_options(key)})

    return jsonify({"error": "validation_error", "message": f"Unknown action '{action}'.", "field": "action"}), 422
