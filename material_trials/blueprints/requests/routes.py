"""
Material request routes (JSON).

Provides:
- GET  /requests/                                  list (worklist by default, ?scope=all for every request)
- POST /requests/                                  create (requestor)
- GET  /requests/<id>                              detail + commands the caller may issue
- PUT  /requests/<id>                              pre-approval edit (original requestor)
- POST /requests/<id>/commands/<command>           stage command
- GET  /requests/<id>/audit?order=newest           audit trail
- GET  /requests/workflow                          active workflow variant and happy path

Routes stay thin: they read the logged-in user, hand explicit actor
parameters to the command layer and serialize the result. Lifecycle errors
propagate to the JSON error handlers in errors.py.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ...commands import (
    apply_command,
    available_commands,
    create_request,
    current_variant,
    edit_request,
    get_audit_trail,
    get_request,
    list_requests,
)
from ...lifecycle import Role, status_path
from ...security import current_actor, role_required
from ...utils import parse_bool

requests_bp = Blueprint("requests", __name__, url_prefix="/requests")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _serialize(material_request, include_audit: bool = True) -> dict:
    role, actor_id, _ = current_actor()
    data = material_request.to_dict(include_audit=include_audit)
    data["available_commands"] = available_commands(material_request, role, actor_id)
    return data


# ---------------------------------------------------------------------
# LIST / CREATE
# ---------------------------------------------------------------------

@requests_bp.route("/", methods=["GET"])
@login_required
def list_view():
    """
    Worklist of the logged-in user, or every request with ?scope=all.

    Filters: ?status=, ?search=, ?mine=1 (requests I submitted)
    """
    role, actor_id, _ = current_actor()
    scope = (request.args.get("scope") or "worklist").strip().lower()
    mine = parse_bool(request.args.get("mine"))

    items = list_requests(
        status=request.args.get("status") or None,
        requestor_id=actor_id if mine else None,
        search=request.args.get("search") or None,
        role=None if scope == "all" else role,
        user_id=actor_id,
    )
    return jsonify({"items": [_serialize(r, include_audit=False) for r in items], "count": len(items)})


@requests_bp.route("/", methods=["POST"])
@login_required
@role_required(Role.REQUESTOR)
def create_view():
    _, actor_id, actor_name = current_actor()
    material_request = create_request(actor_id, actor_name, _json_body())
    return jsonify(_serialize(material_request)), 201


@requests_bp.route("/workflow", methods=["GET"])
@login_required
def workflow_view():
    variant = current_variant()
    return jsonify(
        {
            "variant": variant.name,
            "has_stores_stage": variant.has_stores_stage,
            "has_final_review": variant.has_final_review,
            "path": [status.value for status in status_path(variant)],
        }
    )


# ---------------------------------------------------------------------
# DETAIL / EDIT
# ---------------------------------------------------------------------

@requests_bp.route("/<int:request_id>", methods=["GET"])
@login_required
def detail_view(request_id: int):
    return jsonify(_serialize(get_request(request_id)))


@requests_bp.route("/<int:request_id>", methods=["PUT"])
@login_required
def edit_view(request_id: int):
    _, actor_id, actor_name = current_actor()
    material_request = edit_request(request_id, actor_id, actor_name, _json_body())
    return jsonify(_serialize(material_request))


# ---------------------------------------------------------------------
# COMMANDS
# ---------------------------------------------------------------------

@requests_bp.route("/<int:request_id>/commands/<command>", methods=["POST"])
@login_required
def command_view(request_id: int, command: str):
    role, actor_id, actor_name = current_actor()
    material_request = apply_command(request_id, role, actor_id, actor_name, command, _json_body())
    return jsonify(_serialize(material_request))


# ---------------------------------------------------------------------
# AUDIT
# ---------------------------------------------------------------------

@requests_bp.route("/<int:request_id>/audit", methods=["GET"])
@login_required
def audit_view(request_id: int):
    newest_first = (request.args.get("order") or "").strip().lower() == "newest"
    entries = get_audit_trail(request_id, newest_first=newest_first)
    return jsonify(
        {
            "request_id": request_id,
            "order": "newest" if newest_first else "oldest",
            "entries": [entry.to_dict() for entry in entries],
        }
    )
