"""
material_trials/commands.py

Role-gated command layer: the only write path into a material request.

Write operations:
- create_request(requestor_id, actor_name, fields)
- edit_request(request_id, actor_id, actor_name, fields)        (requestor, pre-approval only)
- apply_command(request_id, actor_role, actor_id, actor_name, command_name, payload)

Read operations:
- get_request, list_requests, get_audit_trail, available_commands

Check order for apply_command (no check mutates anything):
1) unknown request              -> NotFound
2) terminal / legacy status     -> InvalidTransition
3) role does not own the stage  -> Forbidden
4) command not valid from here  -> InvalidTransition
5) payload incomplete/invalid   -> ValidationError(field)

IMPORTANT:
- Stage data, status and the audit entry are committed in ONE transaction.
  Pattern: mutate -> append_entry(...) -> db.session.commit(); any storage
  error rolls everything back and surfaces as CommitError.
- Actors are explicit parameters. Nothing here reads the logged-in user.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from .audit import append_entry, audit_trail
from .exceptions import CommitError, Forbidden, InvalidTransition, NotFound, ValidationError
from .extensions import db
from .lifecycle import (
    LEGACY_STATUSES,
    Command,
    RequestStatus,
    Role,
    WorkflowVariant,
    commands_for,
    find_transition,
    is_terminal,
    owner_of,
    parse_command,
    parse_role,
    parse_status,
    resolve_target,
    statuses_owned_by,
)
from .models import (
    COMPLIANCE_BLOCKS,
    COST_BEARERS,
    CURRENCIES,
    AuditEntry,
    CmkDecision,
    EvaluationData,
    FinalCmkReview,
    MaterialRequest,
    PpcData,
    ProcurementData,
    StoresData,
    utc_now,
)
from .utils import (
    OPTION_KEY_MATERIAL_CATEGORY,
    OPTION_KEY_PURPOSE,
    OTHER_MARKER,
    clean_text,
    parse_bool,
    parse_date,
    parse_decimal,
    register_option_value,
)

logger = logging.getLogger(__name__)

EDIT_COMMAND = "edit"

CMK_DECISIONS = ("trial", "pilot", "rejected")
FINAL_DECISIONS = ("approved", "rejected")
ORDER_TYPES = ("air", "sea")


# ---------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------
def current_variant() -> WorkflowVariant:
    """Workflow variant configured for the running app."""
    return WorkflowVariant.from_config(current_app.config)


@contextmanager
def _atomic(what: str):
    """Commit once on success; roll back on any failure."""
    try:
        yield
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Commit failed while %s", what)
        raise CommitError(f"Could not save changes while {what}.") from exc
    except Exception:
        db.session.rollback()
        raise


def _coerce_id(request_id) -> Optional[int]:
    try:
        return int(request_id)
    except (TypeError, ValueError):
        return None


def _load(request_id, *, for_update: bool = False) -> MaterialRequest:
    rid = _coerce_id(request_id)
    if rid is None:
        raise NotFound(request_id)
    q = MaterialRequest.query.filter_by(id=rid)
    if for_update:
        q = q.with_for_update()
    request = q.first()
    if request is None:
        raise NotFound(request_id)
    return request


def _require_actor(actor_id) -> str:
    actor = clean_text(actor_id)
    if not actor:
        raise ValidationError("actor_id", "An acting user id is required.")
    return actor


def _require_text(payload: Mapping, field: str, message: str | None = None) -> str:
    value = clean_text(payload.get(field))
    if not value:
        raise ValidationError(field, message)
    return value


def _optional_text(payload: Mapping, field: str) -> Optional[str]:
    return clean_text(payload.get(field)) or None


def _display_name(actor_name, actor_id) -> str:
    return clean_text(actor_name) or clean_text(actor_id)


# ---------------------------------------------------------------------
# Intake validation (create / edit)
# ---------------------------------------------------------------------
def _resolve_open_value(fields: Mapping, field: str, custom_field: str) -> Tuple[str, bool]:
    """
    Resolve a category/purpose value.

    "Other" means the real value is in `custom_field`; such a value is novel
    and gets registered in the reference set.
    """
    value = clean_text(fields.get(field))
    if not value:
        raise ValidationError(field)
    if value == OTHER_MARKER:
        custom = clean_text(fields.get(custom_field))
        if not custom:
            raise ValidationError(custom_field, f"Field '{custom_field}' is required when '{field}' is Other.")
        return custom, True
    return value, False


def _compliance_source(fields: Mapping, prefix: str) -> Dict[str, Any]:
    """Accept either a nested block ({"bis": {...}}) or flat keys (bis_required, bis_cost, ...)."""
    nested = fields.get(prefix)
    if isinstance(nested, Mapping):
        return dict(nested)
    return {
        key: fields.get(f"{prefix}_{key}")
        for key in ("required", "cost", "currency", "cost_borne_by", "split_supplier", "split_premier")
    }


def _clean_compliance(fields: Mapping, prefix: str) -> Dict[str, Any]:
    """
    Validate one BIS/IEC block.

    Not required -> every cost field is cleared. Split -> both amounts are
    required and must add up to the cost.
    """
    source = _compliance_source(fields, prefix)
    required = parse_bool(source.get("required"))
    cleaned: Dict[str, Any] = {
        f"{prefix}_required": required,
        f"{prefix}_cost": None,
        f"{prefix}_currency": None,
        f"{prefix}_cost_borne_by": None,
        f"{prefix}_split_supplier": None,
        f"{prefix}_split_premier": None,
    }
    if not required:
        return cleaned

    def _amount(key: str) -> Optional[Decimal]:
        raw = source.get(key)
        if raw is None or clean_text(raw) == "":
            return None
        amount = parse_decimal(raw)
        if amount is None or not amount.is_finite() or amount < 0:
            raise ValidationError(f"{prefix}_{key}", f"Field '{prefix}_{key}' must be a non-negative number.")
        # Columns hold 2 decimal places; finer amounts would be rounded on write.
        if amount.normalize().as_tuple().exponent < -2:
            raise ValidationError(f"{prefix}_{key}", f"Field '{prefix}_{key}' allows at most 2 decimal places.")
        return amount

    cost = _amount("cost")

    currency = clean_text(source.get("currency")).upper() or None
    if currency is not None and currency not in CURRENCIES:
        raise ValidationError(f"{prefix}_currency", f"Currency must be one of {', '.join(CURRENCIES)}.")

    borne_by = clean_text(source.get("cost_borne_by")) or None
    if borne_by is not None and borne_by not in COST_BEARERS:
        raise ValidationError(f"{prefix}_cost_borne_by", f"Cost borne by must be one of {', '.join(COST_BEARERS)}.")

    cleaned.update(
        {
            f"{prefix}_cost": cost,
            f"{prefix}_currency": currency,
            f"{prefix}_cost_borne_by": borne_by,
        }
    )

    if borne_by == "Split":
        supplier = _amount("split_supplier")
        premier = _amount("split_premier")
        if cost is None:
            raise ValidationError(f"{prefix}_cost", f"Field '{prefix}_cost' is required for a split.")
        if supplier is None:
            raise ValidationError(f"{prefix}_split_supplier")
        if premier is None:
            raise ValidationError(f"{prefix}_split_premier")
        if supplier + premier != cost:
            raise ValidationError(
                f"{prefix}_split_supplier",
                f"Split amounts ({supplier} + {premier}) must add up to the {prefix.upper()} cost ({cost}).",
            )
        cleaned[f"{prefix}_split_supplier"] = supplier
        cleaned[f"{prefix}_split_premier"] = premier

    return cleaned


def _clean_intake(fields: Mapping) -> Tuple[Dict[str, Any], List[Tuple[str, str]]]:
    """Validate intake + compliance fields. Returns (column values, novel reference values)."""
    fields = fields or {}

    raw_date = fields.get("date_received")
    if raw_date is None or clean_text(raw_date) == "":
        raise ValidationError("date_received")
    date_received = parse_date(raw_date)
    if date_received is None:
        raise ValidationError("date_received", "Field 'date_received' must be a date (YYYY-MM-DD).")

    material_category, category_is_new = _resolve_open_value(fields, "material_category", "custom_category")
    material_details = _require_text(fields, "material_details")
    supplier_name = _require_text(fields, "supplier_name")
    purpose, purpose_is_new = _resolve_open_value(fields, "purpose", "custom_purpose")

    values: Dict[str, Any] = {
        "date_received": date_received,
        "material_category": material_category,
        "material_details": material_details,
        "supplier_name": supplier_name,
        "quantity": _optional_text(fields, "quantity"),
        "trial_at_plant": parse_bool(fields.get("trial_at_plant")),
        "purpose": purpose,
    }
    for prefix in COMPLIANCE_BLOCKS:
        values.update(_clean_compliance(fields, prefix))

    novel = []
    if category_is_new:
        novel.append((OPTION_KEY_MATERIAL_CATEGORY, material_category))
    if purpose_is_new:
        novel.append((OPTION_KEY_PURPOSE, purpose))
    return values, novel


# ---------------------------------------------------------------------
# Create / edit
# ---------------------------------------------------------------------
def create_request(requestor_id, actor_name: str | None, fields: Mapping) -> MaterialRequest:
    """Submit a new request. Status starts at pending_cmk with one creation entry."""
    actor = _require_actor(requestor_id)
    values, novel = _clean_intake(fields)
    name = _display_name(actor_name, actor)

    request = MaterialRequest(
        status=RequestStatus.PENDING_CMK,
        requestor_id=actor,
        requestor_name=name,
        **values,
    )

    with _atomic("creating a material request"):
        db.session.add(request)
        for key, value in novel:
            if register_option_value(key, value):
                logger.info("Registered new %s value '%s'", key, value)
        db.session.flush()
        append_entry(
            request,
            "Request Created",
            actor_id=actor,
            actor_name=name,
            details=f"Material request created by {name}",
            from_status=None,
            to_status=RequestStatus.PENDING_CMK,
        )

    logger.info("Request %s created by %s", request.id, actor)
    return request


def edit_request(request_id, actor_id, actor_name: str | None, fields: Mapping) -> MaterialRequest:
    """
    Pre-approval amendment by the original requestor.

    Replaces intake and compliance fields only; status, stage data and
    existing audit entries are untouched.
    """
    request = _load(request_id, for_update=True)
    actor = _require_actor(actor_id)

    if request.status != RequestStatus.PENDING_CMK:
        raise InvalidTransition(
            request.status.value,
            EDIT_COMMAND,
            f"Request {request.id} can only be edited while pending CMK review.",
        )
    if actor != request.requestor_id:
        logger.warning("Edit of request %s refused for non-owner %s", request.id, actor)
        raise Forbidden(f"Only the original requestor can edit request {request.id}.")

    values, novel = _clean_intake(fields)
    name = _display_name(actor_name, actor)

    with _atomic(f"editing request {request.id}"):
        for column, value in values.items():
            setattr(request, column, value)
        for key, value in novel:
            register_option_value(key, value)
        append_entry(
            request,
            "Request Updated",
            actor_id=actor,
            actor_name=name,
            details=f"Material request updated by {name}",
            from_status=RequestStatus.PENDING_CMK,
            to_status=RequestStatus.PENDING_CMK,
        )

    logger.info("Request %s edited by %s", request.id, actor)
    return request


# ---------------------------------------------------------------------
# Stage commands: validate(request, payload) -> cleaned
#                 apply(request, cleaned, actor, name, now) -> (action, details)
# ---------------------------------------------------------------------
def _validate_cmk_decide(request: MaterialRequest, payload: Mapping) -> Dict[str, Any]:
    decision = clean_text(payload.get("decision")).lower()
    if not decision:
        raise ValidationError("decision")
    if decision not in CMK_DECISIONS:
        raise ValidationError("decision", f"Decision must be one of {', '.join(CMK_DECISIONS)}.")

    reason = _optional_text(payload, "reason")
    plant = _optional_text(payload, "plant")
    if decision == "rejected" and not reason:
        raise ValidationError("reason", "A reason is required to reject a request.")
    if decision != "rejected" and not plant:
        raise ValidationError("plant", "A plant is required to approve a trial or pilot.")

    revised = payload.get("quantity_revised", payload.get("quantity"))
    return {
        "decision": decision,
        "reason": reason,
        "plant": plant,
        "quantity_revised": clean_text(revised) or None,
    }


def _apply_cmk_decide(request, cleaned, actor, name, now):
    decision = cleaned["decision"]
    rejected = decision == "rejected"
    revised = cleaned["quantity_revised"]

    request.cmk_decision = CmkDecision(
        decision=decision,
        reason=cleaned["reason"],
        plant=None if rejected else cleaned["plant"],
        quantity_revised=revised if revised and revised != request.quantity else None,
        approved_by=actor,
        approved_at=now,
    )
    if not rejected:
        request.plant = cleaned["plant"]
    if revised:
        request.quantity = revised

    if rejected:
        return "CMK Rejected Request", f"Request rejected by {name}. Reason: {cleaned['reason']}"
    details = f"Request approved for {decision} by {name} at plant {cleaned['plant']}"
    if cleaned["reason"]:
        details += f". Reason: {cleaned['reason']}"
    return "CMK Approved Request", details


def _validate_ppc_enter(request, payload):
    return {
        "pr_number": _require_text(payload, "pr_number"),
        "material_code": _require_text(payload, "material_code"),
        "description": _require_text(payload, "description"),
    }


def _apply_ppc_enter(request, cleaned, actor, name, now):
    request.ppc_data = PpcData(
        pr_number=cleaned["pr_number"],
        material_code=cleaned["material_code"],
        description=cleaned["description"],
        entered_by=actor,
        entered_at=now,
    )
    return (
        "PPC Data Added",
        f"PR Number: {cleaned['pr_number']}, Material Code: {cleaned['material_code']} added by {name}",
    )


def _validate_place_order(request, payload):
    order_type = clean_text(payload.get("order_type")).lower()
    if not order_type:
        raise ValidationError("order_type")
    if order_type not in ORDER_TYPES:
        raise ValidationError("order_type", "Order type must be air or sea.")

    raw_date = payload.get("estimated_delivery")
    if raw_date is None or clean_text(raw_date) == "":
        raise ValidationError("estimated_delivery")
    estimated = parse_date(raw_date)
    if estimated is None:
        raise ValidationError("estimated_delivery", "Field 'estimated_delivery' must be a date (YYYY-MM-DD).")

    return {
        "order_type": order_type,
        "estimated_delivery": estimated,
        "remarks": _optional_text(payload, "remarks"),
    }


def _apply_place_order(request, cleaned, actor, name, now):
    request.procurement_data = ProcurementData(
        order_type=cleaned["order_type"],
        estimated_delivery=cleaned["estimated_delivery"],
        remarks=cleaned["remarks"],
        updated_by=actor,
        updated_at=now,
    )
    return (
        "Material Ordered",
        f"Order placed via {cleaned['order_type']}, estimated delivery: "
        f"{cleaned['estimated_delivery'].isoformat()} by {name}",
    )


def _validate_mark_delivered(request, payload):
    if request.procurement_data is None:
        raise InvalidTransition(
            request.status.value,
            Command.MARK_DELIVERED.value,
            f"Request {request.id} has no recorded order to deliver.",
        )
    return {}


def _apply_mark_delivered(request, cleaned, actor, name, now):
    data = request.procurement_data
    data.delivered_at = now
    data.updated_by = actor
    data.updated_at = now
    return "Material Delivered", f"Material delivered to factory by {name}"


def _validate_stores_receive(request, payload):
    received_by = _require_text(payload, "received_by")

    raw_documents = payload.get("documents")
    if isinstance(raw_documents, str):
        raw_documents = [raw_documents]
    documents = [clean_text(doc) for doc in (raw_documents or []) if clean_text(doc)]
    if not documents:
        raise ValidationError("documents", "At least one receiving document is required.")

    return {"received_by": received_by, "documents": documents}


def _apply_stores_receive(request, cleaned, actor, name, now):
    request.stores_data = StoresData(
        received_by=cleaned["received_by"],
        documents=cleaned["documents"],
        updated_by=actor,
        updated_at=now,
    )
    return (
        "Material Received by Stores",
        f"Material received by stores and handed over to {cleaned['received_by']}. "
        f"{len(cleaned['documents'])} document(s) uploaded.",
    )


def _validate_evaluation_receive(request, payload):
    if not parse_bool(payload.get("received")):
        raise ValidationError("received", "Material receipt must be confirmed.")

    raw_date = payload.get("completion_date")
    if raw_date is None or clean_text(raw_date) == "":
        raise ValidationError("completion_date")
    completion = parse_date(raw_date)
    if completion is None:
        raise ValidationError("completion_date", "Field 'completion_date' must be a date (YYYY-MM-DD).")
    return {"completion_date": completion}


def _apply_evaluation_receive(request, cleaned, actor, name, now):
    request.evaluation_data = EvaluationData(
        received=True,
        completion_date=cleaned["completion_date"],
        report=None,
        updated_by=actor,
        updated_at=now,
    )
    return (
        "Material Received for Evaluation",
        f"Material received by evaluation team, completion expected: "
        f"{cleaned['completion_date'].isoformat()} by {name}",
    )


def _validate_submit_report(request, payload):
    report = _optional_text(payload, "report")
    filename = _optional_text(payload, "report_filename")
    if not report and not filename:
        raise ValidationError("report", "Enter the evaluation report or upload a report file.")
    return {"report": report, "report_filename": filename}


def _apply_submit_report(request, cleaned, actor, name, now):
    data = request.evaluation_data
    if data is None:
        data = EvaluationData(received=True)
        request.evaluation_data = data
    data.received = True
    data.report = cleaned["report"] or cleaned["report_filename"]
    data.report_filename = cleaned["report_filename"]
    data.updated_by = actor
    data.updated_at = now
    return "Evaluation Report Submitted", f"Evaluation report submitted by {name}"


def _validate_final_review(request, payload):
    decision = clean_text(payload.get("decision")).lower()
    if not decision:
        raise ValidationError("decision")
    if decision not in FINAL_DECISIONS:
        raise ValidationError("decision", f"Decision must be one of {', '.join(FINAL_DECISIONS)}.")

    reason = _optional_text(payload, "reason")
    if decision == "rejected" and not reason:
        raise ValidationError("reason", "A reason is required to reject a request.")

    return {"decision": decision, "reason": reason, "comments": _optional_text(payload, "comments")}


def _apply_final_review(request, cleaned, actor, name, now):
    approved = cleaned["decision"] == "approved"
    request.final_cmk_review = FinalCmkReview(
        decision=cleaned["decision"],
        reason=None if approved else cleaned["reason"],
        comments=cleaned["comments"],
        reviewed_by=actor,
        reviewed_at=now,
    )
    if approved:
        details = f"Request finally approved by CMK {name}"
        if cleaned["comments"]:
            details += f" with comments: {cleaned['comments']}"
        return "Final CMK Approval", details
    return "Final CMK Rejection", f"Request rejected by CMK {name}. Reason: {cleaned['reason']}"


_HANDLERS: Dict[Command, Tuple[Callable, Callable]] = {
    Command.CMK_DECIDE: (_validate_cmk_decide, _apply_cmk_decide),
    Command.PPC_ENTER: (_validate_ppc_enter, _apply_ppc_enter),
    Command.PLACE_ORDER: (_validate_place_order, _apply_place_order),
    Command.MARK_DELIVERED: (_validate_mark_delivered, _apply_mark_delivered),
    Command.STORES_RECEIVE: (_validate_stores_receive, _apply_stores_receive),
    Command.EVALUATION_RECEIVE: (_validate_evaluation_receive, _apply_evaluation_receive),
    Command.SUBMIT_REPORT: (_validate_submit_report, _apply_submit_report),
    Command.FINAL_REVIEW: (_validate_final_review, _apply_final_review),
}


def apply_command(
    request_id,
    actor_role,
    actor_id,
    actor_name: str | None,
    command_name,
    payload: Mapping | None = None,
    *,
    variant: WorkflowVariant | None = None,
) -> MaterialRequest:
    """Run one stage command. Returns the updated request."""
    variant = variant or current_variant()
    payload = payload or {}

    request = _load(request_id, for_update=True)
    status = request.status
    command_label = clean_text(command_name)

    if is_terminal(status) or status in LEGACY_STATUSES:
        raise InvalidTransition(
            status.value,
            command_label,
            f"Request {request.id} is '{status.value}'; no further actions are allowed.",
        )

    role = parse_role(actor_role)
    owner = owner_of(status, variant)
    if role is None or role != owner:
        logger.warning(
            "Refused %s on request %s: role %s, stage owner %s",
            command_label, request.id, actor_role, owner.value if owner else None,
        )
        raise Forbidden(
            f"Role '{clean_text(actor_role) or '-'}' cannot act on request {request.id} "
            f"while it is '{status.value}'."
        )

    command = parse_command(command_label)
    transition = find_transition(status, command, variant) if command else None
    if transition is None:
        raise InvalidTransition(status.value, command_label)

    actor = _require_actor(actor_id)
    name = _display_name(actor_name, actor)

    validate, apply = _HANDLERS[command]
    cleaned = validate(request, payload)
    target = resolve_target(transition, cleaned)

    with _atomic(f"applying {command.value} to request {request.id}"):
        now = utc_now()
        action, details = apply(request, cleaned, actor, name, now)
        request.status = target
        append_entry(
            request,
            action,
            actor_id=actor,
            actor_name=name,
            details=details,
            from_status=status,
            to_status=target,
        )

    logger.info(
        "Request %s: %s -> %s via %s by %s",
        request.id, status.value, target.value, command.value, actor,
    )
    return request


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
def get_request(request_id) -> MaterialRequest:
    return _load(request_id)


def list_requests(
    *,
    status=None,
    requestor_id=None,
    search: str | None = None,
    role=None,
    user_id=None,
    variant: WorkflowVariant | None = None,
) -> List[MaterialRequest]:
    """
    Filtered request list, newest first.

    role/user_id reproduce the dashboard worklist: requestors see their own
    requests, stage roles see the statuses they own, admin sees everything.
    """
    q = MaterialRequest.query

    if status:
        parsed = parse_status(status)
        if parsed is None:
            raise ValidationError("status", f"Unknown status '{status}'.")
        q = q.filter(MaterialRequest.status == parsed)

    if requestor_id:
        q = q.filter(MaterialRequest.requestor_id == clean_text(requestor_id))

    term = clean_text(search)
    if term:
        like = f"%{term}%"
        q = q.filter(
            or_(
                MaterialRequest.material_category.ilike(like),
                MaterialRequest.supplier_name.ilike(like),
                MaterialRequest.material_details.ilike(like),
            )
        )

    if role is not None:
        parsed_role = parse_role(role)
        if parsed_role is None:
            return []
        if parsed_role == Role.REQUESTOR:
            q = q.filter(MaterialRequest.requestor_id == clean_text(user_id))
        elif parsed_role != Role.ADMIN:
            owned = statuses_owned_by(parsed_role, variant or current_variant())
            if not owned:
                return []
            q = q.filter(MaterialRequest.status.in_(owned))

    return q.order_by(MaterialRequest.created_at.desc(), MaterialRequest.id.desc()).all()


def get_audit_trail(request_id, *, newest_first: bool = False) -> List[AuditEntry]:
    request = _load(request_id)
    return audit_trail(request.id, newest_first=newest_first)


def available_commands(
    request: MaterialRequest,
    actor_role,
    actor_id=None,
    *,
    variant: WorkflowVariant | None = None,
) -> List[str]:
    """Command names a UI should offer this actor for this request."""
    role = parse_role(actor_role)
    if role is None:
        return []
    names = [command.value for command in commands_for(role, request.status, variant or current_variant())]
    if (
        request.status == RequestStatus.PENDING_CMK
        and actor_id is not None
        and clean_text(actor_id) == request.requestor_id
    ):
        names.append(EDIT_COMMAND)
    return names
