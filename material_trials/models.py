"""
Material Trial Tracker – Domain Models

- MaterialRequest: intake fields, BIS/IEC compliance blocks, lifecycle status
- One-to-one stage records, each written by exactly one stage owner:
  CmkDecision, PpcData, ProcurementData, StoresData, EvaluationData, FinalCmkReview
- AuditEntry: append-only trail, one row per committed transition
- OptionCategory / OptionValue: open reference sets (material categories, purposes)
- User: login identity carrying a workflow role

IMPORTANT:
- `status` is the single source of truth for progress. Presence of a stage
  record is a consequence of the status, never a control-flow input.
- Audit rows cannot be updated or deleted through the ORM.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import event
from werkzeug.security import generate_password_hash, check_password_hash

from .exceptions import AuditImmutableError
from .extensions import db
from .lifecycle import RequestStatus, Role


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def utc_now() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo; keep every stored value naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _iso_date(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _money_str(value) -> str | None:
    if value is None:
        return None
    return str(Decimal(str(value)).quantize(Decimal("0.01")))


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _status_column(**kwargs):
    return db.Enum(
        RequestStatus,
        name="request_status",
        native_enum=False,
        length=32,
        values_callable=_enum_values,
        validate_strings=True,
        **kwargs,
    )


CURRENCIES = ("USD", "INR", "YUAN")
COST_BEARERS = ("Premier", "Supplier", "Split", "Against Order")
COMPLIANCE_BLOCKS = ("bis", "iec")


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """Login user. The role decides which stage the user may act on."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(
        db.Enum(Role, name="user_role", native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=Role.REQUESTOR,
        index=True,
    )

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utc_now, index=True)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role.value if self.role else None,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.username} ({self.role.value if self.role else '-'})>"


# ---------------------------------------------------------------------
# Open reference sets
# ---------------------------------------------------------------------
class OptionCategory(db.Model):
    __tablename__ = "option_categories"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(80), unique=True, nullable=False, index=True)
    label = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime, default=utc_now)


class OptionValue(db.Model):
    __tablename__ = "option_values"

    id = db.Column(db.Integer, primary_key=True)

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("option_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    value = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)

    category = db.relationship(
        "OptionCategory",
        backref=db.backref("values", lazy=True, cascade="all, delete-orphan"),
    )

    __table_args__ = (db.UniqueConstraint("category_id", "value", name="uq_category_value"),)


# ---------------------------------------------------------------------
# Material request
# ---------------------------------------------------------------------
class MaterialRequest(db.Model):
    __tablename__ = "material_requests"

    id = db.Column(db.Integer, primary_key=True)

    # Intake (replaceable only while pending CMK)
    date_received = db.Column(db.Date, nullable=False)
    material_category = db.Column(db.String(120), nullable=False, index=True)
    material_details = db.Column(db.Text, nullable=False)
    supplier_name = db.Column(db.String(255), nullable=False, index=True)
    quantity = db.Column(db.String(50), nullable=True)
    trial_at_plant = db.Column(db.Boolean, default=False, nullable=False)
    purpose = db.Column(db.String(120), nullable=False, index=True)

    # BIS compliance
    bis_required = db.Column(db.Boolean, default=False, nullable=False)
    bis_cost = db.Column(db.Numeric(12, 2), nullable=True)
    bis_currency = db.Column(db.String(8), nullable=True)
    bis_cost_borne_by = db.Column(db.String(30), nullable=True)
    bis_split_supplier = db.Column(db.Numeric(12, 2), nullable=True)
    bis_split_premier = db.Column(db.Numeric(12, 2), nullable=True)

    # IEC compliance
    iec_required = db.Column(db.Boolean, default=False, nullable=False)
    iec_cost = db.Column(db.Numeric(12, 2), nullable=True)
    iec_currency = db.Column(db.String(8), nullable=True)
    iec_cost_borne_by = db.Column(db.String(30), nullable=True)
    iec_split_supplier = db.Column(db.Numeric(12, 2), nullable=True)
    iec_split_premier = db.Column(db.Numeric(12, 2), nullable=True)

    status = db.Column(_status_column(), nullable=False, default=RequestStatus.PENDING_CMK, index=True)

    # Assigned at CMK approval
    plant = db.Column(db.String(20), nullable=True, index=True)

    # Owner (actor ids are opaque strings; identity lives outside the core)
    requestor_id = db.Column(db.String(64), nullable=False, index=True)
    requestor_name = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime, default=utc_now, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    cmk_decision = db.relationship(
        "CmkDecision", uselist=False, back_populates="request", cascade="all, delete-orphan"
    )
    ppc_data = db.relationship(
        "PpcData", uselist=False, back_populates="request", cascade="all, delete-orphan"
    )
    procurement_data = db.relationship(
        "ProcurementData", uselist=False, back_populates="request", cascade="all, delete-orphan"
    )
    stores_data = db.relationship(
        "StoresData", uselist=False, back_populates="request", cascade="all, delete-orphan"
    )
    evaluation_data = db.relationship(
        "EvaluationData", uselist=False, back_populates="request", cascade="all, delete-orphan"
    )
    final_cmk_review = db.relationship(
        "FinalCmkReview", uselist=False, back_populates="request", cascade="all, delete-orphan"
    )

    # Insertion order == chronological order
    audit_trail = db.relationship(
        "AuditEntry",
        back_populates="request",
        order_by="AuditEntry.id",
        lazy=True,
    )

    def compliance_block(self, prefix: str) -> dict:
        """
        BIS/IEC block for display.

        When the certification is not required the cost fields are not exposed.
        """
        required = bool(getattr(self, f"{prefix}_required"))
        block = {"required": required}
        if not required:
            return block
        block.update(
            {
                "cost": _money_str(getattr(self, f"{prefix}_cost")),
                "currency": getattr(self, f"{prefix}_currency"),
                "cost_borne_by": getattr(self, f"{prefix}_cost_borne_by"),
            }
        )
        if block["cost_borne_by"] == "Split":
            block["split_supplier"] = _money_str(getattr(self, f"{prefix}_split_supplier"))
            block["split_premier"] = _money_str(getattr(self, f"{prefix}_split_premier"))
        return block

    def intake_dict(self) -> dict:
        return {
            "date_received": _iso_date(self.date_received),
            "material_category": self.material_category,
            "material_details": self.material_details,
            "supplier_name": self.supplier_name,
            "quantity": self.quantity,
            "trial_at_plant": bool(self.trial_at_plant),
            "purpose": self.purpose,
        }

    def to_dict(self, include_audit: bool = True) -> dict:
        data = {"id": self.id}
        data.update(self.intake_dict())
        data.update(
            {
                "bis": self.compliance_block("bis"),
                "iec": self.compliance_block("iec"),
                "status": self.status.value if self.status else None,
                "plant": self.plant,
                "requestor_id": self.requestor_id,
                "requestor_name": self.requestor_name,
                "cmk_decision": self.cmk_decision.to_dict() if self.cmk_decision else None,
                "ppc_data": self.ppc_data.to_dict() if self.ppc_data else None,
                "procurement_data": self.procurement_data.to_dict() if self.procurement_data else None,
                "stores_data": self.stores_data.to_dict() if self.stores_data else None,
                "evaluation_data": self.evaluation_data.to_dict() if self.evaluation_data else None,
                "final_cmk_review": self.final_cmk_review.to_dict() if self.final_cmk_review else None,
                "created_at": isoformat_utc(self.created_at),
                "updated_at": isoformat_utc(self.updated_at),
            }
        )
        if include_audit:
            data["audit_trail"] = [entry.to_dict() for entry in self.audit_trail]
        return data

    def __repr__(self):
        return f"<MaterialRequest {self.id} {self.status.value if self.status else '-'}>"


# ---------------------------------------------------------------------
# Stage records (one per request, written once by the stage owner)
# ---------------------------------------------------------------------
class CmkDecision(db.Model):
    __tablename__ = "cmk_decisions"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    decision = db.Column(db.String(20), nullable=False)  # trial / pilot / rejected
    reason = db.Column(db.Text, nullable=True)
    plant = db.Column(db.String(20), nullable=True)
    quantity_revised = db.Column(db.String(50), nullable=True)

    approved_by = db.Column(db.String(64), nullable=False)
    approved_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    request = db.relationship("MaterialRequest", back_populates="cmk_decision")

    def to_dict(self) -> dict:
        return {
            "decision": self.decision,
            "reason": self.reason,
            "plant": self.plant,
            "quantity_revised": self.quantity_revised,
            "approved_by": self.approved_by,
            "approved_at": isoformat_utc(self.approved_at),
        }


class PpcData(db.Model):
    __tablename__ = "ppc_data"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    pr_number = db.Column(db.String(100), nullable=False, index=True)
    material_code = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)

    entered_by = db.Column(db.String(64), nullable=False)
    entered_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    request = db.relationship("MaterialRequest", back_populates="ppc_data")

    def to_dict(self) -> dict:
        return {
            "pr_number": self.pr_number,
            "material_code": self.material_code,
            "description": self.description,
            "entered_by": self.entered_by,
            "entered_at": isoformat_utc(self.entered_at),
        }


class ProcurementData(db.Model):
    __tablename__ = "procurement_data"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    order_type = db.Column(db.String(10), nullable=False)  # air / sea
    estimated_delivery = db.Column(db.Date, nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    updated_by = db.Column(db.String(64), nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    request = db.relationship("MaterialRequest", back_populates="procurement_data")

    def to_dict(self) -> dict:
        return {
            "order_type": self.order_type,
            "estimated_delivery": _iso_date(self.estimated_delivery),
            "remarks": self.remarks,
            "delivered_at": isoformat_utc(self.delivered_at),
            "updated_by": self.updated_by,
            "updated_at": isoformat_utc(self.updated_at),
        }


class StoresData(db.Model):
    __tablename__ = "stores_data"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    received_by = db.Column(db.String(150), nullable=False)
    # Filenames only; file storage lives outside this system.
    documents = db.Column(db.JSON, nullable=False, default=list)

    updated_by = db.Column(db.String(64), nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    request = db.relationship("MaterialRequest", back_populates="stores_data")

    def to_dict(self) -> dict:
        return {
            "received_by": self.received_by,
            "documents": list(self.documents or []),
            "updated_by": self.updated_by,
            "updated_at": isoformat_utc(self.updated_at),
        }


class EvaluationData(db.Model):
    __tablename__ = "evaluation_data"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    received = db.Column(db.Boolean, nullable=False, default=False)
    completion_date = db.Column(db.Date, nullable=True)
    report = db.Column(db.Text, nullable=True)
    report_filename = db.Column(db.String(255), nullable=True)

    updated_by = db.Column(db.String(64), nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    request = db.relationship("MaterialRequest", back_populates="evaluation_data")

    def to_dict(self) -> dict:
        return {
            "received": bool(self.received),
            "completion_date": _iso_date(self.completion_date),
            "report": self.report,
            "report_filename": self.report_filename,
            "updated_by": self.updated_by,
            "updated_at": isoformat_utc(self.updated_at),
        }


class FinalCmkReview(db.Model):
    __tablename__ = "final_cmk_reviews"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    decision = db.Column(db.String(20), nullable=False)  # approved / rejected
    reason = db.Column(db.Text, nullable=True)
    comments = db.Column(db.Text, nullable=True)

    reviewed_by = db.Column(db.String(64), nullable=False)
    reviewed_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    request = db.relationship("MaterialRequest", back_populates="final_cmk_review")

    def to_dict(self) -> dict:
        return {
            "decision": self.decision,
            "reason": self.reason,
            "comments": self.comments,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": isoformat_utc(self.reviewed_at),
        }


# ---------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------
class AuditEntry(db.Model):
    """
    One committed transition.

    from_status/to_status are structured so turnaround analysis can use
    exact equality instead of matching words inside `details`.
    """

    __tablename__ = "audit_entries"

    id = db.Column(db.Integer, primary_key=True)

    request_id = db.Column(
        db.Integer,
        db.ForeignKey("material_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    action = db.Column(db.String(80), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    user_name = db.Column(db.String(150), nullable=True)

    timestamp = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    details = db.Column(db.Text, nullable=False, default="")

    from_status = db.Column(_status_column(), nullable=True)
    to_status = db.Column(_status_column(), nullable=False)

    request = db.relationship("MaterialRequest", back_populates="audit_trail")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "timestamp": isoformat_utc(self.timestamp),
            "details": self.details,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value if self.to_status else None,
        }


@event.listens_for(AuditEntry, "before_update")
def _audit_entry_no_update(mapper, connection, target: AuditEntry):
    raise AuditImmutableError(f"Audit entry {target.id} is append-only and cannot be modified.")


@event.listens_for(AuditEntry, "before_delete")
def _audit_entry_no_delete(mapper, connection, target: AuditEntry):
    raise AuditImmutableError(f"Audit entry {target.id} is append-only and cannot be deleted.")
