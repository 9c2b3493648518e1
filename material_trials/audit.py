"""
material_trials/audit.py

Audit trail helpers for material requests.

Goals:
- Capture WHO did WHAT to WHICH request, and the status step it caused.
- Store the actor name snapshot so the trail reads correctly even if the user is renamed later.
- Keep timestamps non-decreasing per request.

IMPORTANT:
- append_entry() ADDS an AuditEntry to the current SQLAlchemy session.
  The command layer controls transaction boundaries (commit/rollback), so the
  entry and the state change it describes are committed together or not at all.
- Nothing outside commands.py should call append_entry().
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .extensions import db
from .lifecycle import RequestStatus
from .models import AuditEntry, MaterialRequest, utc_now

logger = logging.getLogger(__name__)


def _safe_str(value: Any) -> Optional[str]:
    """
    Convert a value to a stable string for storage.

    - For None: return None.
    - For enums: use the value, not the repr.
    """
    if value is None:
        return None
    if isinstance(value, RequestStatus):
        return value.value
    return str(value)


def _latest_timestamp(request: MaterialRequest):
    """Newest timestamp already recorded for the request (flushed or pending)."""
    stamps = [entry.timestamp for entry in request.audit_trail if entry.timestamp is not None]
    return max(stamps) if stamps else None


def append_entry(
    request: MaterialRequest,
    action: str,
    *,
    actor_id: Any,
    actor_name: str | None,
    details: str,
    from_status: RequestStatus | None,
    to_status: RequestStatus,
) -> AuditEntry:
    """
    Add one AuditEntry for `request` to the current db session.

    The timestamp is clamped to the request's latest entry so the trail's
    insertion order and timestamp order never disagree.
    """
    if not action:
        raise ValueError("append_entry requires an action label.")
    if actor_id is None or str(actor_id).strip() == "":
        raise ValueError("append_entry requires an actor id.")

    now = utc_now()
    latest = _latest_timestamp(request)
    if latest is not None and now < latest:
        now = latest

    entry = AuditEntry(
        action=str(action),
        user_id=_safe_str(actor_id),
        user_name=_safe_str(actor_name),
        timestamp=now,
        details=details or "",
        from_status=from_status,
        to_status=to_status,
    )
    request.audit_trail.append(entry)
    db.session.add(entry)
    return entry


def audit_trail(request_id: int, *, newest_first: bool = False) -> List[AuditEntry]:
    """
    Stored order (insertion == chronological) or a newest-first copy for display.

    Re-sorting never touches the stored rows.
    """
    entries = (
        AuditEntry.query.filter_by(request_id=request_id)
        .order_by(AuditEntry.id.asc())
        .all()
    )
    if newest_first:
        return list(reversed(entries))
    return entries
