"""Audit trail: append-only rows and timestamp ordering."""

from datetime import timedelta

import pytest

from material_trials import audit
from material_trials.audit import append_entry
from material_trials.exceptions import AuditImmutableError
from material_trials.extensions import db
from material_trials.lifecycle import RequestStatus
from material_trials.models import AuditEntry, utc_now


def test_entry_cannot_be_modified(workflow):
    request = workflow.create()
    entry = request.audit_trail[0]

    entry.details = "rewritten"
    with pytest.raises(AuditImmutableError):
        db.session.commit()
    db.session.rollback()

    assert db.session.get(AuditEntry, entry.id).details == "Material request created by Praful Kumar"


def test_entry_cannot_be_deleted(workflow):
    request = workflow.create()
    entry = request.audit_trail[0]

    db.session.delete(entry)
    with pytest.raises(AuditImmutableError):
        db.session.commit()
    db.session.rollback()

    assert AuditEntry.query.count() == 1


def test_append_requires_action_and_actor(workflow):
    request = workflow.create()
    with pytest.raises(ValueError):
        append_entry(request, "", actor_id="u-1", actor_name="A", details="", from_status=None,
                     to_status=RequestStatus.PENDING_CMK)
    with pytest.raises(ValueError):
        append_entry(request, "Note", actor_id=" ", actor_name="A", details="", from_status=None,
                     to_status=RequestStatus.PENDING_CMK)


def test_timestamp_clamped_to_latest_entry(workflow, monkeypatch):
    request = workflow.create()
    latest = request.audit_trail[-1].timestamp

    monkeypatch.setattr(audit, "utc_now", lambda: latest - timedelta(minutes=5))
    entry = append_entry(
        request,
        "Request Updated",
        actor_id="u-praful",
        actor_name="Praful Kumar",
        details="clock skew",
        from_status=RequestStatus.PENDING_CMK,
        to_status=RequestStatus.PENDING_CMK,
    )
    db.session.commit()

    assert entry.timestamp == latest
    stamps = [e.timestamp for e in audit.audit_trail(request.id)]
    assert stamps == sorted(stamps)


def test_serialized_timestamps_carry_utc_offset(workflow):
    request = workflow.create()
    data = request.audit_trail[0].to_dict()
    assert data["timestamp"].endswith("+00:00")
    assert data["from_status"] is None
    assert data["to_status"] == "pending_cmk"
    assert request.audit_trail[0].timestamp <= utc_now()
