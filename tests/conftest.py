"""
Shared fixtures.

- app / simple_app: one Flask app per test on an in-memory SQLite database,
  extended and simple workflow respectively. The app context stays pushed
  for the whole test.
- workflow / simple_workflow: helper that creates requests and drives them
  through stage commands with realistic payloads.
"""

import pytest

from material_trials import create_app
from material_trials.commands import apply_command, create_request, get_request
from material_trials.extensions import db
from material_trials.lifecycle import RequestStatus

# (role, actor id, display name)
REQUESTOR = ("requestor", "u-praful", "Praful Kumar")
OTHER_REQUESTOR = ("requestor", "u-meera", "Meera Shah")
CMK = ("cmk", "u-cmk", "Chandramauli Kumar")
PPC = ("ppc", "u-ppc", "PPC Team")
PROCUREMENT = ("procurement", "u-proc", "Procurement Team")
STORES = ("stores", "u-stores", "Stores Team")
EVALUATION = ("evaluation", "u-eval", "Evaluation Team")

VALID_FIELDS = {
    "date_received": "2024-02-01",
    "material_category": "Glass",
    "material_details": "3.2mm AR coated solar glass",
    "supplier_name": "Borosil",
    "quantity": "500 sheets",
    "trial_at_plant": True,
    "purpose": "Cost Reduction",
    "bis": {"required": False},
    "iec": {
        "required": True,
        "cost": "1200",
        "currency": "USD",
        "cost_borne_by": "Supplier",
    },
}

STAGE_PAYLOADS = {
    "cmk_decide": {"decision": "trial", "plant": "P4"},
    "ppc_enter": {"pr_number": "PR-1001", "material_code": "MC-GL-77", "description": "Trial lot of AR glass"},
    "place_order": {"order_type": "sea", "estimated_delivery": "2024-03-15", "remarks": "Partial shipment ok"},
    "mark_delivered": {},
    "stores_receive": {"received_by": "Evaluation Team", "documents": ["invoice.pdf", "coa.pdf"]},
    "evaluation_receive": {"received": True, "completion_date": "2024-04-01"},
    "submit_report": {"report": "Transmission and EL checks passed."},
    "final_review": {"decision": "approved", "comments": "Release for pilot"},
}

EXTENDED_STEPS = [
    (CMK, "cmk_decide"),
    (PPC, "ppc_enter"),
    (PROCUREMENT, "place_order"),
    (PROCUREMENT, "mark_delivered"),
    (STORES, "stores_receive"),
    (EVALUATION, "evaluation_receive"),
    (EVALUATION, "submit_report"),
    (CMK, "final_review"),
]

SIMPLE_STEPS = [
    (CMK, "cmk_decide"),
    (PPC, "ppc_enter"),
    (PROCUREMENT, "place_order"),
    (PROCUREMENT, "mark_delivered"),
    (EVALUATION, "evaluation_receive"),
    (EVALUATION, "submit_report"),
]


class Workflow:
    """Drives requests through the command layer in the current app context."""

    def __init__(self, steps):
        self.steps = steps

    def fields(self, **overrides):
        data = dict(VALID_FIELDS)
        data.update(overrides)
        return data

    def create(self, actor=REQUESTOR, **overrides):
        _, actor_id, actor_name = actor
        return create_request(actor_id, actor_name, self.fields(**overrides))

    def apply(self, request_id, actor, command, payload=None):
        role, actor_id, actor_name = actor
        if payload is None:
            payload = STAGE_PAYLOADS.get(command, {})
        return apply_command(request_id, role, actor_id, actor_name, command, payload)

    def run(self, request_id, count=None):
        """Apply the first `count` happy-path steps (all by default)."""
        request = None
        for actor, command in self.steps[:count]:
            request = self.apply(request_id, actor, command)
        return request

    def run_until(self, request_id, status: RequestStatus):
        """Apply happy-path steps until the request reaches `status`."""
        request = get_request(request_id)
        for actor, command in self.steps:
            if request.status == status:
                break
            request = self.apply(request_id, actor, command)
        assert request.status == status
        return request


def _make_app(config_object):
    app = create_app(config_object)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app():
    yield from _make_app("config.TestingConfig")


@pytest.fixture
def simple_app():
    yield from _make_app("config.SimpleWorkflowTestingConfig")


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def workflow(app):
    return Workflow(EXTENDED_STEPS)


@pytest.fixture
def simple_workflow(simple_app):
    return Workflow(SIMPLE_STEPS)
