"""
material_trials/lifecycle.py

Request lifecycle state machine.

One canonical transition table covers both deployments:
- extended flow: stores receipt before evaluation, final CMK review after it
- simple flow: evaluation receives straight from delivery, the report completes the request

WorkflowVariant switches the two optional stages off. Status is a closed enum;
free strings are converted at the edges (parse_status / parse_command).

IMPORTANT:
- Exactly one role owns every non-terminal status. Status doubles as the
  mutual-exclusion token for the stage.
- Only CMK-owned statuses can reach REJECTED.
- This module is pure: no database, no Flask. The command layer in
  commands.py applies the result.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional


class RequestStatus(str, Enum):
    PENDING_CMK = "pending_cmk"
    PENDING_PPC = "pending_ppc"
    PENDING_PROCUREMENT = "pending_procurement"
    ORDERED = "ordered"
    DELIVERED = "delivered"
    RECEIVED = "received"
    PENDING_EVALUATION = "pending_evaluation"
    PENDING_FINAL_CMK = "pending_final_cmk"
    COMPLETED = "completed"
    REJECTED = "rejected"
    # Legacy vocabulary, never produced by a transition.
    APPROVED_TRIAL = "approved_trial"
    APPROVED_PILOT = "approved_pilot"


class Role(str, Enum):
    REQUESTOR = "requestor"
    CMK = "cmk"
    PPC = "ppc"
    PROCUREMENT = "procurement"
    STORES = "stores"
    EVALUATION = "evaluation"
    ADMIN = "admin"


class Command(str, Enum):
    CMK_DECIDE = "cmk_decide"
    PPC_ENTER = "ppc_enter"
    PLACE_ORDER = "place_order"
    MARK_DELIVERED = "mark_delivered"
    STORES_RECEIVE = "stores_receive"
    EVALUATION_RECEIVE = "evaluation_receive"
    SUBMIT_REPORT = "submit_report"
    FINAL_REVIEW = "final_review"


TERMINAL_STATUSES: FrozenSet[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.REJECTED,
})

LEGACY_STATUSES: FrozenSet[RequestStatus] = frozenset({
    RequestStatus.APPROVED_TRIAL,
    RequestStatus.APPROVED_PILOT,
})

# Roles allowed to end a request negatively.
REJECTING_ROLES: FrozenSet[Role] = frozenset({Role.CMK})


@dataclass(frozen=True)
class WorkflowVariant:
    """Which optional stages are active."""

    has_stores_stage: bool = True
    has_final_review: bool = True

    @classmethod
    def from_config(cls, config: Mapping) -> "WorkflowVariant":
        return cls(
            has_stores_stage=bool(config.get("WORKFLOW_HAS_STORES_STAGE", True)),
            has_final_review=bool(config.get("WORKFLOW_HAS_FINAL_REVIEW", True)),
        )

    @property
    def name(self) -> str:
        if self.has_stores_stage and self.has_final_review:
            return "extended"
        if not self.has_stores_stage and not self.has_final_review:
            return "simple"
        return "custom"


EXTENDED = WorkflowVariant(has_stores_stage=True, has_final_review=True)
SIMPLE = WorkflowVariant(has_stores_stage=False, has_final_review=False)


@dataclass(frozen=True)
class Transition:
    """
    One row of the transition table.

    decision_field/decision_targets: for commands whose outcome depends on a
    decision in the payload (CMK decide, final review) the target is looked
    up by the decision value; otherwise `target` is used.
    """

    source: RequestStatus
    command: Command
    owner: Role
    target: Optional[RequestStatus] = None
    decision_field: Optional[str] = None
    decision_targets: Mapping[str, RequestStatus] = field(default_factory=dict)

    @property
    def targets(self) -> FrozenSet[RequestStatus]:
        if self.decision_targets:
            return frozenset(self.decision_targets.values())
        return frozenset({self.target}) if self.target else frozenset()


# ---------------------------------------------------------------------
# Table construction
# ---------------------------------------------------------------------
@lru_cache(maxsize=None)
def transition_table(variant: WorkflowVariant = EXTENDED) -> Mapping[RequestStatus, Mapping[Command, Transition]]:
    """Return a read-only {source status: {command: Transition}} for a variant (cached, shared)."""
    rows: List[Transition] = [
        Transition(
            source=RequestStatus.PENDING_CMK,
            command=Command.CMK_DECIDE,
            owner=Role.CMK,
            decision_field="decision",
            decision_targets={
                "trial": RequestStatus.PENDING_PPC,
                "pilot": RequestStatus.PENDING_PPC,
                "rejected": RequestStatus.REJECTED,
            },
        ),
        Transition(
            source=RequestStatus.PENDING_PPC,
            command=Command.PPC_ENTER,
            owner=Role.PPC,
            target=RequestStatus.PENDING_PROCUREMENT,
        ),
        Transition(
            source=RequestStatus.PENDING_PROCUREMENT,
            command=Command.PLACE_ORDER,
            owner=Role.PROCUREMENT,
            target=RequestStatus.ORDERED,
        ),
        Transition(
            source=RequestStatus.ORDERED,
            command=Command.MARK_DELIVERED,
            owner=Role.PROCUREMENT,
            target=RequestStatus.DELIVERED,
        ),
    ]

    if variant.has_stores_stage:
        rows.append(
            Transition(
                source=RequestStatus.DELIVERED,
                command=Command.STORES_RECEIVE,
                owner=Role.STORES,
                target=RequestStatus.RECEIVED,
            )
        )
        evaluation_source = RequestStatus.RECEIVED
    else:
        evaluation_source = RequestStatus.DELIVERED

    rows.append(
        Transition(
            source=evaluation_source,
            command=Command.EVALUATION_RECEIVE,
            owner=Role.EVALUATION,
            target=RequestStatus.PENDING_EVALUATION,
        )
    )

    if variant.has_final_review:
        rows.append(
            Transition(
                source=RequestStatus.PENDING_EVALUATION,
                command=Command.SUBMIT_REPORT,
                owner=Role.EVALUATION,
                target=RequestStatus.PENDING_FINAL_CMK,
            )
        )
        rows.append(
            Transition(
                source=RequestStatus.PENDING_FINAL_CMK,
                command=Command.FINAL_REVIEW,
                owner=Role.CMK,
                decision_field="decision",
                decision_targets={
                    "approved": RequestStatus.COMPLETED,
                    "rejected": RequestStatus.REJECTED,
                },
            )
        )
    else:
        rows.append(
            Transition(
                source=RequestStatus.PENDING_EVALUATION,
                command=Command.SUBMIT_REPORT,
                owner=Role.EVALUATION,
                target=RequestStatus.COMPLETED,
            )
        )

    table: Dict[RequestStatus, Dict[Command, Transition]] = {}
    for row in rows:
        table.setdefault(row.source, {})[row.command] = row
    return MappingProxyType({source: MappingProxyType(commands) for source, commands in table.items()})


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------
def parse_status(value) -> Optional[RequestStatus]:
    if isinstance(value, RequestStatus):
        return value
    try:
        return RequestStatus(str(value or "").strip().lower())
    except ValueError:
        return None


def parse_role(value) -> Optional[Role]:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value or "").strip().lower())
    except ValueError:
        return None


def parse_command(value) -> Optional[Command]:
    if isinstance(value, Command):
        return value
    normalized = str(value or "").strip().lower().replace("-", "_")
    try:
        return Command(normalized)
    except ValueError:
        return None


# ---------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------
def is_terminal(status: RequestStatus) -> bool:
    return status in TERMINAL_STATUSES


def transitions_from(status: RequestStatus, variant: WorkflowVariant = EXTENDED) -> Dict[Command, Transition]:
    return dict(transition_table(variant).get(status, {}))


def owner_of(status: RequestStatus, variant: WorkflowVariant = EXTENDED) -> Optional[Role]:
    """Role that owns the next action for a status. None for terminal and legacy statuses."""
    owners = {t.owner for t in transitions_from(status, variant).values()}
    if len(owners) != 1:
        return None
    return owners.pop()


def find_transition(
    status: RequestStatus,
    command: Command,
    variant: WorkflowVariant = EXTENDED,
) -> Optional[Transition]:
    return transition_table(variant).get(status, {}).get(command)


def resolve_target(transition: Transition, payload: Mapping | None = None) -> RequestStatus:
    """
    Compute the next status for a transition.

    Decision-driven transitions raise KeyError for an unknown decision;
    the command layer validates the decision before calling this.
    """
    if transition.decision_field:
        decision = str((payload or {}).get(transition.decision_field) or "").strip().lower()
        return transition.decision_targets[decision]
    return transition.target


def commands_for(
    role: Role,
    status: RequestStatus,
    variant: WorkflowVariant = EXTENDED,
) -> List[Command]:
    """Commands a role may issue against a request in `status`."""
    return [
        command
        for command, transition in transitions_from(status, variant).items()
        if transition.owner == role
    ]


def statuses_owned_by(role: Role, variant: WorkflowVariant = EXTENDED) -> List[RequestStatus]:
    """Statuses whose next action belongs to `role` (the role's worklist)."""
    return [status for status in RequestStatus if owner_of(status, variant) == role]


def status_path(variant: WorkflowVariant = EXTENDED) -> List[RequestStatus]:
    """Happy path from creation to completion."""
    table = transition_table(variant)
    path = [RequestStatus.PENDING_CMK]
    current = RequestStatus.PENDING_CMK
    while current in table:
        forward = [
            target
            for transition in table[current].values()
            for target in transition.targets
            if target != RequestStatus.REJECTED
        ]
        current = forward[0]
        path.append(current)
    return path


def can_reach(source: RequestStatus, target: RequestStatus, variant: WorkflowVariant = EXTENDED) -> bool:
    """True if `target` is reachable from `source` through zero or more transitions."""
    table = transition_table(variant)
    seen = {source}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        if current == target:
            return True
        for transition in table.get(current, {}).values():
            for nxt in transition.targets:
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
    return False


def is_legal_step(
    source: Optional[RequestStatus],
    target: RequestStatus,
    variant: WorkflowVariant = EXTENDED,
) -> bool:
    """
    True if a single recorded step source -> target is allowed.

    source None is creation (only into PENDING_CMK); source == target ==
    PENDING_CMK is a pre-approval edit.
    """
    if source is None:
        return target == RequestStatus.PENDING_CMK
    if source == target == RequestStatus.PENDING_CMK:
        return True
    return any(target in t.targets for t in transitions_from(source, variant).values())
