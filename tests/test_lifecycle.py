"""Transition table: ownership, reachability and variant shape. No database."""

import pytest

from material_trials.lifecycle import (
    EXTENDED,
    LEGACY_STATUSES,
    REJECTING_ROLES,
    SIMPLE,
    TERMINAL_STATUSES,
    Command,
    RequestStatus,
    Role,
    WorkflowVariant,
    can_reach,
    commands_for,
    find_transition,
    is_legal_step,
    owner_of,
    parse_command,
    parse_role,
    parse_status,
    resolve_target,
    status_path,
    statuses_owned_by,
    transition_table,
)

VARIANTS = [EXTENDED, SIMPLE]


@pytest.mark.parametrize("variant", VARIANTS, ids=lambda v: v.name)
class TestTableShape:
    def test_every_active_status_has_exactly_one_owner(self, variant):
        for status in transition_table(variant):
            owners = {t.owner for t in transition_table(variant)[status].values()}
            assert len(owners) == 1, status

    def test_terminal_and_legacy_statuses_have_no_transitions(self, variant):
        table = transition_table(variant)
        for status in TERMINAL_STATUSES | LEGACY_STATUSES:
            assert status not in table
            assert owner_of(status, variant) is None

    def test_only_cmk_can_reject(self, variant):
        for status, commands in transition_table(variant).items():
            for transition in commands.values():
                if RequestStatus.REJECTED in transition.targets:
                    assert transition.owner in REJECTING_ROLES
                    assert owner_of(status, variant) in REJECTING_ROLES

    def test_completed_reachable_from_creation(self, variant):
        assert can_reach(RequestStatus.PENDING_CMK, RequestStatus.COMPLETED, variant)
        assert can_reach(RequestStatus.PENDING_CMK, RequestStatus.REJECTED, variant)

    def test_legacy_statuses_unreachable(self, variant):
        for legacy in LEGACY_STATUSES:
            assert not can_reach(RequestStatus.PENDING_CMK, legacy, variant)


def test_extended_path():
    assert status_path(EXTENDED) == [
        RequestStatus.PENDING_CMK,
        RequestStatus.PENDING_PPC,
        RequestStatus.PENDING_PROCUREMENT,
        RequestStatus.ORDERED,
        RequestStatus.DELIVERED,
        RequestStatus.RECEIVED,
        RequestStatus.PENDING_EVALUATION,
        RequestStatus.PENDING_FINAL_CMK,
        RequestStatus.COMPLETED,
    ]


def test_simple_path_skips_stores_and_final_review():
    path = status_path(SIMPLE)
    assert path == [
        RequestStatus.PENDING_CMK,
        RequestStatus.PENDING_PPC,
        RequestStatus.PENDING_PROCUREMENT,
        RequestStatus.ORDERED,
        RequestStatus.DELIVERED,
        RequestStatus.PENDING_EVALUATION,
        RequestStatus.COMPLETED,
    ]
    assert not can_reach(RequestStatus.PENDING_CMK, RequestStatus.RECEIVED, SIMPLE)
    assert not can_reach(RequestStatus.PENDING_CMK, RequestStatus.PENDING_FINAL_CMK, SIMPLE)


def test_final_review_rejection_only_in_extended():
    assert can_reach(RequestStatus.PENDING_EVALUATION, RequestStatus.REJECTED, EXTENDED)
    assert not can_reach(RequestStatus.PENDING_EVALUATION, RequestStatus.REJECTED, SIMPLE)


def test_delivered_owner_depends_on_variant():
    assert owner_of(RequestStatus.DELIVERED, EXTENDED) == Role.STORES
    assert owner_of(RequestStatus.DELIVERED, SIMPLE) == Role.EVALUATION


def test_submit_report_target_depends_on_variant():
    extended = find_transition(RequestStatus.PENDING_EVALUATION, Command.SUBMIT_REPORT, EXTENDED)
    simple = find_transition(RequestStatus.PENDING_EVALUATION, Command.SUBMIT_REPORT, SIMPLE)
    assert resolve_target(extended) == RequestStatus.PENDING_FINAL_CMK
    assert resolve_target(simple) == RequestStatus.COMPLETED


def test_cmk_decision_targets():
    transition = find_transition(RequestStatus.PENDING_CMK, Command.CMK_DECIDE)
    assert resolve_target(transition, {"decision": "trial"}) == RequestStatus.PENDING_PPC
    assert resolve_target(transition, {"decision": "Pilot"}) == RequestStatus.PENDING_PPC
    assert resolve_target(transition, {"decision": "rejected"}) == RequestStatus.REJECTED
    with pytest.raises(KeyError):
        resolve_target(transition, {"decision": "maybe"})


def test_worklists():
    assert statuses_owned_by(Role.PROCUREMENT) == [RequestStatus.PENDING_PROCUREMENT, RequestStatus.ORDERED]
    assert statuses_owned_by(Role.CMK, EXTENDED) == [RequestStatus.PENDING_CMK, RequestStatus.PENDING_FINAL_CMK]
    assert statuses_owned_by(Role.CMK, SIMPLE) == [RequestStatus.PENDING_CMK]
    assert statuses_owned_by(Role.STORES, SIMPLE) == []
    assert statuses_owned_by(Role.ADMIN) == []


def test_commands_for_role():
    assert commands_for(Role.CMK, RequestStatus.PENDING_CMK) == [Command.CMK_DECIDE]
    assert commands_for(Role.PPC, RequestStatus.PENDING_CMK) == []
    assert commands_for(Role.PROCUREMENT, RequestStatus.ORDERED) == [Command.MARK_DELIVERED]
    assert commands_for(Role.CMK, RequestStatus.COMPLETED) == []


def test_legal_steps():
    assert is_legal_step(None, RequestStatus.PENDING_CMK)
    assert not is_legal_step(None, RequestStatus.PENDING_PPC)
    assert is_legal_step(RequestStatus.PENDING_CMK, RequestStatus.PENDING_CMK)
    assert is_legal_step(RequestStatus.PENDING_CMK, RequestStatus.REJECTED)
    assert not is_legal_step(RequestStatus.PENDING_PPC, RequestStatus.REJECTED)
    assert not is_legal_step(RequestStatus.DELIVERED, RequestStatus.PENDING_EVALUATION, EXTENDED)
    assert is_legal_step(RequestStatus.DELIVERED, RequestStatus.PENDING_EVALUATION, SIMPLE)


def test_parsing():
    assert parse_status("Pending_PPC") == RequestStatus.PENDING_PPC
    assert parse_status("unknown") is None
    assert parse_role(" CMK ") == Role.CMK
    assert parse_role(None) is None
    assert parse_command("place-order") == Command.PLACE_ORDER
    assert parse_command("launch") is None


def test_variant_from_config():
    variant = WorkflowVariant.from_config(
        {"WORKFLOW_HAS_STORES_STAGE": False, "WORKFLOW_HAS_FINAL_REVIEW": False}
    )
    assert variant == SIMPLE
    assert variant.name == "simple"
    assert WorkflowVariant.from_config({}).name == "extended"
    assert WorkflowVariant(has_stores_stage=True, has_final_review=False).name == "custom"


def test_transition_table_is_read_only():
    table = transition_table(EXTENDED)
    with pytest.raises(AttributeError):
        table.pop(RequestStatus.PENDING_CMK)
    with pytest.raises(TypeError):
        table[RequestStatus.PENDING_CMK][Command.FINAL_REVIEW] = None
    assert owner_of(RequestStatus.PENDING_CMK, EXTENDED) == Role.CMK
    assert transition_table(EXTENDED) is table
