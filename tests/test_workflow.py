import itertools

import pytest

from app.qms.errors import (
    ActionsIncomplete,
    InvalidTransition,
    OpenActionsRemain,
    TerminalState,
    ValidationError,
)
from app.qms.modules.nonconformities import workflow
from app.qms.modules.nonconformities.workflow import ActionStatus, NCRStatus

ACTION_EDGES = {
    ("PENDING", "IN_PROGRESS"),
    ("IN_PROGRESS", "COMPLETED"),
    ("IN_PROGRESS", "PENDING"),
    ("COMPLETED", "IN_PROGRESS"),
}

NCR_EDGES = {
    ("OPEN", "IN_PROGRESS"),
    ("IN_PROGRESS", "RESOLVED"),
    ("IN_PROGRESS", "OPEN"),
    ("RESOLVED", "CLOSED"),
    ("RESOLVED", "IN_PROGRESS"),
    ("RESOLVED", "OPEN"),
}


@pytest.mark.parametrize("current,requested", list(itertools.product([s.value for s in ActionStatus], repeat=2)))
def test_action_plain_transition_succeeds_only_on_table_edges(current, requested):
    if (current, requested) in ACTION_EDGES:
        assert workflow.transition_action(current, requested).value == requested
    elif current == "VERIFIED":
        with pytest.raises(TerminalState):
            workflow.transition_action(current, requested)
    else:
        with pytest.raises(InvalidTransition):
            workflow.transition_action(current, requested)


def test_action_skipping_a_step_names_allowed_targets():
    with pytest.raises(InvalidTransition) as exc:
        workflow.transition_action("PENDING", "COMPLETED")
    assert exc.value.code == "INVALID_TRANSITION"
    assert "Allowed transitions: IN_PROGRESS" in exc.value.message


def test_verified_only_through_verify():
    with pytest.raises(InvalidTransition):
        workflow.transition_action("COMPLETED", "VERIFIED")
    assert workflow.verify_action("COMPLETED") is ActionStatus.VERIFIED


@pytest.mark.parametrize("current", ["PENDING", "IN_PROGRESS"])
def test_verify_requires_completed(current):
    with pytest.raises(InvalidTransition):
        workflow.verify_action(current)


def test_verify_twice_is_terminal():
    with pytest.raises(TerminalState) as exc:
        workflow.verify_action("VERIFIED")
    assert exc.value.code == "TERMINAL_STATE"


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError) as exc:
        workflow.transition_action("PENDING", "DONE")
    assert exc.value.code == "VALIDATION_ERROR"


def test_status_input_is_case_insensitive():
    assert workflow.transition_action("pending", " in_progress ") is ActionStatus.IN_PROGRESS


@pytest.mark.parametrize("current,requested", list(itertools.product([s.value for s in NCRStatus], repeat=2)))
def test_ncr_transition_succeeds_only_on_table_edges(current, requested):
    verified = ["VERIFIED"]
    if (current, requested) in NCR_EDGES:
        assert workflow.transition_ncr(current, requested, verified).value == requested
    elif current == "CLOSED":
        with pytest.raises(TerminalState):
            workflow.transition_ncr(current, requested, verified)
    else:
        with pytest.raises(InvalidTransition):
            workflow.transition_ncr(current, requested, verified)


def test_resolve_needs_at_least_one_action():
    with pytest.raises(ActionsIncomplete) as exc:
        workflow.transition_ncr("IN_PROGRESS", "RESOLVED", [])
    assert exc.value.code == "ACTIONS_INCOMPLETE"


def test_resolve_needs_every_action_done():
    with pytest.raises(ActionsIncomplete):
        workflow.transition_ncr("IN_PROGRESS", "RESOLVED", ["COMPLETED", "IN_PROGRESS"])
    assert workflow.transition_ncr("IN_PROGRESS", "RESOLVED", ["COMPLETED", "VERIFIED"]) is NCRStatus.RESOLVED


def test_close_blocked_by_unverified_action():
    with pytest.raises(OpenActionsRemain) as exc:
        workflow.transition_ncr("RESOLVED", "CLOSED", ["VERIFIED", "COMPLETED"])
    assert exc.value.code == "OPEN_ACTIONS_REMAIN"
    assert exc.value.details == {"unverified_actions": 1}


def test_close_with_all_actions_verified():
    assert workflow.transition_ncr("RESOLVED", "CLOSED", ["VERIFIED", "VERIFIED"]) is NCRStatus.CLOSED


def test_plain_targets_never_offer_verified():
    assert workflow.plain_action_targets("COMPLETED") == frozenset({ActionStatus.IN_PROGRESS})
    assert workflow.plain_action_targets("VERIFIED") == frozenset()


def test_workflow_definition_is_serializable():
    d = workflow.workflow_definition()
    assert d["corrective_action"]["transitions"]["COMPLETED"] == ["IN_PROGRESS", "VERIFIED"]
    assert d["corrective_action"]["plain_transitions"]["COMPLETED"] == ["IN_PROGRESS"]
    assert d["non_conformity"]["transitions"]["CLOSED"] == []
    assert d["non_conformity"]["display"]["OPEN"]["label"] == "Open"
