from __future__ import annotations

import pytest

from deploy_orchestrator.errors import CompletenessError, InvalidTransitionError, StageMismatchError
from deploy_orchestrator.models import Stage
from deploy_orchestrator.stages import (
    check_completeness,
    check_skippable,
    check_submission,
    next_stage,
    normalize_open_answers,
    plan_transition,
    successor,
)


def test_successor_follows_stage_order() -> None:
    assert successor(Stage.REQUIRED) == Stage.BASIC
    assert successor(Stage.ADVANCED) == Stage.OPEN
    assert successor(Stage.OPEN) is None


def test_submitting_current_stage_advances() -> None:
    plan = plan_transition(Stage.BASIC, Stage.BASIC)
    assert plan.next_stage == Stage.ADVANCED
    assert plan.skipped == ()
    assert plan.resubmission is False


def test_illegal_forward_jump_reports_from_and_to() -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        plan_transition(Stage.REQUIRED, Stage.ADVANCED)
    payload = excinfo.value.to_payload()
    assert payload["from"] == "required"
    assert payload["to"] == "advanced"


def test_earlier_stage_is_a_mismatch_unless_just_submitted() -> None:
    with pytest.raises(StageMismatchError) as excinfo:
        plan_transition(Stage.ADVANCED, Stage.REQUIRED, last_submitted=Stage.BASIC)
    assert excinfo.value.expected == "advanced"
    assert excinfo.value.received == "required"

    plan = plan_transition(Stage.ADVANCED, Stage.BASIC, last_submitted=Stage.BASIC)
    assert plan.resubmission is True
    assert plan.next_stage == Stage.ADVANCED


def test_legal_jump_lists_skipped_stages() -> None:
    plan = plan_transition(Stage.BASIC, Stage.OPEN)
    assert plan.skipped == (Stage.BASIC, Stage.ADVANCED)
    assert plan.next_stage is None


def test_required_stage_completeness() -> None:
    with pytest.raises(CompletenessError):
        check_completeness(Stage.REQUIRED, {}, ["name"])
    with pytest.raises(CompletenessError) as excinfo:
        check_completeness(Stage.REQUIRED, {"name": None}, ["name"])
    assert excinfo.value.missing == ["name"]
    check_completeness(Stage.REQUIRED, {"name": "my-app"}, ["name"])


def test_basic_and_advanced_accept_empty_answers() -> None:
    check_completeness(Stage.BASIC, {}, [])
    check_completeness(Stage.ADVANCED, {}, [])


@pytest.mark.parametrize(
    "answers",
    [{}, {"open": ""}, {"open": "   "}, {"open": "x", "extra": "y"}, {"notes": "x"}, {"open": 3}],
)
def test_open_stage_rejects_anything_but_one_open_answer(answers: dict[str, object]) -> None:
    with pytest.raises(CompletenessError):
        check_completeness(Stage.OPEN, answers, [])


def test_open_stage_accepts_na_and_alias() -> None:
    check_completeness(Stage.OPEN, {"open": "N/A"}, [])
    check_completeness(Stage.OPEN, {"openResponse": "needs TLS"}, [])
    assert normalize_open_answers({"openResponse": "needs TLS"}) == {"open": "needs TLS"}


def test_required_cannot_be_skipped_with_mandatory_questions() -> None:
    with pytest.raises(CompletenessError):
        check_skippable(Stage.REQUIRED, ["name"])
    check_skippable(Stage.REQUIRED, [])
    check_skippable(Stage.BASIC, ["name"])


def test_next_stage_composes_the_rules() -> None:
    assert next_stage(Stage.REQUIRED, Stage.REQUIRED, {"name": "my-app"}, ["name"]) == Stage.BASIC
    assert next_stage(Stage.ADVANCED, Stage.OPEN, {"open": "N/A"}, ["name"]) is None
    with pytest.raises(CompletenessError):
        next_stage(Stage.REQUIRED, Stage.OPEN, {"open": "N/A"}, ["name"])


def test_check_submission_applies_skip_and_completeness_rules() -> None:
    jump = plan_transition(Stage.REQUIRED, Stage.OPEN)
    with pytest.raises(CompletenessError) as excinfo:
        check_submission(jump, {"open": "N/A"}, ["name"])
    assert excinfo.value.missing == ["name"]
    check_submission(jump, {"open": "N/A"}, [])

    with pytest.raises(CompletenessError):
        check_submission(plan_transition(Stage.BASIC, Stage.OPEN), {"open": "  "}, ["name"])
    check_submission(plan_transition(Stage.BASIC, Stage.BASIC), {}, ["name"])
