from __future__ import annotations

import pytest

from deploy_orchestrator.errors import (
    AnswerValidationError,
    CompletenessError,
    InvalidTransitionError,
    PreconditionError,
    StageMismatchError,
)
from deploy_orchestrator.intake import AnswerIntake
from deploy_orchestrator.models import SolutionRecord, SolutionStatus, Stage, TextQuestion
from deploy_orchestrator.state_store import InMemorySolutionStore

from conftest import DEPLOYMENT


def test_required_answers_advance_to_basic(store: InMemorySolutionStore, configured_record: SolutionRecord) -> None:
    outcome = AnswerIntake(store).submit("sol_test", Stage.REQUIRED, {"name": "my-app"})
    assert outcome.ready is False
    assert outcome.current_stage == Stage.BASIC
    assert outcome.record.status == SolutionStatus.CONFIGURING
    assert outcome.record.last_submitted_stage == Stage.REQUIRED


def test_rejected_submission_writes_nothing(store: InMemorySolutionStore, configured_record: SolutionRecord) -> None:
    intake = AnswerIntake(store)
    before = store.get("sol_test")
    with pytest.raises(CompletenessError):
        intake.submit("sol_test", Stage.REQUIRED, {"name": None})
    with pytest.raises(AnswerValidationError):
        intake.submit("sol_test", Stage.REQUIRED, {"name": "My App"})
    assert store.get("sol_test") == before


def test_unknown_question_ids_are_reported(store: InMemorySolutionStore, configured_record: SolutionRecord) -> None:
    with pytest.raises(AnswerValidationError) as excinfo:
        AnswerIntake(store).submit("sol_test", Stage.REQUIRED, {"name": "my-app", "colour": "blue"})
    assert excinfo.value.issues == {"colour": "Unknown question ID"}


def test_typed_answers_are_checked_per_question(
    store: InMemorySolutionStore, configured_record: SolutionRecord
) -> None:
    intake = AnswerIntake(store)
    intake.submit("sol_test", Stage.REQUIRED, {"name": "my-app"})
    with pytest.raises(AnswerValidationError) as excinfo:
        intake.submit("sol_test", Stage.BASIC, {"replicas": 50, "service_type": "Ingress"})
    assert set(excinfo.value.issues) == {"replicas", "service_type"}
    outcome = intake.submit("sol_test", Stage.BASIC, {"replicas": 3, "service_type": "NodePort"})
    assert outcome.current_stage == Stage.ADVANCED


def test_illegal_jump_and_stale_stage_write_nothing(
    store: InMemorySolutionStore, configured_record: SolutionRecord
) -> None:
    intake = AnswerIntake(store)
    before = store.get("sol_test")
    with pytest.raises(InvalidTransitionError):
        intake.submit("sol_test", Stage.ADVANCED, {})
    assert store.get("sol_test") == before

    intake.submit("sol_test", Stage.REQUIRED, {"name": "my-app"})
    intake.submit("sol_test", Stage.BASIC, {})
    before = store.get("sol_test")
    with pytest.raises(StageMismatchError):
        intake.submit("sol_test", Stage.REQUIRED, {"name": "other"})
    assert store.get("sol_test") == before


def test_resubmitting_last_stage_overwrites_without_advancing(
    store: InMemorySolutionStore, configured_record: SolutionRecord
) -> None:
    intake = AnswerIntake(store)
    intake.submit("sol_test", Stage.REQUIRED, {"name": "my-app", "namespace": "apps"})
    outcome = intake.submit("sol_test", Stage.REQUIRED, {"name": "renamed"})
    assert outcome.current_stage == Stage.BASIC
    assert outcome.record.stage_answers[Stage.REQUIRED] == {"name": "renamed"}


def test_skipping_stages_with_empty_answers_reaches_ready(
    store: InMemorySolutionStore, configured_record: SolutionRecord
) -> None:
    intake = AnswerIntake(store)
    intake.submit("sol_test", Stage.REQUIRED, {"name": "my-app"})
    intake.submit("sol_test", Stage.BASIC, {})
    intake.submit("sol_test", Stage.ADVANCED, {})
    outcome = intake.submit("sol_test", Stage.OPEN, {"openResponse": "N/A"})
    assert outcome.ready is True
    assert outcome.record.status == SolutionStatus.READY_FOR_GENERATION
    assert outcome.record.stage_answers[Stage.OPEN] == {"open": "N/A"}
    assert outcome.record.stage_answers[Stage.BASIC] == {}


def test_jump_to_open_records_skipped_stages(store: InMemorySolutionStore, configured_record: SolutionRecord) -> None:
    intake = AnswerIntake(store)
    intake.submit("sol_test", Stage.REQUIRED, {"name": "my-app"})
    outcome = intake.submit("sol_test", Stage.OPEN, {"open": "needs TLS"})
    assert outcome.ready is True
    assert outcome.current_stage == Stage.OPEN
    assert store.get("sol_test").current_stage == Stage.OPEN
    assert outcome.record.stage_answers[Stage.BASIC] == {}
    assert outcome.record.stage_answers[Stage.ADVANCED] == {}


def test_required_with_mandatory_questions_cannot_be_jumped(
    store: InMemorySolutionStore, configured_record: SolutionRecord
) -> None:
    with pytest.raises(CompletenessError):
        AnswerIntake(store).submit("sol_test", Stage.OPEN, {"open": "N/A"})


def test_required_without_mandatory_questions_can_be_jumped(store: InMemorySolutionStore) -> None:
    store.create(
        "sol_optional",
        [DEPLOYMENT],
        questions={Stage.REQUIRED: [TextQuestion(id="namespace", prompt="Namespace")]},
    )
    outcome = AnswerIntake(store).submit("sol_optional", Stage.OPEN, {"open": "N/A"})
    assert outcome.ready is True
    assert outcome.record.stage_answers[Stage.REQUIRED] == {}


def test_no_answers_after_configuration_is_complete(
    store: InMemorySolutionStore, configured_record: SolutionRecord
) -> None:
    intake = AnswerIntake(store)
    intake.submit("sol_test", Stage.REQUIRED, {"name": "my-app"})
    intake.submit("sol_test", Stage.OPEN, {"open": "N/A"})
    with pytest.raises(PreconditionError):
        intake.submit("sol_test", Stage.OPEN, {"open": "changed my mind"})
