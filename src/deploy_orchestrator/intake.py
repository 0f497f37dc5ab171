from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import AnswerValidationError, PreconditionError, StageError
from .models import ANSWERABLE_STATUSES, AnswerValue, SolutionRecord, SolutionStatus, Stage
from .stages import OPEN_ANSWER_ALIASES, check_submission, normalize_open_answers, plan_transition
from .state_store import SolutionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntakeOutcome:
    """Result of an accepted submission.

    Attributes:
        record: The record as persisted after the submission.
        ready: True once the open stage has been answered.
    """

    record: SolutionRecord
    ready: bool

    @property
    def current_stage(self) -> Stage:
        return self.record.current_stage


def validate_stage_answers(record: SolutionRecord, stage: Stage, answers: Mapping[str, AnswerValue]) -> None:
    """Check every answered id against the persisted questions of *stage*.

    Args:
        record: The record holding the question sets.
        stage: The stage the answers were submitted for.
        answers: Question id to submitted value.

    Raises:
        AnswerValidationError: Listing each unknown id or ill-typed value.
    """
    issues: dict[str, str] = {}
    if stage == Stage.OPEN:
        for question_id in answers:
            if question_id not in OPEN_ANSWER_ALIASES:
                issues[question_id] = "Unknown question ID"
    else:
        questions = {question.id: question for question in record.questions_for(stage)}
        for question_id, value in answers.items():
            question = questions.get(question_id)
            if question is None:
                issues[question_id] = "Unknown question ID"
                continue
            problem = question.check(value)
            if problem is not None:
                issues[question_id] = problem
    if issues:
        raise AnswerValidationError(stage.value, issues)


class AnswerIntake:
    """Accepts one stage's answers and advances the record under its lock."""

    def __init__(self, store: SolutionStore) -> None:
        self.store = store

    def submit(self, solution_id: str, stage: Stage, answers: Mapping[str, AnswerValue]) -> IntakeOutcome:
        """Validate and record *answers* for *stage* in a single store update.

        Raises:
            NotFoundError: If the solution does not exist.
            PreconditionError: If configuration is already finished.
            StageError: If the submission breaks a stage rule; nothing is written.
        """

        def apply(record: SolutionRecord) -> None:
            if record.status not in ANSWERABLE_STATUSES:
                raise PreconditionError(
                    record.solution_id,
                    record.status.value,
                    sorted(status.value for status in ANSWERABLE_STATUSES),
                    message=f"Solution {record.solution_id} is '{record.status.value}' and takes no more answers",
                )
            plan = plan_transition(record.current_stage, stage, record.last_submitted_stage)
            validate_stage_answers(record, stage, answers)
            check_submission(plan, answers, record.mandatory_question_ids(Stage.REQUIRED))

            for skipped in plan.skipped:
                record.stage_answers[skipped] = {}
            record.stage_answers[stage] = normalize_open_answers(answers) if stage == Stage.OPEN else dict(answers)
            record.last_submitted_stage = stage
            if plan.next_stage is None:
                record.current_stage = plan.stage
                record.transition_to(SolutionStatus.READY_FOR_GENERATION)
            else:
                record.current_stage = plan.next_stage
                record.transition_to(SolutionStatus.CONFIGURING)

        try:
            record = self.store.update(solution_id, apply)
        except StageError as exc:
            logger.warning("Rejected %s answers for solution %s: %s", stage.value, solution_id, exc.message)
            raise
        ready = record.status == SolutionStatus.READY_FOR_GENERATION
        if ready:
            logger.info("Solution %s configuration complete; ready for manifest generation", solution_id)
        else:
            logger.info("Solution %s accepted %s answers; now at %s", solution_id, stage.value, record.current_stage.value)
        return IntakeOutcome(record=record, ready=ready)
