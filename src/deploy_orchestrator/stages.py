"""Stage transition rules for the configuration conversation.

Every function here is pure: given the current stage, the stage a caller
submitted and the submitted answers, decide whether the submission is
accepted and what the stage becomes.  Nothing here touches the store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .errors import CompletenessError, InvalidTransitionError, StageMismatchError
from .models import STAGE_ORDER, AnswerMap, AnswerValue, Stage

logger = logging.getLogger(__name__)

LEGAL_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.REQUIRED: frozenset({Stage.BASIC, Stage.OPEN}),
    Stage.BASIC: frozenset({Stage.ADVANCED, Stage.OPEN}),
    Stage.ADVANCED: frozenset({Stage.OPEN}),
    Stage.OPEN: frozenset(),
}

OPEN_ANSWER_KEY = "open"
OPEN_ANSWER_ALIASES = frozenset({OPEN_ANSWER_KEY, "openResponse"})


@dataclass(frozen=True)
class TransitionPlan:
    """How an accepted submission moves the conversation.

    Attributes:
        stage: The stage whose answers are being written.
        skipped: Stages passed over by a forward jump, in order.
        resubmission: True when the submission replaces the answers of the
            stage accepted just before, without advancing.
        next_stage: The stage to present next; ``None`` once ``open`` has
            been answered.
    """

    stage: Stage
    skipped: tuple[Stage, ...] = ()
    resubmission: bool = False
    next_stage: Stage | None = None


def successor(stage: Stage) -> Stage | None:
    """Return the stage after *stage* in ``STAGE_ORDER``, or ``None`` after ``open``."""
    index = STAGE_ORDER.index(stage)
    if index + 1 >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[index + 1]


def plan_transition(current: Stage, requested: Stage, last_submitted: Stage | None = None) -> TransitionPlan:
    """Decide what submitting answers for *requested* does while at *current*.

    Raises:
        StageMismatchError: If *requested* is an earlier stage that may no
            longer be resubmitted.
        InvalidTransitionError: If *requested* is later than *current* and
            the jump is not a legal transition.
    """
    if requested == current:
        return TransitionPlan(stage=current, next_stage=successor(current))

    if last_submitted is not None and requested == last_submitted:
        return TransitionPlan(stage=requested, resubmission=True, next_stage=current)

    current_index = STAGE_ORDER.index(current)
    requested_index = STAGE_ORDER.index(requested)
    if requested_index < current_index:
        raise StageMismatchError(expected=current.value, received=requested.value)
    if requested not in LEGAL_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, requested.value)

    skipped = STAGE_ORDER[current_index:requested_index]
    return TransitionPlan(stage=requested, skipped=skipped, next_stage=successor(requested))


def normalize_open_answers(answers: Mapping[str, AnswerValue]) -> AnswerMap:
    """Rewrite the ``openResponse`` alias to the canonical ``open`` key."""
    normalized: AnswerMap = {}
    for key, value in answers.items():
        normalized[OPEN_ANSWER_KEY if key in OPEN_ANSWER_ALIASES else key] = value
    return normalized


def check_completeness(stage: Stage, answers: Mapping[str, AnswerValue], mandatory_ids: Sequence[str]) -> None:
    """Raise ``CompletenessError`` if *answers* do not complete *stage*.

    ``basic`` and ``advanced`` are always complete: an empty answer set
    means the stage was skipped on purpose.
    """
    if stage == Stage.REQUIRED:
        if not answers:
            raise CompletenessError(
                stage.value,
                "At least one answer is required for the required stage",
                missing=list(mandatory_ids),
            )
        missing = [question_id for question_id in mandatory_ids if answers.get(question_id) is None]
        if missing:
            raise CompletenessError(
                stage.value,
                f"Missing answers for mandatory questions: {', '.join(missing)}",
                missing=missing,
            )
        return

    if stage == Stage.OPEN:
        keys = list(answers)
        if len(keys) != 1 or keys[0] not in OPEN_ANSWER_ALIASES:
            raise CompletenessError(
                stage.value,
                "The open stage takes exactly one answer keyed 'open'; use \"N/A\" for no extra requirements",
                missing=[OPEN_ANSWER_KEY],
            )
        value = answers[keys[0]]
        if not isinstance(value, str) or not value.strip():
            raise CompletenessError(
                stage.value,
                "The open stage answer must be a non-empty string; use \"N/A\" for no extra requirements",
                missing=[OPEN_ANSWER_KEY],
            )


def check_skippable(stage: Stage, mandatory_ids: Sequence[str]) -> None:
    """Raise ``CompletenessError`` if *stage* cannot be passed over by a jump."""
    if stage == Stage.REQUIRED and mandatory_ids:
        raise CompletenessError(
            stage.value,
            f"The required stage cannot be skipped; mandatory questions: {', '.join(mandatory_ids)}",
            missing=list(mandatory_ids),
        )


def check_submission(plan: TransitionPlan, answers: Mapping[str, AnswerValue], mandatory_ids: Sequence[str]) -> None:
    """Apply the skip and completeness rules to a planned submission.

    Args:
        plan: Result of ``plan_transition`` for the submission.
        answers: The submitted answers for ``plan.stage``.
        mandatory_ids: Ids of the mandatory ``required`` questions.

    Raises:
        CompletenessError: If a skipped stage may not be skipped or the
            answers do not complete ``plan.stage``.
    """
    for stage in plan.skipped:
        check_skippable(stage, mandatory_ids)
    check_completeness(plan.stage, answers, mandatory_ids if plan.stage == Stage.REQUIRED else ())


def next_stage(
    current: Stage,
    requested: Stage,
    answers: Mapping[str, AnswerValue],
    mandatory_ids: Sequence[str],
    last_submitted: Stage | None = None,
) -> Stage | None:
    """Return the stage that follows an accepted submission.

    Args:
        current: The stage the conversation is at.
        requested: The stage the answers were submitted for.
        answers: The submitted answers.
        mandatory_ids: Ids of the mandatory ``required`` questions.
        last_submitted: The stage accepted just before, if any.

    Returns:
        The next stage to present, or ``None`` once configuration is complete.

    Raises:
        StageError: If the submission breaks a transition or completeness rule.
    """
    plan = plan_transition(current, requested, last_submitted)
    check_submission(plan, answers, mandatory_ids)
    logger.debug("Stage %s accepted at %s; next stage %s", requested.value, current.value, plan.next_stage)
    return plan.next_stage
