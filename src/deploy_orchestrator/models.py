from __future__ import annotations

import math
import re
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .errors import IllegalStatusTransitionError


class Stage(str, Enum):
    REQUIRED = "required"
    BASIC = "basic"
    ADVANCED = "advanced"
    OPEN = "open"


STAGE_ORDER: tuple[Stage, ...] = (Stage.REQUIRED, Stage.BASIC, Stage.ADVANCED, Stage.OPEN)


class SolutionStatus(str, Enum):
    SELECTED = "selected"
    CONFIGURING = "configuring"
    READY_FOR_GENERATION = "ready_for_generation"
    GENERATING = "generating"
    GENERATED = "generated"
    GENERATION_FAILED = "generation_failed"
    DEPLOYED = "deployed"
    DEPLOY_FAILED = "deploy_failed"


SOLUTION_STATUS_TRANSITIONS: dict[SolutionStatus, frozenset[SolutionStatus]] = {
    SolutionStatus.SELECTED: frozenset({SolutionStatus.CONFIGURING, SolutionStatus.READY_FOR_GENERATION}),
    SolutionStatus.CONFIGURING: frozenset({SolutionStatus.CONFIGURING, SolutionStatus.READY_FOR_GENERATION}),
    SolutionStatus.READY_FOR_GENERATION: frozenset({SolutionStatus.GENERATING}),
    # generating -> generating restarts a run abandoned by a crashed process.
    SolutionStatus.GENERATING: frozenset(
        {SolutionStatus.GENERATING, SolutionStatus.GENERATED, SolutionStatus.GENERATION_FAILED}
    ),
    SolutionStatus.GENERATION_FAILED: frozenset({SolutionStatus.GENERATING}),
    SolutionStatus.GENERATED: frozenset({SolutionStatus.DEPLOYED, SolutionStatus.DEPLOY_FAILED}),
    SolutionStatus.DEPLOY_FAILED: frozenset({SolutionStatus.DEPLOYED, SolutionStatus.DEPLOY_FAILED}),
    SolutionStatus.DEPLOYED: frozenset(),
}

# Only these statuses may carry a write to manifest_text / validation_attempts.
MANIFEST_WRITE_STATUSES: frozenset[SolutionStatus] = frozenset(
    {SolutionStatus.GENERATING, SolutionStatus.GENERATED, SolutionStatus.GENERATION_FAILED}
)
ANSWERABLE_STATUSES: frozenset[SolutionStatus] = frozenset({SolutionStatus.SELECTED, SolutionStatus.CONFIGURING})


class AttemptOutcome(str, Enum):
    VALID = "valid"
    INVALID_MANIFEST = "invalid_manifest"
    VALIDATOR_UNAVAILABLE = "validator_unavailable"
    SYNTHESIS_ERROR = "synthesis_error"


AnswerValue = str | int | float | bool | None
AnswerMap = dict[str, AnswerValue]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ResourceDescriptor(BaseModel):
    """A cluster resource kind that is part of a chosen solution."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(min_length=1)
    api_version: str = Field(min_length=1)
    group: str = ""
    namespaced: bool = True

    @property
    def ref(self) -> str:
        return f"{self.kind}.{self.api_version}"


class ResourceMapping(BaseModel):
    """Field on one of the solution's resources that a question's answer populates."""

    resource_kind: str
    field_path: str
    api_version: str | None = None


# ---------------------------------------------------------------------------
# Questions (tagged union over answer kinds)
# ---------------------------------------------------------------------------

class _QuestionBase(BaseModel):
    id: str = Field(min_length=1)
    prompt: str
    required: bool = False
    message: str | None = None
    suggested_answer: Any = None
    resource_mapping: ResourceMapping | None = None

    def check(self, value: AnswerValue) -> str | None:
        """Return a problem description if *value* is not acceptable, else ``None``.

        ``None`` is always acceptable here: it records an explicit skip.
        Whether a skip is allowed is decided by the stage rules.
        """
        if value is None:
            return None
        return self._check_value(value)

    def _check_value(self, value: str | int | float | bool) -> str | None:
        raise NotImplementedError

    def _problem(self, default: str) -> str:
        return self.message or default


class TextQuestion(_QuestionBase):
    type: Literal["text"] = "text"
    pattern: str | None = None

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid answer pattern {value!r}: {exc}") from exc
        return value

    def _check_value(self, value: str | int | float | bool) -> str | None:
        if not isinstance(value, str):
            return f"{self.prompt} must be a string"
        if self.pattern and re.search(self.pattern, value) is None:
            return self._problem(f"{self.prompt} format is invalid")
        return None


class NumberQuestion(_QuestionBase):
    type: Literal["number"] = "number"
    minimum: float | None = None
    maximum: float | None = None

    def _check_value(self, value: str | int | float | bool) -> str | None:
        if isinstance(value, bool):
            return f"{self.prompt} must be a number"
        try:
            number = float(value)
        except (TypeError, ValueError):
            return f"{self.prompt} must be a number"
        if math.isnan(number) or math.isinf(number):
            return f"{self.prompt} must be a number"
        if self.minimum is not None and number < self.minimum:
            return self._problem(f"{self.prompt} must be at least {self.minimum:g}")
        if self.maximum is not None and number > self.maximum:
            return self._problem(f"{self.prompt} must be at most {self.maximum:g}")
        return None


class BooleanQuestion(_QuestionBase):
    type: Literal["boolean"] = "boolean"

    def _check_value(self, value: str | int | float | bool) -> str | None:
        if not isinstance(value, bool):
            return f"{self.prompt} must be true or false"
        return None


class SelectQuestion(_QuestionBase):
    type: Literal["select"] = "select"
    options: list[str] = Field(min_length=1)

    def _check_value(self, value: str | int | float | bool) -> str | None:
        if not isinstance(value, str) or value not in self.options:
            return self._problem(f"{self.prompt} must be one of: {', '.join(self.options)}")
        return None


Question = Annotated[
    Union[TextQuestion, NumberQuestion, BooleanQuestion, SelectQuestion],
    Field(discriminator="type"),
]
QUESTION_LIST_ADAPTER: TypeAdapter[list[Question]] = TypeAdapter(list[Question])


# ---------------------------------------------------------------------------
# Generation and deployment audit records
# ---------------------------------------------------------------------------

class ValidationAttempt(BaseModel):
    run: int = Field(ge=1)
    attempt_number: int = Field(ge=1)
    manifest_text: str
    outcome: AttemptOutcome
    error_detail: str | None = None
    config_fingerprint: str = ""
    recorded_at: datetime = Field(default_factory=utc_now)

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.VALID


class ResourceStatus(BaseModel):
    resource: str
    action: str


class DeploymentOutcome(BaseModel):
    deployed: bool
    resource_statuses: list[ResourceStatus] = Field(default_factory=list)
    output: str = ""
    readiness_timeout: bool = False
    attempted_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Solution record (aggregate root) and recommender candidates
# ---------------------------------------------------------------------------

class SolutionCandidate(BaseModel):
    """A solution proposed by the recommendation engine, before it is chosen."""

    solution_id: str
    intent: str = ""
    resources: list[ResourceDescriptor] = Field(min_length=1)
    solution_kind: str = "resources"


class SolutionRecord(BaseModel):
    """Everything known about one chosen solution, persisted as a single JSON document.

    ``questions`` are fixed when the solution is chosen; ``stage_answers``
    holds what was accepted per stage, with ``{}`` for a skipped stage.
    ``validation_attempts`` only ever grows.
    """

    solution_id: str
    intent: str = ""
    solution_kind: str = "resources"
    resources: list[ResourceDescriptor] = Field(default_factory=list)
    questions: dict[Stage, list[Question]] = Field(default_factory=dict)
    stage_answers: dict[Stage, AnswerMap] = Field(default_factory=dict)
    current_stage: Stage = Stage.REQUIRED
    last_submitted_stage: Stage | None = None
    status: SolutionStatus = SolutionStatus.SELECTED
    manifest_text: str | None = None
    validation_attempts: list[ValidationAttempt] = Field(default_factory=list)
    generation_runs: int = Field(default=0, ge=0)
    deployment: DeploymentOutcome | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def questions_for(self, stage: Stage) -> list[Question]:
        return list(self.questions.get(stage, []))

    def mandatory_question_ids(self, stage: Stage = Stage.REQUIRED) -> list[str]:
        """Ids of the questions in *stage* that must be answered before it is complete."""
        return [question.id for question in self.questions_for(stage) if question.required]

    def configured_answers(self) -> dict[str, AnswerValue]:
        """Flatten all recorded answers in stage order, dropping explicit skips."""
        merged: dict[str, AnswerValue] = {}
        for stage in STAGE_ORDER:
            for question_id, value in self.stage_answers.get(stage, {}).items():
                if value is not None:
                    merged[question_id] = value
        return merged

    def attempts_for_run(self, run: int) -> list[ValidationAttempt]:
        """Attempts made during generation run *run* (runs are numbered from 1)."""
        return [attempt for attempt in self.validation_attempts if attempt.run == run]

    @property
    def configuration_complete(self) -> bool:
        return self.status not in ANSWERABLE_STATUSES

    def transition_to(self, new_status: SolutionStatus) -> None:
        """Move to *new_status* if the lifecycle allows it.

        Raises:
            IllegalStatusTransitionError: If the transition is not in
                ``SOLUTION_STATUS_TRANSITIONS``.
        """
        if new_status not in SOLUTION_STATUS_TRANSITIONS[self.status]:
            raise IllegalStatusTransitionError(self.status.value, new_status.value)
        self.status = new_status
