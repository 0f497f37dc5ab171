from __future__ import annotations

from typing import Any


class OrchestratorError(Exception):
    """Base class for every error surfaced by the configuration orchestrator.

    Subclasses carry structured detail so callers can act on a failure
    without reading logs.  ``to_payload`` renders that detail as a plain
    JSON-compatible dict.
    """

    code: str = "orchestrator_error"
    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        payload.update(self.details)
        return payload


class InvalidRequestError(OrchestratorError):
    """Raised when an operation receives a malformed argument."""

    code = "invalid_request"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, field=field)
        self.field = field


class NotFoundError(OrchestratorError):
    code = "not_found"

    def __init__(self, solution_id: str) -> None:
        super().__init__(f"Solution not found: {solution_id}", solution_id=solution_id)
        self.solution_id = solution_id


class RecordExistsError(OrchestratorError):
    code = "already_exists"

    def __init__(self, solution_id: str) -> None:
        super().__init__(f"Solution record already exists: {solution_id}", solution_id=solution_id)
        self.solution_id = solution_id


class PersistenceError(OrchestratorError):
    """Raised when the durable medium behind the store cannot be used.

    Failed updates never partially commit, so a retry of the same call is
    safe.  A record that exists but cannot be parsed is reported with
    ``retryable=False`` because retrying will not repair it.
    """

    code = "persistence_error"
    retryable = True

    def __init__(self, solution_id: str, message: str, *, retryable: bool = True) -> None:
        super().__init__(message, solution_id=solution_id)
        self.solution_id = solution_id
        self.retryable = retryable


class StageError(OrchestratorError):
    """Base class for rejected answer submissions."""


class StageMismatchError(StageError):
    code = "stage_mismatch"

    def __init__(self, expected: str, received: str) -> None:
        super().__init__(
            f"Stage mismatch: expected '{expected}', received '{received}'",
            expected=expected,
            received=received,
        )
        self.expected = expected
        self.received = received


class InvalidTransitionError(StageError):
    code = "invalid_transition"

    def __init__(self, from_stage: str, to_stage: str) -> None:
        super().__init__(f"Invalid stage transition: {from_stage} -> {to_stage}")
        self.from_stage = from_stage
        self.to_stage = to_stage

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["from"] = self.from_stage
        payload["to"] = self.to_stage
        return payload


class CompletenessError(StageError):
    code = "completeness"

    def __init__(self, stage: str, message: str, *, missing: list[str] | None = None) -> None:
        super().__init__(message, stage=stage, missing=list(missing or []))
        self.stage = stage
        self.missing = list(missing or [])


class AnswerValidationError(StageError):
    code = "invalid_answer"

    def __init__(self, stage: str, issues: dict[str, str]) -> None:
        summary = "; ".join(f"{question_id}: {problem}" for question_id, problem in sorted(issues.items()))
        super().__init__(f"Answer validation failed for stage '{stage}': {summary}", stage=stage, issues=dict(issues))
        self.stage = stage
        self.issues = dict(issues)


class PreconditionError(OrchestratorError):
    """Raised when a solution is not in a status that allows the requested operation."""

    code = "precondition_failed"

    def __init__(self, solution_id: str, status: str, expected: list[str], message: str | None = None) -> None:
        super().__init__(
            message or f"Solution {solution_id} is '{status}'; expected one of: {', '.join(expected)}",
            solution_id=solution_id,
            status=status,
            expected=list(expected),
        )
        self.solution_id = solution_id
        self.status = status
        self.expected = list(expected)


class IllegalStatusTransitionError(OrchestratorError):
    code = "illegal_status_transition"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Illegal solution status transition: {from_status} -> {to_status}",
            from_status=from_status,
            to_status=to_status,
        )
        self.from_status = from_status
        self.to_status = to_status
