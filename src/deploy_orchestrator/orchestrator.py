from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .catalog import FileSolutionCatalog, SolutionCatalog
from .deploy import Deployer, KubectlDeployer
from .errors import InvalidRequestError, NotFoundError, PreconditionError, RecordExistsError
from .generation import GenerationSuccess, ManifestGenerationLoop
from .intake import AnswerIntake
from .models import (
    ANSWERABLE_STATUSES,
    STAGE_ORDER,
    AnswerValue,
    Question,
    SolutionCandidate,
    SolutionRecord,
    SolutionStatus,
    Stage,
)
from .questions import LLMQuestionSource, QuestionSource, dedupe_questions, default_open_question
from .settings import RuntimeSettings
from .stages import OPEN_ANSWER_KEY, successor
from .state_store import FileSolutionStore, SolutionStore, validate_solution_id
from .synthesis import LLMManifestSynthesizer, ManifestSynthesizer
from .validation import DryRunValidator, KubectlDryRunValidator

logger = logging.getLogger(__name__)

_DEPLOYABLE_STATUSES = (SolutionStatus.GENERATED, SolutionStatus.DEPLOY_FAILED)
_ANSWER_VALUE_TYPES = (str, int, float, bool, type(None))

_STAGE_GUIDANCE: dict[Stage, str] = {
    Stage.REQUIRED: "Answer every required question; these are needed for a working deployment.",
    Stage.BASIC: "Answer the common options you care about, or submit {} to skip this stage.",
    Stage.ADVANCED: "Answer the advanced options you care about, or submit {} to skip this stage.",
    Stage.OPEN: 'Describe any remaining requirements under "open", or answer "N/A".',
}


def parse_stage(stage: str | Stage) -> Stage:
    """Convert a stage name from a tool call or CLI into a ``Stage``.

    Raises:
        InvalidRequestError: If *stage* is not one of the four stage names.
    """
    try:
        return Stage(stage)
    except ValueError as exc:
        choices = ", ".join(item.value for item in STAGE_ORDER)
        raise InvalidRequestError("stage", f"stage must be one of: {choices}, got: {stage!r}") from exc


def parse_answers(answers: Any) -> dict[str, AnswerValue]:
    """Check the shape of a submitted answer object.

    Only the shape is checked here; values are validated against the
    persisted questions when the answers are accepted.

    Args:
        answers: The decoded ``answers`` argument.

    Returns:
        A plain dict of question id to scalar answer.

    Raises:
        InvalidRequestError: If *answers* is not an object, has a non-string
            or empty key, or holds a non-scalar value.
    """
    if not isinstance(answers, Mapping):
        raise InvalidRequestError("answers", f"answers must be an object, got: {type(answers).__name__}")
    parsed: dict[str, AnswerValue] = {}
    for key, value in answers.items():
        if not isinstance(key, str) or not key:
            raise InvalidRequestError("answers", f"answer keys must be non-empty strings, got: {key!r}")
        if not isinstance(value, _ANSWER_VALUE_TYPES):
            raise InvalidRequestError(
                "answers",
                f"answer '{key}' must be a string, number, boolean or null, got: {type(value).__name__}",
            )
        parsed[key] = value
    return parsed


def _question_payload(question: Question) -> dict[str, Any]:
    return question.model_dump(mode="json", exclude_none=True)


def _attempt_payloads(attempts: Any) -> list[dict[str, Any]]:
    return [attempt.model_dump(mode="json") for attempt in attempts]


class DeploymentOrchestrator:
    """Facade over the configuration conversation, manifest generation and deployment.

    Every public operation validates argument shapes, delegates, and
    returns a JSON-compatible dict.  Failures surface as
    ``OrchestratorError`` subclasses.
    """

    def __init__(
        self,
        *,
        store: SolutionStore,
        catalog: SolutionCatalog,
        question_source: QuestionSource,
        synthesizer: ManifestSynthesizer,
        validator: DryRunValidator,
        deployer: Deployer,
        settings: RuntimeSettings,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.question_source = question_source
        self.deployer = deployer
        self.settings = settings
        self.intake = AnswerIntake(store)
        self.generation = ManifestGenerationLoop(
            store=store,
            synthesizer=synthesizer,
            validator=validator,
            settings=settings,
        )

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        repo_root: Path | None = None,
        **overrides: Any,
    ) -> "DeploymentOrchestrator":
        """Wire the file-backed store and catalog with the LLM and kubectl adapters.

        Any component can be replaced by keyword, e.g. ``validator=...``.
        """
        root = settings.state_store_path(repo_root if repo_root is not None else Path.cwd())
        components: dict[str, Any] = {
            "store": FileSolutionStore(root),
            "catalog": FileSolutionCatalog(root),
            "question_source": LLMQuestionSource(settings),
            "synthesizer": LLMManifestSynthesizer(settings),
            "validator": KubectlDryRunValidator.from_settings(settings),
            "deployer": KubectlDeployer.from_settings(settings),
        }
        unknown = sorted(set(overrides) - set(components))
        if unknown:
            raise TypeError(f"Unknown orchestrator components: {', '.join(unknown)}")
        components.update(overrides)
        return cls(settings=settings, **components)

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def _stage_response(self, record: SolutionRecord) -> dict[str, Any]:
        stage = record.current_stage
        following = successor(stage)
        return {
            "status": "stage_questions",
            "solution_id": record.solution_id,
            "current_stage": stage.value,
            "questions": [_question_payload(question) for question in record.questions_for(stage)],
            "next_stage": following.value if following is not None else None,
            "guidance": _STAGE_GUIDANCE[stage],
        }

    def _ready_response(self, record: SolutionRecord) -> dict[str, Any]:
        return {
            "status": "ready_for_manifest_generation",
            "solution_id": record.solution_id,
            "answers": record.configured_answers(),
        }

    def _resume_response(self, record: SolutionRecord) -> dict[str, Any]:
        if record.status in ANSWERABLE_STATUSES:
            return self._stage_response(record)
        if record.status == SolutionStatus.READY_FOR_GENERATION:
            return self._ready_response(record)
        return {
            "status": record.status.value,
            "solution_id": record.solution_id,
            "answers": record.configured_answers(),
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _fetch_questions(self, candidate: SolutionCandidate, stage: Stage) -> list[Question]:
        questions = dedupe_questions(
            self.question_source.questions_for(candidate.resources, candidate.intent, stage)
        )
        if stage == Stage.OPEN:
            return [question for question in questions if question.id == OPEN_ANSWER_KEY][:1] or [
                default_open_question()
            ]
        return questions

    def choose_solution(self, solution_id: str) -> dict[str, Any]:
        """Start (or resume) configuring a recommended solution.

        Raises:
            InvalidRequestError: If solution_id is malformed.
            NotFoundError: If no record or candidate exists for solution_id.
        """
        validate_solution_id(solution_id)
        if self.store.exists(solution_id):
            record = self.store.get(solution_id)
            logger.info("Resuming solution %s at stage %s (%s)", solution_id, record.current_stage.value, record.status.value)
            return self._resume_response(record)

        candidate = self.catalog.lookup(solution_id)
        if candidate is None:
            raise NotFoundError(solution_id)
        questions = {stage: self._fetch_questions(candidate, stage) for stage in STAGE_ORDER}
        try:
            record = self.store.create(
                solution_id,
                candidate.resources,
                intent=candidate.intent,
                solution_kind=candidate.solution_kind,
                questions=questions,
            )
        except RecordExistsError:
            logger.info("Solution %s was chosen concurrently; resuming", solution_id)
            return self._resume_response(self.store.get(solution_id))
        logger.info(
            "Chose solution %s (%d resource(s), %d required question(s))",
            solution_id,
            len(record.resources),
            len(record.questions_for(Stage.REQUIRED)),
        )
        return self._stage_response(record)

    def answer_question(self, solution_id: str, stage: str | Stage, answers: Any) -> dict[str, Any]:
        """Submit one stage's answers.

        Raises:
            InvalidRequestError: If an argument is malformed.
            NotFoundError: If the solution does not exist.
            PreconditionError: If configuration is already finished.
            StageError: If the submission breaks a stage rule.
        """
        validate_solution_id(solution_id)
        outcome = self.intake.submit(solution_id, parse_stage(stage), parse_answers(answers))
        if outcome.ready:
            return self._ready_response(outcome.record)
        return self._stage_response(outcome.record)

    def generate_manifests(self, solution_id: str, max_attempts: int | None = None) -> dict[str, Any]:
        """Run the bounded generate-and-validate loop for a configured solution.

        Raises:
            InvalidRequestError: If an argument is malformed.
            NotFoundError: If the solution does not exist.
            PreconditionError: If the solution is not ready for generation.
        """
        validate_solution_id(solution_id)
        result = self.generation.run(solution_id, max_attempts=max_attempts)
        if isinstance(result, GenerationSuccess):
            return {
                "status": "manifests_generated",
                "solution_id": solution_id,
                "manifest_text": result.manifest_text,
                "validation_attempts": _attempt_payloads(result.attempts),
            }
        return {
            "status": "generation_failed",
            "solution_id": solution_id,
            "error_detail": result.error_detail,
            "transient": result.transient,
            "validation_attempts": _attempt_payloads(result.attempts),
        }

    def _resolve_timeout(self, timeout_seconds: int | None) -> int:
        if timeout_seconds is None:
            return self.settings.deploy_timeout_seconds
        if isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, int) or not 1 <= timeout_seconds <= 600:
            raise InvalidRequestError(
                "timeout_seconds", f"timeout_seconds must be an integer between 1 and 600, got: {timeout_seconds!r}"
            )
        return timeout_seconds

    def deploy_manifests(self, solution_id: str, timeout_seconds: int | None = None) -> dict[str, Any]:
        """Apply the validated manifests and record the outcome.

        Raises:
            InvalidRequestError: If an argument is malformed.
            NotFoundError: If the solution does not exist.
            PreconditionError: If there are no validated manifests to deploy.
        """
        validate_solution_id(solution_id)
        timeout = self._resolve_timeout(timeout_seconds)
        record = self.store.get(solution_id)
        expected = [status.value for status in _DEPLOYABLE_STATUSES]
        if record.status not in _DEPLOYABLE_STATUSES or not record.manifest_text:
            raise PreconditionError(solution_id, record.status.value, expected)

        outcome = self.deployer.apply(record.manifest_text, timeout)

        def apply(current: SolutionRecord) -> None:
            if current.status not in _DEPLOYABLE_STATUSES or current.manifest_text != record.manifest_text:
                raise PreconditionError(
                    solution_id,
                    current.status.value,
                    expected,
                    message=f"Solution {solution_id} changed while its manifests were being deployed",
                )
            current.deployment = outcome
            current.transition_to(SolutionStatus.DEPLOYED if outcome.deployed else SolutionStatus.DEPLOY_FAILED)

        updated = self.store.update(solution_id, apply)
        logger.info("Solution %s deployment finished: %s", solution_id, updated.status.value)
        return {
            "status": updated.status.value,
            "solution_id": solution_id,
            "deployed": outcome.deployed,
            "resource_statuses": [status.model_dump(mode="json") for status in outcome.resource_statuses],
            "output": outcome.output,
            "readiness_timeout": outcome.readiness_timeout,
        }

    def get_solution(self, solution_id: str) -> SolutionRecord:
        validate_solution_id(solution_id)
        return self.store.get(solution_id)
