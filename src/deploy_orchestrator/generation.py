from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph
from langgraph.types import Command

from .canonical import config_fingerprint
from .errors import InvalidRequestError, OrchestratorError, PreconditionError
from .models import AttemptOutcome, SolutionRecord, SolutionStatus, ValidationAttempt, utc_now
from .settings import RuntimeSettings
from .state_store import SolutionStore
from .synthesis import ManifestSynthesizer
from .validation import DryRunValidator

logger = logging.getLogger(__name__)

_STARTABLE_STATUSES = (SolutionStatus.READY_FOR_GENERATION, SolutionStatus.GENERATION_FAILED)
_CONTENT_FAILURES = frozenset({AttemptOutcome.INVALID_MANIFEST, AttemptOutcome.SYNTHESIS_ERROR})
# synthesize, validate, record and route each take one graph step per attempt.
_STEPS_PER_ATTEMPT = 4


class GenerationState(TypedDict, total=False):
    solution_id: str
    run: int
    max_attempts: int
    record: SolutionRecord
    attempt: int
    manifest_text: str
    outcome: AttemptOutcome | None
    error_detail: str | None
    prior_error: str | None
    attempts: list[ValidationAttempt]
    finished: bool


@dataclass(frozen=True)
class GenerationSuccess:
    solution_id: str
    manifest_text: str
    attempts: tuple[ValidationAttempt, ...]

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class GenerationFailure:
    """A run that ended without valid manifests.

    ``transient`` is set when the run stopped because the validator was
    unreachable rather than because the attempt budget ran out.
    """

    solution_id: str
    error_detail: str
    attempts: tuple[ValidationAttempt, ...]
    transient: bool = False

    @property
    def succeeded(self) -> bool:
        return False


GenerationResult = GenerationSuccess | GenerationFailure


def generation_fingerprint(record: SolutionRecord) -> str:
    return config_fingerprint(
        {
            "solution_kind": record.solution_kind,
            "resources": record.resources,
            "answers": record.configured_answers(),
        }
    )


class ManifestGenerationLoop:
    """Bounded generation graph: synthesize -> validate -> record -> route -> synthesize | end."""

    def __init__(
        self,
        *,
        store: SolutionStore,
        synthesizer: ManifestSynthesizer,
        validator: DryRunValidator,
        settings: RuntimeSettings,
    ) -> None:
        self.store = store
        self.synthesizer = synthesizer
        self.validator = validator
        self.settings = settings
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(GenerationState)
        graph.add_node("synthesize", self._synthesize)
        graph.add_node("validate", self._validate)
        graph.add_node("record", self._record)
        graph.add_node("route", self._route)

        graph.add_edge(START, "synthesize")
        graph.add_edge("synthesize", "validate")
        graph.add_edge("validate", "record")
        graph.add_edge("record", "route")
        return graph

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    def _synthesize(self, state: GenerationState) -> dict[str, Any]:
        attempt = int(state.get("attempt", 0)) + 1
        record = state["record"]
        try:
            manifest_text = self.synthesizer.synthesize(record, state.get("prior_error"))
        except Exception as exc:  # noqa: BLE001 - any synthesizer failure is one failed attempt.
            logger.warning("Synthesis failed for %s (attempt %d): %s", record.solution_id, attempt, exc)
            return {
                "attempt": attempt,
                "manifest_text": "",
                "outcome": AttemptOutcome.SYNTHESIS_ERROR,
                "error_detail": f"Manifest synthesis failed: {exc}",
            }
        logger.debug("Synthesized %d chars for %s (attempt %d)", len(manifest_text), record.solution_id, attempt)
        return {"attempt": attempt, "manifest_text": manifest_text, "outcome": None, "error_detail": None}

    def _validate(self, state: GenerationState) -> dict[str, Any]:
        if state.get("outcome") is not None:
            return {}
        try:
            result = self.validator.validate(state["manifest_text"])
        except Exception as exc:  # noqa: BLE001 - a crashing validator cannot judge the manifests.
            return {"outcome": AttemptOutcome.VALIDATOR_UNAVAILABLE, "error_detail": f"Validator error: {exc}"}
        if result.ok:
            return {"outcome": AttemptOutcome.VALID, "error_detail": None}
        if result.transient:
            return {"outcome": AttemptOutcome.VALIDATOR_UNAVAILABLE, "error_detail": result.error_detail}
        return {"outcome": AttemptOutcome.INVALID_MANIFEST, "error_detail": result.error_detail}

    def _record(self, state: GenerationState) -> dict[str, Any]:
        record = state["record"]
        outcome = state["outcome"]
        attempt_number = state["attempt"]
        max_attempts = state["max_attempts"]
        if outcome is None:
            raise RuntimeError(f"Attempt {attempt_number} for {record.solution_id} reached recording without an outcome")
        attempt = ValidationAttempt(
            run=state["run"],
            attempt_number=attempt_number,
            manifest_text=state.get("manifest_text", ""),
            outcome=outcome,
            error_detail=state.get("error_detail"),
            config_fingerprint=generation_fingerprint(record),
        )
        finished = outcome == AttemptOutcome.VALID or attempt_number >= max_attempts

        def apply(current: SolutionRecord) -> None:
            current.validation_attempts.append(attempt)
            if outcome == AttemptOutcome.VALID:
                current.manifest_text = attempt.manifest_text
                current.transition_to(SolutionStatus.GENERATED)
            elif finished:
                current.transition_to(SolutionStatus.GENERATION_FAILED)

        updated = self.store.update(record.solution_id, apply)
        if outcome == AttemptOutcome.VALID:
            logger.info("Solution %s: attempt %d/%d produced valid manifests", record.solution_id, attempt_number, max_attempts)
        else:
            logger.warning(
                "Solution %s: attempt %d/%d %s: %s",
                record.solution_id,
                attempt_number,
                max_attempts,
                outcome.value,
                attempt.error_detail,
            )

        update: dict[str, Any] = {
            "record": updated,
            "attempts": [*state.get("attempts", []), attempt],
            "finished": finished,
        }
        if outcome in _CONTENT_FAILURES:
            update["prior_error"] = attempt.error_detail
        return update

    def _route(self, state: GenerationState) -> Command[str]:
        if state.get("finished"):
            return Command(goto=END)
        return Command(goto="synthesize")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def _start_run(self, solution_id: str) -> SolutionRecord:
        stale_after = self.settings.stale_generation_seconds

        def apply(record: SolutionRecord) -> None:
            if record.status == SolutionStatus.GENERATING:
                idle_seconds = (utc_now() - record.updated_at).total_seconds()
                if idle_seconds < stale_after:
                    raise PreconditionError(
                        record.solution_id,
                        record.status.value,
                        [status.value for status in _STARTABLE_STATUSES],
                        message=f"Manifest generation is already running for solution {record.solution_id}",
                    )
                logger.warning(
                    "Restarting generation for %s: run %d idle for %.0fs",
                    record.solution_id,
                    record.generation_runs,
                    idle_seconds,
                )
            elif record.status not in _STARTABLE_STATUSES:
                raise PreconditionError(
                    record.solution_id,
                    record.status.value,
                    [status.value for status in _STARTABLE_STATUSES],
                )
            record.transition_to(SolutionStatus.GENERATING)
            record.generation_runs += 1

        return self.store.update(solution_id, apply)

    def _abort_run(self, solution_id: str, run: int) -> None:
        """Mark *run* as ``generation_failed`` so the caller can retry at once."""

        def apply(record: SolutionRecord) -> None:
            if record.status == SolutionStatus.GENERATING and record.generation_runs == run:
                record.transition_to(SolutionStatus.GENERATION_FAILED)

        try:
            self.store.update(solution_id, apply)
        except OrchestratorError as exc:
            logger.error("Solution %s: could not release run %d: %s", solution_id, run, exc.message)
        else:
            logger.error("Solution %s: run %d aborted and marked generation_failed", solution_id, run)

    def run(self, solution_id: str, max_attempts: int | None = None) -> GenerationResult:
        """Generate and validate manifests for a fully configured solution.

        At most ``max_attempts`` attempts are made (default: the settings
        bound for the solution's manifest kind).  Every attempt is appended
        to the record before the next one starts.  A run that ends on an
        unreachable validator is reported as ``transient``.

        Raises:
            InvalidRequestError: If max_attempts is below 1.
            NotFoundError: If the solution does not exist.
            PreconditionError: If the solution is not ready for generation.
            PersistenceError: If an attempt could not be stored; the run is
                marked failed first so it can be retried.
        """
        if max_attempts is not None and (isinstance(max_attempts, bool) or max_attempts < 1):
            raise InvalidRequestError("max_attempts", f"max_attempts must be >= 1, got: {max_attempts!r}")
        record = self._start_run(solution_id)
        bound = max_attempts if max_attempts is not None else self.settings.max_attempts_for(record.solution_kind)
        logger.info("Generating manifests for %s (run %d, up to %d attempts)", solution_id, record.generation_runs, bound)

        try:
            result = self.graph.invoke(
                {
                    "solution_id": solution_id,
                    "run": record.generation_runs,
                    "max_attempts": bound,
                    "record": record,
                    "attempt": 0,
                    "prior_error": None,
                    "attempts": [],
                    "finished": False,
                },
                config={"recursion_limit": bound * _STEPS_PER_ATTEMPT + 10},
            )
        except OrchestratorError:
            self._abort_run(solution_id, record.generation_runs)
            raise

        attempts = tuple(result.get("attempts", []))
        final = attempts[-1]
        if final.outcome == AttemptOutcome.VALID:
            return GenerationSuccess(solution_id=solution_id, manifest_text=final.manifest_text, attempts=attempts)

        transient = final.outcome == AttemptOutcome.VALIDATOR_UNAVAILABLE
        if transient:
            last_error = f"Manifest validator unavailable: {final.error_detail}"
        else:
            last_error = f"Last error: {final.error_detail}"
        error_detail = f"Failed to generate valid manifests after {len(attempts)} attempts. {last_error}"
        logger.error("Solution %s: %s", solution_id, error_detail)
        return GenerationFailure(solution_id=solution_id, error_detail=error_detail, attempts=attempts, transient=transient)
