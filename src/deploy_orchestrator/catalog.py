from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .errors import PersistenceError
from .models import ResourceDescriptor, SolutionCandidate
from .state_store import _atomic_write_text, _safe_read_json, new_solution_id, validate_solution_id

logger = logging.getLogger(__name__)


class SolutionCatalog(Protocol):
    """Read side of the recommender: candidate solutions by id."""

    def lookup(self, solution_id: str) -> SolutionCandidate | None: ...

    def register(self, candidate: SolutionCandidate) -> SolutionCandidate: ...


class InMemorySolutionCatalog:
    def __init__(self, candidates: Iterable[SolutionCandidate] = ()) -> None:
        self._candidates: dict[str, SolutionCandidate] = {}
        for candidate in candidates:
            self.register(candidate)

    def register(self, candidate: SolutionCandidate) -> SolutionCandidate:
        validate_solution_id(candidate.solution_id)
        self._candidates[candidate.solution_id] = candidate
        return candidate

    def lookup(self, solution_id: str) -> SolutionCandidate | None:
        return self._candidates.get(solution_id)


class FileSolutionCatalog:
    """Candidates stored as ``<root>/candidates/<solution_id>.json``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.candidates_dir = root / "candidates"
        self.candidates_dir.mkdir(parents=True, exist_ok=True)

    def candidate_path(self, solution_id: str) -> Path:
        return self.candidates_dir / f"{validate_solution_id(solution_id)}.json"

    def register(self, candidate: SolutionCandidate) -> SolutionCandidate:
        _atomic_write_text(self.candidate_path(candidate.solution_id), candidate.model_dump_json(indent=2))
        logger.info("Registered solution candidate %s", candidate.solution_id)
        return candidate

    def lookup(self, solution_id: str) -> SolutionCandidate | None:
        path = self.candidate_path(solution_id)
        try:
            text = _safe_read_json(path, f"solution candidate {solution_id}")
        except FileNotFoundError:
            return None
        except ValueError as exc:
            raise PersistenceError(solution_id, str(exc), retryable=False) from exc
        try:
            return SolutionCandidate.model_validate_json(text)
        except ValidationError as exc:
            raise PersistenceError(
                solution_id,
                f"solution candidate {solution_id} at {path} failed validation: {exc}",
                retryable=False,
            ) from exc


def propose_solution(
    catalog: SolutionCatalog,
    *,
    intent: str,
    resources: Sequence[ResourceDescriptor],
    solution_kind: str = "resources",
) -> SolutionCandidate:
    """Register a new candidate under a freshly generated solution id."""
    candidate = SolutionCandidate(
        solution_id=new_solution_id(),
        intent=intent,
        resources=list(resources),
        solution_kind=solution_kind,
    )
    return catalog.register(candidate)
