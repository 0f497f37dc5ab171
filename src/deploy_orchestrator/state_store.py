from __future__ import annotations

import fcntl
import logging
import os
import re
import secrets
import tempfile
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .errors import (
    IllegalStatusTransitionError,
    InvalidRequestError,
    NotFoundError,
    PersistenceError,
    RecordExistsError,
)
from .models import (
    MANIFEST_WRITE_STATUSES,
    SOLUTION_STATUS_TRANSITIONS,
    Question,
    ResourceDescriptor,
    SolutionRecord,
    Stage,
    utc_now,
)

logger = logging.getLogger(__name__)

RecordMutator = Callable[[SolutionRecord], None]

_SOLUTION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


class SolutionStore(Protocol):
    """Durable keyed store of solution records with per-key atomic updates."""

    def get(self, solution_id: str) -> SolutionRecord: ...

    def create(
        self,
        solution_id: str,
        resources: Sequence[ResourceDescriptor],
        *,
        intent: str = "",
        solution_kind: str = "resources",
        questions: dict[Stage, list[Question]] | None = None,
    ) -> SolutionRecord: ...

    def update(self, solution_id: str, mutate: RecordMutator) -> SolutionRecord: ...

    def exists(self, solution_id: str) -> bool: ...

    def list_ids(self) -> list[str]: ...


# ---------------------------------------------------------------------------
# Solution ids
# ---------------------------------------------------------------------------

def validate_solution_id(solution_id: str) -> str:
    """Return *solution_id* if it is safe to use as a record key and file name.

    Raises:
        InvalidRequestError: If the id is empty or contains unsafe characters.
    """
    if not isinstance(solution_id, str) or not _SOLUTION_ID_RE.match(solution_id):
        raise InvalidRequestError(
            "solution_id",
            f"solution_id must match {_SOLUTION_ID_RE.pattern}, got: {solution_id!r}",
        )
    return solution_id


def new_solution_id() -> str:
    """Generate an id of the form ``sol_2025-01-31T142233_1a2b3c4d5e6f``."""
    stamp = datetime.now(UTC).strftime("%Y-%m-%dT%H%M%S")
    return f"sol_{stamp}_{secrets.token_hex(6)}"


# ---------------------------------------------------------------------------
# Update invariants (shared by every store implementation)
# ---------------------------------------------------------------------------

def _new_record(
    solution_id: str,
    resources: Sequence[ResourceDescriptor],
    *,
    intent: str,
    solution_kind: str,
    questions: dict[Stage, list[Question]] | None,
) -> SolutionRecord:
    if not resources:
        raise InvalidRequestError("resources", "a solution needs at least one resource")
    return SolutionRecord(
        solution_id=solution_id,
        intent=intent,
        solution_kind=solution_kind,
        resources=list(resources),
        questions={stage: list(items) for stage, items in (questions or {}).items()},
    )


def _apply_update(current: SolutionRecord, mutate: RecordMutator) -> SolutionRecord:
    """Run *mutate* on a deep copy of *current* and check the result.

    Any exception raised by *mutate* or by the checks propagates before
    anything is written.

    Raises:
        IllegalStatusTransitionError: If the status moved along an edge the
            lifecycle does not allow.
        ValueError: If the mutation touched an immutable field or wrote
            generation output outside the generation window.
    """
    draft = current.model_copy(deep=True)
    mutate(draft)

    if draft.solution_id != current.solution_id or draft.created_at != current.created_at:
        raise ValueError(f"solution {current.solution_id}: identity fields are immutable")
    if draft.resources != current.resources:
        raise ValueError(f"solution {current.solution_id}: resources are immutable after creation")
    if draft.status != current.status and draft.status not in SOLUTION_STATUS_TRANSITIONS[current.status]:
        raise IllegalStatusTransitionError(current.status.value, draft.status.value)

    previous_attempts = current.validation_attempts
    if draft.validation_attempts[: len(previous_attempts)] != previous_attempts:
        raise ValueError(f"solution {current.solution_id}: validation attempts are append-only")
    touched_generation_output = (
        draft.manifest_text != current.manifest_text
        or len(draft.validation_attempts) != len(previous_attempts)
    )
    if touched_generation_output and draft.status not in MANIFEST_WRITE_STATUSES:
        raise ValueError(
            f"solution {current.solution_id}: manifest output may only change while generating, "
            f"status is {draft.status.value}"
        )

    draft.updated_at = utc_now()
    return draft


# ---------------------------------------------------------------------------
# File locking helpers
# ---------------------------------------------------------------------------

_LOCK_SUFFIX = ".lock"


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive ``flock`` on the ``.lock`` sidecar of *path*.

    The sidecar stays put while the data file is swapped with
    ``os.replace``, so the lock also serializes writers in other processes.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* via a fsynced temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _safe_read_json(path: Path, label: str) -> str:
    """Read a JSON file and raise a clear error if missing or unreadable.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty or contains non-UTF-8 data.
    """
    if not path.is_file():
        raise FileNotFoundError(f"{label} not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"{label} at {path} contains invalid UTF-8 data") from exc
    if not text.strip():
        raise ValueError(f"{label} at {path} is empty")
    return text


@contextmanager
def _storage_errors(solution_id: str) -> Iterator[None]:
    """Translate filesystem failures into retryable ``PersistenceError``."""
    try:
        yield
    except OSError as exc:
        logger.error("Persistence failure for solution %s: %s", solution_id, exc)
        raise PersistenceError(solution_id, f"storage unavailable for solution {solution_id}: {exc}") from exc


# ---------------------------------------------------------------------------
# FileSolutionStore
# ---------------------------------------------------------------------------

class FileSolutionStore:
    """Filesystem store holding one JSON document per solution.

    Layout::

        <root>/solutions/<solution_id>.json
        <root>/solutions/<solution_id>.json.lock

    Every read-modify-write runs under an exclusive ``fcntl`` lock on the
    record's sidecar, and every write is an atomic temp-file-then-rename,
    so a crash leaves either the old or the new record, never a mix.
    Reads take no lock because a reader always sees a whole file.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.solutions_dir = root / "solutions"
        self.solutions_dir.mkdir(parents=True, exist_ok=True)

    def record_path(self, solution_id: str) -> Path:
        return self.solutions_dir / f"{validate_solution_id(solution_id)}.json"

    def _read(self, solution_id: str, path: Path) -> SolutionRecord:
        try:
            text = _safe_read_json(path, f"solution {solution_id}")
        except FileNotFoundError as exc:
            raise NotFoundError(solution_id) from exc
        except ValueError as exc:
            raise PersistenceError(solution_id, str(exc), retryable=False) from exc
        try:
            return SolutionRecord.model_validate_json(text)
        except ValidationError as exc:
            raise PersistenceError(
                solution_id,
                f"solution {solution_id} at {path} failed validation: {exc}",
                retryable=False,
            ) from exc

    def get(self, solution_id: str) -> SolutionRecord:
        path = self.record_path(solution_id)
        with _storage_errors(solution_id):
            return self._read(solution_id, path)

    def exists(self, solution_id: str) -> bool:
        return self.record_path(solution_id).is_file()

    def list_ids(self) -> list[str]:
        return sorted(path.stem for path in self.solutions_dir.glob("*.json") if path.is_file())

    def create(
        self,
        solution_id: str,
        resources: Sequence[ResourceDescriptor],
        *,
        intent: str = "",
        solution_kind: str = "resources",
        questions: dict[Stage, list[Question]] | None = None,
    ) -> SolutionRecord:
        """Persist a fresh record in status ``selected`` at stage ``required``.

        Raises:
            RecordExistsError: If a record with this id is already stored.
            PersistenceError: If the filesystem cannot be written.
        """
        path = self.record_path(solution_id)
        record = _new_record(
            solution_id, resources, intent=intent, solution_kind=solution_kind, questions=questions
        )
        with _storage_errors(solution_id):
            with _locked_file(path):
                if path.exists():
                    raise RecordExistsError(solution_id)
                _atomic_write_text(path, record.model_dump_json(indent=2))
        logger.info("Created solution record %s with %d resource(s)", solution_id, len(record.resources))
        return record

    def update(self, solution_id: str, mutate: RecordMutator) -> SolutionRecord:
        """Atomically read, mutate and write one record under its lock.

        Returns:
            The record as persisted.

        Raises:
            NotFoundError: If the record does not exist.
            PersistenceError: If the record cannot be read or written.
        """
        path = self.record_path(solution_id)
        if not path.is_file():
            raise NotFoundError(solution_id)
        with _storage_errors(solution_id):
            with _locked_file(path):
                current = self._read(solution_id, path)
                updated = _apply_update(current, mutate)
                _atomic_write_text(path, updated.model_dump_json(indent=2))
        logger.debug("Updated solution %s (status=%s)", solution_id, updated.status.value)
        return updated


# ---------------------------------------------------------------------------
# InMemorySolutionStore
# ---------------------------------------------------------------------------

class InMemorySolutionStore:
    """Process-local store with the same semantics as ``FileSolutionStore``.

    Records are kept as serialized JSON so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, solution_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(solution_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[solution_id] = lock
            return lock

    def get(self, solution_id: str) -> SolutionRecord:
        validate_solution_id(solution_id)
        text = self._records.get(solution_id)
        if text is None:
            raise NotFoundError(solution_id)
        return SolutionRecord.model_validate_json(text)

    def exists(self, solution_id: str) -> bool:
        return solution_id in self._records

    def list_ids(self) -> list[str]:
        return sorted(self._records)

    def create(
        self,
        solution_id: str,
        resources: Sequence[ResourceDescriptor],
        *,
        intent: str = "",
        solution_kind: str = "resources",
        questions: dict[Stage, list[Question]] | None = None,
    ) -> SolutionRecord:
        validate_solution_id(solution_id)
        record = _new_record(
            solution_id, resources, intent=intent, solution_kind=solution_kind, questions=questions
        )
        with self._lock_for(solution_id):
            if solution_id in self._records:
                raise RecordExistsError(solution_id)
            self._records[solution_id] = record.model_dump_json()
        return record

    def update(self, solution_id: str, mutate: RecordMutator) -> SolutionRecord:
        validate_solution_id(solution_id)
        with self._lock_for(solution_id):
            text = self._records.get(solution_id)
            if text is None:
                raise NotFoundError(solution_id)
            updated = _apply_update(SolutionRecord.model_validate_json(text), mutate)
            self._records[solution_id] = updated.model_dump_json()
        return updated
