from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

_MAX_ATTEMPTS_CEILING = 100


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    state_store_root: str = "state_store"
    max_generation_attempts: int = 10
    max_attempts_by_kind: dict[str, int] = field(default_factory=dict)
    stale_generation_seconds: int = 1_800
    deploy_timeout_seconds: int = 30
    dry_run_timeout_seconds: int = 120
    kubectl_binary: str = "kubectl"
    kubeconfig: str = ""
    kube_context: str = ""
    model_synthesis: str = "gpt-4o"
    model_questions: str = "gpt-4o-mini"

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            state_store_root=os.getenv("DEPLOY_STATE_STORE_ROOT", "state_store"),
            max_generation_attempts=_get_env_int(
                "DEPLOY_MAX_GENERATION_ATTEMPTS", default=10, minimum=1, maximum=_MAX_ATTEMPTS_CEILING
            ),
            max_attempts_by_kind=_get_env_attempts_by_kind("DEPLOY_MAX_ATTEMPTS_BY_KIND"),
            stale_generation_seconds=_get_env_int("DEPLOY_STALE_GENERATION_SECONDS", default=1_800, minimum=60),
            deploy_timeout_seconds=_get_env_int("DEPLOY_TIMEOUT_SECONDS", default=30, minimum=1, maximum=600),
            dry_run_timeout_seconds=_get_env_int(
                "DEPLOY_DRY_RUN_TIMEOUT_SECONDS", default=120, minimum=5, maximum=3_600
            ),
            kubectl_binary=os.getenv("DEPLOY_KUBECTL_BINARY", "kubectl"),
            kubeconfig=os.getenv("KUBECONFIG", ""),
            kube_context=os.getenv("DEPLOY_KUBE_CONTEXT", ""),
            model_synthesis=os.getenv("DEPLOY_MODEL_SYNTHESIS", "gpt-4o"),
            model_questions=os.getenv("DEPLOY_MODEL_QUESTIONS", "gpt-4o-mini"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        # -- Model name validation --
        model_synthesis = self.model_synthesis.strip()
        if not model_synthesis:
            raise ValueError("DEPLOY_MODEL_SYNTHESIS must be non-empty")
        model_questions = self.model_questions.strip()
        if not model_questions:
            raise ValueError("DEPLOY_MODEL_QUESTIONS must be non-empty")

        # -- Numeric bounds validation --
        if not 1 <= self.max_generation_attempts <= _MAX_ATTEMPTS_CEILING:
            raise ValueError(
                f"DEPLOY_MAX_GENERATION_ATTEMPTS must be between 1 and {_MAX_ATTEMPTS_CEILING}, "
                f"got: {self.max_generation_attempts}"
            )
        for kind, bound in self.max_attempts_by_kind.items():
            if not 1 <= bound <= _MAX_ATTEMPTS_CEILING:
                raise ValueError(
                    f"DEPLOY_MAX_ATTEMPTS_BY_KIND[{kind!r}] must be between 1 and {_MAX_ATTEMPTS_CEILING}, "
                    f"got: {bound}"
                )
        if self.stale_generation_seconds < 60:
            raise ValueError(f"DEPLOY_STALE_GENERATION_SECONDS must be >= 60, got: {self.stale_generation_seconds}")
        if not 1 <= self.deploy_timeout_seconds <= 600:
            raise ValueError(f"DEPLOY_TIMEOUT_SECONDS must be between 1 and 600, got: {self.deploy_timeout_seconds}")
        if not 5 <= self.dry_run_timeout_seconds <= 3_600:
            raise ValueError(
                f"DEPLOY_DRY_RUN_TIMEOUT_SECONDS must be between 5 and 3600, got: {self.dry_run_timeout_seconds}"
            )

        # -- String field validation --
        if not self.state_store_root.strip():
            raise ValueError("DEPLOY_STATE_STORE_ROOT must be non-empty")
        kubectl_binary = self.kubectl_binary.strip()
        if not kubectl_binary:
            raise ValueError("DEPLOY_KUBECTL_BINARY must be non-empty")
        return RuntimeSettings(
            state_store_root=self.state_store_root,
            max_generation_attempts=self.max_generation_attempts,
            max_attempts_by_kind={kind.strip().lower(): bound for kind, bound in self.max_attempts_by_kind.items()},
            stale_generation_seconds=self.stale_generation_seconds,
            deploy_timeout_seconds=self.deploy_timeout_seconds,
            dry_run_timeout_seconds=self.dry_run_timeout_seconds,
            kubectl_binary=kubectl_binary,
            kubeconfig=self.kubeconfig.strip(),
            kube_context=self.kube_context.strip(),
            model_synthesis=model_synthesis,
            model_questions=model_questions,
        )

    def max_attempts_for(self, solution_kind: str) -> int:
        """Return the generation attempt bound for a manifest kind."""
        return self.max_attempts_by_kind.get(solution_kind.strip().lower(), self.max_generation_attempts)

    def state_store_path(self, repo_root: Path) -> Path:
        path = Path(self.state_store_root)
        return path if path.is_absolute() else repo_root / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Read *name* as an int in ``[minimum, maximum]``, or *default* when unset.

    Raises:
        ValueError: If the value is not an integer or is out of range.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_attempts_by_kind(name: str) -> dict[str, int]:
    """Parse a JSON object mapping manifest kind to attempt bound, e.g. ``{"helm": 30}``."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{name} must be a JSON object, got: {raw!r}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"{name} must be a JSON object, got: {raw!r}")
    bounds: dict[str, int] = {}
    for kind, value in parsed.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name}[{kind!r}] must be an integer, got: {value!r}")
        bounds[str(kind)] = value
    return bounds
