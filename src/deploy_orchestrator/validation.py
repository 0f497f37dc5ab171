from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import yaml

from .kubectl import KubectlRunner, is_connectivity_failure
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Verdict of one dry-run.

    ``transient`` marks a verdict the validator could not reach (cluster
    unreachable, timeout); it says nothing about the manifests themselves.
    """

    ok: bool
    error_detail: str | None = None
    transient: bool = False

    @classmethod
    def passed(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def invalid(cls, error_detail: str) -> "ValidationResult":
        return cls(ok=False, error_detail=error_detail)

    @classmethod
    def unavailable(cls, error_detail: str) -> "ValidationResult":
        return cls(ok=False, error_detail=error_detail, transient=True)


class DryRunValidator(Protocol):
    def validate(self, manifest_text: str) -> ValidationResult: ...


def check_yaml_syntax(manifest_text: str) -> str | None:
    """Return a description of the first YAML problem in *manifest_text*, or ``None``."""
    try:
        documents = [document for document in yaml.safe_load_all(manifest_text) if document is not None]
    except yaml.YAMLError as exc:
        return f"YAML syntax error: {exc}"
    if not documents:
        return "Manifest contains no YAML documents"
    return None


class KubectlDryRunValidator:
    """Server-side dry-run of manifests via ``kubectl apply --dry-run=server``."""

    def __init__(self, runner: KubectlRunner, *, timeout_seconds: int = 120) -> None:
        self.runner = runner
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "KubectlDryRunValidator":
        return cls(KubectlRunner.from_settings(settings), timeout_seconds=settings.dry_run_timeout_seconds)

    def validate(self, manifest_text: str) -> ValidationResult:
        syntax_problem = check_yaml_syntax(manifest_text)
        if syntax_problem is not None:
            return ValidationResult.invalid(syntax_problem)

        result = self.runner.run(
            ["apply", "--dry-run=server", "-f", "-"],
            stdin_text=manifest_text,
            timeout_seconds=self.timeout_seconds,
        )
        if result.ok:
            return ValidationResult.passed()
        detail = result.output or f"kubectl exited with status {result.returncode}"
        if result.missing_binary or result.timed_out or is_connectivity_failure(detail):
            logger.warning("Dry-run validator unavailable: %s", detail)
            return ValidationResult.unavailable(detail)
        return ValidationResult.invalid(detail)
