from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

# kubectl output fragments that mean the API server could not be reached,
# as opposed to the server rejecting the manifests.
_CONNECTIVITY_SIGNATURES: tuple[str, ...] = (
    "connection refused",
    "unable to connect to the server",
    "i/o timeout",
    "tls handshake timeout",
    "no such host",
    "service unavailable",
    "the server is currently unable",
)


@dataclass(frozen=True)
class KubectlResult:
    command: tuple[str, ...]
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    missing_binary: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return "\n".join(part.strip() for part in (self.stdout, self.stderr) if part and part.strip())


def is_connectivity_failure(output: str) -> bool:
    lowered = output.lower()
    return any(signature in lowered for signature in _CONNECTIVITY_SIGNATURES)


def _coerce_stream(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


@dataclass(frozen=True)
class KubectlRunner:
    """Runs ``kubectl`` with the configured kubeconfig and context, manifests on stdin."""

    binary: str = "kubectl"
    kubeconfig: str = ""
    context: str = ""

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "KubectlRunner":
        return cls(binary=settings.kubectl_binary, kubeconfig=settings.kubeconfig, context=settings.kube_context)

    def command(self, args: Sequence[str]) -> tuple[str, ...]:
        parts = [self.binary]
        if self.kubeconfig:
            parts.append(f"--kubeconfig={self.kubeconfig}")
        if self.context:
            parts.append(f"--context={self.context}")
        parts.extend(args)
        return tuple(parts)

    def run(self, args: Sequence[str], *, stdin_text: str, timeout_seconds: float) -> KubectlResult:
        command = self.command(args)
        logger.debug("Running %s (%d bytes on stdin)", " ".join(command), len(stdin_text))
        try:
            completed = subprocess.run(
                list(command),
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                input=stdin_text,
            )
        except FileNotFoundError:
            return KubectlResult(
                command=command,
                returncode=None,
                stdout="",
                stderr=f"kubectl binary not found: {self.binary}",
                missing_binary=True,
            )
        except subprocess.TimeoutExpired as exc:
            return KubectlResult(
                command=command,
                returncode=None,
                stdout=_coerce_stream(exc.stdout),
                stderr=_coerce_stream(exc.stderr) or f"kubectl timed out after {timeout_seconds:g}s",
                timed_out=True,
            )
        return KubectlResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
