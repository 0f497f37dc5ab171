from __future__ import annotations

import logging
import re
from typing import Protocol

from .kubectl import KubectlRunner
from .models import DeploymentOutcome, ResourceStatus
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

# kubectl apply prints one "<kind>[.<group>]/<name> <action>" line per object.
_APPLY_LINE_RE = re.compile(r"^(?P<resource>[\w.-]+/[\w.:-]+)\s+(?P<action>[a-z][a-z ()-]*)$")


class Deployer(Protocol):
    def apply(self, manifest_text: str, timeout_seconds: int) -> DeploymentOutcome: ...


def parse_apply_output(output: str) -> list[ResourceStatus]:
    statuses: list[ResourceStatus] = []
    for line in output.splitlines():
        match = _APPLY_LINE_RE.match(line.strip())
        if match:
            statuses.append(ResourceStatus(resource=match.group("resource"), action=match.group("action").strip()))
    return statuses


def is_readiness_timeout(output: str) -> bool:
    lowered = output.lower()
    return "timed out" in lowered or "timeout" in lowered


class KubectlDeployer:
    """Applies manifests with ``kubectl apply --wait`` and reports, never raises, failures."""

    def __init__(self, runner: KubectlRunner) -> None:
        self.runner = runner

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "KubectlDeployer":
        return cls(KubectlRunner.from_settings(settings))

    def apply(self, manifest_text: str, timeout_seconds: int) -> DeploymentOutcome:
        result = self.runner.run(
            ["apply", "-f", "-", "--wait", f"--timeout={timeout_seconds}s"],
            stdin_text=manifest_text,
            # Leave kubectl room to report its own --timeout before killing it.
            timeout_seconds=timeout_seconds + 30,
        )
        output = result.output
        outcome = DeploymentOutcome(
            deployed=result.ok,
            resource_statuses=parse_apply_output(result.stdout),
            output=output,
            readiness_timeout=not result.ok and (result.timed_out or is_readiness_timeout(output)),
        )
        if outcome.deployed:
            logger.info("kubectl apply succeeded for %d resource(s)", len(outcome.resource_statuses))
        else:
            logger.warning("kubectl apply failed (readiness_timeout=%s): %s", outcome.readiness_timeout, output)
        return outcome
