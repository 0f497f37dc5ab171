from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from deploy_orchestrator.catalog import InMemorySolutionCatalog
from deploy_orchestrator.models import (
    BooleanQuestion,
    DeploymentOutcome,
    NumberQuestion,
    Question,
    ResourceDescriptor,
    SelectQuestion,
    SolutionCandidate,
    SolutionRecord,
    Stage,
    TextQuestion,
)
from deploy_orchestrator.orchestrator import DeploymentOrchestrator
from deploy_orchestrator.questions import StaticQuestionSource, default_open_question
from deploy_orchestrator.settings import RuntimeSettings
from deploy_orchestrator.state_store import InMemorySolutionStore
from deploy_orchestrator.validation import ValidationResult

DEPLOYMENT = ResourceDescriptor(kind="Deployment", api_version="apps/v1", group="apps")

VALID_MANIFEST = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: my-app
spec:
  replicas: 2
"""


def stage_questions() -> dict[Stage, list[Question]]:
    return {
        Stage.REQUIRED: [
            TextQuestion(
                id="name",
                prompt="Application name",
                required=True,
                pattern=r"^[a-z0-9-]+$",
                message="Name must be lowercase letters, digits and hyphens",
            ),
            TextQuestion(id="namespace", prompt="Namespace"),
        ],
        Stage.BASIC: [
            NumberQuestion(id="replicas", prompt="Replica count", minimum=1, maximum=10),
            SelectQuestion(id="service_type", prompt="Service type", options=["ClusterIP", "NodePort", "LoadBalancer"]),
        ],
        Stage.ADVANCED: [BooleanQuestion(id="autoscaling", prompt="Enable autoscaling")],
        Stage.OPEN: [default_open_question()],
    }


class ScriptedSynthesizer:
    """Returns scripted manifests in order; an Exception entry is raised instead."""

    def __init__(self, outputs: Sequence[str | Exception]) -> None:
        self.outputs = list(outputs)
        self.calls: list[tuple[str, str | None]] = []

    def synthesize(self, record: SolutionRecord, prior_error: str | None) -> str:
        self.calls.append((record.solution_id, prior_error))
        output = self.outputs[min(len(self.calls) - 1, len(self.outputs) - 1)]
        if isinstance(output, Exception):
            raise output
        return output


class ScriptedValidator:
    """Returns scripted results in order, repeating the last one when exhausted."""

    def __init__(self, results: Sequence[ValidationResult]) -> None:
        self.results = list(results)
        self.calls: list[str] = []

    def validate(self, manifest_text: str) -> ValidationResult:
        self.calls.append(manifest_text)
        return self.results[min(len(self.calls) - 1, len(self.results) - 1)]


class RecordingDeployer:
    def __init__(self, outcome: DeploymentOutcome | None = None) -> None:
        self.outcome = outcome or DeploymentOutcome(deployed=True, output="deployment.apps/my-app created")
        self.calls: list[tuple[str, int]] = []

    def apply(self, manifest_text: str, timeout_seconds: int) -> DeploymentOutcome:
        self.calls.append((manifest_text, timeout_seconds))
        return self.outcome


def always_valid() -> ScriptedValidator:
    return ScriptedValidator([ValidationResult.passed()])


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings()


@pytest.fixture
def store() -> InMemorySolutionStore:
    return InMemorySolutionStore()


@pytest.fixture
def catalog() -> InMemorySolutionCatalog:
    return InMemorySolutionCatalog(
        [SolutionCandidate(solution_id="sol_test", intent="deploy a web app", resources=[DEPLOYMENT])]
    )


@pytest.fixture
def configured_record(store: InMemorySolutionStore) -> SolutionRecord:
    """A record created with the standard question sets, still at the required stage."""
    return store.create("sol_test", [DEPLOYMENT], intent="deploy a web app", questions=stage_questions())


@pytest.fixture
def make_orchestrator(
    store: InMemorySolutionStore,
    catalog: InMemorySolutionCatalog,
    settings: RuntimeSettings,
) -> Callable[..., DeploymentOrchestrator]:
    def _make(**overrides: Any) -> DeploymentOrchestrator:
        components: dict[str, Any] = {
            "store": store,
            "catalog": catalog,
            "question_source": StaticQuestionSource(stage_questions()),
            "synthesizer": ScriptedSynthesizer([VALID_MANIFEST]),
            "validator": always_valid(),
            "deployer": RecordingDeployer(),
            "settings": settings,
        }
        components.update(overrides)
        return DeploymentOrchestrator(**components)

    return _make
