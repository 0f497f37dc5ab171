from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from langchain_core.tools import tool

from .errors import OrchestratorError
from .orchestrator import DeploymentOrchestrator
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


def orchestrator_from_env() -> DeploymentOrchestrator:
    """Build the file-backed orchestrator configured by ``DEPLOY_*`` environment variables."""
    return DeploymentOrchestrator.from_settings(RuntimeSettings.from_env())


def _respond(operation: str, call: Callable[[DeploymentOrchestrator], dict[str, Any]]) -> str:
    try:
        payload = call(orchestrator_from_env())
    except OrchestratorError as exc:
        logger.warning("%s failed: %s", operation, exc.message)
        payload = {"status": "error", "error": exc.to_payload()}
    return json.dumps(payload, indent=2, sort_keys=True)


@tool("choose_solution")
def choose_solution(solution_id: str) -> str:
    """Select a recommended solution and return its first stage of configuration questions.

    Choosing a solution that is already being configured resumes it.

    Args:
        solution_id: Identifier of the recommended solution.

    Returns:
        JSON with ``status`` ``stage_questions``, ``current_stage``,
        ``questions`` and ``next_stage``, or ``status`` ``error``.
    """
    return _respond("choose_solution", lambda orchestrator: orchestrator.choose_solution(solution_id))


@tool("answer_question")
def answer_question(solution_id: str, stage: str, answers: dict[str, Any]) -> str:
    """Submit the answers for one configuration stage.

    Stages run required -> basic -> advanced -> open.  Submit ``{}`` to
    skip basic or advanced.  The open stage takes ``{"open": "..."}``;
    use ``"N/A"`` when there is nothing to add.

    Args:
        solution_id: Identifier of the chosen solution.
        stage: One of ``required``, ``basic``, ``advanced``, ``open``.
        answers: Mapping of question id to answer value.

    Returns:
        JSON with the next stage's questions, ``ready_for_manifest_generation``
        once configuration is complete, or ``status`` ``error``.
    """
    return _respond(
        "answer_question",
        lambda orchestrator: orchestrator.answer_question(solution_id, stage, answers),
    )


@tool("generate_manifests")
def generate_manifests(solution_id: str, max_attempts: int | None = None) -> str:
    """Generate Kubernetes manifests and validate them with a server-side dry-run.

    Args:
        solution_id: Identifier of a fully configured solution.
        max_attempts: Optional bound on generation attempts.

    Returns:
        JSON with ``manifests_generated`` and the manifest text,
        ``generation_failed`` with the last error, or ``status`` ``error``.
        Both outcomes include every validation attempt.
    """
    return _respond(
        "generate_manifests",
        lambda orchestrator: orchestrator.generate_manifests(solution_id, max_attempts=max_attempts),
    )


@tool("deploy_manifests")
def deploy_manifests(solution_id: str, timeout_seconds: int | None = None) -> str:
    """Apply the validated manifests to the cluster and wait for readiness.

    Args:
        solution_id: Identifier of a solution with generated manifests.
        timeout_seconds: Readiness wait in seconds (1-600, default 30).

    Returns:
        JSON with ``deployed`` or ``deploy_failed`` and per-resource
        statuses, or ``status`` ``error``.
    """
    return _respond(
        "deploy_manifests",
        lambda orchestrator: orchestrator.deploy_manifests(solution_id, timeout_seconds=timeout_seconds),
    )


DEPLOYMENT_TOOLS = [choose_solution, answer_question, generate_manifests, deploy_manifests]
