from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

import deploy_orchestrator.__main__ as cli
from deploy_orchestrator.catalog import FileSolutionCatalog
from deploy_orchestrator.orchestrator import DeploymentOrchestrator
from deploy_orchestrator.state_store import FileSolutionStore

from conftest import DEPLOYMENT


@pytest.fixture
def cli_orchestrator(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    make_orchestrator: Callable[..., DeploymentOrchestrator],
) -> DeploymentOrchestrator:
    monkeypatch.delenv("DEPLOY_STATE_STORE_ROOT", raising=False)
    instance = make_orchestrator(store=FileSolutionStore(tmp_path), catalog=FileSolutionCatalog(tmp_path))
    monkeypatch.setattr(cli.DeploymentOrchestrator, "from_settings", classmethod(lambda cls, settings, **_: instance))
    return instance


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, dict[str, Any]]:
    code = cli.main(["--log-level", "ERROR", *argv])
    return code, json.loads(capsys.readouterr().out)


def test_register_choose_answer_show(
    cli_orchestrator: DeploymentOrchestrator,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    resources = tmp_path / "resources.json"
    resources.write_text(json.dumps([DEPLOYMENT.model_dump(mode="json")]), encoding="utf-8")

    code, registered = _run(capsys, "register", "--resources", str(resources), "--solution-id", "sol_test")
    assert code == cli.EXIT_OK
    assert registered["solution_id"] == "sol_test"

    code, chosen = _run(capsys, "choose", "sol_test")
    assert code == cli.EXIT_OK
    assert chosen["current_stage"] == "required"

    code, answered = _run(capsys, "answer", "sol_test", "--stage", "required", "--answers", '{"name": "my-app"}')
    assert code == cli.EXIT_OK
    assert answered["current_stage"] == "basic"

    code, shown = _run(capsys, "show", "sol_test")
    assert code == cli.EXIT_OK
    assert shown["status"] == "configuring"


def test_bad_answers_json_is_bad_input(
    cli_orchestrator: DeploymentOrchestrator,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code, payload = _run(capsys, "answer", "sol_test", "--stage", "required", "--answers", "{not json")
    assert code == cli.EXIT_BAD_INPUT
    assert payload["error"]["code"] == "invalid_request"


def test_unknown_solution_fails(
    cli_orchestrator: DeploymentOrchestrator,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code, payload = _run(capsys, "choose", "sol_missing")
    assert code == cli.EXIT_FAILED
    assert payload["error"]["code"] == "not_found"


def test_invalid_configuration_exits_before_running(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOY_MAX_GENERATION_ATTEMPTS", "0")
    assert cli.main(["show", "sol_test"]) == cli.EXIT_FAILED
