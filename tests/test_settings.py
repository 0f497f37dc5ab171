from __future__ import annotations

from pathlib import Path

import pytest

from deploy_orchestrator.settings import RuntimeSettings

_ENV_VARS = [
    "DEPLOY_STATE_STORE_ROOT",
    "DEPLOY_MAX_GENERATION_ATTEMPTS",
    "DEPLOY_MAX_ATTEMPTS_BY_KIND",
    "DEPLOY_STALE_GENERATION_SECONDS",
    "DEPLOY_TIMEOUT_SECONDS",
    "DEPLOY_DRY_RUN_TIMEOUT_SECONDS",
    "DEPLOY_KUBECTL_BINARY",
    "DEPLOY_KUBE_CONTEXT",
    "DEPLOY_MODEL_SYNTHESIS",
    "DEPLOY_MODEL_QUESTIONS",
    "KUBECONFIG",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = RuntimeSettings.from_env()
    assert settings.max_generation_attempts == 10
    assert settings.deploy_timeout_seconds == 30
    assert settings.kubectl_binary == "kubectl"
    assert settings.max_attempts_by_kind == {}
    assert settings.state_store_path(Path("/srv/app")) == Path("/srv/app/state_store")


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOY_MAX_GENERATION_ATTEMPTS", "3")
    monkeypatch.setenv("DEPLOY_TIMEOUT_SECONDS", "120")
    monkeypatch.setenv("DEPLOY_STATE_STORE_ROOT", "/var/lib/deploy")
    monkeypatch.setenv("KUBECONFIG", " /etc/kube/config ")
    monkeypatch.setenv("DEPLOY_MAX_ATTEMPTS_BY_KIND", '{"Helm": 30}')

    settings = RuntimeSettings.from_env()

    assert settings.max_generation_attempts == 3
    assert settings.deploy_timeout_seconds == 120
    assert settings.kubeconfig == "/etc/kube/config"
    assert settings.state_store_path(Path("/srv/app")) == Path("/var/lib/deploy")
    assert settings.max_attempts_for("helm") == 30
    assert settings.max_attempts_for("resources") == 3


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("DEPLOY_MAX_GENERATION_ATTEMPTS", "0"),
        ("DEPLOY_MAX_GENERATION_ATTEMPTS", "ten"),
        ("DEPLOY_TIMEOUT_SECONDS", "601"),
        ("DEPLOY_STALE_GENERATION_SECONDS", "10"),
        ("DEPLOY_MAX_ATTEMPTS_BY_KIND", "[1, 2]"),
        ("DEPLOY_MAX_ATTEMPTS_BY_KIND", '{"helm": "many"}'),
        ("DEPLOY_MAX_ATTEMPTS_BY_KIND", '{"helm": 500}'),
        ("DEPLOY_MODEL_SYNTHESIS", "  "),
    ],
)
def test_invalid_values_fail_fast(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        RuntimeSettings.from_env()
