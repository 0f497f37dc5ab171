from __future__ import annotations

from typing import Any

import pytest
from langchain_core.messages import AIMessage

from deploy_orchestrator.models import AttemptOutcome, SolutionRecord, Stage, ValidationAttempt
from deploy_orchestrator.settings import RuntimeSettings
from deploy_orchestrator.synthesis import LLMManifestSynthesizer, extract_manifest_text

from conftest import DEPLOYMENT, VALID_MANIFEST, stage_questions


class _FakeChatModel:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    def invoke(self, input: Any) -> AIMessage:  # noqa: A002 - mirrors the runnable signature.
        self.prompts.append(input)
        return AIMessage(content=self.reply)


def _record(**updates: Any) -> SolutionRecord:
    record = SolutionRecord(
        solution_id="sol_test",
        intent="deploy a web app",
        resources=[DEPLOYMENT],
        questions=stage_questions(),
        stage_answers={Stage.REQUIRED: {"name": "my-app"}, Stage.OPEN: {"open": "N/A"}},
        generation_runs=1,
    )
    return record.model_copy(update=updates)


def test_extract_manifest_text_handles_fences() -> None:
    assert extract_manifest_text(f"Here you go:\n```yaml\n{VALID_MANIFEST}```\nDone.") == VALID_MANIFEST.strip()
    joined = extract_manifest_text("```yml\na: 1\n```\ntext\n```\nb: 2\n```")
    assert joined == "a: 1\n---\nb: 2"
    assert extract_manifest_text("  c: 3  ") == "c: 3"


def test_first_attempt_prompt_carries_configuration() -> None:
    model = _FakeChatModel(f"```yaml\n{VALID_MANIFEST}```")
    synthesizer = LLMManifestSynthesizer(RuntimeSettings(), model=model)

    manifest = synthesizer.synthesize(_record(), None)

    assert manifest == VALID_MANIFEST.strip()
    prompt = model.prompts[0]
    assert '"name":"my-app"' in prompt
    assert '"kind":"Deployment"' in prompt
    assert "PREVIOUS ATTEMPT" not in prompt


def test_retry_prompt_includes_previous_manifest_and_error() -> None:
    previous = ValidationAttempt(
        run=1,
        attempt_number=1,
        manifest_text="kind: Broken",
        outcome=AttemptOutcome.INVALID_MANIFEST,
        error_detail="unknown kind Broken",
    )
    model = _FakeChatModel(f"```yaml\n{VALID_MANIFEST}```")
    synthesizer = LLMManifestSynthesizer(RuntimeSettings(), model=model)

    synthesizer.synthesize(_record(validation_attempts=[previous]), "unknown kind Broken")

    prompt = model.prompts[0]
    assert "kind: Broken" in prompt
    assert "unknown kind Broken" in prompt


def test_empty_model_output_is_an_error() -> None:
    synthesizer = LLMManifestSynthesizer(RuntimeSettings(), model=_FakeChatModel("```yaml\n```"))
    with pytest.raises(RuntimeError):
        synthesizer.synthesize(_record(), None)
