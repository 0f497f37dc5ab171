from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from .canonical import to_canonical_json
from .llm import SupportsInvoke, get_chat_model, response_text
from .models import AttemptOutcome, SolutionRecord, ValidationAttempt
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_FENCED_YAML_RE = re.compile(r"```(?:yaml|yml)?\s*([\s\S]*?)\s*```")

_RETRYABLE_CONTENT_OUTCOMES = frozenset({AttemptOutcome.INVALID_MANIFEST, AttemptOutcome.SYNTHESIS_ERROR})


class ManifestSynthesizer(Protocol):
    def synthesize(self, record: SolutionRecord, prior_error: str | None) -> str: ...


def extract_manifest_text(text: str) -> str:
    """Return the YAML inside fenced code blocks, or the whole text when unfenced.

    Multiple fenced blocks are joined as separate YAML documents.
    """
    blocks = _FENCED_YAML_RE.findall(text)
    if blocks:
        return "\n---\n".join(block.strip() for block in blocks if block.strip())
    return text.strip()


def last_rejected_attempt(record: SolutionRecord) -> ValidationAttempt | None:
    for attempt in reversed(record.validation_attempts):
        if attempt.run == record.generation_runs and attempt.outcome in _RETRYABLE_CONTENT_OUTCOMES:
            return attempt
    return None


def synthesis_payload(record: SolutionRecord) -> dict[str, Any]:
    mappings = {
        question.id: question.resource_mapping.model_dump(mode="json")
        for questions in record.questions.values()
        for question in questions
        if question.resource_mapping is not None
    }
    return {
        "intent": record.intent,
        "solution_kind": record.solution_kind,
        "resources": [resource.model_dump(mode="json") for resource in record.resources],
        "answers": record.configured_answers(),
        "resource_mappings": mappings,
    }


class LLMManifestSynthesizer:
    """Turns a configured solution into Kubernetes YAML with a chat model."""

    def __init__(self, settings: RuntimeSettings, *, model: SupportsInvoke | None = None) -> None:
        self.settings = settings
        self._model = model

    def _chat_model(self) -> SupportsInvoke:
        if self._model is None:
            self._model = get_chat_model(model_name=self.settings.model_synthesis)
        return self._model

    def render_prompt(self, record: SolutionRecord, prior_error: str | None) -> str:
        sections = [
            "You are generating Kubernetes manifests for a configured solution.",
            "Produce every resource listed, honour every answer, and use each answer at its resource_mapping "
            "field when one is given. The 'open' answer carries free-form requirements; ignore it when it is N/A.",
            "Return only YAML in a single ```yaml fenced block, documents separated by ---.",
            f"SOLUTION:\n{to_canonical_json(synthesis_payload(record))}",
        ]
        if prior_error is not None:
            previous = last_rejected_attempt(record)
            if previous is not None and previous.manifest_text:
                sections.append(f"PREVIOUS ATTEMPT:\n```yaml\n{previous.manifest_text}\n```")
            sections.append(
                f"The previous attempt was rejected with this error. Fix it and return the full corrected set:\n"
                f"{prior_error}"
            )
        return "\n\n".join(sections)

    def synthesize(self, record: SolutionRecord, prior_error: str | None) -> str:
        """Raises RuntimeError when the model returns no YAML."""
        prompt = self.render_prompt(record, prior_error)
        logger.debug("Synthesis prompt for %s: %d chars (retry=%s)", record.solution_id, len(prompt), prior_error is not None)
        manifest_text = extract_manifest_text(response_text(self._chat_model().invoke(prompt)))
        if not manifest_text:
            raise RuntimeError(f"Manifest synthesis returned no YAML for solution {record.solution_id}")
        return manifest_text
