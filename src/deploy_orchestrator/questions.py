from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol

from pydantic import BaseModel, Field

from .canonical import to_canonical_json
from .llm import SupportsInvoke, get_structured_chat_model, normalize_structured_output
from .models import Question, ResourceDescriptor, Stage, TextQuestion
from .settings import RuntimeSettings
from .stages import OPEN_ANSWER_KEY

logger = logging.getLogger(__name__)

_STAGE_GUIDANCE: dict[Stage, str] = {
    Stage.REQUIRED: (
        "Ask only what is strictly needed for a working deployment: names, container images, "
        "ports, namespaces. Mark every question the deployment cannot proceed without as required."
    ),
    Stage.BASIC: (
        "Ask about common options with sensible defaults: replica counts, resource requests and "
        "limits, service type, labels. None of these questions are required."
    ),
    Stage.ADVANCED: (
        "Ask about advanced tuning: autoscaling, probes, security contexts, affinity, storage "
        "classes. None of these questions are required."
    ),
}


class QuestionSource(Protocol):
    def questions_for(self, resources: Sequence[ResourceDescriptor], intent: str, stage: Stage) -> list[Question]: ...


class QuestionSet(BaseModel):
    """Structured output schema for one stage's questions."""

    questions: list[Question] = Field(default_factory=list)


def default_open_question() -> TextQuestion:
    return TextQuestion(
        id=OPEN_ANSWER_KEY,
        prompt=(
            "Is there anything else about your requirements or constraints we should know? "
            'Answer "N/A" if there is nothing to add.'
        ),
        required=True,
        suggested_answer="N/A",
    )


def dedupe_questions(questions: Sequence[Question]) -> list[Question]:
    """Drop questions whose id already appeared earlier in the list."""
    seen: set[str] = set()
    unique: list[Question] = []
    for question in questions:
        if question.id in seen:
            logger.warning("Dropping duplicate question id %s", question.id)
            continue
        seen.add(question.id)
        unique.append(question)
    return unique


class StaticQuestionSource:
    """Serves fixed question sets, e.g. ones already attached to a recommendation."""

    def __init__(self, questions: Mapping[Stage, Sequence[Question]]) -> None:
        self._questions = {stage: list(items) for stage, items in questions.items()}

    def questions_for(self, resources: Sequence[ResourceDescriptor], intent: str, stage: Stage) -> list[Question]:
        return list(self._questions.get(stage, []))


class LLMQuestionSource:
    """Asks a chat model for each stage's questions using the ``QuestionSet`` schema."""

    def __init__(self, settings: RuntimeSettings, *, model: SupportsInvoke | None = None) -> None:
        self.settings = settings
        self._model = model

    def _structured_model(self) -> SupportsInvoke:
        if self._model is None:
            self._model = get_structured_chat_model(model_name=self.settings.model_questions, schema=QuestionSet)
        return self._model

    def render_prompt(self, resources: Sequence[ResourceDescriptor], intent: str, stage: Stage) -> str:
        payload = {
            "intent": intent,
            "resources": [resource.model_dump(mode="json") for resource in resources],
            "stage": stage.value,
        }
        return (
            "You are configuring a Kubernetes deployment.\n"
            f"Write the '{stage.value}' stage questions for the solution below. "
            f"{_STAGE_GUIDANCE[stage]}\n"
            "Each question needs a unique snake_case id, a prompt, and a type of text, number, boolean or select. "
            "Use pattern for constrained text, minimum/maximum for numbers, and options for select. "
            "Set resource_mapping to the resource field the answer populates.\n\n"
            f"SOLUTION:\n{to_canonical_json(payload)}"
        )

    def questions_for(self, resources: Sequence[ResourceDescriptor], intent: str, stage: Stage) -> list[Question]:
        if stage == Stage.OPEN:
            return [default_open_question()]
        prompt = self.render_prompt(resources, intent, stage)
        logger.debug("Requesting %s questions (%d prompt chars)", stage.value, len(prompt))
        question_set = normalize_structured_output(raw_output=self._structured_model().invoke(prompt), schema=QuestionSet)
        questions = dedupe_questions(question_set.questions)
        logger.info("Question source produced %d %s question(s)", len(questions), stage.value)
        return questions


class EnrichedQuestionSource:
    """Adds organisation-mandated questions to the ``required`` stage of another source.

    Extra questions are always mandatory; an id the base source already
    serves keeps the base question.
    """

    def __init__(
        self,
        base: QuestionSource,
        enrich: Callable[[Sequence[ResourceDescriptor], str], Sequence[Question]],
    ) -> None:
        self.base = base
        self.enrich = enrich

    def questions_for(self, resources: Sequence[ResourceDescriptor], intent: str, stage: Stage) -> list[Question]:
        questions = self.base.questions_for(resources, intent, stage)
        if stage != Stage.REQUIRED:
            return questions
        known = {question.id for question in questions}
        for extra in self.enrich(resources, intent):
            if extra.id in known:
                continue
            known.add(extra.id)
            questions.append(extra.model_copy(update={"required": True}))
        return questions
