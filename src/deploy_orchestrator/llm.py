from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Protocol, TypeVar

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_REQUEST_TIMEOUT_SECONDS = 120
_REQUEST_RETRIES = 3


class SupportsInvoke(Protocol):
    """Anything with a LangChain-style ``invoke``: chat models, runnables, test fakes."""

    def invoke(self, input: Any) -> Any: ...  # noqa: A002


def ensure_openai_api_key(repo_root: Path | None = None) -> None:
    """Make sure OPENAI_API_KEY is set, reading ``.env`` from *repo_root* (default cwd).

    Raises:
        RuntimeError: If the key is still unset.
    """
    dotenv_file = (repo_root or Path.cwd()) / ".env"
    if dotenv_file.is_file():
        load_dotenv(dotenv_file)
    if not os.getenv("OPENAI_API_KEY", "").strip():
        raise RuntimeError("OPENAI_API_KEY is required for question generation and manifest synthesis")


def get_chat_model(*, model_name: str, temperature: float = 0.0, repo_root: Path | None = None) -> ChatOpenAI:
    ensure_openai_api_key(repo_root)
    logger.debug("Creating chat model %s", model_name)
    return ChatOpenAI(
        model=model_name,
        temperature=temperature,
        timeout=_REQUEST_TIMEOUT_SECONDS,
        max_retries=_REQUEST_RETRIES,
    )


def get_structured_chat_model(*, model_name: str, schema: type[SchemaT], repo_root: Path | None = None) -> SupportsInvoke:
    """Bind *schema* as a function-calling tool; results come back in an ``include_raw`` envelope.

    Strict mode stays off because the question union has optional fields.
    """
    model = get_chat_model(model_name=model_name, repo_root=repo_root)
    return model.with_structured_output(schema, method="function_calling", include_raw=True)


def normalize_structured_output(*, raw_output: Any, schema: type[SchemaT]) -> SchemaT:
    """Validate structured output into *schema*.

    *raw_output* may be an ``include_raw`` envelope, a model instance or a dict.

    Raises:
        RuntimeError: If the output cannot be parsed or validated.
    """
    payload = raw_output
    if isinstance(payload, dict) and "parsing_error" in payload:
        if payload["parsing_error"] is not None:
            raise RuntimeError(f"{schema.__name__} could not be parsed from model output: {payload['parsing_error']!r}")
        payload = payload.get("parsed")
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    if not isinstance(payload, dict):
        raise RuntimeError(f"{schema.__name__} output had unexpected type {type(payload).__name__}")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise RuntimeError(f"{schema.__name__} output failed validation: {exc}") from exc


def response_text(response: Any) -> str:
    """Plain text of a chat response; list content keeps only its text blocks."""
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block if isinstance(block, str) else block.get("text", "")
            for block in content
            if isinstance(block, (str, dict))
        ]
        return "\n".join(part for part in parts if isinstance(part, str) and part.strip())
    return str(content)
