from __future__ import annotations

import hashlib
from typing import Any

import rfc8785
from pydantic_core import to_jsonable_python


def to_canonical_json(value: Any) -> str:
    """Serialize answers, resources or records to RFC 8785 JSON.

    Prompt payloads and fingerprints go through here so the same
    configuration always yields byte-identical text. Enums, datetimes and
    pydantic models are reduced to JSON primitives first.

    Raises:
        pydantic_core.PydanticSerializationError: If value holds a type with no JSON form.
    """
    return rfc8785.dumps(to_jsonable_python(value)).decode("utf-8")


def config_fingerprint(value: Any) -> str:
    """Return ``sha256:<hex>`` over the canonical JSON of *value*."""
    return "sha256:" + hashlib.sha256(to_canonical_json(value).encode("utf-8")).hexdigest()
