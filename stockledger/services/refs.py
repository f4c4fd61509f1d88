"""Identifier parsing and the rack product-entry encoding.

Rack entries are stored as JSON ``{"product": <ref>, "stock": <int>}``.
Historical writers left ``<ref>`` in one of three shapes:

* native: ``{"$uuid": "<id>"}``, decoded to :class:`uuid.UUID`
* string: ``"<id>"``
* embedded: ``{"_id": <native or string>, "name": ...}`` (older rows use ``id``)

New entries are always written in native form.
"""

import json
import uuid
from typing import Any

from stockledger.errors import ValidationError


def parse_id(value: Any, field: str = "id") -> uuid.UUID:
    """Return the native form of an identifier or raise ValidationError."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError, TypeError):
        raise ValidationError(f"Invalid {field}: {value!r}")


def _decode_hook(obj: dict) -> Any:
    if len(obj) == 1 and "$uuid" in obj:
        try:
            return uuid.UUID(obj["$uuid"])
        except (ValueError, TypeError):
            return obj
    return obj


def _encode_default(obj: Any) -> Any:
    if isinstance(obj, uuid.UUID):
        return {"$uuid": str(obj)}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def decode_entries(raw: str | None) -> list[dict]:
    entries = json.loads(raw or "[]", object_hook=_decode_hook)
    return [e for e in entries if isinstance(e, dict)]


def encode_entries(entries: list[dict]) -> str:
    return json.dumps(entries, default=_encode_default)


def ref_to_str(ref: Any) -> str:
    """Best-effort string form of any stored product reference."""
    if isinstance(ref, dict):
        inner = ref.get("_id", ref.get("id"))
        return ref_to_str(inner) if inner is not None else ""
    return str(ref) if ref is not None else ""
