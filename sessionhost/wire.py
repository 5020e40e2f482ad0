"""Wire codec for everything that crosses a context boundary.

Payloads are reduced to the JSON data model before they leave the host, so
neither side ever holds a live reference into the other. Encoding is
deterministic (sorted keys, fixed separators) which also makes it usable
for state digests.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from enum import Enum
from typing import Any, Mapping

_COMPACT = (",", ":")


def to_wire(value: Any) -> Any:
    """Reduce ``value`` to dicts, lists, strings, numbers, booleans and None."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Enum):
        return to_wire(value.value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_wire(to_dict())
    if isinstance(value, Mapping):
        return {str(key): to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_wire(item) for item in value), key=encode)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {field.name: to_wire(getattr(value, field.name)) for field in dataclasses.fields(value)}
    raise TypeError(f"{type(value).__name__} cannot cross a context boundary.")


def encode(value: Any, *, indent: int | None = None) -> str:
    return json.dumps(
        to_wire(value),
        sort_keys=True,
        ensure_ascii=True,
        allow_nan=False,
        separators=_COMPACT if indent is None else None,
        indent=indent,
    )


def decode(raw: str | bytes) -> Any:
    return json.loads(raw)


def structured_copy(value: Any) -> Any:
    """Detached copy of ``value``, exactly as the receiving context would see it."""
    return decode(encode(value))


def digest(value: Any) -> str:
    return hashlib.sha256(encode(value).encode("utf-8")).hexdigest()
