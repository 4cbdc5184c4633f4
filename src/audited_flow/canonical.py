from __future__ import annotations

import dataclasses
import math
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import rfc8785
from pydantic import BaseModel

# Largest magnitude I-JSON (and therefore rfc8785) represents exactly.
MAX_SAFE_INTEGER = 2**53 - 1

_TEXT_TYPES = (str, type(None))


def _encode_number(value: int | float) -> int | float | dict[str, str]:
    """Keep numbers in the JCS domain; tag the ones outside it.

    Integers beyond +/-(2**53 - 1) become ``{"$int": "<decimal digits>"}`` and
    non-finite floats become ``{"$float": "nan" | "inf" | "-inf"}``.
    """
    if isinstance(value, int):
        if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
            return int(value)
        return {"$int": str(int(value))}
    if math.isfinite(value):
        return float(value)
    if math.isnan(value):
        return {"$float": "nan"}
    return {"$float": "inf" if value > 0 else "-inf"}


def _normalize_for_jcs(value: Any) -> bool | int | float | str | None | list[Any] | dict[str, Any]:
    """Recursively convert flow state values into JSON-primitive types.

    Flow states are caller-defined, so besides plain containers this accepts
    Pydantic models, dataclass instances, enums, temporal values, UUIDs and
    Decimals. Numbers rfc8785 cannot encode are tagged by ``_encode_number``.
    Sets are emitted as lists ordered by their canonical form so that
    iteration order never leaks into the digest.

    Raises:
        TypeError: If value contains a type that cannot be converted to JSON.
    """
    if isinstance(value, bool) or isinstance(value, _TEXT_TYPES):
        return value

    if isinstance(value, (int, float)):
        return _encode_number(value)

    if isinstance(value, BaseModel):
        return _normalize_for_jcs(value.model_dump(mode="json"))

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _normalize_for_jcs(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )

    if isinstance(value, dict):
        return {str(k): _normalize_for_jcs(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [_normalize_for_jcs(item) for item in value]

    if isinstance(value, (set, frozenset)):
        items = [_normalize_for_jcs(item) for item in value]
        return sorted(items, key=lambda item: rfc8785.dumps(item))

    if isinstance(value, Enum):
        return _normalize_for_jcs(value.value)

    if isinstance(value, (datetime, date, time)):
        return value.isoformat()

    if isinstance(value, UUID):
        return str(value)

    if isinstance(value, Decimal):
        return _encode_number(float(value))

    if isinstance(value, bytes):
        raise TypeError(
            f"Cannot serialize bytes to canonical JSON. "
            f"Encode to base64 or hex string first: {value!r:.64}"
        )

    raise TypeError(
        f"Cannot serialize type {type(value).__name__} to canonical JSON. "
        f"Convert flow state to a JSON-compatible shape first."
    )


def to_canonical_bytes(value: Any) -> bytes:
    """Serialize a value to RFC 8785 canonical JSON bytes."""
    return rfc8785.dumps(_normalize_for_jcs(value))


def to_canonical_json(value: Any) -> str:
    """Serialize a value to deterministic, byte-for-byte reproducible JSON per RFC 8785.

    Args:
        value: Any flow state, audit payload, or nested structure thereof.

    Returns:
        A UTF-8 string containing the canonicalized JSON representation.

    Raises:
        TypeError: If value contains an unsupported type.
    """
    return to_canonical_bytes(value).decode("utf-8")
