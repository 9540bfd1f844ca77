"""
Governance SDK — Canonical JSON and Request Hashing

Produces the one canonical string for a JSON-compatible value and hashes
it with SHA-256. The server fingerprints every action with the same
algorithm, so a client-side hash over the same reduced payload must come
out byte-for-byte identical; replay and integrity checks depend on it.

Canonical form:
  - dict keys sorted by code point, rendered "key":value, no whitespace
  - list / tuple order preserved
  - strings use the JSON escape set only; non-ASCII is emitted verbatim
  - numbers in shortest exact decimal, never exponent notation, no
    trailing fractional zeros, integral values without a decimal point
  - NaN / Infinity rejected
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Mapping
from typing import Any

from governance_sdk.errors import CanonicalizeError

# ---------------------------------------------------------------------------
# Fields dropped from action payloads before hashing
# ---------------------------------------------------------------------------

# Must stay identical to the server's exclusion set. Keys starting with "_"
# are dropped as well.
ACTION_EXCLUDE_FIELDS: frozenset[str] = frozenset({
    "id",
    "approval_token",
    "created_at",
    "updated_at",
    "tenant_id",
    "project_id",
    "version",
    "decision",
    "status",
    "reason",
    "risk_level",
    "policy_version",
    "policy_hash",
    "runtime_version",
    "profile_id",
    "profile_version",
    "profile_hash",
    "provenance_id",
    "outcome",
    "reason_code",
    "reason_details",
    "request_hash",
})

_STRING_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def normalize_number(value: int | float) -> str:
    """Render a number in canonical decimal form.

    1000.0 -> "1000", 1.50 -> "1.5", 1e3 -> "1000", 1.5e-7 -> "0.00000015".
    Raises CanonicalizeError for NaN and infinities.
    """
    if isinstance(value, int):
        return str(int(value))

    if math.isnan(value):
        raise CanonicalizeError("NaN is not allowed in canonical JSON")
    if math.isinf(value):
        raise CanonicalizeError("Infinity is not allowed in canonical JSON")
    if value == 0:
        return "0"

    text = repr(float(value))
    negative = text.startswith("-")
    text = text.lstrip("-")

    if "e" in text or "E" in text:
        mantissa, exponent = text.lower().split("e")
        int_part, _, frac_part = mantissa.partition(".")
        digits = int_part + frac_part
        # Position of the decimal point inside `digits` after the shift
        point = len(int_part) + int(exponent)
        if point <= 0:
            text = "0." + "0" * (-point) + digits
        elif point >= len(digits):
            text = digits + "0" * (point - len(digits))
        else:
            text = digits[:point] + "." + digits[point:]

    if "." in text:
        text = text.rstrip("0").rstrip(".")

    return "-" + text if negative else text


def _serialize_string(value: str) -> str:
    out = ['"']
    for char in value:
        escaped = _STRING_ESCAPES.get(char)
        if escaped is not None:
            out.append(escaped)
        elif ord(char) < 0x20:
            out.append(f"\\u{ord(char):04x}")
        else:
            out.append(char)
    out.append('"')
    return "".join(out)


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------

def _serialize_mapping(value: Mapping) -> str:
    for key in value:
        if not isinstance(key, str):
            raise CanonicalizeError(
                f"Dict keys must be strings, got {type(key).__name__}: {key!r}"
            )
    parts = [
        f"{_serialize_string(key)}:{_serialize_value(value[key])}"
        for key in sorted(value)
    ]
    return "{" + ",".join(parts) + "}"


def _serialize_value(value: Any) -> str:
    if value is None:
        return "null"
    # bool before int: True is an int in Python
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return normalize_number(value)
    if isinstance(value, str):
        return _serialize_string(value)
    if isinstance(value, Mapping):
        return _serialize_mapping(value)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_serialize_value(item) for item in value) + "]"
    raise CanonicalizeError(
        f"Cannot canonicalize value of type {type(value).__name__}: {value!r}"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def canonicalize(value: Any) -> str:
    """Return the canonical JSON string for ``value``.

    Traversal is read-only; the input is never modified.
    """
    return _serialize_value(value)


def _sha256_hex(canonical: str) -> str:
    try:
        data = canonical.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise CanonicalizeError(f"Value is not valid UTF-8 text: {exc}") from exc
    return hashlib.sha256(data).hexdigest()


def compute_hash(value: Any) -> str:
    """SHA-256 hex digest (64 chars) of the canonical form of ``value``."""
    return _sha256_hex(canonicalize(value))


def strip_ephemeral_fields(payload: Any) -> dict[str, Any]:
    """Return a copy of an action payload without server-assigned fields.

    Accepts a mapping or any object exposing ``to_payload()`` (ActionRequest,
    Action).
    """
    if hasattr(payload, "to_payload"):
        payload = payload.to_payload()
    if not isinstance(payload, Mapping):
        raise CanonicalizeError(
            f"Action payload must be a mapping, got {type(payload).__name__}"
        )
    return {
        key: value
        for key, value in payload.items()
        if not (isinstance(key, str) and (key in ACTION_EXCLUDE_FIELDS or key.startswith("_")))
    }


def canonicalize_action_payload(payload: Any) -> str:
    """Canonical string of an action payload after dropping ephemeral fields."""
    return canonicalize(strip_ephemeral_fields(payload))


def compute_request_hash(payload: Any) -> str:
    """SHA-256 of the reduced action payload, matching the server's request_hash."""
    return _sha256_hex(canonicalize_action_payload(payload))


def verify_request_hash(payload: Any, expected_hash: str) -> bool:
    """True if ``payload`` hashes to ``expected_hash``."""
    return compute_request_hash(payload) == expected_hash
