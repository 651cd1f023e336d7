# =============================================================================
# Payload Decoding
# =============================================================================
# Search payload values are often stored as JSON-stringified JSON, e.g. the
# string '{"content": "..."}'. This module unwraps them into one of three
# explicit outcomes instead of letting parse errors escape:
#
#   Structured    - the nested JSON had a string "content" field
#   OpaqueString  - usable text, but not the nested shape
#   Invalid       - could not be parsed; carries the reason

import json
from dataclasses import dataclass
from typing import Any, List, Tuple, Union

from stemrag.errors import PayloadDecodeError


@dataclass(frozen=True)
class Structured:
    content: str

    @property
    def text(self):
        return self.content


@dataclass(frozen=True)
class OpaqueString:
    value: str

    @property
    def text(self):
        return self.value


@dataclass(frozen=True)
class Invalid:
    original: str
    reason: str

    @property
    def text(self):
        return None

    def as_error(self):
        return PayloadDecodeError(self.reason)


DecodedPayloadValue = Union[Structured, OpaqueString, Invalid]


def decode(value: Any) -> DecodedPayloadValue:
    """
    Decode one payload value.

    The value is serialized to canonical JSON and parsed back. When that
    yields a string, the string itself is parsed as JSON and its "content"
    field is used if present.

    Args:
        value: Any JSON value taken from a search result payload

    Returns:
        Structured, OpaqueString or Invalid. Never raises.

    Example:
        decode('{"content": "X"}')  -> Structured(content='X')
        decode({"content": "X"})    -> OpaqueString(value='{"content": "X"}')
        decode('plain text')        -> OpaqueString(value='plain text')
    """
    try:
        canonical = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        return Invalid(original=repr(value), reason=f"not serializable as JSON: {e}")

    try:
        parsed = json.loads(canonical)
    except ValueError as e:
        return Invalid(original=canonical, reason=f"not valid JSON: {e}")

    if not isinstance(parsed, str):
        return OpaqueString(canonical)

    try:
        inner = json.loads(parsed)
    except ValueError:
        return OpaqueString(parsed)

    if isinstance(inner, dict) and isinstance(inner.get('content'), str):
        return Structured(inner['content'])

    return OpaqueString(parsed)


def decode_payload(payload) -> List[Tuple[str, DecodedPayloadValue]]:
    """
    Decode every value of a payload mapping, keeping key order.

    Args:
        payload: Mapping from key to JSON value

    Returns:
        list: (key, decoded value) pairs
    """
    return [(key, decode(value)) for key, value in payload.items()]
