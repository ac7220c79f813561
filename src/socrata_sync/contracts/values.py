"""Closed value model for decoded upstream JSON.

Upstream bodies are decoded with ijson, which yields Decimal for non-integral
numbers and int for integral ones. Coercion pattern-matches over this union and
ends every dispatch with an explicit failure branch.
"""

import json
from decimal import Decimal

JSONScalar = None | bool | int | float | Decimal | str
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

# One transformed output row, keyed by target field name.
Record = dict[str, JSONValue]

_encode_text = json.JSONEncoder(ensure_ascii=False, allow_nan=False).encode


def _encode(value: JSONValue, parts: list[str]) -> None:
    match value:
        case dict():
            parts.append("{")
            for i, (key, item) in enumerate(value.items()):
                if i:
                    parts.append(",")
                parts.append(_encode_text(key))
                parts.append(":")
                _encode(item, parts)
            parts.append("}")
        case list():
            parts.append("[")
            for i, item in enumerate(value):
                if i:
                    parts.append(",")
                _encode(item, parts)
            parts.append("]")
        case Decimal():
            # The upstream numeral, digit for digit.
            if not value.is_finite():
                raise ValueError(f"Out of range decimal values are not JSON compliant: {value}")
            parts.append(str(value))
        case None | bool() | int() | float() | str():
            parts.append(_encode_text(value))
        case _:
            raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: JSONValue) -> str:
    """Compact JSON with non-ASCII characters kept verbatim.

    Decimals are written with their exact digits rather than through float.
    """
    parts: list[str] = []
    _encode(value, parts)
    return "".join(parts)
