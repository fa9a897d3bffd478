"""Tolerant field extraction from the JSON documents returned by the API."""

from __future__ import annotations

import json
import math
import re
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

_MIN_INT64 = -(2**63)
_MAX_INT64 = 2**63 - 1
_INTEGER = re.compile(r"[+-]?[0-9]+")
_WHITESPACE = " \t\n\r"
_LIST_KEYS = ("results", "resultados", "items", "data")
_NESTED_TEXT_KEYS = ("description", "name", "code", "id")
_NESTED_ID_KEYS = ("id", "resourceId", "supplyId")
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

Body = Union[bytes, bytearray, str]


class ResponseFormatError(ValueError):
    """Raised when an API response does not have the expected shape."""


class _JsonFloat(float):
    """A JSON number written with a fraction or exponent; keeps its literal text."""

    text: str

    def __new__(cls, text: str) -> "_JsonFloat":
        obj = super().__new__(cls, text)
        obj.text = text
        return obj


def _reject_constant(name: str) -> Any:
    raise ValueError(f"valor JSON invalido: {name}")


def _decode_first(body: Body) -> Any:
    text = body.decode("utf-8", errors="replace") if isinstance(body, (bytes, bytearray)) else body
    start = len(text) - len(text.lstrip(_WHITESPACE))
    decoder = json.JSONDecoder(parse_float=_JsonFloat, parse_constant=_reject_constant)
    try:
        value, _ = decoder.raw_decode(text, start)
    except ValueError as exc:
        raise ResponseFormatError(f"resposta da API com JSON invalido: {exc}") from exc
    return value


def decode_object_list(body: Body) -> list[dict]:
    """Decode a JSON array of objects, or an object wrapping one under a known key."""
    data = _decode_first(body)
    if isinstance(data, list):
        raw_items = data
    elif isinstance(data, dict):
        raw_items = next(
            (data[key] for key in _LIST_KEYS if isinstance(data.get(key), list)), None
        )
        if raw_items is None:
            raise ResponseFormatError("resposta da API sem lista de resultados")
    else:
        raise ResponseFormatError("resposta da API em formato inesperado")

    if not all(isinstance(item, dict) for item in raw_items):
        raise ResponseFormatError("item da resposta da API em formato inesperado")
    return list(raw_items)


def decode_object(body: Body) -> dict:
    """Decode a single JSON object."""
    data = _decode_first(body)
    if not isinstance(data, dict):
        raise ResponseFormatError("resposta da API em formato inesperado")
    return data


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def value_to_string(value: Any) -> str:
    """Text of a string or number value; empty for anything else."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return ""
    if isinstance(value, _JsonFloat):
        return value.text
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    return ""


def get_string(obj: Mapping[str, Any], *keys: str) -> str:
    """First non-empty text among the keys; nested objects yield their description."""
    for key in keys:
        value = obj.get(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            text = get_string(value, *_NESTED_TEXT_KEYS)
            if text:
                return text
        text = value_to_string(value)
        if text:
            return text
    return ""


def _parse_int_text(text: str) -> Optional[int]:
    text = text.strip()
    if not _INTEGER.fullmatch(text):
        return None
    parsed = int(text)
    return parsed if _MIN_INT64 <= parsed <= _MAX_INT64 else None


def get_int(obj: Mapping[str, Any], *keys: str) -> Optional[int]:
    """First value among the keys that reads as an integer, or None."""
    for key in keys:
        value = obj.get(key)
        if value is None or isinstance(value, (bool, _JsonFloat)):
            continue
        if isinstance(value, int):
            if _MIN_INT64 <= value <= _MAX_INT64:
                return value
        elif isinstance(value, float):
            if math.isfinite(value):
                return int(value)
        elif isinstance(value, str):
            parsed = _parse_int_text(value)
            if parsed is not None:
                return parsed
    return None


def _parse_float_text(text: str) -> Optional[float]:
    text = text.strip().replace(",", ".")
    if "_" in text:
        return None
    try:
        parsed = float(text)
    except ValueError:
        return None
    if math.isinf(parsed) and text.lstrip("+-").lower() not in ("inf", "infinity"):
        return None
    return parsed


def get_float(obj: Mapping[str, Any], *keys: str) -> Optional[float]:
    """First value among the keys that reads as a number (comma decimals allowed), or None."""
    for key in keys:
        value = obj.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            parsed = _parse_float_text(value)
            if parsed is not None:
                return parsed
    return None


def get_bool(obj: Mapping[str, Any], *keys: str) -> Optional[bool]:
    """First value among the keys that reads as a boolean, or None."""
    for key in keys:
        value = obj.get(key)
        if value is None or isinstance(value, _JsonFloat):
            continue
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text in _TRUE_WORDS:
                return True
            if text in _FALSE_WORDS:
                return False
        elif isinstance(value, int):
            if _MIN_INT64 <= value <= _MAX_INT64:
                return value != 0
        elif isinstance(value, float):
            return value != 0
    return None


def get_int_flexible(obj: Mapping[str, Any], *keys: str) -> Optional[int]:
    """Like get_int, but also looks for an ID inside nested objects under the keys."""
    value = get_int(obj, *keys)
    if value is not None:
        return value
    for key in keys:
        nested = obj.get(key)
        if isinstance(nested, Mapping):
            value = get_int(nested, *_NESTED_ID_KEYS)
            if value is not None:
                return value
    return None