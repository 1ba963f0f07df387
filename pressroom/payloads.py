from __future__ import annotations

from typing import Any, Dict, List, Optional

from flask import jsonify, request

from .datastore import MAX_SQLITE_INTEGER
from .errors import ValidationError


MAX_ID_LIST_LENGTH = 100


def success(data: Any = None):
    return jsonify({"code": 200, "message": "success", "data": data})


def json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object")
    return body


def require_str(
    body: Dict[str, Any],
    key: str,
    *,
    min_length: int = 1,
    max_length: Optional[int] = None,
) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{key} is required")
    if len(value) < min_length:
        raise ValidationError(f"{key} must be at least {min_length} characters")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value


def optional_str(body: Dict[str, Any], key: str, *, max_length: Optional[int] = None) -> Optional[str]:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def require_int(body: Dict[str, Any], key: str, *, choices: Optional[tuple] = None) -> int:
    value = body.get(key)
    if not _is_int(value):
        raise ValidationError(f"{key} is required and must be an integer")
    if choices is not None and value not in choices:
        raise ValidationError(f"{key} must be one of {', '.join(str(c) for c in choices)}")
    return value


def require_id(body: Dict[str, Any], key: str) -> int:
    value = require_int(body, key)
    if not 1 <= value <= MAX_SQLITE_INTEGER:
        raise ValidationError(f"{key} must be a positive integer")
    return value


def optional_id_list(body: Dict[str, Any], key: str) -> List[int]:
    value = body.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(_is_int(item) and 1 <= item <= MAX_SQLITE_INTEGER for item in value):
        raise ValidationError(f"{key} must be a list of positive integers")
    if len(value) > MAX_ID_LIST_LENGTH:
        raise ValidationError(f"{key} accepts at most {MAX_ID_LIST_LENGTH} ids")
    return value


def query_int(name: str, default: int, *, minimum: int = 1, maximum: int = MAX_SQLITE_INTEGER) -> int:
    raw = request.args.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc
    return min(max(value, minimum), maximum)
