"""Request parsing shared by the JSON blueprints."""
from datetime import datetime

from flask import request

from shared.errors import ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def require_int(data: dict, key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{key}' must be an integer")
    return value


def optional_int(data: dict, key: str):
    if data.get(key) is None:
        return None
    return require_int(data, key)


def require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' is required")
    return value.strip()


def require_datetime(data: dict, key: str) -> datetime:
    try:
        return datetime.fromisoformat(require_str(data, key))
    except ValueError:
        raise ValidationError(f"'{key}' must be an ISO 8601 datetime")


def query_int(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"'{name}' must be an integer")
