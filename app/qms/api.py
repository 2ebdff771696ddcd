"""
JSON response envelope and request helpers shared by every module blueprint.

    {"success": true, "data": ..., "pagination": {"page", "limit", "total", "total_pages"}}
    {"success": false, "error": {"code": "...", "message": "..."}}
"""
from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any

from flask import current_app, g, jsonify, request

from app.qms.errors import AuthenticationError, QMSError, ValidationError
from app.qms.models import User


def ok(data: Any = None, *, status: int = 200, pagination: dict[str, int] | None = None):
    body: dict[str, Any] = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination
    return jsonify(body), status


def error_response(err: QMSError):
    return jsonify({"success": False, "error": err.to_dict()}), err.status_code


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise AuthenticationError()
    return u


def json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def json_str(payload: dict[str, Any], key: str, *, strip: bool = True) -> str:
    """String field of a JSON body; missing or null reads as ""."""
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string.")
    return value.strip() if strip else value


def json_bool(payload: dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false.")
    return value


def page_args() -> tuple[int, int]:
    """Read ?page=&limit= with configured defaults and bounds."""
    default_limit = int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))
    max_limit = int(current_app.config.get("MAX_PAGE_SIZE", 100))
    try:
        page = int(request.args.get("page") or 1)
        limit = int(request.args.get("limit") or default_limit)
    except ValueError:
        raise ValidationError("page and limit must be integers.")
    if page < 1:
        page = 1
    limit = max(1, min(limit, max_limit))
    return page, limit


def pagination_meta(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def arg_int(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.")


def parse_date(value: Any, field: str = "date") -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}. Expected YYYY-MM-DD.")


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def user_ref(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }
