# validation.py
from __future__ import annotations

import math
import re
from typing import Any, Dict, Optional

from analytics import PERIOD_DAYS
from emissions import TRANSPORT_TYPES

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")

# Profile fields a client may write; totals, streak and badges are derived
PROFILE_FIELDS = ("name", "email", "department", "college", "bio", "phone", "profileImage")

POST_TYPES = ("achievement", "milestone", "general")

MAX_CONTENT = 1000
MAX_REQUEST_ID = 64


class ValidationError(ValueError):
    """Field-level input errors, reported before any database call."""

    def __init__(self, fields: Dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in fields.items()))
        self.fields = fields


def _number(value: Any, field: str, errors: Dict[str, str]) -> Optional[float]:
    if isinstance(value, bool):
        errors[field] = f"{field} must be a number"
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        errors[field] = f"{field} must be a number"
        return None
    if not math.isfinite(num):
        errors[field] = f"{field} must be a finite number"
        return None
    if num < 0:
        errors[field] = f"{field} cannot be negative"
        return None
    return num


def validate_commute(payload: Dict[str, Any]) -> Dict[str, Any]:
    errors: Dict[str, str] = {}

    transport_type = payload.get("transportType")
    if not transport_type:
        errors["transportType"] = "transportType is required"
    elif transport_type not in TRANSPORT_TYPES:
        errors["transportType"] = f"transportType must be one of: {', '.join(TRANSPORT_TYPES)}"

    distance = None
    if payload.get("distance") in (None, ""):
        errors["distance"] = "distance is required"
    else:
        distance = _number(payload["distance"], "distance", errors)

    duration = None
    if payload.get("duration") not in (None, ""):
        duration = _number(payload["duration"], "duration", errors)

    request_id = payload.get("requestId")
    if request_id is not None:
        if not isinstance(request_id, str) or not request_id.strip():
            errors["requestId"] = "requestId must be a non-empty string"
        elif len(request_id) > MAX_REQUEST_ID:
            errors["requestId"] = f"requestId must be at most {MAX_REQUEST_ID} characters"

    if errors:
        raise ValidationError(errors)

    out: Dict[str, Any] = {"transportType": transport_type, "distance": distance}
    if duration is not None:
        out["duration"] = duration
    if request_id is not None:
        out["requestId"] = request_id.strip()
    return out


def validate_profile(payload: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    """
    Check profile fields. On create (`partial=False`) a name and email are
    required; on update only the fields present are checked.
    """
    errors: Dict[str, str] = {}

    unknown = sorted(set(payload) - set(PROFILE_FIELDS) - ({"id"} if not partial else set()))
    for field in unknown:
        errors[field] = f"{field} cannot be set"

    out: Dict[str, Any] = {}
    for field in PROFILE_FIELDS:
        if field not in payload:
            continue
        value = payload[field]
        if not isinstance(value, str):
            errors[field] = f"{field} must be a string"
            continue
        out[field] = value.strip()

    if not partial:
        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id.strip():
            errors["id"] = "id is required"
        else:
            out["id"] = user_id.strip()
        if not out.get("name"):
            errors.setdefault("name", "Name is required")
        if not out.get("email"):
            errors.setdefault("email", "Email is required")
    elif "name" in out and not out["name"]:
        errors.setdefault("name", "Name is required")

    if out.get("email") and not EMAIL_RE.fullmatch(out["email"]):
        errors.setdefault("email", "Please enter a valid email")
    elif partial and "email" in out and not out["email"]:
        errors.setdefault("email", "Email is required")

    if partial and not out and not errors:
        errors["body"] = "No profile fields to update"

    if errors:
        raise ValidationError(errors)
    return out


def _content(payload: Dict[str, Any], errors: Dict[str, str]) -> str:
    content = payload.get("content")
    if not isinstance(content, str) or not content.strip():
        errors["content"] = "content is required"
        return ""
    if len(content) > MAX_CONTENT:
        errors["content"] = f"content must be at most {MAX_CONTENT} characters"
    return content.strip()


def validate_post(payload: Dict[str, Any]) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    content = _content(payload, errors)
    post_type = payload.get("type", "general")
    if post_type not in POST_TYPES:
        errors["type"] = f"type must be one of: {', '.join(POST_TYPES)}"
    if errors:
        raise ValidationError(errors)
    return {"content": content, "type": post_type}


def validate_comment(payload: Dict[str, Any]) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    content = _content(payload, errors)
    user_id = payload.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        errors["userId"] = "userId is required"
    if errors:
        raise ValidationError(errors)
    return {"content": content, "userId": user_id.strip()}


def parse_limit(value: Optional[str], default: int, maximum: int) -> int:
    if value in (None, ""):
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError({"limit": "limit must be an integer"}) from None
    if limit < 1 or limit > maximum:
        raise ValidationError({"limit": f"limit must be between 1 and {maximum}"})
    return limit


def parse_period(value: Optional[str]) -> str:
    period = value or "week"
    if period not in PERIOD_DAYS:
        raise ValidationError({"period": f"period must be one of: {', '.join(PERIOD_DAYS)}"})
    return period
