"""
Legacy document normalisation.

Threshold documents have been written by several generations of admin
tooling, so the same field shows up under different names:

    near limit   near_limit | near_threshold | nearThreshold | near
    far limit    far_limit  | onem_threshold | onemThreshold | onem | far
    severity     severity   | alert_level    | alertLevel           (default MEDIUM)
    active flag  is_active  | isActive                              (default True)

Everything is mapped onto the canonical ThresholdConfig here, once, so the
resolver and the stores never deal with field-name fallbacks.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from backend.app.alerts.models import Severity, ThresholdConfig
from backend.app.core.errors import ValidationError

NEAR_LIMIT_KEYS = ("near_limit", "near_threshold", "nearThreshold", "near")
FAR_LIMIT_KEYS = ("far_limit", "onem_threshold", "onemThreshold", "onem", "far")
SEVERITY_KEYS = ("severity", "alert_level", "alertLevel")
ACTIVE_KEYS = ("is_active", "isActive")

_TRUTHY = {"1", "true", "yes", "on", "active"}
_FALSY = {"0", "false", "no", "off", "inactive"}


def first_present(doc: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """Value of the first key present with a non-None value, else None."""
    for key in keys:
        value = doc.get(key)
        if value is not None:
            return value
    return None


def parse_limit(value: Any, field: str) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{field} must be a finite number >= 0", field=field, value=str(value))
    return number


def parse_flag(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    return default


def _required_text(doc: Mapping[str, Any], key: str) -> str:
    value = doc.get(key)
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{key} must not be empty", field=key)
    return text


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def normalize_threshold(doc: Mapping[str, Any]) -> ThresholdConfig:
    """Map one loosely-shaped threshold document onto a ThresholdConfig.

    Raises ValidationError when the location is incomplete, a limit is
    missing or non-numeric, or the severity label is unknown.
    """
    severity_raw = first_present(doc, SEVERITY_KEYS)
    try:
        severity = Severity.parse(severity_raw) if severity_raw is not None else Severity.MEDIUM
    except ValueError as exc:
        raise ValidationError(str(exc), field="severity") from None

    return ThresholdConfig(
        block=_required_text(doc, "block"),
        plant=_required_text(doc, "plant"),
        area=_required_text(doc, "area"),
        near_limit=parse_limit(first_present(doc, NEAR_LIMIT_KEYS), "near_limit"),
        far_limit=parse_limit(first_present(doc, FAR_LIMIT_KEYS), "far_limit"),
        severity=severity,
        is_active=parse_flag(first_present(doc, ACTIVE_KEYS), default=True),
        updated_at=_parse_timestamp(first_present(doc, ("updated_at", "updatedAt"))),
    )


def normalize_thresholds(
    docs: Iterable[Mapping[str, Any]],
) -> Tuple[List[ThresholdConfig], List[Dict[str, Any]]]:
    """Normalise a batch; returns (configs, rejected) where rejected carries index + reason."""
    configs: List[ThresholdConfig] = []
    rejected: List[Dict[str, Any]] = []
    for index, doc in enumerate(docs):
        try:
            configs.append(normalize_threshold(doc))
        except ValidationError as exc:
            rejected.append({"index": index, "reason": exc.message, **exc.details})
    return configs, rejected
