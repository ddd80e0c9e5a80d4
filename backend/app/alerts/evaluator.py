"""
evaluator.py — Pure violation check of one reading against one threshold.

Both channels are compared independently with strict inequality; a value
exactly at its limit is compliant. Malformed numbers (None, NaN, ±inf,
unparsable strings) are coerced to 0 so evaluation never raises.
"""

from __future__ import annotations

import math
from typing import Any, List

from backend.app.alerts.models import Reading, Severity, ThresholdConfig, Verdict


def _coerce(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def evaluate(reading: Reading, config: ThresholdConfig) -> Verdict:
    near = _coerce(reading.near_value)
    far = _coerce(reading.far_value)
    near_limit = _coerce(config.near_limit)
    far_limit = _coerce(config.far_limit)

    near_exceeded = near > near_limit
    far_exceeded = far > far_limit

    reasons: List[str] = []
    if near_exceeded:
        reasons.append(f"near reading {near:g} exceeds limit {near_limit:g}")
    if far_exceeded:
        reasons.append(f"far reading {far:g} exceeds limit {far_limit:g}")

    is_violation = near_exceeded or far_exceeded
    return Verdict(
        is_violation=is_violation,
        severity=config.severity if is_violation else Severity.LOW,
        matched_threshold=config,
        reasons=reasons,
        near_exceeded=near_exceeded,
        far_exceeded=far_exceeded,
    )
