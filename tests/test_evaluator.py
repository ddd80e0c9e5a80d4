"""
test_evaluator.py — Tests for the pure reading-vs-threshold check.

Run with:
    pytest tests/test_evaluator.py -v
"""

from __future__ import annotations

import math

import pytest

from backend.app.alerts.evaluator import evaluate
from backend.app.alerts.models import Reading, Severity

from conftest import make_threshold


def _make_reading(near=10.0, far=10.0) -> Reading:
    return Reading(
        submitter_id="E1",
        block="B1",
        plant="P1",
        area="A1",
        near_value=near,
        far_value=far,
    )


class TestStrictInequality:

    def test_equal_to_limit_is_compliant(self):
        verdict = evaluate(_make_reading(near=20, far=30), make_threshold(near=20, far=30))
        assert verdict.is_violation is False
        assert verdict.severity == Severity.LOW
        assert verdict.reasons == []

    def test_just_above_limit_violates(self):
        verdict = evaluate(_make_reading(near=20.001, far=0), make_threshold(near=20, far=30))
        assert verdict.is_violation is True
        assert verdict.near_exceeded is True
        assert verdict.far_exceeded is False

    def test_zero_limits_and_zero_readings(self):
        verdict = evaluate(_make_reading(near=0, far=0), make_threshold(near=0, far=0))
        assert verdict.is_violation is False


class TestChannels:

    def test_near_only(self):
        verdict = evaluate(_make_reading(near=25, far=5), make_threshold(near=20, far=30))
        assert verdict.reasons == ["near reading 25 exceeds limit 20"]

    def test_far_only(self):
        verdict = evaluate(_make_reading(near=5, far=35), make_threshold(near=20, far=30))
        assert verdict.reasons == ["far reading 35 exceeds limit 30"]

    def test_both_channels_two_reasons_near_first(self):
        verdict = evaluate(_make_reading(near=25, far=35), make_threshold(near=20, far=30))
        assert len(verdict.reasons) == 2
        assert verdict.reasons[0].startswith("near")
        assert verdict.reasons[1].startswith("far")

    def test_severity_taken_from_config(self):
        config = make_threshold(near=1, far=1, severity=Severity.CRITICAL)
        verdict = evaluate(_make_reading(near=2, far=0), config)
        assert verdict.severity == Severity.CRITICAL
        assert verdict.matched_threshold is config


class TestMalformedValues:

    @pytest.mark.parametrize("bad", [None, math.nan, math.inf, -math.inf, "abc"])
    def test_bad_reading_treated_as_zero(self, bad):
        verdict = evaluate(_make_reading(near=bad, far=bad), make_threshold(near=0, far=0))
        assert verdict.is_violation is False

    def test_bad_limit_treated_as_zero(self):
        config = make_threshold(near=20, far=30)
        config.near_limit = None
        verdict = evaluate(_make_reading(near=0.5, far=0), config)
        assert verdict.is_violation is True
        assert verdict.reasons == ["near reading 0.5 exceeds limit 0"]

    def test_numeric_string_is_parsed(self):
        verdict = evaluate(_make_reading(near="21", far="0"), make_threshold(near=20, far=30))
        assert verdict.is_violation is True
