"""
Pydantic schemas for the alert-engine API.

Separated from the route handlers so they are reusable across the codebase
(routers, the sensor-feed trigger, tests). Request models accept the legacy
field names older clients still send (emp, near, onem, areaspec,
alert_level, ...) through AliasChoices; everything past this layer uses the
canonical names only.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from backend.app.alerts.models import Reading, ReadingOrigin, Severity, ThresholdConfig
from backend.app.core.errors import ValidationError


def _stripped(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------

class ReadingCreate(BaseModel):
    """Request body for POST /api/v1/readings."""
    model_config = ConfigDict(populate_by_name=True)

    submitter_id: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("submitter_id", "emp", "employee_id"),
        examples=["E1001"],
    )
    submitter_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("submitter_name", "name"),
        examples=["Asha"],
    )
    block: str = Field(..., min_length=1, examples=["B1"])
    plant: str = Field(..., min_length=1, examples=["P1"])
    area: str = Field(..., min_length=1, examples=["A1"])
    area_spec: Optional[str] = Field(
        None, validation_alias=AliasChoices("area_spec", "areaspec", "areaSpec"),
        examples=["Reactor hall east"],
    )
    near_value: float = Field(
        ..., ge=0, allow_inf_nan=False,
        validation_alias=AliasChoices("near_value", "near", "nearReading"),
        description="Near-channel reading",
        examples=[12.5],
    )
    far_value: float = Field(
        ..., ge=0, allow_inf_nan=False,
        validation_alias=AliasChoices("far_value", "far", "onem", "oneMeterReading"),
        description="Far (one-metre) channel reading",
        examples=[4.2],
    )
    effective_date: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("effective_date", "currentDate", "date"),
    )

    @field_validator("submitter_id", "block", "plant", "area")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def to_reading(self) -> Reading:
        effective = self.effective_date or datetime.now(timezone.utc)
        if effective.tzinfo is None:
            effective = effective.replace(tzinfo=timezone.utc)
        return Reading(
            submitter_id=self.submitter_id,
            submitter_name=_stripped(self.submitter_name),
            block=self.block,
            plant=self.plant,
            area=self.area,
            area_spec=_stripped(self.area_spec),
            near_value=self.near_value,
            far_value=self.far_value,
            effective_date=effective,
            origin=ReadingOrigin.MANUAL,
        )


class ReadingResponse(BaseModel):
    success: bool = True
    reading_id: str
    violation: bool
    severity: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    alert_id: Optional[str] = None
    alert_recorded: bool = False
    threshold_tier: Optional[str] = None
    notifications_sent: int = 0
    notification_failures: int = 0


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

class ThresholdUpsert(BaseModel):
    """Request body for PUT /api/v1/thresholds."""
    model_config = ConfigDict(populate_by_name=True)

    block: str = Field(..., min_length=1, examples=["B1"])
    plant: str = Field(..., min_length=1, examples=["P1"])
    area: str = Field(
        ..., min_length=1, examples=["A1"],
        description="Area name, or ANY for a plant-wide wildcard",
    )
    near_limit: float = Field(
        ..., ge=0, allow_inf_nan=False,
        validation_alias=AliasChoices("near_limit", "near_threshold", "nearThreshold", "near"),
        examples=[20.0],
    )
    far_limit: float = Field(
        ..., ge=0, allow_inf_nan=False,
        validation_alias=AliasChoices("far_limit", "onem_threshold", "onemThreshold", "onem", "far"),
        examples=[30.0],
    )
    severity: str = Field(
        "MEDIUM", validation_alias=AliasChoices("severity", "alert_level", "alertLevel"),
        examples=["HIGH"],
    )
    is_active: bool = Field(True, validation_alias=AliasChoices("is_active", "isActive"))

    @field_validator("block", "plant", "area")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def to_config(self) -> ThresholdConfig:
        try:
            severity = Severity.parse(self.severity)
        except ValueError as exc:
            raise ValidationError(str(exc), field="severity") from None
        return ThresholdConfig(
            block=self.block,
            plant=self.plant,
            area=self.area,
            near_limit=self.near_limit,
            far_limit=self.far_limit,
            severity=severity,
            is_active=self.is_active,
        )


class ThresholdActivation(BaseModel):
    """Request body for PATCH /api/v1/thresholds/active."""
    model_config = ConfigDict(populate_by_name=True)

    block: str = Field(..., min_length=1)
    plant: str = Field(..., min_length=1)
    area: str = Field(..., min_length=1)
    is_active: bool = Field(..., validation_alias=AliasChoices("is_active", "isActive"))


class ThresholdImport(BaseModel):
    """Loosely-shaped legacy threshold documents; normalised server-side."""
    thresholds: List[Dict[str, Any]] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class ManualAlertCreate(BaseModel):
    """Request body for POST /api/v1/alerts/manual. Validated by the service."""
    model_config = ConfigDict(populate_by_name=True)

    severity: str = Field(
        ..., validation_alias=AliasChoices("severity", "alert_level", "alertLevel"),
        examples=["CRITICAL"],
    )
    block: str = Field(..., examples=["B2"])
    plant: str = Field(..., examples=["P2"])
    area: str = Field(..., examples=["Lobby"])
    message: str = Field(..., examples=["Evacuation drill"])
    submitter_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("submitter_id", "emp"),
    )


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(..., examples=["E2001"])


class EmailTestRequest(BaseModel):
    """Optional body for POST /api/v1/alerts/test-email; defaults to SMTP_USER."""
    to: Optional[str] = Field(None, examples=["ops@plant.example"])


# ---------------------------------------------------------------------------
# Notification preferences
# ---------------------------------------------------------------------------

class PreferenceUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    model_config = ConfigDict(populate_by_name=True)

    email_enabled: Optional[bool] = Field(
        None, validation_alias=AliasChoices("email_enabled", "email_notifications",
                                            "emailNotifications"),
    )
    sms_enabled: Optional[bool] = Field(
        None, validation_alias=AliasChoices("sms_enabled", "sms_notifications",
                                            "smsNotifications"),
    )
    severities: Optional[List[str]] = Field(
        None, validation_alias=AliasChoices("severities", "alert_levels", "alertLevels"),
        examples=[["HIGH", "CRITICAL"]],
    )
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
