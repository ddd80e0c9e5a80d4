"""
ORM tables for the alert engine.

═══════════════════════════════════════════════════════════════════════════
SCHEMA
═══════════════════════════════════════════════════════════════════════════

    threshold_configs          UNIQUE (block, plant, area)
    radiation_readings         INDEX (block, plant, area), INDEX ingested_at
    alert_records              INDEX created_at, INDEX severity, INDEX alert_type
    subscribers                PK subscriber_id
    notification_preferences   PK/FK subscriber_id → subscribers

Column names are canonical; legacy document shapes are translated in
storage.normalize before they reach these tables.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ThresholdRow(Base):
    __tablename__ = "threshold_configs"
    __table_args__ = (
        UniqueConstraint("block", "plant", "area", name="uq_threshold_location"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block: Mapped[str] = mapped_column(String(100), nullable=False)
    plant: Mapped[str] = mapped_column(String(100), nullable=False)
    area: Mapped[str] = mapped_column(String(200), nullable=False)
    near_limit: Mapped[float] = mapped_column(Float, nullable=False)
    far_limit: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False,
    )


class ReadingRow(Base):
    __tablename__ = "radiation_readings"
    __table_args__ = (
        Index("ix_readings_location", "block", "plant", "area"),
        Index("ix_readings_ingested_at", "ingested_at"),
    )

    reading_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    submitter_id: Mapped[str] = mapped_column(String(100), nullable=False)
    submitter_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    block: Mapped[str] = mapped_column(String(100), nullable=False)
    plant: Mapped[str] = mapped_column(String(100), nullable=False)
    area: Mapped[str] = mapped_column(String(200), nullable=False)
    area_spec: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    near_value: Mapped[float] = mapped_column(Float, nullable=False)
    far_value: Mapped[float] = mapped_column(Float, nullable=False)
    effective_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    origin: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    source: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class AlertRow(Base):
    __tablename__ = "alert_records"
    __table_args__ = (
        Index("ix_alert_records_created_at", "created_at"),
        Index("ix_alert_records_severity", "severity"),
        Index("ix_alert_records_alert_type", "alert_type"),
    )

    alert_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    alert_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    block: Mapped[str] = mapped_column(String(100), nullable=False)
    plant: Mapped[str] = mapped_column(String(100), nullable=False)
    area: Mapped[str] = mapped_column(String(200), nullable=False)
    submitter_id: Mapped[str] = mapped_column(String(100), nullable=False)
    near_reading: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    far_reading: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    near_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    far_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )


class SubscriberRow(Base):
    __tablename__ = "subscribers"

    subscriber_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False,
    )


class PreferenceRow(Base):
    __tablename__ = "notification_preferences"

    subscriber_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("subscribers.subscriber_id"), primary_key=True,
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    severities: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False,
    )
