"""
Async SQLAlchemy store implementations.

Each operation opens its own short-lived session, so readers and writers
never hold locks across requests. SQLAlchemy errors are translated into
PersistenceError here; nothing above this module sees driver exceptions.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.alerts.models import (
    AckResult,
    AlertRecord,
    AlertType,
    Reading,
    ReadingOrigin,
    Severity,
    Subscriber,
    SubscriberPreference,
    ThresholdConfig,
)
from backend.app.core.errors import PersistenceError
from backend.app.storage.tables import (
    AlertRow,
    PreferenceRow,
    ReadingRow,
    SubscriberRow,
    ThresholdRow,
)

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ domain mapping
# ═══════════════════════════════════════════════════════════════════════════

def _threshold_from_row(row: ThresholdRow) -> ThresholdConfig:
    return ThresholdConfig(
        block=row.block,
        plant=row.plant,
        area=row.area,
        near_limit=row.near_limit,
        far_limit=row.far_limit,
        severity=Severity.parse(row.severity),
        is_active=row.is_active,
        updated_at=_as_utc(row.updated_at),
    )


def _alert_from_row(row: AlertRow) -> AlertRecord:
    return AlertRecord(
        alert_id=row.alert_id,
        alert_type=AlertType(row.alert_type),
        severity=Severity.parse(row.severity),
        block=row.block,
        plant=row.plant,
        area=row.area,
        submitter_id=row.submitter_id,
        message=row.message,
        near_reading=row.near_reading,
        far_reading=row.far_reading,
        near_threshold=row.near_threshold,
        far_threshold=row.far_threshold,
        acknowledged=row.acknowledged,
        acknowledged_by=row.acknowledged_by,
        created_at=_as_utc(row.created_at),
        acknowledged_at=_as_utc(row.acknowledged_at),
    )


def _subscriber_from_row(row: SubscriberRow) -> Subscriber:
    return Subscriber(
        subscriber_id=row.subscriber_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        is_admin=row.is_admin,
        is_active=row.is_active,
    )


def _preference_from_row(row: PreferenceRow) -> SubscriberPreference:
    severities = set()
    for label in row.severities or []:
        try:
            severities.add(Severity.parse(label))
        except ValueError:
            logger.warning(
                "Ignoring unknown severity '%s' in preferences of %s",
                label, row.subscriber_id,
            )
    return SubscriberPreference(
        subscriber_id=row.subscriber_id,
        email_enabled=row.email_enabled,
        sms_enabled=row.sms_enabled,
        severities=frozenset(severities),
        contact_email=row.contact_email,
        contact_phone=row.contact_phone,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class SqlThresholdStore:

    def __init__(self, session_factory: SessionFactory) -> None:
        self._sessions = session_factory

    async def find_active(self, block: str, plant: str, area: str) -> List[ThresholdConfig]:
        stmt = (
            select(ThresholdRow)
            .where(
                ThresholdRow.block == block,
                ThresholdRow.plant == plant,
                ThresholdRow.area == area,
                ThresholdRow.is_active.is_(True),
            )
        )
        return await self._fetch(stmt, "threshold_find")

    async def list_active_for_plant(self, block: str, plant: str) -> List[ThresholdConfig]:
        stmt = (
            select(ThresholdRow)
            .where(
                ThresholdRow.block == block,
                ThresholdRow.plant == plant,
                ThresholdRow.is_active.is_(True),
            )
            .order_by(ThresholdRow.area)
        )
        return await self._fetch(stmt, "threshold_list_plant")

    async def list_all(self) -> List[ThresholdConfig]:
        stmt = select(ThresholdRow).order_by(
            ThresholdRow.block, ThresholdRow.plant, ThresholdRow.area,
        )
        return await self._fetch(stmt, "threshold_list")

    async def _fetch(self, stmt, operation: str) -> List[ThresholdConfig]:
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(operation, str(exc)) from exc
        return [_threshold_from_row(r) for r in rows]

    async def upsert(self, config: ThresholdConfig) -> ThresholdConfig:
        # One retry covers the race where two admins insert the same identity
        for attempt in range(2):
            try:
                async with self._sessions() as session:
                    async with session.begin():
                        row = (await session.execute(
                            select(ThresholdRow).where(
                                ThresholdRow.block == config.block,
                                ThresholdRow.plant == config.plant,
                                ThresholdRow.area == config.area,
                            )
                        )).scalar_one_or_none()
                        if row is None:
                            row = ThresholdRow(
                                block=config.block,
                                plant=config.plant,
                                area=config.area,
                            )
                            session.add(row)
                        row.near_limit = config.near_limit
                        row.far_limit = config.far_limit
                        row.severity = config.severity.value
                        row.is_active = config.is_active
                        row.updated_at = config.updated_at
                    return _threshold_from_row(row)
            except IntegrityError as exc:
                if attempt == 0:
                    logger.info("Concurrent threshold insert for %s, retrying", config.identity)
                    continue
                raise PersistenceError("threshold_upsert", str(exc)) from exc
            except SQLAlchemyError as exc:
                raise PersistenceError("threshold_upsert", str(exc)) from exc
        raise PersistenceError("threshold_upsert", "retry exhausted")

    async def set_active(
        self, block: str, plant: str, area: str, is_active: bool,
    ) -> Optional[ThresholdConfig]:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    row = (await session.execute(
                        select(ThresholdRow).where(
                            ThresholdRow.block == block,
                            ThresholdRow.plant == plant,
                            ThresholdRow.area == area,
                        )
                    )).scalar_one_or_none()
                    if row is None:
                        return None
                    row.is_active = is_active
                    row.updated_at = datetime.now(timezone.utc)
                return _threshold_from_row(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("threshold_set_active", str(exc)) from exc


class SqlReadingStore:

    def __init__(self, session_factory: SessionFactory) -> None:
        self._sessions = session_factory

    async def add(self, reading: Reading) -> Reading:
        row = ReadingRow(
            reading_id=reading.reading_id,
            submitter_id=reading.submitter_id,
            submitter_name=reading.submitter_name,
            block=reading.block,
            plant=reading.plant,
            area=reading.area,
            area_spec=reading.area_spec,
            near_value=reading.near_value,
            far_value=reading.far_value,
            effective_date=reading.effective_date,
            ingested_at=reading.ingested_at,
            origin=ReadingOrigin(reading.origin).value,
            source=reading.source,
        )
        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("reading_add", str(exc), reading_id=reading.reading_id) from exc
        return reading


class SqlAlertStore:

    def __init__(self, session_factory: SessionFactory) -> None:
        self._sessions = session_factory

    async def add(self, record: AlertRecord) -> AlertRecord:
        row = AlertRow(
            alert_id=record.alert_id,
            alert_type=record.alert_type.value,
            severity=record.severity.value,
            block=record.block,
            plant=record.plant,
            area=record.area,
            submitter_id=record.submitter_id,
            near_reading=record.near_reading,
            far_reading=record.far_reading,
            near_threshold=record.near_threshold,
            far_threshold=record.far_threshold,
            message=record.message,
            acknowledged=record.acknowledged,
            acknowledged_by=record.acknowledged_by,
            created_at=record.created_at,
            acknowledged_at=record.acknowledged_at,
        )
        try:
            async with self._sessions() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("alert_add", str(exc), alert_id=record.alert_id) from exc
        return record

    async def get(self, alert_id: str) -> Optional[AlertRecord]:
        try:
            async with self._sessions() as session:
                row = await session.get(AlertRow, alert_id)
        except SQLAlchemyError as exc:
            raise PersistenceError("alert_get", str(exc), alert_id=alert_id) from exc
        return _alert_from_row(row) if row else None

    async def compare_and_acknowledge(
        self, alert_id: str, acknowledged_by: str, acknowledged_at: datetime,
    ) -> AckResult:
        stmt = (
            update(AlertRow)
            .where(AlertRow.alert_id == alert_id, AlertRow.acknowledged.is_(False))
            .values(
                acknowledged=True,
                acknowledged_by=acknowledged_by,
                acknowledged_at=acknowledged_at,
            )
        )
        try:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    if result.rowcount == 1:
                        return AckResult.ACKNOWLEDGED
                    exists = await session.get(AlertRow, alert_id)
        except SQLAlchemyError as exc:
            raise PersistenceError("alert_acknowledge", str(exc), alert_id=alert_id) from exc
        return AckResult.ALREADY_ACKNOWLEDGED if exists else AckResult.NOT_FOUND

    async def history(
        self,
        *,
        severity: Optional[Severity] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = 50,
    ) -> List[AlertRecord]:
        stmt = select(AlertRow)
        if severity is not None:
            stmt = stmt.where(AlertRow.severity == severity.value)
        if alert_type is not None:
            stmt = stmt.where(AlertRow.alert_type == alert_type.value)
        stmt = stmt.order_by(AlertRow.created_at.desc()).limit(limit)
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("alert_history", str(exc)) from exc
        return [_alert_from_row(r) for r in rows]


class SqlSubscriberRegistry:

    def __init__(self, session_factory: SessionFactory) -> None:
        self._sessions = session_factory

    async def list_active(self) -> List[Subscriber]:
        stmt = (
            select(SubscriberRow)
            .where(SubscriberRow.is_active.is_(True))
            .order_by(SubscriberRow.subscriber_id)
        )
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("subscriber_list", str(exc)) from exc
        return [_subscriber_from_row(r) for r in rows]

    async def get(self, subscriber_id: str) -> Optional[Subscriber]:
        try:
            async with self._sessions() as session:
                row = await session.get(SubscriberRow, subscriber_id)
        except SQLAlchemyError as exc:
            raise PersistenceError("subscriber_get", str(exc)) from exc
        return _subscriber_from_row(row) if row else None

    async def get_admin(self) -> Optional[Subscriber]:
        stmt = (
            select(SubscriberRow)
            .where(SubscriberRow.is_admin.is_(True))
            .order_by(SubscriberRow.subscriber_id)
            .limit(1)
        )
        try:
            async with self._sessions() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError("subscriber_admin", str(exc)) from exc
        return _subscriber_from_row(row) if row else None

    async def get_preferences(
        self, subscriber_ids: Iterable[str],
    ) -> Dict[str, SubscriberPreference]:
        ids = list(subscriber_ids)
        if not ids:
            return {}
        stmt = select(PreferenceRow).where(PreferenceRow.subscriber_id.in_(ids))
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError("preference_get", str(exc)) from exc
        return {r.subscriber_id: _preference_from_row(r) for r in rows}

    async def register(self, subscriber: Subscriber) -> Subscriber:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    row = await session.get(SubscriberRow, subscriber.subscriber_id)
                    if row is None:
                        row = SubscriberRow(subscriber_id=subscriber.subscriber_id)
                        session.add(row)
                    row.name = subscriber.name
                    row.email = subscriber.email
                    row.phone = subscriber.phone
                    row.is_admin = subscriber.is_admin
                    row.is_active = subscriber.is_active

                    pref = await session.get(PreferenceRow, subscriber.subscriber_id)
                    if pref is None:
                        defaults = SubscriberPreference(subscriber_id=subscriber.subscriber_id)
                        session.add(PreferenceRow(
                            subscriber_id=defaults.subscriber_id,
                            email_enabled=defaults.email_enabled,
                            sms_enabled=defaults.sms_enabled,
                            severities=sorted(s.value for s in defaults.severities),
                        ))
        except SQLAlchemyError as exc:
            raise PersistenceError("subscriber_register", str(exc)) from exc
        return subscriber

    async def upsert_preference(self, preference: SubscriberPreference) -> SubscriberPreference:
        try:
            async with self._sessions() as session:
                async with session.begin():
                    row = await session.get(PreferenceRow, preference.subscriber_id)
                    if row is None:
                        row = PreferenceRow(subscriber_id=preference.subscriber_id)
                        session.add(row)
                    row.email_enabled = preference.email_enabled
                    row.sms_enabled = preference.sms_enabled
                    row.severities = sorted(s.value for s in preference.severities)
                    row.contact_email = preference.contact_email
                    row.contact_phone = preference.contact_phone
        except SQLAlchemyError as exc:
            raise PersistenceError("preference_upsert", str(exc)) from exc
        return preference
