"""
AOG event store adapter.

The only module that talks to the session on behalf of the AOG services:
load by id, filtered queries, and the unit-of-work commit that translates
database failures into domain errors.

    OperationalError / DisconnectionError → StoreUnavailableError (503)
    StaleDataError (version_id_col clash) → ConcurrentModificationError (409)

Nothing here retries; callers re-read and try again.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from aog_tracker.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    StoreUnavailableError,
)
from aog_tracker.models import db
from aog_tracker.models.aog import CLEARING_STATUSES, AOGEvent
from aog_tracker.services import aircraft_registry

logger = logging.getLogger(__name__)


@dataclass
class EventFilter:
    """Query filter shared by the list endpoint and the analytics engine.

    Dates bound ``detected_at`` inclusively on both ends.
    """

    start_date: date | None = None
    end_date: date | None = None
    aircraft_id: int | None = None
    fleet_group: str | None = None
    status: str | None = None
    category: str | None = None
    active: bool | None = None


@contextmanager
def unit_of_work():
    """Commit on success; roll back and translate database failures otherwise."""
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale AOG event write rejected: %s", exc)
        raise ConcurrentModificationError(
            "AOG event was modified by another request; reload and retry",
        ) from exc
    except (OperationalError, DBAPIError) as exc:
        db.session.rollback()
        if isinstance(exc, OperationalError) or exc.connection_invalidated:
            logger.error("Event store unavailable: %s", exc)
            raise StoreUnavailableError("Event store unavailable") from exc
        raise
    except Exception:
        db.session.rollback()
        raise


def get_event(event_id: int) -> AOGEvent:
    try:
        event = db.session.get(AOGEvent, event_id)
    except OperationalError as exc:
        logger.error("Event store unavailable: %s", exc)
        raise StoreUnavailableError("Event store unavailable") from exc
    if not event:
        raise NotFoundError(resource="AOGEvent", resource_id=event_id)
    return event


def check_version(event: AOGEvent, expected_version: int | None) -> None:
    """Raise when the caller edited a version other than the stored one."""
    if expected_version is None:
        return
    if int(expected_version) != event.version:
        raise ConcurrentModificationError(
            "AOG event was modified by another request; reload and retry",
            details={"expected_version": expected_version, "current_version": event.version},
        )


def add(event: AOGEvent) -> AOGEvent:
    with unit_of_work() as session:
        session.add(event)
    return event


def delete(event: AOGEvent) -> None:
    with unit_of_work() as session:
        session.delete(event)


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def find_events(flt: EventFilter | None = None) -> list[AOGEvent]:
    """Return events matching ``flt`` ordered by detection time."""
    flt = flt or EventFilter()
    stmt = select(AOGEvent)

    if flt.start_date:
        stmt = stmt.where(AOGEvent.detected_at >= _day_start(flt.start_date))
    if flt.end_date:
        stmt = stmt.where(AOGEvent.detected_at < _day_start(flt.end_date + timedelta(days=1)))
    if flt.aircraft_id:
        stmt = stmt.where(AOGEvent.aircraft_id == flt.aircraft_id)
    if flt.fleet_group:
        ids = aircraft_registry.aircraft_ids_for_fleet_group(flt.fleet_group)
        if not ids:
            return []
        stmt = stmt.where(AOGEvent.aircraft_id.in_(ids))
    if flt.status:
        stmt = stmt.where(AOGEvent.current_status == flt.status)
    if flt.category:
        stmt = stmt.where(AOGEvent.category == flt.category)
    if flt.active is True:
        stmt = stmt.where(
            AOGEvent.cleared_at.is_(None),
            AOGEvent.current_status.notin_(CLEARING_STATUSES),
        )
    elif flt.active is False:
        stmt = stmt.where(
            (AOGEvent.cleared_at.isnot(None))
            | (AOGEvent.current_status.in_(CLEARING_STATUSES))
        )

    stmt = stmt.order_by(AOGEvent.detected_at.desc(), AOGEvent.id.desc())
    try:
        return list(db.session.execute(stmt).unique().scalars())
    except OperationalError as exc:
        logger.error("Event store unavailable: %s", exc)
        raise StoreUnavailableError("Event store unavailable") from exc
