"""
Aircraft registry adapter — read-only lookups over the aircraft table.
"""

import logging

from sqlalchemy import select

from aog_tracker.core.exceptions import NotFoundError
from aog_tracker.models import db
from aog_tracker.models.aircraft import Aircraft

logger = logging.getLogger(__name__)


def get_aircraft(aircraft_id: int) -> Aircraft:
    aircraft = db.session.get(Aircraft, aircraft_id)
    if not aircraft:
        raise NotFoundError(resource="Aircraft", resource_id=aircraft_id)
    return aircraft


def registrations_for(aircraft_ids) -> dict[int, str]:
    """Map aircraft id → registration for the given ids (unknown ids omitted)."""
    ids = list(set(aircraft_ids))
    if not ids:
        return {}
    rows = db.session.execute(
        select(Aircraft.id, Aircraft.registration).where(Aircraft.id.in_(ids))
    ).all()
    return {row.id: row.registration for row in rows}


def aircraft_ids_for_fleet_group(fleet_group: str) -> list[int]:
    return list(
        db.session.execute(
            select(Aircraft.id).where(Aircraft.fleet_group == fleet_group)
        ).scalars()
    )
