"""
Aircraft registry model.

Read-side lookup used to resolve registrations for reliability rankings and
to expand a fleet-group filter into aircraft ids. AOG services never write
to this table.
"""

from datetime import datetime, timezone

from aog_tracker.models import db


class Aircraft(db.Model):
    """A tail in the fleet."""

    __tablename__ = "aircraft"

    id = db.Column(db.Integer, primary_key=True)
    registration = db.Column(
        db.String(20), nullable=False, unique=True,
        comment="Tail registration, e.g. HZ-A42",
    )
    fleet_group = db.Column(db.String(50), nullable=True, index=True)
    aircraft_type = db.Column(db.String(50), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | parked | leased | retired",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "registration": self.registration,
            "fleet_group": self.fleet_group,
            "aircraft_type": self.aircraft_type,
            "status": self.status,
        }

    def __repr__(self):
        return f"<Aircraft {self.id}: {self.registration}>"
