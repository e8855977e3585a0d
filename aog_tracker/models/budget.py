"""
Local budget ledger.

ActualSpend rows are written by LocalBudgetGateway when no external budget
service is configured. One row per generated AOG spend.
"""

from datetime import datetime, timezone

from aog_tracker.models import db


class ActualSpend(db.Model):
    """A booked spend against a budget clause for one period (YYYY-MM)."""

    __tablename__ = "actual_spends"

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(7), nullable=False, index=True, comment="YYYY-MM")
    clause_id = db.Column(db.String(50), nullable=False, index=True)
    aircraft_id = db.Column(db.Integer, nullable=True)
    aog_event_id = db.Column(
        db.Integer, nullable=True, unique=True,
        comment="Idempotency key: one spend per AOG event",
    )
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    notes = db.Column(db.Text, default="")
    created_by = db.Column(db.String(100), default="")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_actual_spend_amount_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "period": self.period,
            "clause_id": self.clause_id,
            "aircraft_id": self.aircraft_id,
            "aog_event_id": self.aog_event_id,
            "amount": self.amount,
            "currency": self.currency,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActualSpend {self.id}: {self.clause_id} {self.period} {self.amount}>"
