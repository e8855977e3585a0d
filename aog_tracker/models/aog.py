"""
AOG Tracker
Aircraft-On-Ground event domain models.

Models:
    - AOGEvent:               one grounding incident, from detection to return to service
    - StatusHistoryEntry:     immutable record of every accepted workflow transition
    - PartRequest:            a part ordered to resolve the event (own linear sub-status)
    - CostAuditEntry:         immutable record of an overwritten cost value
    - AttachmentMeta:         metadata of a document stored in the external file store
    - MilestoneHistoryEntry:  record of every milestone timestamp set or changed

Architecture:
    Aircraft ──1:N──▶ AOGEvent ──1:N──▶ StatusHistoryEntry
                       AOGEvent ──1:N──▶ PartRequest
                       AOGEvent ──1:N──▶ CostAuditEntry
                       AOGEvent ──1:N──▶ AttachmentMeta
                       AOGEvent ──1:N──▶ MilestoneHistoryEntry

Lifecycle states:
    AOGEvent:     REPORTED → TROUBLESHOOTING → ISSUE_IDENTIFIED
                  → (RESOLVED_NO_PARTS | PART_REQUIRED → procurement chain)
                  → ... → BACK_IN_SERVICE → CLOSED
    PartRequest:  REQUESTED → APPROVED → ORDERED → SHIPPED → RECEIVED → ISSUED
"""

from datetime import datetime, timezone

from sqlalchemy import event as _sa_event

from aog_tracker.models import db
from aog_tracker.utils.helpers import as_utc


# ── Constants ────────────────────────────────────────────────────────────────

AOG_CATEGORIES = {"aog", "scheduled", "unscheduled", "mro", "cleaning"}

RESPONSIBLE_PARTIES = {"Internal", "OEM", "Customs", "Finance", "Other"}

BLOCKING_REASONS = {"Finance", "Port", "Customs", "Vendor", "Ops", "Other"}

ATTACHMENT_TYPES = {"purchase_order", "invoice", "shipping_doc", "photo", "other"}

AOG_STATUSES = [
    "REPORTED",
    "TROUBLESHOOTING",
    "ISSUE_IDENTIFIED",
    "RESOLVED_NO_PARTS",
    "PART_REQUIRED",
    "PROCUREMENT_REQUESTED",
    "FINANCE_APPROVAL_PENDING",
    "ORDER_PLACED",
    "IN_TRANSIT",
    "AT_PORT",
    "CUSTOMS_CLEARANCE",
    "RECEIVED_IN_STORES",
    "ISSUED_TO_MAINTENANCE",
    "INSTALLED_AND_TESTED",
    "ENGINE_RUN_REQUESTED",
    "ENGINE_RUN_COMPLETED",
    "BACK_IN_SERVICE",
    "CLOSED",
]

INITIAL_STATUS = "REPORTED"

# ── State Machine Transitions ────────────────────────────────────────────────

AOG_TRANSITIONS = {
    "REPORTED":                 ["TROUBLESHOOTING"],
    "TROUBLESHOOTING":          ["ISSUE_IDENTIFIED"],
    "ISSUE_IDENTIFIED":         ["RESOLVED_NO_PARTS", "PART_REQUIRED"],
    "RESOLVED_NO_PARTS":        ["BACK_IN_SERVICE"],
    "PART_REQUIRED":            ["PROCUREMENT_REQUESTED"],
    "PROCUREMENT_REQUESTED":    ["FINANCE_APPROVAL_PENDING"],
    "FINANCE_APPROVAL_PENDING": ["ORDER_PLACED"],
    "ORDER_PLACED":             ["IN_TRANSIT"],
    "IN_TRANSIT":               ["AT_PORT", "RECEIVED_IN_STORES"],
    "AT_PORT":                  ["CUSTOMS_CLEARANCE"],
    "CUSTOMS_CLEARANCE":        ["RECEIVED_IN_STORES"],
    "RECEIVED_IN_STORES":       ["ISSUED_TO_MAINTENANCE"],
    "ISSUED_TO_MAINTENANCE":    ["INSTALLED_AND_TESTED"],
    "INSTALLED_AND_TESTED":     ["ENGINE_RUN_REQUESTED", "BACK_IN_SERVICE"],
    "ENGINE_RUN_REQUESTED":     ["ENGINE_RUN_COMPLETED"],
    "ENGINE_RUN_COMPLETED":     ["BACK_IN_SERVICE"],
    "BACK_IN_SERVICE":          ["CLOSED"],
    "CLOSED":                   [],
}

# Entering one of these requires a blocking_reason
BLOCKING_STATUSES = frozenset({
    "FINANCE_APPROVAL_PENDING", "IN_TRANSIT", "AT_PORT", "CUSTOMS_CLEARANCE",
})

# Aircraft is back in service: cleared_at is stamped, event no longer active
CLEARING_STATUSES = frozenset({"BACK_IN_SERVICE", "CLOSED"})

TERMINAL_STATUSES = frozenset(s for s, nxt in AOG_TRANSITIONS.items() if not nxt)

PART_REQUEST_STATUSES = ["REQUESTED", "APPROVED", "ORDERED", "SHIPPED", "RECEIVED", "ISSUED"]

PART_REQUEST_TRANSITIONS = {
    cur: [nxt] for cur, nxt in zip(PART_REQUEST_STATUSES, PART_REQUEST_STATUSES[1:])
}
PART_REQUEST_TRANSITIONS["ISSUED"] = []

# ── Milestones ───────────────────────────────────────────────────────────────

# Causal order; non-null values must be non-decreasing
MILESTONE_ORDER = (
    "reported_at",
    "procurement_requested_at",
    "available_at_store_at",
    "issued_back_at",
    "installation_complete_at",
    "test_start_at",
    "up_and_running_at",
)

PROCUREMENT_PAIR = ("procurement_requested_at", "issued_back_at")
OPS_PAIR = ("test_start_at", "up_and_running_at")
TECHNICAL_PAIR = ("reported_at", "installation_complete_at")

COST_FIELDS = (
    "cost_labor",
    "cost_parts",
    "cost_external",
    "estimated_cost_labor",
    "estimated_cost_parts",
    "estimated_cost_external",
)

ACTUAL_COST_FIELDS = ("cost_labor", "cost_parts", "cost_external")


def validate_aog_transition(old_status, new_status):
    """Return True if AOGEvent status transition is valid."""
    return new_status in AOG_TRANSITIONS.get(old_status, [])


def validate_part_request_transition(old_status, new_status):
    """Return True if PartRequest status transition is valid."""
    return new_status in PART_REQUEST_TRANSITIONS.get(old_status, [])


def _iso(value):
    return as_utc(value).isoformat() if value else None


def _has_pair(target, pair):
    return all(getattr(target, f) is not None for f in pair)


# ═════════════════════════════════════════════════════════════════════════════
# AOGEvent
# ═════════════════════════════════════════════════════════════════════════════


class AOGEvent(db.Model):
    """
    A single aircraft grounding incident.

    Milestone timestamps drive the downtime decomposition; ``current_status``
    is only ever changed through the workflow service so that every change
    leaves a StatusHistoryEntry behind. ``version`` is the optimistic lock.
    """

    __tablename__ = "aog_events"

    id = db.Column(db.Integer, primary_key=True)
    aircraft_id = db.Column(
        db.Integer, db.ForeignKey("aircraft.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )

    # Classification
    category = db.Column(
        db.String(20), nullable=False, default="aog",
        comment="aog | scheduled | unscheduled | mro | cleaning",
    )
    responsible_party = db.Column(
        db.String(20), nullable=False, default="Internal",
        comment="Internal | OEM | Customs | Finance | Other",
    )
    location = db.Column(db.String(10), nullable=True, comment="ICAO station code")
    reason_code = db.Column(db.Text, nullable=False, comment="Defect description")
    action_taken = db.Column(db.Text, nullable=False, default="See defect description")
    manpower_count = db.Column(db.Integer, nullable=True)
    man_hours = db.Column(db.Float, nullable=True)

    # Lifecycle timestamps
    detected_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    cleared_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Milestones
    reported_at = db.Column(db.DateTime(timezone=True), nullable=True)
    procurement_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    available_at_store_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_back_at = db.Column(db.DateTime(timezone=True), nullable=True)
    installation_complete_at = db.Column(db.DateTime(timezone=True), nullable=True)
    test_start_at = db.Column(db.DateTime(timezone=True), nullable=True)
    up_and_running_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Workflow
    current_status = db.Column(
        db.String(30), nullable=False, default=INITIAL_STATUS, index=True,
    )
    blocking_reason = db.Column(
        db.String(20), nullable=True,
        comment="Finance | Port | Customs | Vendor | Ops | Other (blocking statuses only)",
    )

    # Costs
    cost_labor = db.Column(db.Float, nullable=True)
    cost_parts = db.Column(db.Float, nullable=True)
    cost_external = db.Column(db.Float, nullable=True)
    estimated_cost_labor = db.Column(db.Float, nullable=True)
    estimated_cost_parts = db.Column(db.Float, nullable=True)
    estimated_cost_external = db.Column(db.Float, nullable=True)

    # Budget
    is_budget_affecting = db.Column(db.Boolean, nullable=False, default=False)
    budget_clause_id = db.Column(db.String(50), nullable=True)
    budget_period = db.Column(db.String(7), nullable=True, comment="YYYY-MM")
    linked_actual_spend_id = db.Column(
        db.String(64), nullable=True,
        comment="Set exactly once by generate_actual_spend",
    )
    actual_spend_claimed_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Committed before the budget collaborator is called",
    )

    version = db.Column(db.Integer, nullable=False)

    updated_by = db.Column(db.String(100), default="")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    aircraft = db.relationship("Aircraft", lazy="joined")
    status_history = db.relationship(
        "StatusHistoryEntry", backref="event", lazy="selectin",
        cascade="all, delete-orphan", order_by="StatusHistoryEntry.id",
    )
    part_requests = db.relationship(
        "PartRequest", backref="event", lazy="selectin",
        cascade="all, delete-orphan", order_by="PartRequest.id",
    )
    cost_audit_trail = db.relationship(
        "CostAuditEntry", backref="event", lazy="selectin",
        cascade="all, delete-orphan", order_by="CostAuditEntry.id",
    )
    attachments_meta = db.relationship(
        "AttachmentMeta", backref="event", lazy="selectin",
        cascade="all, delete-orphan", order_by="AttachmentMeta.id",
    )
    milestone_history = db.relationship(
        "MilestoneHistoryEntry", backref="event", lazy="selectin",
        cascade="all, delete-orphan", order_by="MilestoneHistoryEntry.id",
    )

    __table_args__ = (
        db.CheckConstraint("man_hours IS NULL OR man_hours >= 0", name="ck_aog_man_hours"),
        db.CheckConstraint("manpower_count IS NULL OR manpower_count >= 0", name="ck_aog_manpower"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self):
        """Derived on read: the aircraft is still on the ground."""
        return self.cleared_at is None and self.current_status not in CLEARING_STATUSES

    @property
    def is_legacy(self):
        """True when no milestone pair needed for bucket decomposition is present."""
        return not (
            _has_pair(self, PROCUREMENT_PAIR)
            or _has_pair(self, OPS_PAIR)
            or _has_pair(self, TECHNICAL_PAIR)
        )

    @property
    def total_actual_cost(self):
        return sum((getattr(self, f) or 0.0) for f in ACTUAL_COST_FIELDS)

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "aircraft_id": self.aircraft_id,
            "registration": self.aircraft.registration if self.aircraft else None,
            "category": self.category,
            "responsible_party": self.responsible_party,
            "location": self.location,
            "reason_code": self.reason_code,
            "action_taken": self.action_taken,
            "manpower_count": self.manpower_count,
            "man_hours": self.man_hours,
            "detected_at": _iso(self.detected_at),
            "cleared_at": _iso(self.cleared_at),
            "milestones": {f: _iso(getattr(self, f)) for f in MILESTONE_ORDER},
            "current_status": self.current_status,
            "blocking_reason": self.blocking_reason,
            "is_active": self.is_active,
            "is_legacy": self.is_legacy,
            "costs": {f: getattr(self, f) for f in COST_FIELDS},
            "total_actual_cost": self.total_actual_cost,
            "is_budget_affecting": self.is_budget_affecting,
            "budget_clause_id": self.budget_clause_id,
            "budget_period": self.budget_period,
            "linked_actual_spend_id": self.linked_actual_spend_id,
            "version": self.version,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["status_history"] = [h.to_dict() for h in self.status_history]
            result["part_requests"] = [p.to_dict() for p in self.part_requests]
            result["cost_audit_trail"] = [c.to_dict() for c in self.cost_audit_trail]
            result["attachments"] = [a.to_dict() for a in self.attachments_meta]
            result["milestone_history"] = [m.to_dict() for m in self.milestone_history]
        return result

    def __repr__(self):
        return f"<AOGEvent {self.id}: aircraft={self.aircraft_id} [{self.current_status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Owned records
# ═════════════════════════════════════════════════════════════════════════════


class StatusHistoryEntry(db.Model):
    """
    One accepted workflow transition. Append-only: rows are written once by
    the workflow service and never updated.
    """

    __tablename__ = "aog_status_history"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("aog_events.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_status = db.Column(db.String(30), nullable=False)
    to_status = db.Column(db.String(30), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    blocking_reason = db.Column(db.String(20), nullable=True)
    changed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    changed_by = db.Column(db.String(100), nullable=False)
    actor_role = db.Column(db.String(50), nullable=True)

    # Optional cross references
    part_request_id = db.Column(db.Integer, nullable=True)
    finance_ref = db.Column(db.String(100), nullable=True)
    shipping_ref = db.Column(db.String(100), nullable=True)
    ops_run_ref = db.Column(db.String(100), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "notes": self.notes,
            "blocking_reason": self.blocking_reason,
            "changed_at": _iso(self.changed_at),
            "changed_by": self.changed_by,
            "actor_role": self.actor_role,
            "metadata": {
                "part_request_id": self.part_request_id,
                "finance_ref": self.finance_ref,
                "shipping_ref": self.shipping_ref,
                "ops_run_ref": self.ops_run_ref,
            },
        }

    def __repr__(self):
        return f"<StatusHistoryEntry {self.id}: {self.from_status} → {self.to_status}>"


class PartRequest(db.Model):
    """A part ordered for the event, tracked through its own linear sub-status."""

    __tablename__ = "aog_part_requests"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("aog_events.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    part_number = db.Column(db.String(50), nullable=False)
    part_description = db.Column(db.String(300), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    estimated_cost = db.Column(db.Float, nullable=True)
    actual_cost = db.Column(db.Float, nullable=True)
    vendor = db.Column(db.String(200), nullable=True)
    requested_date = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    status = db.Column(
        db.String(20), nullable=False, default="REQUESTED",
        comment="REQUESTED | APPROVED | ORDERED | SHIPPED | RECEIVED | ISSUED",
    )
    invoice_ref = db.Column(db.String(100), nullable=True)
    tracking_number = db.Column(db.String(100), nullable=True)
    eta = db.Column(db.DateTime(timezone=True), nullable=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_date = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_part_request_quantity"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "part_number": self.part_number,
            "part_description": self.part_description,
            "quantity": self.quantity,
            "estimated_cost": self.estimated_cost,
            "actual_cost": self.actual_cost,
            "vendor": self.vendor,
            "requested_date": _iso(self.requested_date),
            "status": self.status,
            "invoice_ref": self.invoice_ref,
            "tracking_number": self.tracking_number,
            "eta": _iso(self.eta),
            "received_date": _iso(self.received_date),
            "issued_date": _iso(self.issued_date),
        }

    def __repr__(self):
        return f"<PartRequest {self.id}: {self.part_number} [{self.status}]>"


class CostAuditEntry(db.Model):
    """Previous/new value pair for an overwritten cost field. Append-only."""

    __tablename__ = "aog_cost_audit"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("aog_events.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    field = db.Column(db.String(40), nullable=False)
    previous_value = db.Column(db.Float, nullable=True)
    new_value = db.Column(db.Float, nullable=True)
    changed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    changed_by = db.Column(db.String(100), nullable=False)
    reason = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "field": self.field,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "changed_at": _iso(self.changed_at),
            "changed_by": self.changed_by,
            "reason": self.reason,
        }

    def __repr__(self):
        return f"<CostAuditEntry {self.id}: {self.field} {self.previous_value} → {self.new_value}>"


class AttachmentMeta(db.Model):
    """Metadata of an uploaded document. The bytes live in the external file store."""

    __tablename__ = "aog_attachments"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("aog_events.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    storage_key = db.Column(db.String(500), nullable=False)
    filename = db.Column(db.String(255), nullable=False)
    attachment_type = db.Column(
        db.String(20), nullable=False, default="other",
        comment="purchase_order | invoice | shipping_doc | photo | other",
    )
    uploaded_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    uploaded_by = db.Column(db.String(100), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(100), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "storage_key": self.storage_key,
            "filename": self.filename,
            "attachment_type": self.attachment_type,
            "uploaded_at": _iso(self.uploaded_at),
            "uploaded_by": self.uploaded_by,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
        }

    def __repr__(self):
        return f"<AttachmentMeta {self.id}: {self.filename}>"


class MilestoneHistoryEntry(db.Model):
    """A milestone timestamp was set or changed. Append-only."""

    __tablename__ = "aog_milestone_history"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("aog_events.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    milestone = db.Column(db.String(40), nullable=False)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    recorded_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    recorded_by = db.Column(db.String(100), nullable=False)

    def to_dict(self):
        return {
            "milestone": self.milestone,
            "timestamp": _iso(self.timestamp),
            "recorded_at": _iso(self.recorded_at),
            "recorded_by": self.recorded_by,
        }

    def __repr__(self):
        return f"<MilestoneHistoryEntry {self.id}: {self.milestone}>"


# ── Append-only guards ───────────────────────────────────────────────────────


def _block_update(mapper, connection, target) -> None:  # noqa: ANN001
    """Raise RuntimeError on any ORM UPDATE of an append-only history row."""
    raise RuntimeError(
        f"{type(target).__name__} rows are append-only and cannot be modified"
    )


for _model in (StatusHistoryEntry, CostAuditEntry, MilestoneHistoryEntry):
    _sa_event.listen(_model, "before_update", _block_update)
