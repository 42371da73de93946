"""
SLF Certification Workflow Engine
Field inspection checklist models.

Models:
    - ChecklistItem:     template row; declares which attachments a response needs
    - Inspection:        one scheduled site visit of a project
    - ChecklistResponse: one inspector answer per (inspection, item)

Lifecycle:
    ChecklistResponse: submitted → project_lead_approved | rejected (both terminal)
"""

import enum

from certflow.models import _utcnow, db, enum_column


class ChecklistStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    PROJECT_LEAD_APPROVED = "project_lead_approved"
    REJECTED = "rejected"


CHECKLIST_TERMINAL_STATUSES = {ChecklistStatus.PROJECT_LEAD_APPROVED, ChecklistStatus.REJECTED}

CHECKLIST_TRANSITIONS = {
    ChecklistStatus.SUBMITTED: [ChecklistStatus.PROJECT_LEAD_APPROVED, ChecklistStatus.REJECTED],
    ChecklistStatus.PROJECT_LEAD_APPROVED: [],
    ChecklistStatus.REJECTED: [],
}


def validate_checklist_transition(old_status, new_status):
    """Return True if ChecklistResponse status transition is valid."""
    return new_status in CHECKLIST_TRANSITIONS.get(old_status, [])


class ChecklistItem(db.Model):
    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), unique=True, nullable=False)
    title = db.Column(db.String(300), nullable=False)
    category = db.Column(db.String(30), default="", comment="struktur / arsitektur / mep")
    requires_photo = db.Column(db.Boolean, default=False)
    requires_geotag = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "category": self.category,
            "requires_photo": self.requires_photo,
            "requires_geotag": self.requires_geotag,
        }


class Inspection(db.Model):
    __tablename__ = "inspections"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    inspector_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    scheduled_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    responses = db.relationship("ChecklistResponse", backref="inspection", lazy="dynamic",
                                cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "inspector_id": self.inspector_id,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
        }


class ChecklistResponse(db.Model):
    """
    Inspector answer for one checklist item.

    The (inspection_id, item_id) unique constraint is what turns a racing
    duplicate insert into a Conflict instead of a second row.
    """

    __tablename__ = "checklist_responses"
    __table_args__ = (
        db.UniqueConstraint("inspection_id", "item_id", name="uq_checklist_response_item"),
    )

    id = db.Column(db.Integer, primary_key=True)
    inspection_id = db.Column(
        db.Integer, db.ForeignKey("inspections.id", ondelete="CASCADE"), nullable=False,
    )
    item_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="CASCADE"), nullable=False,
    )
    status = enum_column(ChecklistStatus, default=ChecklistStatus.SUBMITTED)
    response = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, default="")
    photo_url = db.Column(db.String(500), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    responded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    item = db.relationship("ChecklistItem")

    @property
    def is_terminal(self):
        return self.status in CHECKLIST_TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "inspection_id": self.inspection_id,
            "item_id": self.item_id,
            "status": self.status.value,
            "response": self.response,
            "notes": self.notes,
            "photo_url": self.photo_url,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "responded_by": self.responded_by,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
