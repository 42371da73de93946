"""
SLF Certification Workflow Engine
Notification domain model.

Models:
    - Notification: append-only in-app notification with read tracking
"""

from certflow.models import _utcnow, db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "document_status_change",
    "admin_team_verification_complete",
    "project_status_change",
    "checklist_reviewed",
    "payment_verified",
    "payment_rejected",
    "team_assignment",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. Only the recipient may flip ``read``;
    every other column is written once.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_recipient_read", "recipient_id", "read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    type = db.Column(db.String(50), nullable=False)
    message = db.Column(db.Text, default="")

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="project/document/payment/...")
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def mark_read(self):
        self.read = True
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "sender_id": self.sender_id,
            "project_id": self.project_id,
            "type": self.type,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "read": self.read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} → {self.recipient_id}>"
