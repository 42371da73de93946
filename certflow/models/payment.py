"""
SLF Certification Workflow Engine
Payment model.

Lifecycle:
    Payment: pending → verified | rejected (one-shot, both terminal)
"""

import enum

from certflow.models import _utcnow, db, enum_column


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


PAYMENT_TERMINAL_STATUSES = {PaymentStatus.VERIFIED, PaymentStatus.REJECTED}


class Payment(db.Model):
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("idx_payment_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    status = enum_column(PaymentStatus, default=PaymentStatus.PENDING)
    notes = db.Column(db.Text, nullable=True)
    proof_url = db.Column(db.String(500), default="")
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def is_terminal(self):
        return self.status in PAYMENT_TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "status": self.status.value,
            "notes": self.notes,
            "proof_url": self.proof_url,
            "uploaded_by": self.uploaded_by,
            "verified_by": self.verified_by,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Payment {self.id}: project={self.project_id} [{self.status.value}]>"
