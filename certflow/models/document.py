"""
SLF Certification Workflow Engine
Document approval models.

Models:
    - Document:         report / supporting document attached to a project
    - DocumentApproval: append-only audit row per document transition

Lifecycle:
    Inspector reports:  draft → submitted → verified_by_admin_team → project_lead_review
                        submitted → revision_requested → submitted (re-upload)
    Generated reports:  draft → pending_generation → generated → project_lead_review
    Review chain:       project_lead_review → project_lead_approved → head_consultant_review
                        → head_consultant_approved → client_review
                        → client_approved → sent_to_government → slf_issued → completed
                        client_review → client_rejected → revision_requested
    Any non-terminal state → cancelled
"""

import enum

from certflow.models import _utcnow, assert_exhaustive, db, enum_column
from certflow.models.auth import Role


class DocumentStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVISION_REQUESTED = "revision_requested"
    VERIFIED_BY_ADMIN_TEAM = "verified_by_admin_team"
    PENDING_GENERATION = "pending_generation"
    GENERATED = "generated"
    PROJECT_LEAD_REVIEW = "project_lead_review"
    PROJECT_LEAD_APPROVED = "project_lead_approved"
    HEAD_CONSULTANT_REVIEW = "head_consultant_review"
    HEAD_CONSULTANT_APPROVED = "head_consultant_approved"
    CLIENT_REVIEW = "client_review"
    CLIENT_APPROVED = "client_approved"
    CLIENT_REJECTED = "client_rejected"
    SENT_TO_GOVERNMENT = "sent_to_government"
    SLF_ISSUED = "slf_issued"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DocumentType(str, enum.Enum):
    REPORT = "REPORT"
    SUPPORTING = "SUPPORTING"
    CERTIFICATE = "CERTIFICATE"


DOCUMENT_TERMINAL_STATUSES = {DocumentStatus.COMPLETED, DocumentStatus.CANCELLED}

_S = DocumentStatus
_NON_TERMINAL = [s for s in DocumentStatus if s not in DOCUMENT_TERMINAL_STATUSES]

# action → {from, to, roles allowed to act, roles notified afterwards}
# "team_only" restricts the actor check to explicit ProjectTeam membership.
DOCUMENT_TRANSITIONS = {
    "submit": {
        "from": [_S.DRAFT], "to": _S.SUBMITTED,
        "roles": {Role.INSPECTOR, Role.DRAFTER}, "notify": (Role.ADMIN_TEAM,),
    },
    "resubmit": {
        "from": [_S.REVISION_REQUESTED], "to": _S.SUBMITTED,
        "roles": {Role.INSPECTOR, Role.DRAFTER}, "notify": (Role.ADMIN_TEAM,),
    },
    "verify": {
        "from": [_S.SUBMITTED], "to": _S.VERIFIED_BY_ADMIN_TEAM,
        "roles": {Role.ADMIN_TEAM}, "notify": (Role.ADMIN_LEAD,), "team_only": True,
    },
    "request_revision": {
        "from": [_S.SUBMITTED], "to": _S.REVISION_REQUESTED,
        "roles": {Role.ADMIN_TEAM}, "notify": (Role.PROJECT_LEAD,), "team_only": True,
    },
    "request_generation": {
        "from": [_S.DRAFT], "to": _S.PENDING_GENERATION,
        "roles": {Role.DRAFTER, Role.ADMIN_LEAD}, "notify": (Role.DRAFTER,),
    },
    "mark_generated": {
        "from": [_S.PENDING_GENERATION], "to": _S.GENERATED,
        "roles": {Role.DRAFTER}, "notify": (Role.ADMIN_LEAD,),
    },
    "send_to_project_lead": {
        "from": [_S.VERIFIED_BY_ADMIN_TEAM, _S.GENERATED], "to": _S.PROJECT_LEAD_REVIEW,
        "roles": {Role.ADMIN_LEAD}, "notify": (Role.PROJECT_LEAD,),
    },
    "project_lead_approve": {
        "from": [_S.PROJECT_LEAD_REVIEW], "to": _S.PROJECT_LEAD_APPROVED,
        "roles": {Role.PROJECT_LEAD}, "notify": (Role.HEAD_CONSULTANT,),
    },
    "send_to_head_consultant": {
        "from": [_S.PROJECT_LEAD_APPROVED], "to": _S.HEAD_CONSULTANT_REVIEW,
        "roles": {Role.PROJECT_LEAD}, "notify": (Role.HEAD_CONSULTANT,),
    },
    "head_consultant_approve": {
        "from": [_S.HEAD_CONSULTANT_REVIEW], "to": _S.HEAD_CONSULTANT_APPROVED,
        "roles": {Role.HEAD_CONSULTANT}, "notify": (Role.ADMIN_LEAD,),
    },
    "send_to_client": {
        "from": [_S.HEAD_CONSULTANT_APPROVED], "to": _S.CLIENT_REVIEW,
        "roles": {Role.ADMIN_LEAD}, "notify": (Role.CLIENT,),
    },
    "client_approve": {
        "from": [_S.CLIENT_REVIEW], "to": _S.CLIENT_APPROVED,
        "roles": {Role.CLIENT}, "notify": (Role.ADMIN_LEAD,),
    },
    "client_reject": {
        "from": [_S.CLIENT_REVIEW], "to": _S.CLIENT_REJECTED,
        "roles": {Role.CLIENT}, "notify": (Role.ADMIN_LEAD,),
    },
    "revise": {
        "from": [_S.CLIENT_REJECTED], "to": _S.REVISION_REQUESTED,
        "roles": {Role.ADMIN_LEAD, Role.DRAFTER}, "notify": (Role.INSPECTOR, Role.DRAFTER),
    },
    "send_to_government": {
        "from": [_S.CLIENT_APPROVED], "to": _S.SENT_TO_GOVERNMENT,
        "roles": {Role.ADMIN_LEAD}, "notify": (Role.ADMIN_LEAD,),
    },
    "issue_slf": {
        "from": [_S.SENT_TO_GOVERNMENT], "to": _S.SLF_ISSUED,
        "roles": {Role.ADMIN_LEAD}, "notify": (Role.CLIENT,),
    },
    "complete": {
        "from": [_S.SLF_ISSUED], "to": _S.COMPLETED,
        "roles": {Role.ADMIN_LEAD}, "notify": (Role.CLIENT,),
    },
    "cancel": {
        "from": _NON_TERMINAL, "to": _S.CANCELLED,
        "roles": {Role.ADMIN_LEAD, Role.SUPERADMIN}, "notify": (Role.ADMIN_LEAD, Role.PROJECT_LEAD),
    },
}

# Every status must be reachable or be the starting state.
_TARGETS = {rule["to"] for rule in DOCUMENT_TRANSITIONS.values()} | {DocumentStatus.DRAFT}
assert_exhaustive(_TARGETS, DocumentStatus, "DOCUMENT_TRANSITIONS")


def document_action_for(current, target):
    """Return the action whose edge is (current → target), or None."""
    for action, rule in DOCUMENT_TRANSITIONS.items():
        if current in rule["from"] and rule["to"] == target:
            return action
    return None


class Document(db.Model):
    """Certification report or supporting document."""

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("idx_document_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    name = db.Column(db.String(300), nullable=False)
    document_type = enum_column(DocumentType, default=DocumentType.REPORT)
    status = enum_column(DocumentStatus, default=DocumentStatus.DRAFT)
    url = db.Column(db.String(500), default="", comment="storage location, managed elsewhere")

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_by_admin_team = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at_admin_team = db.Column(db.DateTime(timezone=True), nullable=True)
    admin_team_feedback = db.Column(db.Text, nullable=True, comment="latest only, overwritten")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    approvals = db.relationship("DocumentApproval", backref="document", lazy="dynamic",
                                order_by="DocumentApproval.id",
                                cascade="all, delete-orphan")

    @property
    def is_terminal(self):
        return self.status in DOCUMENT_TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "document_type": self.document_type.value,
            "status": self.status.value,
            "url": self.url,
            "created_by": self.created_by,
            "verified_by_admin_team": self.verified_by_admin_team,
            "verified_at_admin_team": (
                self.verified_at_admin_team.isoformat() if self.verified_at_admin_team else None
            ),
            "admin_team_feedback": self.admin_team_feedback,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.name[:40]} [{self.status.value}]>"


class DocumentApproval(db.Model):
    """
    Immutable record of one document transition.

    Written in the same transaction as the status change, so the trail and
    the status never disagree.
    """

    __tablename__ = "document_approvals"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    role = db.Column(db.String(30), default="")
    action = db.Column(db.String(40), nullable=False)
    from_status = db.Column(db.String(40), nullable=False)
    to_status = db.Column(db.String(40), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "actor_id": self.actor_id,
            "role": self.role,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
