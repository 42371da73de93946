"""
SLF Certification Workflow Engine
Project domain models.

Models:
    - Project:      one certification application filed for a client
    - ProjectTeam:  explicit (project, user, role) membership rows
    - ProjectPhase: ordered 1..N scheduling phases, independent of Project.status

Architecture:
    Client ──1:N──▶ Project ──1:N──▶ ProjectTeam
                            ──1:N──▶ ProjectPhase
                            ──1:N──▶ Document / Inspection / Payment

Lifecycle states:
    Project:      draft → submitted → project_lead_review → inspection_scheduled
                  → inspection_in_progress → report_draft → head_consultant_review
                  → client_review → government_submitted → slf_issued → completed
                  (cancelled / rejected from any non-terminal state)
    ProjectPhase: pending → in_progress → completed
"""

import enum
from datetime import timedelta

from certflow.models import _utcnow, assert_exhaustive, db, enum_column
from certflow.models.auth import Role


class ProjectStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PROJECT_LEAD_REVIEW = "project_lead_review"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    INSPECTION_IN_PROGRESS = "inspection_in_progress"
    REPORT_DRAFT = "report_draft"
    HEAD_CONSULTANT_REVIEW = "head_consultant_review"
    CLIENT_REVIEW = "client_review"
    GOVERNMENT_SUBMITTED = "government_submitted"
    SLF_ISSUED = "slf_issued"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class PhaseStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


PROJECT_TERMINAL_STATUSES = {
    ProjectStatus.COMPLETED,
    ProjectStatus.CANCELLED,
    ProjectStatus.REJECTED,
}

_EXITS = [ProjectStatus.CANCELLED, ProjectStatus.REJECTED]

# ── Lifecycle Transition Guards ──────────────────────────────────────────────

PROJECT_TRANSITIONS = {
    ProjectStatus.DRAFT:                  [ProjectStatus.SUBMITTED, *_EXITS],
    ProjectStatus.SUBMITTED:              [ProjectStatus.PROJECT_LEAD_REVIEW, *_EXITS],
    ProjectStatus.PROJECT_LEAD_REVIEW:    [ProjectStatus.INSPECTION_SCHEDULED, *_EXITS],
    ProjectStatus.INSPECTION_SCHEDULED:   [ProjectStatus.INSPECTION_IN_PROGRESS, *_EXITS],
    ProjectStatus.INSPECTION_IN_PROGRESS: [ProjectStatus.REPORT_DRAFT, *_EXITS],
    ProjectStatus.REPORT_DRAFT:           [ProjectStatus.HEAD_CONSULTANT_REVIEW, *_EXITS],
    ProjectStatus.HEAD_CONSULTANT_REVIEW: [ProjectStatus.CLIENT_REVIEW, *_EXITS],
    ProjectStatus.CLIENT_REVIEW:          [ProjectStatus.GOVERNMENT_SUBMITTED, *_EXITS],
    ProjectStatus.GOVERNMENT_SUBMITTED:   [ProjectStatus.SLF_ISSUED, *_EXITS],
    ProjectStatus.SLF_ISSUED:             [ProjectStatus.COMPLETED, *_EXITS],
    ProjectStatus.COMPLETED:              [],
    ProjectStatus.CANCELLED:              [],
    ProjectStatus.REJECTED:               [],
}

# Roles allowed to move a project INTO the keyed status
PROJECT_TARGET_ROLES = {
    ProjectStatus.DRAFT:                  set(),
    ProjectStatus.SUBMITTED:              {Role.ADMIN_LEAD},
    ProjectStatus.PROJECT_LEAD_REVIEW:    {Role.ADMIN_LEAD},
    ProjectStatus.INSPECTION_SCHEDULED:   {Role.PROJECT_LEAD},
    ProjectStatus.INSPECTION_IN_PROGRESS: {Role.PROJECT_LEAD, Role.INSPECTOR},
    ProjectStatus.REPORT_DRAFT:           {Role.PROJECT_LEAD},
    ProjectStatus.HEAD_CONSULTANT_REVIEW: {Role.PROJECT_LEAD},
    ProjectStatus.CLIENT_REVIEW:          {Role.HEAD_CONSULTANT},
    ProjectStatus.GOVERNMENT_SUBMITTED:   {Role.ADMIN_LEAD},
    ProjectStatus.SLF_ISSUED:             {Role.ADMIN_LEAD},
    ProjectStatus.COMPLETED:              {Role.ADMIN_LEAD},
    ProjectStatus.CANCELLED:              {Role.ADMIN_LEAD, Role.SUPERADMIN},
    ProjectStatus.REJECTED:               {Role.ADMIN_LEAD, Role.HEAD_CONSULTANT, Role.SUPERADMIN},
}

# Numeric progress phase (1–5) shown on dashboards. Read-only projection of
# Project.status; never stored and never consulted for transition decisions.
PROJECT_PHASE_BY_STATUS = {
    ProjectStatus.DRAFT:                  1,
    ProjectStatus.SUBMITTED:              1,
    ProjectStatus.PROJECT_LEAD_REVIEW:    1,
    ProjectStatus.INSPECTION_SCHEDULED:   2,
    ProjectStatus.INSPECTION_IN_PROGRESS: 2,
    ProjectStatus.REPORT_DRAFT:           3,
    ProjectStatus.HEAD_CONSULTANT_REVIEW: 3,
    ProjectStatus.CLIENT_REVIEW:          4,
    ProjectStatus.GOVERNMENT_SUBMITTED:   5,
    ProjectStatus.SLF_ISSUED:             5,
    ProjectStatus.COMPLETED:              5,
    ProjectStatus.CANCELLED:              None,
    ProjectStatus.REJECTED:               None,
}

assert_exhaustive(PROJECT_TRANSITIONS, ProjectStatus, "PROJECT_TRANSITIONS")
assert_exhaustive(PROJECT_TARGET_ROLES, ProjectStatus, "PROJECT_TARGET_ROLES")
assert_exhaustive(PROJECT_PHASE_BY_STATUS, ProjectStatus, "PROJECT_PHASE_BY_STATUS")


def validate_project_transition(old_status, new_status):
    """Return True if Project status transition is valid."""
    return new_status in PROJECT_TRANSITIONS.get(old_status, [])


def derived_phase(status):
    """Dashboard phase number (1–5) for a project status, None for side exits."""
    return PROJECT_PHASE_BY_STATUS[ProjectStatus(status)]


# ── Phase templates ──────────────────────────────────────────────────────────

DEFAULT_PHASE_DURATION = 7

PHASE_TEMPLATES = {
    "SLF": [
        {"phase": 1, "name": "Persiapan Dokumen", "duration": 7,
         "description": "Pengumpulan dan verifikasi dokumen persyaratan"},
        {"phase": 2, "name": "Inspeksi Lapangan", "duration": 5,
         "description": "Kunjungan dan pemeriksaan bangunan"},
        {"phase": 3, "name": "Penyusunan Laporan", "duration": 10,
         "description": "Analisis dan penyusunan laporan teknis"},
        {"phase": 4, "name": "Review & Approval", "duration": 7,
         "description": "Review internal dan persetujuan"},
        {"phase": 5, "name": "Pengajuan Pemerintah", "duration": 14,
         "description": "Submit ke DPKP dan penerbitan SLF"},
    ],
    "PBG": [
        {"phase": 1, "name": "Persiapan Dokumen", "duration": 7,
         "description": "Pengumpulan dokumen persyaratan PBG"},
        {"phase": 2, "name": "Review Teknis", "duration": 10,
         "description": "Pemeriksaan kelengkapan teknis"},
        {"phase": 3, "name": "Konsultasi Publik", "duration": 7,
         "description": "Proses konsultasi publik (jika diperlukan)"},
        {"phase": 4, "name": "Persetujuan Teknis", "duration": 14,
         "description": "Review dan persetujuan teknis"},
        {"phase": 5, "name": "Penerbitan PBG", "duration": 7,
         "description": "Penerbitan Persetujuan Bangunan Gedung"},
    ],
}


def phase_template_for(application_type):
    """SLF* and PBG* application types have their own templates; SLF is the default."""
    if application_type and application_type.upper().startswith("PBG"):
        return PHASE_TEMPLATES["PBG"]
    return PHASE_TEMPLATES["SLF"]


# ═════════════════════════════════════════════════════════════════════════════
# Models
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    """
    Certification application.

    Ownership is spread over ``created_by``, ``admin_lead_id`` and
    ``project_lead_id``; visibility rules live in services/tenancy.py.
    """

    __tablename__ = "projects"
    __table_args__ = (
        db.Index("idx_project_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    application_type = db.Column(db.String(40), default="SLF", comment="SLF… / PBG…")
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    admin_lead_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    project_lead_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    status = enum_column(ProjectStatus, default=ProjectStatus.DRAFT)
    location = db.Column(db.String(300), default="")
    city = db.Column(db.String(100), default="")
    description = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    team = db.relationship("ProjectTeam", backref="project", lazy="select",
                           cascade="all, delete-orphan")
    phases = db.relationship("ProjectPhase", backref="project", lazy="select",
                             order_by="ProjectPhase.order_index",
                             cascade="all, delete-orphan")

    @property
    def is_terminal(self):
        return self.status in PROJECT_TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "application_type": self.application_type,
            "client_id": self.client_id,
            "created_by": self.created_by,
            "admin_lead_id": self.admin_lead_id,
            "project_lead_id": self.project_lead_id,
            "status": self.status.value,
            "phase": derived_phase(self.status),
            "location": self.location,
            "city": self.city,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name} [{self.status.value}]>"


class ProjectTeam(db.Model):
    """Explicit membership; a user may hold several roles on one project."""

    __tablename__ = "project_teams"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", "role", name="uq_project_team_member_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = enum_column(Role)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role.value,
        }


class ProjectPhase(db.Model):
    """
    Scheduling phase.

    ``end_date`` is always ``start_date + estimated_duration`` days; use
    ``reschedule()`` rather than assigning the dates directly.
    """

    __tablename__ = "project_phases"
    __table_args__ = (
        db.UniqueConstraint("project_id", "phase", name="uq_project_phase_number"),
        db.Index("idx_phase_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    phase = db.Column(db.Integer, nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    phase_name = db.Column(db.String(150), default="")
    description = db.Column(db.Text, default="")
    status = enum_column(PhaseStatus, default=PhaseStatus.PENDING)
    estimated_duration = db.Column(db.Integer, default=DEFAULT_PHASE_DURATION, comment="days")
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    progress = db.Column(db.Integer, default=0)
    notes = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def reschedule(self, start_date=None, estimated_duration=None):
        if estimated_duration is not None:
            self.estimated_duration = estimated_duration
        if start_date is not None:
            self.start_date = start_date
        if self.start_date is not None:
            self.end_date = compute_end_date(self.start_date, self.estimated_duration)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase": self.phase,
            "order_index": self.order_index,
            "phase_name": self.phase_name,
            "description": self.description,
            "status": self.status.value,
            "estimated_duration": self.estimated_duration,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "progress": self.progress,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<ProjectPhase {self.project_id}#{self.phase} [{self.status.value}]>"


def compute_end_date(start_date, estimated_duration):
    return start_date + timedelta(days=estimated_duration or DEFAULT_PHASE_DURATION)
