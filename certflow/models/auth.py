"""
SLF Certification Workflow Engine
Identity models.

Models:
    - Client: the building owner organisation a project is filed for
    - User:   portal account with exactly one role
"""

import enum

from sqlalchemy.orm import validates

from certflow.models import _utcnow, db, enum_column


class Role(str, enum.Enum):
    SUPERADMIN = "superadmin"
    ADMIN_LEAD = "admin_lead"
    ADMIN_TEAM = "admin_team"
    PROJECT_LEAD = "project_lead"
    INSPECTOR = "inspector"
    DRAFTER = "drafter"
    HEAD_CONSULTANT = "head_consultant"
    CLIENT = "client"


# Inspector specialisations (checklist templates are keyed by these)
INSPECTOR_SPECIALIZATIONS = {"struktur", "arsitektur", "mep"}

# Roles that can hold a ProjectTeam membership
TEAM_ROLES = {
    Role.ADMIN_LEAD,
    Role.ADMIN_TEAM,
    Role.PROJECT_LEAD,
    Role.INSPECTOR,
    Role.DRAFTER,
    Role.HEAD_CONSULTANT,
}


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<Client {self.id}: {self.name}>"


class User(db.Model):
    """
    Portal account.

    ``specialization`` is only meaningful for inspectors and ``client_id``
    only for client-role users; both stay NULL otherwise.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200), default="")
    role = enum_column(Role, index=True)
    specialization = db.Column(db.String(30), nullable=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @validates("specialization")
    def _check_specialization(self, _key, value):
        if value is not None and value not in INSPECTOR_SPECIALIZATIONS:
            raise ValueError(f"Unknown inspector specialization: {value!r}")
        return value

    @property
    def is_superadmin(self):
        return self.role == Role.SUPERADMIN

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value if self.role else None,
            "specialization": self.specialization,
            "client_id": self.client_id,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role.value if self.role else '-'})>"
