"""
SLF Certification Workflow Engine
SQLAlchemy extension instance and shared column helpers.

Every model module imports ``db`` from here; the application factory binds it
with ``db.init_app(app)``.
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


def enum_column(enum_cls, *, default=None, nullable=False, index=False, comment=None):
    """Closed-enum column stored as VARCHAR holding the member *value*.

    Unknown strings are rejected on bind, and rows load back as enum members,
    so a typo such as "issued" for "slf_issued" never reaches the table.
    """
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            length=40,
            validate_strings=True,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=nullable,
        default=default,
        index=index,
        comment=comment,
    )


def assert_exhaustive(table, enum_cls, name):
    """Fail at import time when a lookup table misses a member of its enum."""
    missing = set(enum_cls) - set(table)
    if missing:
        raise RuntimeError(
            f"{name} does not handle: {sorted(m.value for m in missing)}"
        )
