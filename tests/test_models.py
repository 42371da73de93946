"""
Model-level tables and helpers.

Covers:
  - every lookup table handles every status
  - closed enums reject unknown strings on write
  - phase templates and end-date arithmetic
"""

import enum
from datetime import date

import pytest
from sqlalchemy.exc import StatementError

from certflow.models import assert_exhaustive, db
from certflow.models.auth import Role, User
from certflow.models.document import DOCUMENT_TRANSITIONS, DocumentStatus
from certflow.models.project import (
    PROJECT_TRANSITIONS,
    ProjectStatus,
    compute_end_date,
    derived_phase,
    phase_template_for,
    validate_project_transition,
)


class _Color(str, enum.Enum):
    RED = "red"
    BLUE = "blue"


class TestTables:

    def test_assert_exhaustive_names_the_gap(self):
        with pytest.raises(RuntimeError, match="blue"):
            assert_exhaustive({_Color.RED: 1}, _Color, "COLORS")

    def test_terminal_project_states_have_no_exits(self):
        for status in (ProjectStatus.COMPLETED, ProjectStatus.CANCELLED, ProjectStatus.REJECTED):
            assert PROJECT_TRANSITIONS[status] == []

    def test_main_path_is_linear(self):
        assert validate_project_transition(ProjectStatus.DRAFT, ProjectStatus.SUBMITTED)
        assert not validate_project_transition(ProjectStatus.DRAFT, ProjectStatus.INSPECTION_SCHEDULED)

    def test_document_terminal_states_are_never_sources(self):
        sources = {s for rule in DOCUMENT_TRANSITIONS.values() for s in rule["from"]}
        assert DocumentStatus.COMPLETED not in sources
        assert DocumentStatus.CANCELLED not in sources
        # slf_issued still moves on to completed
        assert DocumentStatus.SLF_ISSUED in sources

    def test_derived_phase(self):
        assert derived_phase("draft") == 1
        assert derived_phase(ProjectStatus.CLIENT_REVIEW) == 4
        assert derived_phase(ProjectStatus.REJECTED) is None


class TestEnumColumn:

    def test_unknown_status_string_is_rejected(self, people, project):
        project.status = "issued"
        with pytest.raises(StatementError):
            db.session.commit()
        db.session.rollback()


class TestPhaseTemplates:

    @pytest.mark.parametrize("app_type,first_names", [
        ("SLF", "Persiapan Dokumen"),
        ("PBG-baru", "Persiapan Dokumen"),
        (None, "Persiapan Dokumen"),
    ])
    def test_templates_have_five_phases(self, app_type, first_names):
        template = phase_template_for(app_type)
        assert [p["phase"] for p in template] == [1, 2, 3, 4, 5]
        assert template[0]["name"] == first_names

    def test_pbg_has_its_own_template(self):
        assert phase_template_for("pbg")[1]["name"] == "Review Teknis"
        assert phase_template_for("SLF")[1]["name"] == "Inspeksi Lapangan"

    def test_compute_end_date(self):
        assert compute_end_date(date(2026, 2, 25), 5) == date(2026, 3, 2)
        assert compute_end_date(date(2026, 2, 25), None) == date(2026, 3, 4)


class TestUser:

    def test_unknown_specialization_is_refused(self):
        with pytest.raises(ValueError):
            User(email="x@slf.test", role=Role.INSPECTOR, specialization="listrik")

    def test_known_specialization(self):
        assert User(email="y@slf.test", role=Role.INSPECTOR, specialization="mep").specialization == "mep"
