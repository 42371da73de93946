"""
Shared pytest fixtures for the certification workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - people: one user per role, plus outsiders, all attached to one client org
    - project: draft SLF project with a fully staffed team
    - auth_header: builds a Bearer header for a user
"""

import pytest

from certflow import create_app
from certflow.models import db as _db
from certflow.models.auth import Client, Role, User
from certflow.models.project import ProjectTeam
from certflow.services.jwt_service import generate_access_token
from certflow.services.project_service import create_project


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def make_client(name="PT Gedung Sejahtera"):
    c = Client(name=name)
    _db.session.add(c)
    _db.session.commit()
    return c


def make_user(role, email, *, client_id=None, specialization=None):
    u = User(
        email=email,
        full_name=email.split("@")[0].replace(".", " ").title(),
        role=Role(role),
        client_id=client_id,
        specialization=specialization,
    )
    _db.session.add(u)
    _db.session.commit()
    return u


def add_member(project, user, role):
    row = ProjectTeam(project_id=project.id, user_id=user.id, role=Role(role))
    _db.session.add(row)
    _db.session.commit()
    return row


@pytest.fixture()
def people():
    """One account per role; outsiders hold the same roles but no ties to the project."""
    org = make_client()
    other_org = make_client("CV Lain")
    return {
        "org": org,
        "other_org": other_org,
        "superadmin": make_user("superadmin", "root@slf.test"),
        "admin_lead": make_user("admin_lead", "admin.lead@slf.test"),
        "admin_team": make_user("admin_team", "admin.team@slf.test"),
        "project_lead": make_user("project_lead", "project.lead@slf.test"),
        "inspector": make_user("inspector", "inspector@slf.test", specialization="struktur"),
        "drafter": make_user("drafter", "drafter@slf.test"),
        "head_consultant": make_user("head_consultant", "head.consultant@slf.test"),
        "client_user": make_user("client", "owner@gedung.test", client_id=org.id),
        "other_client_user": make_user("client", "owner@lain.test", client_id=other_org.id),
        "outsider": make_user("admin_lead", "outsider@slf.test"),
        "outsider_admin_team": make_user("admin_team", "outsider.team@slf.test"),
    }


@pytest.fixture()
def project(people):
    """Draft project created by the admin lead with every team role staffed."""
    p = create_project(
        people["admin_lead"],
        name="Gedung Kantor Sudirman",
        client_id=people["org"].id,
        project_lead_id=people["project_lead"].id,
        city="Jakarta",
    )
    add_member(p, people["admin_team"], "admin_team")
    add_member(p, people["inspector"], "inspector")
    add_member(p, people["drafter"], "drafter")
    add_member(p, people["head_consultant"], "head_consultant")
    return p


@pytest.fixture()
def auth_header():
    def _build(user):
        return {"Authorization": f"Bearer {generate_access_token(user)}"}
    return _build
