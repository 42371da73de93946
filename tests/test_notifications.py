"""
Notification dispatcher tests.

Covers:
  - one row per distinct recipient
  - delivery failure is retried, logged and never undoes the transition
  - recipient-only read tracking
"""

import logging

import pytest

from certflow.core.exceptions import NotFound
from certflow.models import db
from certflow.models.document import Document, DocumentApproval, DocumentStatus
from certflow.models.notification import Notification
from certflow.services.document_lifecycle import request_revision
from certflow.services import notification as notification_module
from certflow.services.notification import NotificationService


def _dispatch(project, recipients, **kw):
    return NotificationService.dispatch(
        recipients=recipients,
        project_id=project.id,
        type=kw.pop("type", "project_status_change"),
        message=kw.pop("message", "status berubah"),
        **kw,
    )


class TestDispatch:

    def test_one_row_per_distinct_recipient(self, people, project):
        ids = [people["inspector"].id, people["drafter"].id, people["inspector"].id, None]
        rows = _dispatch(project, ids, sender_id=people["admin_lead"].id)
        assert sorted(n.recipient_id for n in rows) == sorted({people["inspector"].id, people["drafter"].id})
        assert all(n.sender_id == people["admin_lead"].id for n in rows)

    def test_empty_recipients_is_noop(self, project):
        assert _dispatch(project, []) == []
        assert Notification.query.count() == 0

    def test_unknown_type_is_a_programming_error(self, people, project):
        with pytest.raises(ValueError):
            _dispatch(project, [people["inspector"].id], type="gossip")

    def test_failure_is_retried_then_dropped(self, app, people, project, monkeypatch, caplog):
        calls = {"n": 0}

        def _boom():
            calls["n"] += 1
            raise RuntimeError("db unavailable")

        monkeypatch.setattr(db.session, "commit", _boom)
        with caplog.at_level(logging.WARNING, logger="certflow.services.notification"):
            rows = _dispatch(project, [people["inspector"].id])

        assert rows == []
        assert calls["n"] == app.config["NOTIFICATION_MAX_ATTEMPTS"]
        assert any("Dropping" in r.getMessage() for r in caplog.records)

    def test_transition_survives_notification_failure(self, people, project, monkeypatch):
        doc = Document(project_id=project.id, name="Laporan", status=DocumentStatus.SUBMITTED)
        db.session.add(doc)
        db.session.commit()

        def _broken(**kwargs):
            raise RuntimeError("sink down")

        monkeypatch.setattr(notification_module, "Notification", _broken)
        result = request_revision(doc.id, people["admin_team"], "foto kurang jelas")

        assert result["new_status"] == DocumentStatus.REVISION_REQUESTED.value
        assert db.session.get(Document, doc.id, populate_existing=True).status == (
            DocumentStatus.REVISION_REQUESTED
        )
        assert DocumentApproval.query.filter_by(document_id=doc.id).count() == 1


class TestReadSide:

    def test_list_and_unread_count(self, people, project):
        inspector = people["inspector"].id
        _dispatch(project, [inspector], message="satu")
        _dispatch(project, [inspector], message="dua")
        items, total = NotificationService.list_for_recipient(inspector)
        assert total == 2
        assert [n.message for n in items] == ["dua", "satu"]
        assert NotificationService.unread_count(inspector) == 2

    def test_only_recipient_may_mark_read(self, people, project):
        (row,) = _dispatch(project, [people["inspector"].id])
        with pytest.raises(NotFound):
            NotificationService.mark_read(row.id, people["drafter"])
        marked = NotificationService.mark_read(row.id, people["inspector"])
        assert marked.read is True and marked.read_at is not None
        assert NotificationService.unread_count(people["inspector"].id) == 0

    def test_mark_all_read_scoped_to_recipient(self, people, project):
        _dispatch(project, [people["inspector"].id, people["drafter"].id])
        _dispatch(project, [people["inspector"].id])
        assert NotificationService.mark_all_read(people["inspector"].id) == 2
        assert NotificationService.unread_count(people["drafter"].id) == 1

    def test_unread_only_filter(self, people, project):
        first, = _dispatch(project, [people["inspector"].id])
        _dispatch(project, [people["inspector"].id])
        NotificationService.mark_read(first.id, people["inspector"])
        items, total = NotificationService.list_for_recipient(people["inspector"].id, unread_only=True)
        assert total == 1
