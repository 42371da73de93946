"""
Guarded state changes for workflow entities.

Every status write in the engine goes through ``compare_and_set`` so that
two requests racing on the same row cannot both succeed: the UPDATE only
matches while the row still holds the status the caller read, and a zero
rowcount is reported as ``Conflict``.

Usage:
    from certflow.services.helpers.state_guard import atomic, compare_and_set, get_or_404

    with atomic():
        doc = compare_and_set(Document, doc.id, DocumentStatus.SUBMITTED,
                              {"status": DocumentStatus.VERIFIED_BY_ADMIN_TEAM})
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select, update

from certflow.core.exceptions import Conflict, NotFound
from certflow.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, *, resource=None):
    """Load ``model`` by primary key or raise NotFound."""
    stmt = select(model).where(model.id == pk)
    obj = db.session.execute(stmt).scalar_one_or_none()
    if obj is None:
        raise NotFound(resource=resource or model.__name__, resource_id=pk)
    return obj


@contextmanager
def atomic():
    """Commit on success, roll back and re-raise on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def compare_and_set(model, pk, expected, values, *, extra_criteria=()):
    """Conditionally update one row and return the refreshed instance.

    Args:
        model: Mapped class with ``id`` and ``status`` columns.
        pk: Primary key of the row.
        expected: Status (or iterable of statuses) the row must still hold.
        values: Column values to write.
        extra_criteria: Additional WHERE clauses, e.g. a NOT EXISTS guard.

    Raises:
        Conflict: when no row matched, i.e. another writer got there first.
    """
    if isinstance(expected, str):
        expected_states = [expected]
    else:
        expected_states = list(expected)

    stmt = (
        update(model)
        .where(model.id == pk, model.status.in_(expected_states), *extra_criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        logger.info(
            "Guarded update lost on %s id=%s",
            model.__name__, pk,
            extra={"entity_type": model.__name__, "entity_id": pk},
        )
        raise Conflict(
            model.__name__, pk,
            f"status is no longer {', '.join(getattr(s, 'value', s) for s in expected_states)}",
        )
    return db.session.get(model, pk, populate_existing=True)
