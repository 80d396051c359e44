"""
Change journal for crosswalk records.

SQLAlchemy session listeners turn every flushed insert, update and delete of a
journaled table into one ``AuditLog`` row carrying the changed columns as
``{"field": [old, new]}``. The actor comes from a context variable that
``AuditContextMiddleware`` fills from the ``X-Actor`` request header.

    install_audit_listeners()        # once, from create_app
    set_audit_context(actor="grc")   # per request
"""
from __future__ import annotations

import contextvars
import enum
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from crosswalk.models.audit import AuditLog

logger = logging.getLogger(__name__)

_actor: contextvars.ContextVar[str | None] = contextvars.ContextVar("crosswalk_actor", default=None)

JOURNALED_TABLES = frozenset({
    "frameworks",
    "framework_versions",
    "controls",
    "control_evidence",
    "mappings",
    "compliance_drifts",
})
# Bookkeeping columns that change on every write.
_SKIPPED_COLUMNS = frozenset({"updated_at", "version", "last_computed_at"})

_PENDING_KEY = "crosswalk_audit_pending"
_WRITING_KEY = "crosswalk_audit_writing"


def set_audit_context(*, actor: str | None = None) -> None:
    _actor.set(actor)


def get_audit_actor() -> str | None:
    return _actor.get()


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _primary_key(obj: Any) -> str:
    values = inspect(obj).mapper.primary_key_from_instance(obj)
    return "/".join(str(v) for v in values)


def _changed_columns(obj: Any) -> dict[str, list]:
    state = inspect(obj)
    changes: dict[str, list] = {}
    for column in state.mapper.column_attrs:
        if column.key in _SKIPPED_COLUMNS:
            continue
        history = state.attrs[column.key].history
        if not history.has_changes():
            continue
        old = history.deleted[0] if history.deleted else None
        new = history.added[0] if history.added else None
        if old != new:
            changes[column.key] = [_jsonable(old), _jsonable(new)]
    return changes


def _journaled(obj: Any) -> bool:
    return getattr(obj, "__tablename__", None) in JOURNALED_TABLES


def _before_flush(session: Session, flush_context: Any, instances: Any) -> None:
    if session.info.get(_WRITING_KEY):
        return
    pending: list[tuple[str, Any, dict]] = session.info.setdefault(_PENDING_KEY, [])

    for obj in session.new:
        if _journaled(obj):
            pending.append(("create", obj, {}))
    for obj in session.dirty:
        if _journaled(obj) and session.is_modified(obj, include_collections=False):
            changes = _changed_columns(obj)
            if changes:
                pending.append(("update", obj, changes))
    for obj in session.deleted:
        if _journaled(obj):
            pending.append(("delete", obj, {}))


def _after_flush(session: Session, flush_context: Any) -> None:
    if session.info.get(_WRITING_KEY):
        return
    pending = session.info.pop(_PENDING_KEY, [])
    if not pending:
        return

    actor = _actor.get()
    session.info[_WRITING_KEY] = True
    try:
        for action, obj, changes in pending:
            # Inserted rows only have their primary key after the flush.
            session.add(AuditLog(
                actor=actor,
                action=action,
                entity_type=obj.__tablename__,
                entity_id=_primary_key(obj),
                changes=changes,
            ))
    finally:
        session.info[_WRITING_KEY] = False


def _after_rollback(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


def install_audit_listeners() -> None:
    if event.contains(Session, "before_flush", _before_flush):
        return
    event.listen(Session, "before_flush", _before_flush)
    event.listen(Session, "after_flush", _after_flush)
    event.listen(Session, "after_rollback", _after_rollback)
    logger.info("Audit journal listeners installed for %d tables", len(JOURNALED_TABLES))
