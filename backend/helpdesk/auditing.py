"""Creator/modifier stamping for auditable entities.

The authentication dependency records the acting user in a context variable;
a ``before_flush`` listener copies it onto every new or modified row that
carries ``AuditableMixin`` columns.
"""
import uuid
from contextvars import ContextVar, Token

from sqlalchemy import event
from sqlalchemy.orm import Session

from helpdesk.models.base import AuditableMixin

_current_user_id: ContextVar[uuid.UUID | None] = ContextVar("current_user_id", default=None)


def set_current_user_id(user_id: uuid.UUID | None) -> Token:
    return _current_user_id.set(user_id)


def reset_current_user_id(token: Token) -> None:
    _current_user_id.reset(token)


def get_current_user_id() -> uuid.UUID | None:
    return _current_user_id.get()


@event.listens_for(Session, "before_flush")
def _stamp_audit_columns(session: Session, flush_context, instances) -> None:
    user_id = _current_user_id.get()
    if user_id is None:
        return
    for obj in session.new:
        if isinstance(obj, AuditableMixin):
            if obj.creator_user_id is None:
                obj.creator_user_id = user_id
            obj.last_modifier_user_id = user_id
    for obj in session.dirty:
        if isinstance(obj, AuditableMixin) and session.is_modified(obj, include_collections=False):
            obj.last_modifier_user_id = user_id
