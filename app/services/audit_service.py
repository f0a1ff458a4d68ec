# app/services/audit_service.py
import logging
from decimal import Decimal
from datetime import datetime, date

from ..extensions import db
from ..models.audit import AuditLog, AuditAction

log = logging.getLogger(__name__)


def _jsonable(data):
    if data is None:
        return None
    if isinstance(data, dict):
        return {k: _jsonable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_jsonable(v) for v in data]
    if isinstance(data, Decimal):
        return str(data)
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    return data


def record_audit(actor_id, action, table, record_id=None, old_data=None, new_data=None) -> bool:
    """Append an audit entry in its own commit. Best-effort: never raises.

    Call only after the primary write has been committed; a failure here
    rolls back nothing but this entry.
    """
    try:
        action = AuditAction(action)
    except ValueError:
        log.error("record_audit: unknown action %r for %s/%s", action, table, record_id)
        return False
    try:
        db.session.add(AuditLog(
            user_id=actor_id,
            action=action.value,
            table_name=table,
            record_id=str(record_id) if record_id is not None else None,
            old_data=_jsonable(old_data),
            new_data=_jsonable(new_data),
        ))
        db.session.commit()
        return True
    except Exception as e:
        db.session.rollback()
        log.warning("record_audit failed action=%s record=%s: %s", action.value, record_id, e)
        return False
