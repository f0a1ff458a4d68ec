# app/models/audit.py
import enum
from datetime import datetime
from sqlalchemy import event
from ..extensions import db


class AuditAction(str, enum.Enum):
    # orders
    ORDER_CREATE = "order_create"
    ORDER_STATUS_CHANGE = "order_status_change"
    ORDER_CANCEL = "order_cancel"
    ORDER_COMPLETE = "order_complete"
    DISPUTE_RESOLVED = "dispute_resolved"
    # payments
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    # reviews
    REVIEW_CREATE = "review_create"
    # withdrawals
    WITHDRAWAL_REQUEST = "withdrawal_request"
    WITHDRAWAL_APPROVE = "withdrawal_approve"
    WITHDRAWAL_REJECT = "withdrawal_reject"
    # auth
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"


class AuditLog(db.Model):
    """Append-only. Rows are never updated or deleted once flushed."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    action = db.Column(db.String(40), nullable=False, index=True)
    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.String(64), index=True)
    old_data = db.Column(db.JSON)
    new_data = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = db.relationship("User", lazy="joined")


@event.listens_for(AuditLog, "before_update")
def _audit_no_update(mapper, connection, target):
    raise ValueError("audit log entries are immutable")


@event.listens_for(AuditLog, "before_delete")
def _audit_no_delete(mapper, connection, target):
    raise ValueError("audit log entries are immutable")
