# app/models/notification.py
import enum
from datetime import datetime
from ..extensions import db


class NotificationType(str, enum.Enum):
    ORDER_RECEIVED = "order_received"
    ORDER_DELIVERED = "order_delivered"
    ORDER_COMPLETED = "order_completed"
    PAYMENT = "payment"
    REVIEW = "review"
    DISPUTE = "dispute"
    WITHDRAWAL_APPROVED = "withdrawal_approved"
    WITHDRAWAL_REJECTED = "withdrawal_rejected"


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    related_id = db.Column(db.String(64))
    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
