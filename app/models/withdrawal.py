# app/models/withdrawal.py
from datetime import datetime
from ..extensions import db


class Withdrawal(db.Model):
    __tablename__ = "withdrawals"

    id = db.Column(db.Integer, primary_key=True)
    freelancer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), default="NGN", nullable=False)
    bank_name = db.Column(db.String(120), nullable=False)
    account_number = db.Column(db.String(20), nullable=False)
    account_name = db.Column(db.String(160), nullable=False)
    # pending|approved|rejected
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    rejection_reason = db.Column(db.Text)
    processed_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    processed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    freelancer = db.relationship("User", foreign_keys=[freelancer_id])
