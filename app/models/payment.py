# app/models/payment.py
from datetime import datetime
from ..extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    # one payment per order under the normal flow
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), default="NGN", nullable=False)

    payment_gateway = db.Column(db.String(32), default="paystack")
    gateway_reference = db.Column(db.String(120), unique=True, nullable=False, index=True)
    # pending|completed|failed
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)

    commission_amount = db.Column(db.Numeric(12, 2), nullable=False)
    freelancer_payout_amount = db.Column(db.Numeric(12, 2), nullable=False)

    gateway_meta = db.Column(db.JSON)  # raw verify payload, when we have one
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    order = db.relationship("Order", back_populates="payment")

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"
