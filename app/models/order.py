# app/models/order.py
import enum
from datetime import datetime
from ..extensions import db


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)

    client_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    freelancer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    gig_id = db.Column(db.Integer, db.ForeignKey("gig.id"), index=True)
    package_type = db.Column(db.String(20))  # basic|standard|premium

    price = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), default="NGN", nullable=False)
    commission_rate = db.Column(db.Numeric(5, 4))
    commission_amount = db.Column(db.Numeric(12, 2))
    freelancer_earnings = db.Column(db.Numeric(12, 2))

    # see OrderStatus; only OrderPaymentCoordinator writes this column
    status = db.Column(db.String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    requirements = db.Column(db.Text)
    dispute_reason = db.Column(db.Text)
    cancellation_reason = db.Column(db.Text)
    resolution_notes = db.Column(db.Text)

    delivery_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    delivered_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)

    client = db.relationship("User", foreign_keys=[client_id],
                             backref=db.backref("client_orders", lazy="selectin"))
    freelancer = db.relationship("User", foreign_keys=[freelancer_id],
                                 backref=db.backref("freelancer_orders", lazy="selectin"))
    gig = db.relationship("Gig")

    payment = db.relationship("Payment", back_populates="order", uselist=False)
    deliverables = db.relationship(
        "OrderDeliverable",
        back_populates="order",
        lazy="selectin",
        order_by="OrderDeliverable.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.CheckConstraint("price > 0", name="ck_orders_price_positive"),
    )

    @property
    def status_enum(self) -> OrderStatus:
        return OrderStatus(self.status)

    def is_party(self, user_id) -> bool:
        return user_id in (self.client_id, self.freelancer_id)


class OrderDeliverable(db.Model):
    __tablename__ = "order_deliverables"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    delivered_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    message = db.Column(db.Text)
    file_paths = db.Column(db.JSON, default=list)  # relative to UPLOAD_FOLDER
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    order = db.relationship("Order", back_populates="deliverables")
