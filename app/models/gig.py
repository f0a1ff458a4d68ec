# app/models/gig.py
from datetime import datetime
from ..extensions import db

PACKAGE_TYPES = ("basic", "standard", "premium")


class Gig(db.Model):
    __tablename__ = "gig"

    id = db.Column(db.Integer, primary_key=True)
    freelancer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text)
    category = db.Column(db.String(50), index=True)

    basic_package_price = db.Column(db.Numeric(12, 2))
    standard_package_price = db.Column(db.Numeric(12, 2))
    premium_package_price = db.Column(db.Numeric(12, 2))
    basic_package_delivery_days = db.Column(db.Integer)
    standard_package_delivery_days = db.Column(db.Integer)
    premium_package_delivery_days = db.Column(db.Integer)

    orders_count = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    freelancer = db.relationship("User", back_populates="gigs")

    def package(self, package_type: str):
        """Return (price, delivery_days) for a package, or (None, None) if unknown."""
        if package_type not in PACKAGE_TYPES:
            return None, None
        return (
            getattr(self, f"{package_type}_package_price"),
            getattr(self, f"{package_type}_package_delivery_days"),
        )
