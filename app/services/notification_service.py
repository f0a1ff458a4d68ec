# app/services/notification_service.py
import logging

from ..extensions import db
from ..models.notification import Notification, NotificationType
from ..models.user import User
from .email_service import send_email

log = logging.getLogger(__name__)


def notify(user_id, type, title, message, related_id=None, *, email=False) -> bool:
    """Fire-and-forget in-app notification (optionally mirrored by email).

    Failures are logged, never propagated.
    """
    try:
        ntype = NotificationType(type)
    except ValueError:
        log.error("notify: unknown notification type %r", type)
        return False
    try:
        n = Notification(
            user_id=user_id,
            type=ntype.value,
            title=title,
            message=message,
            related_id=str(related_id) if related_id is not None else None,
        )
        db.session.add(n)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        log.warning("notify failed user=%s type=%s: %s", user_id, ntype.value, e)
        return False

    if email:
        user = db.session.get(User, user_id)
        if user and user.email:
            send_email(to=user.email, subject=title, template="notification.html",
                       user=user, notification=n)
    return True


# Helpers for the common cases

def notify_order_received(freelancer_id, order_id, client_name):
    return notify(freelancer_id, NotificationType.ORDER_RECEIVED, "New Order Received",
                  f"You have received a new order from {client_name}. Check your dashboard for details.",
                  order_id)


def notify_payment_received(freelancer_id, order_id, order_number):
    return notify(freelancer_id, NotificationType.PAYMENT, "Order Paid",
                  f"Payment for order {order_number} is held in escrow. You can start work.",
                  order_id)


def notify_order_delivered(client_id, order_id, freelancer_name):
    return notify(client_id, NotificationType.ORDER_DELIVERED, "Order Delivered",
                  f"{freelancer_name} has delivered your order. Please review and accept.",
                  order_id, email=True)


def notify_order_completed(user_id, order_id, is_client: bool):
    message = ("Your order has been completed. Thank you!"
               if is_client else
               "Order marked as completed. Payment will be released shortly.")
    return notify(user_id, NotificationType.ORDER_COMPLETED, "Order Completed", message, order_id)


def notify_withdrawal_approved(freelancer_id, withdrawal_id, amount):
    return notify(freelancer_id, NotificationType.WITHDRAWAL_APPROVED, "Withdrawal Approved",
                  f"Your withdrawal request of ₦{amount:,.2f} has been approved and processed.",
                  withdrawal_id, email=True)


def notify_withdrawal_rejected(freelancer_id, withdrawal_id, reason=None):
    message = (f"Your withdrawal request was rejected: {reason}"
               if reason else
               "Your withdrawal request was rejected. Please contact support for more information.")
    return notify(freelancer_id, NotificationType.WITHDRAWAL_REJECTED, "Withdrawal Rejected",
                  message, withdrawal_id, email=True)
