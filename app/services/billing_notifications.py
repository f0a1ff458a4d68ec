# app/services/billing_notifications.py
from flask import url_for
from ..services.email_service import send_email


def email_payment_received(order, payment) -> bool:
    client = getattr(order, "client", None)
    if not client or not client.email:
        return False
    return bool(send_email(
        to=client.email,
        subject=f"Payment received: Order {order.order_number}",
        template="payment_received.html",
        order=order,
        payment=payment,
        order_link=url_for("orders.order_view", order_id=order.id, _external=True),
    ))
