# app/blueprints/paystack_webhook.py
import json
import logging

from flask import Blueprint, request, jsonify

from ..exceptions import DuplicateCharge, MarketplaceError, PaymentPersistenceError
from ..extensions import csrf
from ..services.order_service import OrderPaymentCoordinator
from ..services.paystack_service import get_gateway, parse_reference

log = logging.getLogger(__name__)

paystack_webhook_bp = Blueprint("paystack_webhook", __name__, url_prefix="/ipn/paystack")


@paystack_webhook_bp.route("", methods=["POST"])
@csrf.exempt
def webhook():
    body = request.get_data()
    if not get_gateway().verify_webhook_signature(body, request.headers.get("x-paystack-signature")):
        log.warning("Paystack webhook with bad signature from %s", request.remote_addr)
        return jsonify({"ok": False}), 401

    try:
        event = json.loads(body or b"{}")
    except ValueError:
        return jsonify({"ok": False}), 400

    if event.get("event") != "charge.success":
        return jsonify({"ok": True}), 200

    data = event.get("data") or {}
    reference = data.get("reference")
    order_id = parse_reference(reference)
    if order_id is None:
        # not one of ours (e.g. a payment made outside the marketplace)
        log.info("Paystack webhook ignored foreign reference %r", reference)
        return jsonify({"ok": True}), 200

    try:
        OrderPaymentCoordinator().record_payment_success(order_id, reference, None, verified=data)
    except PaymentPersistenceError:
        # non-2xx makes Paystack retry the delivery
        return jsonify({"ok": False}), 500
    except DuplicateCharge as e:
        # audited for a manual refund; a retry would land in the same place
        log.warning("Paystack webhook ref=%s is a duplicate charge: %s", reference, e.message)
    except MarketplaceError as e:
        log.error("Paystack webhook ref=%s not applied: %s", reference, e.message)
    return jsonify({"ok": True}), 200
