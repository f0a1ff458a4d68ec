# app/blueprints/payments/routes.py
import logging
from functools import partial

from flask import render_template, redirect, url_for, flash, request, current_app, abort, jsonify
from flask_login import login_required, current_user

from ...exceptions import (
    DuplicateCharge,
    GatewayConfigError,
    GatewayError,
    MarketplaceError,
    PaymentMismatch,
    PaymentPersistenceError,
    RateLimitExceeded,
    ScriptLoadTimeout,
)
from ...models.audit import AuditAction
from ...models.order import OrderStatus
from ...services.audit_service import record_audit
from ...services.commission import split
from ...services.confirmation import ConfirmationOutcome, PaymentConfirmationPoller, get_registry
from ...services.order_service import OrderPaymentCoordinator
from ...services.paystack_service import (
    PaymentConfig,
    build_reference,
    get_gateway,
    parse_reference,
    to_minor_units,
    validate_public_key,
)
from ...services.rate_limit import PUBLIC, get_limiter
from . import payments_bp

log = logging.getLogger(__name__)


# -----------------
# Helpers
# -----------------

def _payable_order(order_id):
    """Order the current user may pay right now, or a redirect response."""
    try:
        order = OrderPaymentCoordinator().get_order(order_id)
    except MarketplaceError:
        abort(404)
    if order.client_id != current_user.id:
        flash("You are not allowed to pay for this order.", "danger")
        return None, redirect(url_for("index"))
    if order.payment is not None or order.status != OrderStatus.PENDING:
        flash("This order is already paid.", "info")
        return None, redirect(url_for("orders.order_view", order_id=order.id))
    return order, None


def settle_verified_payment(order_id, actor_id, reference):
    """Verify ``reference`` with Paystack, then record it against the order."""
    verified = get_gateway().verify_transaction(reference)
    return OrderPaymentCoordinator().record_payment_success(order_id, reference, actor_id, verified=verified)


def _on_popup_close(order_id, reference):
    log.info("Paystack popup closed without payment order=%s ref=%s", order_id, reference)


def _flash_settlement_error(e: MarketplaceError):
    if isinstance(e, PaymentPersistenceError):
        flash(PaymentPersistenceError.user_message, "danger")
    elif isinstance(e, (PaymentMismatch, DuplicateCharge)):
        flash(e.user_message, "danger")
    else:
        flash(e.message, "warning")


# -----------------
# Checkout (popup)
# -----------------

@payments_bp.route("/checkout/<int:order_id>")
@login_required
def checkout(order_id):
    order, bail = _payable_order(order_id)
    if bail is not None:
        return bail

    breakdown = split(order.price, rate=order.commission_rate)
    try:
        public_key = validate_public_key(current_app.config.get("PAYSTACK_PUBLIC_KEY"))
        get_limiter().check(current_user.id, scope="checkout")
        gateway = get_gateway()
        gateway.load_gateway_script()
    except GatewayConfigError as e:
        log.error("Paystack configuration error: %s", e.message)
        return render_template("payments/checkout.html", order=order, breakdown=breakdown,
                               error=e.message, retryable=False), 503
    except ScriptLoadTimeout as e:
        return render_template("payments/checkout.html", order=order, breakdown=breakdown,
                               error=e.user_message, retryable=True), 503
    except RateLimitExceeded as e:
        flash(e.message, "warning")
        return redirect(url_for("orders.order_view", order_id=order.id))

    reference = build_reference(order.id)
    session = gateway.initiate_payment(PaymentConfig(
        public_key=public_key,
        email=current_user.email,
        amount=to_minor_units(order.price),
        currency=order.currency,
        reference=reference,
        metadata={
            "order_id": order.id,
            "order_number": order.order_number,
            "custom_fields": [{
                "display_name": "Order Number",
                "variable_name": "order_number",
                "value": order.order_number,
            }],
        },
        on_success=partial(settle_verified_payment, order.id, current_user.id),
        on_close=partial(_on_popup_close, order.id, reference),
    ))
    record_audit(current_user.id, AuditAction.PAYMENT_INITIATED, "orders", order.id, None,
                 {"reference": reference, "amount": order.price})

    return render_template(
        "payments/checkout.html",
        order=order,
        breakdown=breakdown,
        popup_options=session.setup_options(),
        script_url=gateway.script_url,
        script_integrity=gateway.script_integrity,
        reference=reference,
        error=None,
    )


@payments_bp.route("/popup/<reference>/success", methods=["POST"])
@login_required
def popup_success(reference):
    order_id = parse_reference(reference)
    if order_id is None:
        flash("Invalid payment reference", "danger")
        return redirect(url_for("index"))

    try:
        if not get_gateway().report_success(reference):
            # popup was opened by another worker (or before a restart)
            settle_verified_payment(order_id, current_user.id, reference)
    except GatewayError:
        flash("We couldn't verify the payment at the moment. We'll update the order when it clears.", "warning")
        return redirect(url_for("payments.callback", reference=reference))
    except MarketplaceError as e:
        _flash_settlement_error(e)
        return redirect(url_for("orders.order_view", order_id=order_id))

    flash("Payment successful!", "success")
    return redirect(url_for("orders.order_view", order_id=order_id))


@payments_bp.route("/popup/<reference>/close", methods=["POST"])
@login_required
def popup_close(reference):
    order_id = parse_reference(reference)
    get_gateway().report_close(reference)
    flash("Payment cancelled", "info")
    if order_id is None:
        return redirect(url_for("index"))
    return redirect(url_for("orders.order_view", order_id=order_id))


# -----------------
# Redirect checkout (Paystack hosted page)
# -----------------

@payments_bp.route("/redirect/<int:order_id>")
@login_required
def redirect_checkout(order_id):
    order, bail = _payable_order(order_id)
    if bail is not None:
        return bail

    reference = build_reference(order.id)
    try:
        data = get_gateway().initialize_transaction(
            email=current_user.email,
            amount=to_minor_units(order.price),
            reference=reference,
            currency=order.currency,
            metadata={"order_id": order.id, "order_number": order.order_number},
            callback_url=current_app.config.get("PAYSTACK_CALLBACK_URL")
            or url_for("payments.callback", _external=True),
        )
    except MarketplaceError as e:
        flash(e.message, "danger")
        return redirect(url_for("orders.order_view", order_id=order.id))

    redirect_url = data.get("authorization_url")
    if not redirect_url:
        flash("Failed to create payment session. Please try again.", "danger")
        return redirect(url_for("orders.order_view", order_id=order.id))
    record_audit(current_user.id, AuditAction.PAYMENT_INITIATED, "orders", order.id, None,
                 {"reference": reference, "amount": order.price, "flow": "redirect"})
    return redirect(redirect_url)


# -----------------
# Redirect callback (public)
# -----------------

def _client_address():
    return request.remote_addr or "unknown"


@payments_bp.route("/callback")
def callback():
    reference = (request.args.get("reference") or request.args.get("trxref") or "").strip()
    order_id = parse_reference(reference)
    if order_id is None:
        flash("Invalid payment reference", "danger")
        return render_template("payments/callback.html", outcome=ConfirmationOutcome.ERROR.value,
                               order_id=None), 400
    get_limiter(PUBLIC).check(_client_address(), scope="callback")

    coordinator = OrderPaymentCoordinator()
    if coordinator.payment_for_reference(reference) is None:
        try:
            settle_verified_payment(order_id, None, reference)
        except MarketplaceError as e:
            # the webhook may still deliver it; the status poll decides
            log.warning("callback could not settle ref=%s yet: %s", reference, e.message)

    # short wait here; the page keeps polling /status for the rest of the deadline
    cfg = current_app.config
    poller = PaymentConfirmationPoller.from_config(
        cfg, max_attempts=int(cfg.get("PAYMENT_CALLBACK_MAX_ATTEMPTS", 2)))
    outcome = get_registry().wait(reference, poller)
    if outcome == ConfirmationOutcome.SUCCESS:
        flash("Payment verified successfully!", "success")
        return render_template("payments/callback.html", outcome=outcome.value, order_id=poller.order_id)
    return render_template(
        "payments/callback.html",
        outcome="pending",
        order_id=poller.order_id,
        status_url=url_for("payments.payment_status", reference=reference),
        poll_interval_ms=int(poller.interval * 1000),
        poll_attempts=int(cfg.get("PAYMENT_CONFIRM_MAX_ATTEMPTS", 15)),
    )


@payments_bp.route("/status/<reference>")
def payment_status(reference):
    """One non-blocking look at the payments table, for the callback page's poll."""
    try:
        get_limiter(PUBLIC).check(_client_address(), scope="payment_status")
    except RateLimitExceeded as e:
        return jsonify({"status": "error", "error": e.message}), 429

    poller = PaymentConfirmationPoller(max_attempts=1, interval=0)
    outcome = poller.resolve(reference)
    if poller.order_id is None:
        return jsonify({"status": "error", "error": "Invalid payment reference"}), 400
    status = "success" if outcome == ConfirmationOutcome.SUCCESS else "pending"
    return jsonify({"status": status, "order_id": poller.order_id})
