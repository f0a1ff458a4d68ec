# app/blueprints/orders/routes.py
import logging

from flask import render_template, redirect, url_for, flash, request, abort
from flask_login import login_required, current_user

from ...exceptions import MarketplaceError
from ...models.gig import Gig
from ...models.order import OrderStatus
from ...services.commission import split
from ...services.order_service import OrderPaymentCoordinator
from ...services.storage_service import save_upload, allowed_ext, delete_upload
from . import orders_bp

log = logging.getLogger(__name__)


# -----------------
# Helpers
# -----------------

def _can_view(order) -> bool:
    return current_user.is_authenticated and (
        current_user.is_admin or order.is_party(current_user.id)
    )


def _back(order_id):
    return redirect(url_for("orders.order_view", order_id=order_id))


def _discard_uploads(paths):
    for rel_path in paths:
        try:
            delete_upload(rel_path)
        except OSError as e:
            log.warning("could not remove orphaned upload %s: %s", rel_path, e)


def _flash_result(result, done_msg: str, noop_msg: str = "Nothing to do: the order was already updated."):
    if result.applied:
        flash(done_msg, "success")
    else:
        flash(noop_msg, "info")


# -----------------
# Place order
# -----------------

@orders_bp.route("/gig/<int:gig_id>", methods=["POST"])
@login_required
def order_create(gig_id):
    gig = Gig.query.get_or_404(gig_id)
    package_type = (request.form.get("package_type") or "").strip().lower()
    requirements = request.form.get("requirements")
    try:
        order = OrderPaymentCoordinator().create_order(current_user, gig, package_type, requirements)
    except MarketplaceError as e:
        flash(e.message, "warning")
        return redirect(request.referrer or url_for("index"))

    flash(f"Order {order.order_number} created. Complete payment to start.", "success")
    return redirect(url_for("payments.checkout", order_id=order.id))


# -----------------
# View
# -----------------

@orders_bp.route("/<int:order_id>")
@login_required
def order_view(order_id):
    coordinator = OrderPaymentCoordinator()
    try:
        order = coordinator.get_order(order_id)
    except MarketplaceError:
        abort(404)
    if not _can_view(order):
        abort(403)

    is_client = order.client_id == current_user.id
    return render_template(
        "orders/detail.html",
        order=order,
        breakdown=split(order.price, rate=order.commission_rate),
        is_client=is_client,
        is_freelancer=order.freelancer_id == current_user.id,
        needs_payment=(order.status == OrderStatus.PENDING and order.payment is None and is_client),
    )


# -----------------
# Freelancer: deliver
# -----------------

@orders_bp.route("/<int:order_id>/deliver", methods=["POST"])
@login_required
def order_deliver(order_id):
    coordinator = OrderPaymentCoordinator()
    try:
        order = coordinator.get_order(order_id)
    except MarketplaceError:
        abort(404)
    if order.freelancer_id != current_user.id:
        abort(403)
    if order.status != OrderStatus.IN_PROGRESS:
        flash("Only orders in progress can be delivered.", "warning")
        return _back(order_id)

    stored = []
    for f in request.files.getlist("files"):
        if not f or not f.filename:
            continue
        if not allowed_ext(f.filename):
            flash(f"Skipped unsupported file: {f.filename}", "info")
            continue
        stored.append(save_upload(f, subdir=f"deliverables/{order_id}"))

    result = None
    try:
        result = coordinator.mark_delivered(order_id, current_user.id, request.form.get("message"), stored)
    except MarketplaceError as e:
        flash(e.message, "warning")
        return _back(order_id)
    finally:
        # files no deliverable row points at
        if result is None or not result.applied or "deliverable" in result.failed_side_effects:
            _discard_uploads(stored)

    _flash_result(result, "Order delivered. The client has been notified.")
    return _back(order_id)


# -----------------
# Client: accept with feedback / ask for revision
# -----------------

@orders_bp.route("/<int:order_id>/accept", methods=["POST"])
@login_required
def order_accept(order_id):
    try:
        result = OrderPaymentCoordinator().accept_delivery(
            order_id, current_user.id,
            request.form.get("rating"), request.form.get("comment"),
        )
    except MarketplaceError as e:
        flash(e.message, "warning")
        return _back(order_id)

    if result.applied and "review" in result.failed_side_effects:
        flash("Gig closed! Review submission had an issue, but you can add it later.", "success")
    else:
        _flash_result(result, "Thank you for your feedback! Gig closed successfully.")
    return _back(order_id)


@orders_bp.route("/<int:order_id>/revision", methods=["POST"])
@login_required
def order_revision(order_id):
    try:
        result = OrderPaymentCoordinator().request_revision(order_id, current_user.id)
    except MarketplaceError as e:
        flash(e.message, "warning")
        return _back(order_id)
    _flash_result(result, "Revision requested. The freelancer will deliver again.")
    return _back(order_id)


# -----------------
# Either party: dispute / cancel
# -----------------

@orders_bp.route("/<int:order_id>/dispute", methods=["POST"])
@login_required
def order_dispute(order_id):
    try:
        result = OrderPaymentCoordinator().file_dispute(order_id, current_user.id, request.form.get("reason"))
    except MarketplaceError as e:
        flash(e.message, "warning")
        return _back(order_id)
    _flash_result(result, "Dispute filed. An admin will review it.")
    return _back(order_id)


@orders_bp.route("/<int:order_id>/cancel", methods=["POST"])
@login_required
def order_cancel(order_id):
    try:
        result = OrderPaymentCoordinator().cancel_order(order_id, current_user.id, request.form.get("reason"))
    except MarketplaceError as e:
        flash(e.message, "warning")
        return _back(order_id)
    _flash_result(result, "Order cancelled.")
    return _back(order_id)
