# app/blueprints/admin/disputes.py
from flask import render_template, request, redirect, url_for, flash
from flask_login import login_required, current_user

from ...exceptions import MarketplaceError
from ...models.order import Order, OrderStatus
from ...security import roles_required
from ...services.order_service import OrderPaymentCoordinator, RESOLUTIONS
from . import admin_bp


@admin_bp.get("/disputes")
@login_required
@roles_required("admin")
def disputes():
    orders = (
        Order.query
        .filter(Order.status == OrderStatus.DISPUTED.value)
        .order_by(Order.updated_at.desc())
        .all()
    )
    return render_template("admin/disputes.html", orders=orders, actions=list(RESOLUTIONS))


@admin_bp.post("/disputes/<int:order_id>/resolve")
@login_required
@roles_required("admin")
def dispute_resolve(order_id):
    action = (request.form.get("action") or "").strip().lower()
    notes = request.form.get("notes")
    try:
        result = OrderPaymentCoordinator().resolve_dispute(order_id, current_user.id, action, notes)
    except MarketplaceError as e:
        flash(e.message, "warning")
        return redirect(url_for("admin.disputes"))

    if result.applied:
        flash(f"Dispute resolved ({action.replace('_', ' ')}).", "success")
    else:
        flash("This dispute was already resolved.", "info")
    return redirect(url_for("admin.disputes"))
