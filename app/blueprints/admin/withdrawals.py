# app/blueprints/admin/withdrawals.py
from flask import render_template, request, redirect, url_for, flash
from flask_login import login_required, current_user

from ...exceptions import MarketplaceError
from ...models.withdrawal import Withdrawal
from ...security import roles_required
from ...services.withdrawal_service import approve_withdrawal, reject_withdrawal
from . import admin_bp

STATUSES = ("pending", "approved", "rejected")


@admin_bp.get("/withdrawals")
@login_required
@roles_required("admin")
def withdrawals():
    status = (request.args.get("status") or "pending").strip()
    base = Withdrawal.query.order_by(Withdrawal.created_at.desc())
    if status in STATUSES:
        base = base.filter(Withdrawal.status == status)
    return render_template("admin/withdrawals.html", withdrawals=base.all(), status=status, statuses=STATUSES)


@admin_bp.post("/withdrawals/<int:withdrawal_id>/approve")
@login_required
@roles_required("admin")
def withdrawal_approve(withdrawal_id):
    try:
        w = approve_withdrawal(withdrawal_id, current_user.id)
    except MarketplaceError as e:
        flash(e.message, "danger")
        return redirect(url_for("admin.withdrawals"))
    flash(f"Withdrawal #{w.id} approved.", "success")
    return redirect(url_for("admin.withdrawals"))


@admin_bp.post("/withdrawals/<int:withdrawal_id>/reject")
@login_required
@roles_required("admin")
def withdrawal_reject(withdrawal_id):
    try:
        w = reject_withdrawal(withdrawal_id, current_user.id, request.form.get("reason"))
    except MarketplaceError as e:
        flash(e.message, "danger")
        return redirect(url_for("admin.withdrawals"))
    flash(f"Withdrawal #{w.id} rejected.", "info")
    return redirect(url_for("admin.withdrawals"))
