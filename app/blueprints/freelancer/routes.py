# app/blueprints/freelancer/routes.py
from flask import render_template, redirect, url_for, flash, request
from flask_login import login_required, current_user

from ...exceptions import RateLimitExceeded, WithdrawalValidationError
from ...models.order import Order, OrderStatus
from ...models.withdrawal import Withdrawal
from ...security import roles_required
from ...services.withdrawal_service import available_balance, request_withdrawal, withdrawal_minimum
from . import freelancer_bp


# -----------------
# Earnings
# -----------------

@freelancer_bp.route("/earnings")
@login_required
@roles_required("freelancer")
def earnings():
    completed = (
        Order.query
        .filter_by(freelancer_id=current_user.id, status=OrderStatus.COMPLETED.value)
        .order_by(Order.completed_at.desc())
        .limit(20)
        .all()
    )
    withdrawals = (
        Withdrawal.query
        .filter_by(freelancer_id=current_user.id)
        .order_by(Withdrawal.created_at.desc())
        .all()
    )
    return render_template(
        "freelancer/earnings.html",
        balance=available_balance(current_user.id),
        minimum=withdrawal_minimum(),
        completed=completed,
        withdrawals=withdrawals,
    )


# -----------------
# Withdrawals
# -----------------

@freelancer_bp.route("/withdrawals", methods=["POST"])
@login_required
@roles_required("freelancer")
def withdrawal_request():
    f = request.form
    try:
        w = request_withdrawal(
            current_user.id,
            f.get("amount"),
            f.get("bank_name"),
            f.get("account_number"),
            f.get("account_name"),
        )
    except (WithdrawalValidationError, RateLimitExceeded) as e:
        flash(e.message, "danger")
        return redirect(url_for("freelancer.earnings"))

    flash(f"Withdrawal request of ₦{w.amount:,.2f} submitted successfully!", "success")
    return redirect(url_for("freelancer.earnings"))
