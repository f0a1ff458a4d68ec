# app/services/withdrawal_service.py
from __future__ import annotations

import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import PermissionDenied, WithdrawalValidationError
from ..extensions import db
from ..models.audit import AuditAction
from ..models.order import Order, OrderStatus
from ..models.user import User
from ..models.withdrawal import Withdrawal
from . import notification_service as notices
from .audit_service import record_audit
from .commission import to_money
from .rate_limit import get_limiter

log = logging.getLogger(__name__)

_ACCOUNT_RE = re.compile(r"^\d{10,}$")


def withdrawal_minimum() -> Decimal:
    return Decimal(str(current_app.config.get("WITHDRAWAL_MINIMUM", "2000")))


def _balance(freelancer_id, held_statuses) -> Decimal:
    earned = (
        db.session.query(func.coalesce(func.sum(Order.freelancer_earnings), 0))
        .filter(Order.freelancer_id == freelancer_id, Order.status == OrderStatus.COMPLETED.value)
        .scalar()
    )
    withdrawn = (
        db.session.query(func.coalesce(func.sum(Withdrawal.amount), 0))
        .filter(Withdrawal.freelancer_id == freelancer_id, Withdrawal.status.in_(held_statuses))
        .scalar()
    )
    return to_money(earned or 0) - to_money(withdrawn or 0)


def available_balance(freelancer_id) -> Decimal:
    """Earnings from completed orders less withdrawals that are pending or paid out."""
    return _balance(freelancer_id, ("pending", "approved"))


def approvable_balance(freelancer_id) -> Decimal:
    """Earnings less approved withdrawals only; other pending requests don't block an approval."""
    return _balance(freelancer_id, ("approved",))


def _parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw).replace(",", "").strip())
    except (InvalidOperation, AttributeError):
        raise WithdrawalValidationError("Amount is required") from None
    if not amount.is_finite() or amount <= 0:
        raise WithdrawalValidationError("Amount is required")
    return to_money(amount)


def validate_request(freelancer_id, amount, bank_name, account_number, account_name) -> Decimal:
    """Every check that must pass before a withdrawal row is written."""
    amount = _parse_amount(amount)
    minimum = withdrawal_minimum()
    if amount < minimum:
        raise WithdrawalValidationError(f"Minimum withdrawal amount is ₦{minimum:,.0f}")
    if not (bank_name or "").strip():
        raise WithdrawalValidationError("Bank name is required")
    if not _ACCOUNT_RE.match((account_number or "").strip()):
        raise WithdrawalValidationError("Account number must be at least 10 digits and contain only digits")
    if not (account_name or "").strip():
        raise WithdrawalValidationError("Account name is required")
    balance = available_balance(freelancer_id)
    if amount > balance:
        raise WithdrawalValidationError(f"Insufficient balance. Available: ₦{balance:,.2f}")
    return amount


def request_withdrawal(freelancer_id, amount, bank_name, account_number, account_name) -> Withdrawal:
    get_limiter().check(freelancer_id, scope="withdrawal")
    amount = validate_request(freelancer_id, amount, bank_name, account_number, account_name)

    w = Withdrawal(
        freelancer_id=freelancer_id,
        amount=amount,
        currency=current_app.config.get("DEFAULT_CURRENCY", "NGN"),
        bank_name=bank_name.strip(),
        account_number=account_number.strip(),
        account_name=account_name.strip(),
        status="pending",
    )
    try:
        db.session.add(w)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.exception("withdrawal insert failed freelancer=%s", freelancer_id)
        raise

    record_audit(freelancer_id, AuditAction.WITHDRAWAL_REQUEST, "withdrawals", w.id, None,
                 {"amount": amount, "bank_name": w.bank_name})
    log.info("withdrawal %s requested freelancer=%s amount=%s", w.id, freelancer_id, amount)
    return w


def _pending_for_admin(withdrawal_id, admin_id) -> Withdrawal:
    admin = db.session.get(User, admin_id)
    if admin is None or not admin.is_admin:
        raise PermissionDenied("Only admins can process withdrawals.")
    w = db.session.get(Withdrawal, withdrawal_id, populate_existing=True)
    if w is None:
        raise WithdrawalValidationError("Withdrawal not found.")
    if w.status != "pending":
        raise WithdrawalValidationError(f"Withdrawal is already {w.status}.")
    return w


def approve_withdrawal(withdrawal_id, admin_id) -> Withdrawal:
    w = _pending_for_admin(withdrawal_id, admin_id)

    balance = approvable_balance(w.freelancer_id)
    if to_money(w.amount) > balance:
        raise WithdrawalValidationError(f"Insufficient balance. Available: ₦{balance:,.2f}")

    updated = (
        Withdrawal.query
        .filter_by(id=w.id, status="pending")
        .update({"status": "approved", "processed_by": admin_id, "processed_at": datetime.utcnow()},
                synchronize_session=False)
    )
    if updated != 1:
        db.session.rollback()
        raise WithdrawalValidationError("Withdrawal was processed by someone else.")
    db.session.commit()
    db.session.refresh(w)

    record_audit(admin_id, AuditAction.WITHDRAWAL_APPROVE, "withdrawals", w.id,
                 {"status": "pending"}, {"status": "approved"})
    notices.notify_withdrawal_approved(w.freelancer_id, w.id, w.amount)
    return w


def reject_withdrawal(withdrawal_id, admin_id, reason: str | None = None) -> Withdrawal:
    w = _pending_for_admin(withdrawal_id, admin_id)
    reason = (reason or "").strip() or None
    updated = (
        Withdrawal.query
        .filter_by(id=w.id, status="pending")
        .update({"status": "rejected", "rejection_reason": reason, "processed_by": admin_id,
                 "processed_at": datetime.utcnow()},
                synchronize_session=False)
    )
    if updated != 1:
        db.session.rollback()
        raise WithdrawalValidationError("Withdrawal was processed by someone else.")
    db.session.commit()
    db.session.refresh(w)

    record_audit(admin_id, AuditAction.WITHDRAWAL_REJECT, "withdrawals", w.id,
                 {"status": "pending"}, {"status": "rejected", "reason": reason})
    notices.notify_withdrawal_rejected(w.freelancer_id, w.id, reason)
    return w
