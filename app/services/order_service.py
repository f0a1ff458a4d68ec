# app/services/order_service.py
"""Order lifecycle: the only code that writes ``orders.status``.

Transitions are looked up in ``TRANSITIONS`` and applied as a conditional
UPDATE (``... WHERE id = :id AND status = :from``), so two racing triggers
cannot both move the same order. Side effects after the status write
(audit, notifications, reviews, deliverable rows) are best-effort.
"""
from __future__ import annotations

import enum
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..exceptions import (
    DuplicateCharge,
    InvalidTransition,
    OrderNotFound,
    OrderValidationError,
    PaymentMismatch,
    PaymentPersistenceError,
    PermissionDenied,
)
from ..extensions import db
from ..models.audit import AuditAction
from ..models.gig import Gig
from ..models.order import Order, OrderDeliverable, OrderStatus
from ..models.payment import Payment
from ..models.review import Review
from ..models.user import User
from . import notification_service as notices
from .audit_service import record_audit
from .billing_notifications import email_payment_received
from .commission import split
from .paystack_service import GATEWAY_NAME, parse_reference, to_minor_units

log = logging.getLogger(__name__)


class Trigger(str, enum.Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    DELIVER = "deliver"
    ACCEPT = "accept"
    REQUEST_REVISION = "request_revision"
    DISPUTE = "dispute"
    CANCEL = "cancel"
    RESOLVE_FAVOR_CLIENT = "resolve_favor_client"
    RESOLVE_FAVOR_FREELANCER = "resolve_favor_freelancer"
    RESOLVE_PARTIAL_REFUND = "resolve_partial_refund"


S, T = OrderStatus, Trigger

TRANSITIONS: dict[tuple[OrderStatus, Trigger], OrderStatus] = {
    (S.PENDING, T.PAYMENT_SUCCEEDED): S.IN_PROGRESS,
    (S.IN_PROGRESS, T.DELIVER): S.DELIVERED,
    (S.DELIVERED, T.ACCEPT): S.COMPLETED,
    (S.DELIVERED, T.REQUEST_REVISION): S.IN_PROGRESS,
    (S.PENDING, T.DISPUTE): S.DISPUTED,
    (S.IN_PROGRESS, T.DISPUTE): S.DISPUTED,
    (S.PENDING, T.CANCEL): S.CANCELLED,
    (S.IN_PROGRESS, T.CANCEL): S.CANCELLED,
    (S.DISPUTED, T.RESOLVE_FAVOR_CLIENT): S.CANCELLED,
    (S.DISPUTED, T.RESOLVE_FAVOR_FREELANCER): S.COMPLETED,
    (S.DISPUTED, T.RESOLVE_PARTIAL_REFUND): S.COMPLETED,
}

RESOLUTIONS = {
    "favor_client": T.RESOLVE_FAVOR_CLIENT,
    "favor_freelancer": T.RESOLVE_FAVOR_FREELANCER,
    "partial_refund": T.RESOLVE_PARTIAL_REFUND,
}


def next_status(current, trigger) -> OrderStatus:
    current, trigger = OrderStatus(current), Trigger(trigger)
    try:
        return TRANSITIONS[(current, trigger)]
    except KeyError:
        raise InvalidTransition(current.value, trigger.value) from None


def targets_of(trigger) -> set[OrderStatus]:
    trigger = Trigger(trigger)
    return {to for (_, t), to in TRANSITIONS.items() if t == trigger}


@dataclass
class TransitionResult:
    order: Order
    applied: bool
    previous: OrderStatus
    failed_side_effects: list = field(default_factory=list)


def _new_order_number(now: datetime) -> str:
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class OrderPaymentCoordinator:
    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._now = clock

    # -----------------
    # Lookups
    # -----------------

    def get_order(self, order_id) -> Order:
        try:
            oid = int(order_id)
        except (TypeError, ValueError):
            raise OrderNotFound() from None
        order = db.session.get(Order, oid, populate_existing=True)
        if order is None:
            raise OrderNotFound()
        return order

    def payment_for_reference(self, reference: str) -> Optional[Payment]:
        return Payment.query.filter_by(gateway_reference=reference).first()

    # -----------------
    # State machine core
    # -----------------

    def _compare_and_set(self, order_id: int, expected: OrderStatus, target: OrderStatus, values: dict) -> bool:
        """UPDATE orders SET status=target WHERE id=order_id AND status=expected. Not committed."""
        payload = dict(values)
        payload["status"] = target.value
        payload["updated_at"] = self._now()
        updated = (
            Order.query
            .filter(Order.id == order_id, Order.status == expected.value)
            .update(payload, synchronize_session=False)
        )
        return updated == 1

    def _apply(self, order: Order, trigger: Trigger, *, commit: bool = True, **values) -> TransitionResult:
        previous = OrderStatus(order.status)
        try:
            target = next_status(previous, trigger)
        except InvalidTransition:
            if previous in targets_of(trigger):
                log.info("order %s already %s; %s is a no-op", order.id, previous.value, trigger.value)
                return TransitionResult(order, False, previous)
            raise

        try:
            swapped = self._compare_and_set(order.id, previous, target, values)
        except SQLAlchemyError:
            db.session.rollback()
            log.exception("order %s: status write %s -> %s failed", order.id, previous.value, target.value)
            raise

        if not swapped:
            # someone else moved the order between our read and our write
            db.session.rollback()
            fresh = self.get_order(order.id)
            if fresh.status == target.value:
                log.info("order %s raced to %s; %s is a no-op", order.id, target.value, trigger.value)
                return TransitionResult(fresh, False, previous)
            raise InvalidTransition(fresh.status, trigger.value)

        if commit:
            try:
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                log.exception("order %s: commit of %s failed", order.id, trigger.value)
                raise
        db.session.expire(order)
        log.info("order %s: %s -> %s (%s)", order.id, previous.value, target.value, trigger.value)
        return TransitionResult(order, True, previous)

    def _best_effort(self, result: TransitionResult, name: str, fn, *args, **kwargs):
        try:
            ok = fn(*args, **kwargs)
        except Exception as e:
            db.session.rollback()
            log.warning("order %s: side effect %s failed: %s", result.order.id, name, e)
            ok = False
        if ok is False:
            result.failed_side_effects.append(name)
        return ok

    # -----------------
    # Guards
    # -----------------

    @staticmethod
    def _require_client(order: Order, actor_id):
        if order.client_id != actor_id:
            raise PermissionDenied("Only the client of this order can do that.")

    @staticmethod
    def _require_freelancer(order: Order, actor_id):
        if order.freelancer_id != actor_id:
            raise PermissionDenied("Only the freelancer on this order can do that.")

    @staticmethod
    def _require_admin(actor_id) -> User:
        actor = db.session.get(User, actor_id)
        if actor is None or not actor.is_admin:
            raise PermissionDenied("Only admins can resolve disputes.")
        return actor

    # -----------------
    # Creation
    # -----------------

    def create_order(self, client: User, gig: Gig, package_type: str, requirements: str | None = None) -> Order:
        if gig is None or not gig.is_active:
            raise OrderValidationError("This service is not available.")
        if client.id == gig.freelancer_id:
            raise OrderValidationError("You cannot order your own service")
        price, days = gig.package(package_type)
        if price is None or price <= 0:
            raise OrderValidationError("Invalid package selected")

        now = self._now()
        s = split(price)
        order = Order(
            order_number=_new_order_number(now),
            client_id=client.id,
            freelancer_id=gig.freelancer_id,
            gig_id=gig.id,
            package_type=package_type,
            price=s.price,
            currency="NGN",
            commission_rate=s.rate,
            commission_amount=s.commission,
            freelancer_earnings=s.payout,
            status=OrderStatus.PENDING.value,
            requirements=(requirements or "").strip() or None,
            delivery_date=(now + timedelta(days=days)) if days else None,
            created_at=now,
        )
        try:
            db.session.add(order)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            log.exception("create_order failed client=%s gig=%s", client.id, gig.id)
            raise

        result = TransitionResult(order, True, OrderStatus.PENDING)
        self._best_effort(result, "gig_orders_count", self._bump_orders_count, gig.id)
        self._best_effort(result, "audit", record_audit, client.id, AuditAction.ORDER_CREATE, "orders", order.id,
                          None, {"order_number": order.order_number, "gig_id": gig.id,
                                 "package_type": package_type, "price": s.price})
        self._best_effort(result, "notify", notices.notify_order_received, gig.freelancer_id, order.id, client.name)
        return order

    @staticmethod
    def _bump_orders_count(gig_id):
        Gig.query.filter_by(id=gig_id).update({"orders_count": Gig.orders_count + 1}, synchronize_session=False)
        db.session.commit()
        return True

    # -----------------
    # pending -> in_progress
    # -----------------

    def record_payment_success(self, order_id, reference: str, actor_id=None, *,
                               verified: dict | None = None, gateway: str = GATEWAY_NAME) -> Payment:
        """Persist the charge and start the order. Safe to call again for the same reference."""
        existing = self.payment_for_reference(reference)
        if existing is not None:
            log.info("payment %s already recorded for order %s", reference, existing.order_id)
            return existing

        order = self.get_order(order_id)
        embedded = parse_reference(reference)
        if embedded is not None and embedded != str(order.id):
            raise PaymentMismatch(f"reference {reference} does not belong to order {order.id}")
        if verified is not None:
            self._check_verified(order, reference, verified)

        s = split(order.price, rate=order.commission_rate)
        now = self._now()
        try:
            result = self._apply(order, Trigger.PAYMENT_SUCCEEDED, commit=False)
        except InvalidTransition as e:
            return self._unapplied_charge(order, reference, actor_id, e.current)
        except SQLAlchemyError as e:
            log.error("payment %s succeeded at gateway but order %s was not updated: %s", reference, order_id, e)
            raise PaymentPersistenceError() from e
        if not result.applied:
            return self._unapplied_charge(order, reference, actor_id, result.previous.value)

        try:
            payment = Payment(
                order_id=order.id,
                amount=s.price,
                currency=order.currency,
                payment_gateway=gateway,
                gateway_reference=reference,
                status="completed",
                commission_amount=s.commission,
                freelancer_payout_amount=s.payout,
                gateway_meta=verified,
                paid_at=now,
            )
            db.session.add(payment)
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raced = self.payment_for_reference(reference)
            if raced is not None:
                return raced
            log.error("payment %s for order %s could not be stored: %s", reference, order_id, e)
            raise PaymentPersistenceError() from e
        except SQLAlchemyError as e:
            db.session.rollback()
            log.error("payment %s succeeded at gateway but order %s was not updated: %s", reference, order_id, e)
            raise PaymentPersistenceError() from e

        order = self.get_order(order.id)
        result = TransitionResult(order, True, OrderStatus.PENDING)
        self._best_effort(result, "audit_payment", record_audit, actor_id, AuditAction.PAYMENT_COMPLETED,
                          "payments", payment.id, None,
                          {"order_id": order.id, "amount": payment.amount, "status": "completed",
                           "gateway_reference": reference})
        self._best_effort(result, "audit_status", record_audit, actor_id, AuditAction.ORDER_STATUS_CHANGE,
                          "orders", order.id, {"status": OrderStatus.PENDING.value},
                          {"status": OrderStatus.IN_PROGRESS.value})
        self._best_effort(result, "notify", notices.notify_payment_received,
                          order.freelancer_id, order.id, order.order_number)
        self._best_effort(result, "receipt", email_payment_received, order, payment)
        return payment

    def _unapplied_charge(self, order: Order, reference: str, actor_id, status) -> Payment:
        """The order left ``pending`` before this charge landed.

        Returns the payment when the same reference won the race; otherwise
        audits the stray charge and raises DuplicateCharge.
        """
        db.session.rollback()
        raced = self.payment_for_reference(reference)
        if raced is not None:
            return raced
        log.error("payment %s captured for order %s in status %s; needs a refund", reference, order.id, status)
        record_audit(actor_id, AuditAction.PAYMENT_FAILED, "orders", order.id, None,
                     {"reference": reference, "reason": "duplicate_charge", "order_status": status,
                      "amount": order.price})
        raise DuplicateCharge(f"order {order.id} is {status}; charge {reference} needs a refund")

    @staticmethod
    def _check_verified(order: Order, reference: str, verified: dict):
        status = (verified.get("status") or "").lower()
        if status != "success":
            raise PaymentMismatch(f"gateway reports {status or 'no'} status for {reference}")
        if verified.get("reference") not in (None, reference):
            raise PaymentMismatch(f"gateway verified {verified.get('reference')} instead of {reference}")
        try:
            amount = int(verified.get("amount"))
        except (TypeError, ValueError):
            raise PaymentMismatch(f"gateway amount missing for {reference}") from None
        if amount != to_minor_units(order.price):
            raise PaymentMismatch(f"gateway amount {amount} != order {to_minor_units(order.price)}")
        currency = (verified.get("currency") or order.currency).upper()
        if currency != order.currency.upper():
            raise PaymentMismatch(f"gateway currency {currency} != order {order.currency}")

    # -----------------
    # in_progress -> delivered
    # -----------------

    def mark_delivered(self, order_id, actor_id, message: str | None = None,
                       files: Iterable[str] = ()) -> TransitionResult:
        order = self.get_order(order_id)
        self._require_freelancer(order, actor_id)
        message = (message or "").strip()
        files = [f for f in files if f]
        if not message and not files:
            raise OrderValidationError("Please add files or a message to deliver the order")

        result = self._apply(order, Trigger.DELIVER, delivered_at=self._now())
        if not result.applied:
            return result

        self._best_effort(result, "deliverable", self._add_deliverable, order.id, actor_id, message, files)
        freelancer = db.session.get(User, actor_id)
        self._best_effort(result, "notify", notices.notify_order_delivered, order.client_id, order.id,
                          getattr(freelancer, "name", None) or "Freelancer")
        return result

    @staticmethod
    def _add_deliverable(order_id, actor_id, message, files):
        db.session.add(OrderDeliverable(order_id=order_id, delivered_by=actor_id,
                                        message=message or None, file_paths=list(files)))
        db.session.commit()
        return True

    # -----------------
    # delivered -> completed / in_progress
    # -----------------

    def accept_delivery(self, order_id, actor_id, rating, comment: str | None = None) -> TransitionResult:
        order = self.get_order(order_id)
        self._require_client(order, actor_id)
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            rating = 0
        if not 1 <= rating <= 5:
            raise OrderValidationError("Please select a rating between 1 and 5 stars.")

        result = self._apply(order, Trigger.ACCEPT, completed_at=self._now())
        if not result.applied:
            return result

        # completion stands even if the review cannot be written
        self._best_effort(result, "review", self._add_review, order, actor_id, rating, comment)
        self._best_effort(result, "audit", record_audit, actor_id, AuditAction.ORDER_COMPLETE, "orders", order.id,
                          {"status": OrderStatus.DELIVERED.value}, {"status": OrderStatus.COMPLETED.value})
        self._best_effort(result, "notify_client", notices.notify_order_completed, order.client_id, order.id, True)
        self._best_effort(result, "notify_freelancer", notices.notify_order_completed,
                          order.freelancer_id, order.id, False)
        return result

    @staticmethod
    def _add_review(order, reviewer_id, rating, comment):
        db.session.add(Review(order_id=order.id, reviewer_id=reviewer_id, reviewee_id=order.freelancer_id,
                              rating=rating, comment=(comment or "").strip() or None))
        db.session.commit()
        return True

    def request_revision(self, order_id, actor_id) -> TransitionResult:
        order = self.get_order(order_id)
        self._require_client(order, actor_id)
        return self._apply(order, Trigger.REQUEST_REVISION)

    # -----------------
    # Escape hatches
    # -----------------

    def file_dispute(self, order_id, actor_id, reason: str | None = None) -> TransitionResult:
        order = self.get_order(order_id)
        if not order.is_party(actor_id):
            raise PermissionDenied("Only the client or freelancer of this order can open a dispute.")
        reason = (reason or "").strip()
        if not reason:
            raise OrderValidationError("Please describe the problem.")
        return self._apply(order, Trigger.DISPUTE, dispute_reason=reason)

    def cancel_order(self, order_id, actor_id, reason: str | None = None) -> TransitionResult:
        order = self.get_order(order_id)
        if not order.is_party(actor_id):
            self._require_admin(actor_id)
        reason = (reason or "").strip() or None
        result = self._apply(order, Trigger.CANCEL, cancelled_at=self._now(), cancellation_reason=reason)
        if result.applied:
            self._best_effort(result, "audit", record_audit, actor_id, AuditAction.ORDER_CANCEL, "orders",
                              order.id, {"status": result.previous.value},
                              {"status": OrderStatus.CANCELLED.value, "reason": reason})
        return result

    def resolve_dispute(self, order_id, admin_id, action: str, notes: str | None = None) -> TransitionResult:
        self._require_admin(admin_id)
        trigger = RESOLUTIONS.get(action)
        if trigger is None:
            raise OrderValidationError("Please select a resolution action")
        order = self.get_order(order_id)

        notes = (notes or "").strip() or f"Dispute resolved: {action}"
        now = self._now()
        values = {"resolution_notes": notes}
        if next_status(OrderStatus.DISPUTED, trigger) == OrderStatus.CANCELLED:
            values.update(cancellation_reason=notes, cancelled_at=now)
        else:
            values.update(completed_at=now)

        result = self._apply(order, trigger, **values)
        if result.applied:
            new_status = next_status(OrderStatus.DISPUTED, trigger).value
            self._best_effort(result, "audit", record_audit, admin_id, AuditAction.DISPUTE_RESOLVED, "orders",
                              order.id, {"status": OrderStatus.DISPUTED.value},
                              {"resolution_action": action, "resolution_notes": notes, "new_status": new_status})
        return result
