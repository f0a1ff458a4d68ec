# app/services/confirmation.py
"""Resolve a redirect-based Paystack return against our own payments table.

The payment row is written by the popup success route or the webhook, so
it can lag the browser's return by a few seconds. The poller re-reads it
on a fixed interval, gives up after ``max_attempts``, and can be cancelled
from another thread.
"""
from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

from flask import current_app

from ..extensions import db
from ..models.payment import Payment
from .paystack_service import parse_reference

log = logging.getLogger(__name__)


class ConfirmationOutcome(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


def fresh_payment_lookup(reference: str) -> Optional[Payment]:
    # drop cached rows so a payment committed by another request becomes visible
    db.session.expire_all()
    return Payment.query.filter_by(gateway_reference=reference).first()


class PaymentConfirmationPoller:
    def __init__(self, lookup: Callable[[str], Optional[Payment]] = fresh_payment_lookup, *,
                 interval: float = 2.0, max_attempts: int = 15):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.lookup = lookup
        self.interval = interval
        self.max_attempts = max_attempts
        self.attempts = 0
        self.order_id: str | None = None
        self._cancelled = threading.Event()

    @classmethod
    def from_config(cls, config, **kwargs) -> "PaymentConfirmationPoller":
        kwargs.setdefault("interval", float(config.get("PAYMENT_CONFIRM_INTERVAL", 2.0)))
        kwargs.setdefault("max_attempts", int(config.get("PAYMENT_CONFIRM_MAX_ATTEMPTS", 15)))
        return cls(**kwargs)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def resolve(self, reference: str | None) -> ConfirmationOutcome:
        self.order_id = parse_reference(reference)
        if self.order_id is None:
            log.warning("payment confirmation: unparseable reference %r", reference)
            return ConfirmationOutcome.ERROR

        for attempt in range(1, self.max_attempts + 1):
            if self._cancelled.is_set():
                log.info("payment confirmation cancelled ref=%s after %d attempts", reference, self.attempts)
                return ConfirmationOutcome.ERROR
            self.attempts = attempt
            payment = self.lookup(reference)
            if payment is not None and payment.status == "completed":
                log.info("payment confirmed ref=%s attempt=%d", reference, attempt)
                return ConfirmationOutcome.SUCCESS
            if payment is not None and payment.status == "failed":
                log.warning("payment ref=%s recorded as failed", reference)
                return ConfirmationOutcome.ERROR
            if attempt < self.max_attempts and self._cancelled.wait(self.interval):
                log.info("payment confirmation cancelled ref=%s after %d attempts", reference, attempt)
                return ConfirmationOutcome.ERROR

        log.error("payment confirmation gave up ref=%s after %d attempts", reference, self.max_attempts)
        return ConfirmationOutcome.ERROR


class ConfirmationRegistry:
    """In-flight waits, at most one per reference.

    Reloading the callback page starts a new wait for the same reference;
    the older one is cancelled so reloads never pile up blocked workers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: dict[str, PaymentConfirmationPoller] = {}

    def __len__(self):
        with self._lock:
            return len(self._active)

    def wait(self, reference: str, poller: PaymentConfirmationPoller) -> ConfirmationOutcome:
        with self._lock:
            previous = self._active.get(reference)
            self._active[reference] = poller
        if previous is not None:
            log.info("payment confirmation ref=%s superseded by a newer wait", reference)
            previous.cancel()
        try:
            return poller.resolve(reference)
        finally:
            with self._lock:
                if self._active.get(reference) is poller:
                    del self._active[reference]


def init_app(app) -> ConfirmationRegistry:
    registry = ConfirmationRegistry()
    app.extensions["payment_confirmations"] = registry
    return registry


def get_registry() -> ConfirmationRegistry:
    return current_app.extensions["payment_confirmations"]
