import threading
from types import SimpleNamespace

import pytest

from app.services.confirmation import (
    ConfirmationOutcome,
    ConfirmationRegistry,
    PaymentConfirmationPoller,
    fresh_payment_lookup,
)

REF = "ORDER-7-1700000000000"


class Lookup:
    """Returns the queued payments in order, then keeps returning the last one."""

    def __init__(self, *results, on_call=None):
        self.results = list(results) or [None]
        self.calls = 0
        self.on_call = on_call

    def __call__(self, reference):
        self.calls += 1
        if self.on_call:
            self.on_call(self.calls)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def completed():
    return SimpleNamespace(status="completed")


def test_unparseable_reference_errors_without_polling():
    lookup = Lookup(completed())
    poller = PaymentConfirmationPoller(lookup, interval=0)
    assert poller.resolve("T12345") == ConfirmationOutcome.ERROR
    assert poller.resolve(None) == ConfirmationOutcome.ERROR
    assert lookup.calls == 0


def test_success_once_payment_lands():
    lookup = Lookup(None, None, completed())
    poller = PaymentConfirmationPoller(lookup, interval=0, max_attempts=5)
    assert poller.resolve(REF) == ConfirmationOutcome.SUCCESS
    assert poller.attempts == 3
    assert poller.order_id == "7"


def test_gives_up_after_max_attempts():
    lookup = Lookup(None)
    poller = PaymentConfirmationPoller(lookup, interval=0, max_attempts=4)
    assert poller.resolve(REF) == ConfirmationOutcome.ERROR
    assert lookup.calls == 4


def test_failed_payment_is_an_error():
    lookup = Lookup(SimpleNamespace(status="failed"))
    poller = PaymentConfirmationPoller(lookup, interval=0)
    assert poller.resolve(REF) == ConfirmationOutcome.ERROR
    assert lookup.calls == 1


def test_cancel_before_start():
    lookup = Lookup(completed())
    poller = PaymentConfirmationPoller(lookup, interval=0)
    poller.cancel()
    assert poller.cancelled
    assert poller.resolve(REF) == ConfirmationOutcome.ERROR
    assert lookup.calls == 0


def test_cancel_interrupts_the_wait():
    holder = {}

    def cancel_during_first_lookup(call):
        if call == 1:
            holder["poller"].cancel()

    lookup = Lookup(None, on_call=cancel_during_first_lookup)
    # a long interval would hang the test if cancel() didn't wake the wait
    poller = holder["poller"] = PaymentConfirmationPoller(lookup, interval=60, max_attempts=15)
    assert poller.resolve(REF) == ConfirmationOutcome.ERROR
    assert lookup.calls == 1
    assert poller.attempts == 1


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        PaymentConfirmationPoller(Lookup(), max_attempts=0)


def test_from_config(app):
    poller = PaymentConfirmationPoller.from_config(app.config)
    assert poller.interval == 0.0
    assert poller.max_attempts == 3


def test_fresh_lookup_sees_recorded_payment(paid_order):
    ref = paid_order.payment.gateway_reference
    assert fresh_payment_lookup(ref).order_id == paid_order.id
    poller = PaymentConfirmationPoller.from_config({"PAYMENT_CONFIRM_INTERVAL": 0, "PAYMENT_CONFIRM_MAX_ATTEMPTS": 2})
    assert poller.resolve(ref) == ConfirmationOutcome.SUCCESS


def test_from_config_overrides(app):
    poller = PaymentConfirmationPoller.from_config(app.config, max_attempts=1)
    assert poller.max_attempts == 1
    assert poller.interval == 0.0


def test_newer_wait_cancels_the_older_one():
    registry = ConfirmationRegistry()
    first_polling = threading.Event()

    def first_lookup(reference):
        first_polling.set()
        return None

    # would block for a minute per attempt unless cancelled
    older = PaymentConfirmationPoller(first_lookup, interval=60, max_attempts=15)
    outcomes = {}
    worker = threading.Thread(target=lambda: outcomes.setdefault("older", registry.wait(REF, older)))
    worker.start()
    assert first_polling.wait(5)

    newer = PaymentConfirmationPoller(Lookup(completed()), interval=0)
    assert registry.wait(REF, newer) == ConfirmationOutcome.SUCCESS
    worker.join(5)

    assert not worker.is_alive()
    assert outcomes["older"] == ConfirmationOutcome.ERROR
    assert older.cancelled and not newer.cancelled
    assert len(registry) == 0


def test_waits_on_other_references_are_left_alone():
    registry = ConfirmationRegistry()
    other = PaymentConfirmationPoller(Lookup(), interval=0)
    registry._active["ORDER-8-1"] = other
    assert registry.wait(REF, PaymentConfirmationPoller(Lookup(completed()), interval=0)) == ConfirmationOutcome.SUCCESS
    assert not other.cancelled
    assert len(registry) == 1
