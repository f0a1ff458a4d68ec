import hashlib
import hmac
from decimal import Decimal

import pytest
import requests

from app.exceptions import GatewayConfigError, GatewayError, GatewayNotReady, ScriptLoadTimeout
from app.services.paystack_service import (
    PaymentConfig,
    PaystackGateway,
    build_reference,
    parse_reference,
    to_major_units,
    to_minor_units,
    validate_public_key,
)

from conftest import SCRIPT_SOURCE, FakeHttp

PK = "pk_test_abc123"
SK = "sk_test_def456"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_gateway(http=None, **kwargs):
    clock = kwargs.pop("clock", FakeClock())
    return PaystackGateway(PK, SK, http=http or FakeHttp(), clock=clock, sleep=clock.sleep,
                           poll_interval=kwargs.pop("poll_interval", 1.0), **kwargs)


# -----------------
# Units & references
# -----------------

def test_minor_units():
    assert to_minor_units(Decimal("10000.00")) == 1_000_000
    assert to_minor_units("19.99") == 1999
    assert to_minor_units(0.1) == 10
    assert to_major_units(1999) == Decimal("19.99")


def test_every_cent_up_to_ten_naira_survives_kobo_conversion():
    for cents in range(0, 1001):
        amount = Decimal(cents) / 100
        assert to_major_units(to_minor_units(amount)) == amount


@pytest.mark.parametrize("amount", ["0.01", "0.10", "0.29", "1000000.00", "123456789.99", "999999999.99"])
def test_large_and_awkward_amounts_survive_kobo_conversion(amount):
    assert to_major_units(to_minor_units(Decimal(amount))) == Decimal(amount)
    assert to_minor_units(amount) == int(Decimal(amount) * 100)


def test_reference_embeds_order_id():
    ref = build_reference(42, ts_ms=1700000000000)
    assert ref == "ORDER-42-1700000000000"
    assert parse_reference(ref) == "42"


@pytest.mark.parametrize("ref", [None, "", "ORDER-42", "T123456", "ORDER-4-2-99", "ORDER-42-abc", "order-42-1"])
def test_foreign_references_do_not_parse(ref):
    assert parse_reference(ref) is None


def test_reference_rejects_ids_with_delimiter():
    with pytest.raises(ValueError):
        build_reference("a-b")
    with pytest.raises(ValueError):
        build_reference("")


def test_public_key_validation():
    assert validate_public_key("pk_live_xyz") == "pk_live_xyz"
    with pytest.raises(GatewayConfigError):
        validate_public_key("")
    with pytest.raises(GatewayConfigError):
        validate_public_key("sk_test_xyz")


# -----------------
# Script loading
# -----------------

def test_script_loads_once():
    http = FakeHttp()
    gw = make_gateway(http)
    gw.load_gateway_script()
    gw.load_gateway_script()
    assert gw.script_ready
    assert len(http.script_fetches()) == 1
    assert gw.script_integrity.startswith("sha384-")


def test_script_network_timeout():
    http = FakeHttp([requests.Timeout("slow"), SCRIPT_SOURCE])
    gw = make_gateway(http)
    with pytest.raises(ScriptLoadTimeout):
        gw.load_gateway_script()
    assert not gw.script_ready
    assert gw.script_integrity is None

    # a later attempt starts a fresh load
    gw.load_gateway_script()
    assert gw.script_ready
    assert len(http.script_fetches()) == 2


def test_script_waits_for_entry_point():
    http = FakeHttp(["var loading = true;", SCRIPT_SOURCE])
    gw = make_gateway(http)
    gw.load_gateway_script()
    assert gw.script_ready
    assert len(http.script_fetches()) == 2


def test_script_without_entry_point_times_out():
    clock = FakeClock()
    gw = make_gateway(FakeHttp(["var nothing = 1;"]), clock=clock, entry_timeout=5.0)
    with pytest.raises(ScriptLoadTimeout, match="PaystackPop"):
        gw.load_gateway_script()
    assert clock.now >= 5.0
    assert not gw.script_ready


# -----------------
# Popup
# -----------------

def _config(**kwargs):
    base = dict(public_key=PK, email="ada@example.com", amount=1_000_000, reference="ORDER-1-1700000000000")
    base.update(kwargs)
    return PaymentConfig(**base)


def test_initiate_before_script_is_a_contract_violation():
    with pytest.raises(GatewayNotReady):
        make_gateway().initiate_payment(_config())


def test_popup_success_is_delivered_once():
    seen = []
    gw = make_gateway()
    gw.load_gateway_script()
    session = gw.initiate_payment(_config(on_success=seen.append, metadata={"order_id": 1}))

    opts = session.setup_options()
    assert opts["key"] == PK
    assert opts["amount"] == 1_000_000
    assert opts["ref"] == "ORDER-1-1700000000000"
    assert opts["metadata"] == {"order_id": 1}

    assert gw.report_success("ORDER-1-1700000000000") is True
    assert gw.report_success("ORDER-1-1700000000000") is False
    assert gw.report_close("ORDER-1-1700000000000") is False
    assert seen == ["ORDER-1-1700000000000"]


def test_popup_close_runs_close_callback():
    closed = []
    gw = make_gateway()
    gw.load_gateway_script()
    gw.initiate_payment(_config(on_close=lambda: closed.append(True)))
    assert gw.report_close("ORDER-1-1700000000000") is True
    assert closed == [True]


def test_reopening_checkout_keeps_one_session_per_order():
    gw = make_gateway()
    gw.load_gateway_script()
    for ts in range(50):
        gw.initiate_payment(_config(reference=f"ORDER-1-{1700000000000 + ts}"))
    gw.initiate_payment(_config(reference="ORDER-2-1700000000000"))

    assert gw.open_sessions == 2
    assert gw.pending_session("ORDER-1-1700000000049") is not None
    assert gw.report_success("ORDER-1-1700000000000") is False


def test_abandoned_sessions_expire():
    clock = FakeClock()
    gw = make_gateway(clock=clock, session_ttl=60.0)
    gw.load_gateway_script()
    gw.initiate_payment(_config(reference="ORDER-1-1"))
    clock.now += 30
    gw.initiate_payment(_config(reference="ORDER-2-1"))
    clock.now += 45

    gw.initiate_payment(_config(reference="ORDER-3-1"))
    assert gw.open_sessions == 2
    assert gw.pending_session("ORDER-1-1") is None

    clock.now += 120
    assert gw.report_close("ORDER-3-1") is False
    assert gw.open_sessions == 0


def test_initiate_validates_inputs():
    gw = make_gateway()
    gw.load_gateway_script()
    with pytest.raises(GatewayConfigError):
        gw.initiate_payment(_config(public_key="bogus"))
    with pytest.raises(ValueError):
        gw.initiate_payment(_config(amount=0))
    with pytest.raises(ValueError):
        gw.initiate_payment(_config(email=""))


# -----------------
# REST API
# -----------------

def test_verify_transaction_returns_data_and_sends_secret():
    http = FakeHttp()
    http.verified["ORDER-1-1"] = {"status": "success", "amount": 500}
    data = make_gateway(http).verify_transaction("ORDER-1-1")
    assert data["amount"] == 500
    method, url, kwargs = http.calls[-1]
    assert url.endswith("/transaction/verify/ORDER-1-1")
    assert kwargs["headers"]["Authorization"] == f"Bearer {SK}"


def test_verify_unknown_reference_is_gateway_error():
    with pytest.raises(GatewayError):
        make_gateway().verify_transaction("ORDER-9-9")


def test_rest_calls_need_secret_key():
    gw = PaystackGateway(PK, "", http=FakeHttp())
    with pytest.raises(GatewayConfigError):
        gw.verify_transaction("ORDER-1-1")


def test_initialize_transaction_posts_kobo_amount():
    http = FakeHttp()
    data = make_gateway(http).initialize_transaction(
        email="ada@example.com", amount=1_000_000, reference="ORDER-1-2", callback_url="http://localhost/cb")
    assert data["authorization_url"].startswith("https://checkout.paystack.com/")
    method, url, kwargs = http.calls[-1]
    assert method == "POST"
    assert kwargs["json"]["amount"] == 1_000_000
    assert kwargs["json"]["callback_url"] == "http://localhost/cb"


def test_webhook_signature():
    gw = make_gateway()
    body = b'{"event":"charge.success"}'
    good = hmac.new(SK.encode(), body, hashlib.sha512).hexdigest()
    assert gw.verify_webhook_signature(body, good)
    assert not gw.verify_webhook_signature(body, "0" * 128)
    assert not gw.verify_webhook_signature(body, None)
