from decimal import Decimal

import pytest
import requests

from app import create_app
from app.config import TestingConfig
from app.extensions import db
from app.models.gig import Gig
from app.models.user import User
from app.services import paystack_service
from app.services.order_service import OrderPaymentCoordinator
from app.services.paystack_service import to_minor_units

SCRIPT_SOURCE = "(function(){ window.PaystackPop = { setup: function(){} }; })();"


class FakeResponse:
    def __init__(self, status_code=200, text="", json_body=None):
        self.status_code = status_code
        self.text = text
        self._json = json_body

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeHttp:
    """Stands in for requests.Session against the Paystack script host and REST API."""

    def __init__(self, scripts=None):
        # each script fetch consumes one entry; the last one repeats
        self.scripts = list(scripts or [SCRIPT_SOURCE])
        self.verified = {}
        self.calls = []

    def script_fetches(self):
        return [c for c in self.calls if c[0] == "GET" and "/transaction/" not in c[1]]

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        if "/transaction/verify/" in url:
            data = self.verified.get(url.rsplit("/", 1)[-1])
            if data is None:
                return FakeResponse(400, json_body={"status": False, "message": "Transaction reference not found"})
            return FakeResponse(200, json_body={"status": True, "message": "Verification successful", "data": data})
        script = self.scripts.pop(0) if len(self.scripts) > 1 else self.scripts[0]
        if isinstance(script, Exception):
            raise script
        return FakeResponse(200, text=script)

    def post(self, url, json=None, **kwargs):
        self.calls.append(("POST", url, dict(kwargs, json=json)))
        return FakeResponse(200, json_body={
            "status": True,
            "message": "Authorization URL created",
            "data": {
                "authorization_url": "https://checkout.paystack.com/abc123",
                "access_code": "abc123",
                "reference": json["reference"],
            },
        })


def verified_payload(order, reference, **overrides):
    data = {
        "status": "success",
        "reference": reference,
        "amount": to_minor_units(order.price),
        "currency": order.currency,
        "gateway_response": "Successful",
    }
    data.update(overrides)
    return data


@pytest.fixture
def app(tmp_path):
    cfg = type("Cfg", (TestingConfig,), {
        "LOG_DIR": str(tmp_path / "logs"),
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
    })
    app = create_app(cfg)
    paystack_service.init_app(app, http=FakeHttp(), poll_interval=0.0)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def http(app):
    return app.extensions["paystack"].http


@pytest.fixture
def web(app):
    return app.test_client()


def _user(name, email, role):
    u = User(name=name, email=email, role=role)
    u.set_password("secret123")
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def client_user(app):
    return _user("Ada Client", "ada@example.com", "client")


@pytest.fixture
def freelancer(app):
    return _user("Femi Freelancer", "femi@example.com", "freelancer")


@pytest.fixture
def admin(app):
    return _user("Root Admin", "admin@example.com", "admin")


@pytest.fixture
def stranger(app):
    return _user("Sam Stranger", "sam@example.com", "client")


@pytest.fixture
def gig(freelancer):
    g = Gig(
        freelancer_id=freelancer.id,
        title="Logo design",
        description="A clean vector logo",
        category="design",
        basic_package_price=Decimal("10000.00"),
        basic_package_delivery_days=3,
        standard_package_price=Decimal("25000.00"),
        standard_package_delivery_days=5,
    )
    db.session.add(g)
    db.session.commit()
    return g


@pytest.fixture
def coordinator(app):
    return OrderPaymentCoordinator()


@pytest.fixture
def order(coordinator, client_user, gig):
    return coordinator.create_order(client_user, gig, "basic", "Logo for my bakery")


@pytest.fixture
def paid_order(coordinator, order, client_user):
    ref = paystack_service.build_reference(order.id, ts_ms=1700000000000)
    coordinator.record_payment_success(order.id, ref, client_user.id, verified=verified_payload(order, ref))
    return coordinator.get_order(order.id)


@pytest.fixture
def completed_order(coordinator, paid_order, client_user, freelancer):
    coordinator.mark_delivered(paid_order.id, freelancer.id, "Here are the files", ["deliverables/1/logo.zip"])
    coordinator.accept_delivery(paid_order.id, client_user.id, 5, "Great work")
    return coordinator.get_order(paid_order.id)


@pytest.fixture
def login(web):
    def _login(user):
        with web.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
    return _login


@pytest.fixture
def verified():
    return verified_payload
