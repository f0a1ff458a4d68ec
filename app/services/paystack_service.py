# app/services/paystack_service.py
"""Paystack integration: hosted inline widget + server-side verification.

The browser still opens ``PaystackPop``; this module owns everything around
it: loading the widget script once per process, building the popup setup
options, routing the popup outcome to the caller's callbacks, and talking
to the Paystack REST API for verification and redirect checkouts.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Optional

import requests
from flask import current_app

from ..exceptions import GatewayConfigError, GatewayError, GatewayNotReady, ScriptLoadTimeout

log = logging.getLogger(__name__)

GATEWAY_NAME = "paystack"
SCRIPT_ENTRY_POINT = "PaystackPop"
REFERENCE_PREFIX = "ORDER"
REFERENCE_DELIMITER = "-"
_REFERENCE_RE = re.compile(r"^ORDER-([^-]+)-(\d+)$")
_KEY_PREFIXES = ("pk_test_", "pk_live_")


# -----------------
# Units & references
# -----------------

def to_minor_units(amount) -> int:
    """Naira -> kobo. Exact for any amount with at most 2 decimal places."""
    d = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(amount) -> Decimal:
    """Kobo -> naira, as a 2dp Decimal."""
    return (Decimal(int(amount)) / 100).quantize(Decimal("0.01"))


def build_reference(order_id, ts_ms: int | None = None) -> str:
    """``ORDER-{order_id}-{millis}``; the redirect callback recovers the order from this alone."""
    oid = str(order_id)
    if not oid or REFERENCE_DELIMITER in oid:
        raise ValueError(f"order id {oid!r} cannot be embedded in a payment reference")
    if ts_ms is None:
        ts_ms = int(time.time() * 1000)
    return f"{REFERENCE_PREFIX}-{oid}-{int(ts_ms)}"


def parse_reference(reference: str | None) -> Optional[str]:
    """Order id embedded in a reference, or None when the reference is not ours."""
    m = _REFERENCE_RE.match((reference or "").strip())
    return m.group(1) if m else None


def validate_public_key(key: str | None) -> str:
    if not key:
        raise GatewayConfigError("Paystack public key not configured. Set PAYSTACK_PUBLIC_KEY.")
    if not key.startswith(_KEY_PREFIXES):
        raise GatewayConfigError("Invalid Paystack public key format. Key should start with 'pk_test_' or 'pk_live_'.")
    return key


# -----------------
# Popup
# -----------------

@dataclass
class PaymentConfig:
    public_key: str
    email: str
    amount: int  # kobo
    reference: str
    metadata: dict = field(default_factory=dict)
    currency: str = "NGN"
    on_success: Optional[Callable[[str], Any]] = None
    on_close: Optional[Callable[[], Any]] = None


class PopupSession:
    """One opened popup. Its outcome is delivered at most once."""

    def __init__(self, config: PaymentConfig, opened_at: float = 0.0):
        self.config = config
        self.opened_at = opened_at
        self.outcome: str | None = None  # success|closed
        self._lock = threading.Lock()

    @property
    def reference(self) -> str:
        return self.config.reference

    def setup_options(self) -> dict:
        """Keyword options for ``PaystackPop.setup`` on the checkout page."""
        c = self.config
        return {
            "key": c.public_key,
            "email": c.email,
            "amount": c.amount,
            "currency": c.currency,
            "ref": c.reference,
            "metadata": c.metadata or {},
        }

    def _settle(self, outcome: str) -> bool:
        with self._lock:
            if self.outcome is not None:
                return False
            self.outcome = outcome
            return True

    def succeed(self, reference: str):
        if not self._settle("success"):
            return None
        if self.config.on_success:
            return self.config.on_success(reference)
        return None

    def close(self):
        if not self._settle("closed"):
            return None
        if self.config.on_close:
            return self.config.on_close()
        return None


# -----------------
# Gateway
# -----------------

class PaystackGateway:
    def __init__(self, public_key: str, secret_key: str, *,
                 api_base: str = "https://api.paystack.co",
                 script_url: str = "https://js.paystack.co/v1/inline.js",
                 script_timeout: float = 30.0,
                 entry_timeout: float = 5.0,
                 poll_interval: float = 0.1,
                 session_ttl: float = 1800.0,
                 http=None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.public_key = public_key
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.script_url = script_url
        self.script_timeout = script_timeout
        self.entry_timeout = entry_timeout
        self.poll_interval = poll_interval
        self.session_ttl = session_ttl
        self.http = http or requests.Session()
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._ready = False
        self._loading: threading.Event | None = None
        self._load_error: str | None = None
        self._source: str | None = None
        self._sessions: dict[str, PopupSession] = {}

    @classmethod
    def from_config(cls, config, **kwargs) -> "PaystackGateway":
        return cls(
            config.get("PAYSTACK_PUBLIC_KEY", ""),
            config.get("PAYSTACK_SECRET_KEY", ""),
            api_base=config.get("PAYSTACK_API_BASE", "https://api.paystack.co"),
            script_url=config.get("PAYSTACK_SCRIPT_URL", "https://js.paystack.co/v1/inline.js"),
            script_timeout=float(config.get("PAYSTACK_SCRIPT_TIMEOUT", 30)),
            entry_timeout=float(config.get("PAYSTACK_ENTRY_TIMEOUT", 5)),
            session_ttl=float(config.get("PAYSTACK_SESSION_TTL", 1800)),
            **kwargs,
        )

    # ---- script ----

    @property
    def script_ready(self) -> bool:
        return self._ready

    @property
    def script_integrity(self) -> Optional[str]:
        """SRI value the checkout page pins on its <script> tag."""
        if not self._source:
            return None
        digest = hashlib.sha384(self._source.encode("utf-8")).digest()
        return "sha384-" + base64.b64encode(digest).decode("ascii")

    def load_gateway_script(self) -> None:
        """Fetch the widget script once per process.

        Concurrent callers wait on the in-flight load instead of starting
        another one. Raises ScriptLoadTimeout on network failure or when the
        script never exposes the entry point within ``entry_timeout``.
        """
        with self._lock:
            if self._ready:
                return
            waiter = self._loading
            if waiter is None:
                self._loading = threading.Event()

        if waiter is not None:
            waiter.wait(self.script_timeout + self.entry_timeout)
            if self._ready:
                return
            raise ScriptLoadTimeout(self._load_error or "Paystack script loading timeout")

        try:
            source = self._fetch_script()
            deadline = self._clock() + self.entry_timeout
            while SCRIPT_ENTRY_POINT not in source:
                if self._clock() >= deadline:
                    raise ScriptLoadTimeout("PaystackPop not available after script load")
                self._sleep(self.poll_interval)
                source = self._fetch_script()
            with self._lock:
                self._source = source
                self._ready = True
                self._load_error = None
            log.info("Paystack script loaded (%d bytes)", len(source))
        except ScriptLoadTimeout as e:
            self._load_error = e.message
            log.error("Paystack script load failed: %s", e.message)
            raise
        finally:
            with self._lock:
                event, self._loading = self._loading, None
            if event is not None:
                event.set()

    def _fetch_script(self) -> str:
        try:
            r = self.http.get(self.script_url, timeout=self.script_timeout)
            r.raise_for_status()
        except requests.Timeout as e:
            raise ScriptLoadTimeout("Paystack script loading timeout") from e
        except requests.RequestException as e:
            raise ScriptLoadTimeout("Failed to load Paystack script") from e
        return r.text or ""

    # ---- popup ----

    def initiate_payment(self, config: PaymentConfig) -> PopupSession:
        if not self._ready or SCRIPT_ENTRY_POINT not in (self._source or ""):
            raise GatewayNotReady("Paystack script not loaded")
        validate_public_key(config.public_key)
        if not isinstance(config.amount, int) or config.amount <= 0:
            raise ValueError("amount must be a positive integer number of kobo")
        if not config.email:
            raise ValueError("payer email is required")

        now = self._clock()
        session = PopupSession(config, opened_at=now)
        order_id = parse_reference(config.reference)
        with self._lock:
            self._drop_stale(now)
            if order_id is not None:
                # a reopened checkout supersedes the earlier popup for the same order
                for ref in [r for r in self._sessions if parse_reference(r) == order_id]:
                    del self._sessions[ref]
            self._sessions[config.reference] = session
        log.info("Paystack popup opened ref=%s amount=%s", config.reference, config.amount)
        return session

    def _drop_stale(self, now: float) -> None:
        """Forget popups older than ``session_ttl``. Caller holds ``_lock``."""
        stale = [ref for ref, s in self._sessions.items() if now - s.opened_at >= self.session_ttl]
        for ref in stale:
            del self._sessions[ref]
        if stale:
            log.info("dropped %d expired Paystack popup session(s)", len(stale))

    @property
    def open_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    def pending_session(self, reference: str) -> Optional[PopupSession]:
        with self._lock:
            self._drop_stale(self._clock())
            return self._sessions.get(reference)

    def _take_session(self, reference: str) -> Optional[PopupSession]:
        with self._lock:
            self._drop_stale(self._clock())
            return self._sessions.pop(reference, None)

    def report_success(self, reference: str) -> bool:
        """Deliver a completed charge to on_success. False if no popup is pending."""
        session = self._take_session(reference)
        if session is None:
            return False
        session.succeed(reference)
        return True

    def report_close(self, reference: str) -> bool:
        session = self._take_session(reference)
        if session is None:
            return False
        session.close()
        return True

    # ---- REST API ----

    def _headers(self) -> dict:
        if not self.secret_key:
            raise GatewayConfigError("Paystack secret key not configured. Set PAYSTACK_SECRET_KEY.")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def initialize_transaction(self, *, email: str, amount: int, reference: str,
                               currency: str = "NGN", metadata: dict | None = None,
                               callback_url: str | None = None) -> dict:
        """Start a redirect checkout; returns ``authorization_url`` / ``access_code``."""
        payload = {
            "email": email,
            "amount": int(amount),
            "currency": currency,
            "reference": reference,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url
        try:
            r = self.http.post(f"{self.api_base}/transaction/initialize",
                               json=payload, headers=self._headers(), timeout=20)
            log.info("Paystack initialize status=%s ref=%s", r.status_code, reference)
            if r.status_code >= 400:
                log.error("Paystack error %s | body=%s | ref=%s", r.status_code, r.text, reference)
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as e:
            log.exception("Paystack initialize failed: %s", e)
            raise GatewayError() from e
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Paystack refused the transaction")
        return body.get("data") or {}

    def verify_transaction(self, reference: str) -> dict:
        """GET /transaction/verify/:reference -> the ``data`` payload."""
        try:
            r = self.http.get(f"{self.api_base}/transaction/verify/{reference}",
                              headers=self._headers(), timeout=20)
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as e:
            log.exception("Paystack verify failed ref=%s: %s", reference, e)
            raise GatewayError("We couldn't verify the payment at the moment.") from e
        if not body.get("status"):
            raise GatewayError(body.get("message") or "Paystack could not verify this reference")
        return body.get("data") or {}

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        if not signature or not self.secret_key:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)


# -----------------
# Flask wiring
# -----------------

def init_app(app, **kwargs) -> PaystackGateway:
    gateway = PaystackGateway.from_config(app.config, **kwargs)
    app.extensions["paystack"] = gateway
    return gateway


def get_gateway() -> PaystackGateway:
    return current_app.extensions["paystack"]
