import pytest

from app.exceptions import RateLimitExceeded
from app.services.rate_limit import MemoryBucketStore, TokenBucketLimiter


class Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_bucket_drains_and_refills():
    clock = Clock()
    limiter = TokenBucketLimiter(capacity=2, refill_per_second=1.0, clock=clock)
    assert limiter.allow(1)
    assert limiter.allow(1)
    assert not limiter.allow(1)

    clock.now += 1.0
    assert limiter.allow(1)
    assert not limiter.allow(1)


def test_refill_caps_at_capacity():
    clock = Clock()
    limiter = TokenBucketLimiter(capacity=2, refill_per_second=1.0, clock=clock)
    limiter.allow(1)
    clock.now += 3600
    assert limiter.allow(1)
    assert limiter.allow(1)
    assert not limiter.allow(1)


def test_actors_and_scopes_are_independent():
    limiter = TokenBucketLimiter(capacity=1, refill_per_second=0.0, clock=Clock())
    assert limiter.allow(1, "checkout")
    assert not limiter.allow(1, "checkout")
    assert limiter.allow(2, "checkout")
    assert limiter.allow(1, "withdrawal")


def test_check_raises():
    limiter = TokenBucketLimiter(capacity=1, refill_per_second=0.0, clock=Clock())
    limiter.check(7)
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.check(7)
    assert exc.value.status_code == 429


def test_state_lives_in_the_injected_store():
    store = MemoryBucketStore()
    clock = Clock()
    TokenBucketLimiter(capacity=3, refill_per_second=0.0, store=store, clock=clock).allow(9, "checkout")
    assert store.get("checkout:9") == (2.0, 100.0)
    # a second limiter over the same store sees the spent token
    other = TokenBucketLimiter(capacity=3, refill_per_second=0.0, store=store, clock=clock)
    assert other.allow(9, "checkout")
    assert other.allow(9, "checkout")
    assert not other.allow(9, "checkout")


def test_refilled_buckets_are_swept_from_memory():
    store = MemoryBucketStore(sweep_every=50)
    clock = Clock()
    limiter = TokenBucketLimiter(capacity=2, refill_per_second=1.0, store=store, clock=clock)
    for actor in range(49):
        limiter.allow(actor)
    assert len(store) == 49

    # two seconds later every bucket is full again
    clock.now += 2.0
    limiter.allow("late")
    assert len(store) == 1
    assert store.get("default:late") == (1.0, 102.0)


def test_drained_buckets_survive_a_sweep():
    store = MemoryBucketStore(sweep_every=1)
    clock = Clock()
    limiter = TokenBucketLimiter(capacity=1, refill_per_second=0.1, store=store, clock=clock)
    assert limiter.allow(1)
    clock.now += 1.0
    limiter.allow(2)
    assert not limiter.allow(1)
    assert len(store) == 2


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        TokenBucketLimiter(capacity=0, refill_per_second=1.0)


def test_app_limiter_reads_config(app):
    limiter = app.extensions["rate_limiter"]
    assert limiter.capacity == 100
    public = app.extensions["rate_limiter.public"]
    assert public is not limiter
    assert public.capacity == 30
