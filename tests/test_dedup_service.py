"""Claim-once delivery keys: process-local cache and Redis SET NX."""

import pytest

from services import dedup_service, supabase_service
from services.dedup_service import DedupService


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.expiry = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.expiry[key] = ex
        return True

    def delete(self, key):
        self.values.pop(key, None)


@pytest.fixture
def redis_store(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(supabase_service, "_redis", fake)
    monkeypatch.setattr(supabase_service, "_redis_available", True)
    return fake


def test_claim_succeeds_once_per_key():
    key = DedupService.delivery_key("facebook", "direct_message", "m-1")

    assert DedupService.claim(key) is True
    assert DedupService.claim(key) is False
    assert DedupService.claim(DedupService.delivery_key("facebook", "direct_message", "m-2")) is True
    assert DedupService.get_processed_count() == 2


def test_claim_held_by_another_worker_is_respected(redis_store):
    key = DedupService.delivery_key("instagram", "post_comment", "ig-c-1")

    assert DedupService.claim(key) is True
    dedup_service._claimed.clear()  # as seen from a second worker process

    assert DedupService.claim(key) is False
    assert redis_store.expiry[DedupService.KEY_PREFIX + key] == dedup_service.TTL_SECONDS


def test_each_delivery_gets_its_own_expiring_key(redis_store):
    DedupService.claim("facebook:post_comment:c-1")
    DedupService.claim("facebook:post_comment:c-2")

    assert set(redis_store.values) == {"webhook:seen:facebook:post_comment:c-1", "webhook:seen:facebook:post_comment:c-2"}
    assert all(ttl == dedup_service.TTL_SECONDS for ttl in redis_store.expiry.values())


def test_released_claim_can_be_taken_again(redis_store):
    key = "facebook:post_comment:c-1"
    DedupService.claim(key)

    DedupService.release(key)

    assert DedupService.claim(key) is True
