"""Tests for the TTL + LRU Response Cache."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeClock, make_request, make_response

from promptgate.gateway.cache import ResponseCache, make_cache_key
from promptgate.gateway.types import ChatMessage, LLMRequest


@pytest.fixture
def cache_clock() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def cache(cache_clock):
    return ResponseCache(max_size=10, ttl=0.1, clock=cache_clock)


class TestCacheKey:
    def test_identical_requests_hash_identically(self):
        a = make_request("Hello")
        b = make_request("Hello")
        assert a.request_id != b.request_id
        assert make_cache_key("openai", a, "ws-1") == make_cache_key("openai", b, "ws-1")

    def test_key_format(self):
        key = make_cache_key("openai", make_request(), "ws-1")
        assert key.startswith("llm:openai:")
        assert len(key.split(":")[-1]) == 64

    @pytest.mark.parametrize(
        "changes",
        [
            {"model": "gpt-4o"},
            {"temperature": 0.2},
            {"temperature": None},
            {"max_tokens": 501},
        ],
    )
    def test_output_relevant_fields_change_the_key(self, changes):
        base = make_request("Hello")
        other = make_request("Hello", **changes)
        assert make_cache_key("openai", base, "ws-1") != make_cache_key("openai", other, "ws-1")

    def test_zero_temperature_differs_from_default(self):
        assert make_cache_key("openai", make_request(temperature=0), "ws-1") != make_cache_key(
            "openai", make_request(temperature=0.7), "ws-1"
        )

    def test_integer_and_float_temperature_share_a_key(self):
        as_int = make_request("Hello", temperature=1)
        as_float = make_request("Hello", temperature=1.0)
        assert make_cache_key("openai", as_int, "ws-1") == make_cache_key("openai", as_float, "ws-1")

    def test_message_order_matters(self):
        msgs = [ChatMessage(role="system", content="A"), ChatMessage(role="user", content="B")]
        forward = LLMRequest(model="m", messages=msgs)
        backward = LLMRequest(model="m", messages=list(reversed(msgs)))
        assert make_cache_key("openai", forward, "ws-1") != make_cache_key("openai", backward, "ws-1")

    def test_workspace_and_provider_isolate_keys(self):
        req = make_request()
        assert make_cache_key("openai", req, "ws-1") != make_cache_key("openai", req, "ws-2")
        assert make_cache_key("openai", req, "ws-1") != make_cache_key("anthropic", req, "ws-1")

    def test_stream_flag_not_part_of_key(self):
        assert make_cache_key("openai", make_request(stream=True), "ws-1") == make_cache_key(
            "openai", make_request(stream=False), "ws-1"
        )


class TestCacheReadWrite:
    def test_round_trip(self, cache):
        req = make_request()
        resp = make_response()
        cache.set("openai", req, "ws-1", resp)
        assert cache.get("openai", req, "ws-1") == resp

    def test_integer_temperature_hits_float_entry(self, cache):
        cache.set("openai", make_request("Hi", temperature=1.0), "ws-1", make_response("cached"))
        hit = cache.get("openai", make_request("Hi", temperature=1), "ws-1")
        assert hit is not None
        assert hit.text == "cached"

    def test_miss_returns_none(self, cache):
        assert cache.get("openai", make_request(), "ws-1") is None

    def test_returned_value_is_a_copy(self, cache):
        req = make_request()
        cache.set("openai", req, "ws-1", make_response("original"))
        first = cache.get("openai", req, "ws-1")
        first.choices[0].content = "mutated"
        assert cache.get("openai", req, "ws-1").text == "original"

    def test_streaming_request_never_cached(self, cache):
        req = make_request(stream=True)
        cache.set("openai", req, "ws-1", make_response())
        assert cache.get("openai", req, "ws-1") is None
        assert len(cache) == 0

    def test_streaming_lookup_bypasses_cache(self, cache):
        cache.set("openai", make_request(stream=False), "ws-1", make_response())
        assert cache.get("openai", make_request(stream=True), "ws-1") is None

    def test_response_without_usage_never_cached(self, cache):
        req = make_request()
        cache.set("openai", req, "ws-1", make_response(with_usage=False))
        assert cache.get("openai", req, "ws-1") is None
        assert cache.get_stats()["size"] == 0


class TestCacheExpiry:
    def test_fresh_then_expired(self, cache, cache_clock):
        req = make_request()
        cache.set("openai", req, "ws-1", make_response())
        assert cache.get("openai", req, "ws-1") is not None

        cache_clock.advance(0.15)
        assert cache.get("openai", req, "ws-1") is None
        assert make_cache_key("openai", req, "ws-1") not in cache
        assert len(cache) == 0

    def test_access_does_not_extend_ttl(self, cache, cache_clock):
        req = make_request()
        cache.set("openai", req, "ws-1", make_response())
        cache_clock.advance(0.08)
        assert cache.get("openai", req, "ws-1") is not None
        cache_clock.advance(0.05)
        assert cache.get("openai", req, "ws-1") is None

    @pytest.mark.asyncio
    async def test_expiry_with_real_clock(self):
        cache = ResponseCache(max_size=10, ttl=0.1)
        req = make_request()
        cache.set("openai", req, "ws-1", make_response())
        assert cache.get("openai", req, "ws-1") is not None
        await asyncio.sleep(0.15)
        assert cache.get("openai", req, "ws-1") is None
        assert len(cache) == 0

    def test_purge_expired(self, cache, cache_clock):
        cache.set("openai", make_request("a"), "ws-1", make_response())
        cache_clock.advance(0.05)
        cache.set("openai", make_request("b"), "ws-1", make_response())
        cache_clock.advance(0.07)
        assert cache.purge_expired() == 1
        assert len(cache) == 1


class TestLRUEviction:
    @pytest.fixture
    def small(self, cache_clock):
        return ResponseCache(max_size=2, ttl=60, clock=cache_clock)

    def test_oldest_entry_evicted(self, small):
        a, b, c = make_request("A"), make_request("B"), make_request("C")
        small.set("openai", a, "ws-1", make_response())
        small.set("openai", b, "ws-1", make_response())
        small.set("openai", c, "ws-1", make_response())

        assert small.get("openai", a, "ws-1") is None
        assert small.get("openai", b, "ws-1") is not None
        assert small.get("openai", c, "ws-1") is not None
        assert small.get_stats()["evictions"] == 1

    def test_recent_access_protects_entry(self, small):
        a, b, c = make_request("A"), make_request("B"), make_request("C")
        small.set("openai", a, "ws-1", make_response())
        small.set("openai", b, "ws-1", make_response())
        assert small.get("openai", a, "ws-1") is not None
        small.set("openai", c, "ws-1", make_response())

        assert small.get("openai", b, "ws-1") is None
        assert small.get("openai", a, "ws-1") is not None
        assert small.get("openai", c, "ws-1") is not None

    def test_overwrite_existing_key_does_not_evict(self, small):
        a, b = make_request("A"), make_request("B")
        small.set("openai", a, "ws-1", make_response("v1"))
        small.set("openai", b, "ws-1", make_response())
        small.set("openai", a, "ws-1", make_response("v2"))
        assert len(small) == 2
        assert small.get("openai", a, "ws-1").text == "v2"

    def test_expired_entries_go_before_live_ones(self, cache_clock):
        cache = ResponseCache(max_size=2, ttl=1.0, clock=cache_clock)
        a, b, c = make_request("A"), make_request("B"), make_request("C")
        cache.set("openai", a, "ws-1", make_response())
        cache_clock.advance(0.6)
        cache.set("openai", b, "ws-1", make_response())
        assert cache.get("openai", a, "ws-1") is not None  # a is now most recent
        cache_clock.advance(0.6)  # a expired, b still fresh
        cache.set("openai", c, "ws-1", make_response())
        assert cache.get("openai", b, "ws-1") is not None
        assert cache.get("openai", c, "ws-1") is not None
        assert cache.get_stats()["evictions"] == 0

    def test_size_never_exceeds_bound(self, small):
        for i in range(20):
            small.set("openai", make_request(f"msg {i}"), "ws-1", make_response())
        assert len(small) == 2


class TestCacheManagement:
    def test_stats(self, cache):
        req = make_request()
        cache.get("openai", req, "ws-1")
        cache.set("openai", req, "ws-1", make_response())
        cache.get("openai", req, "ws-1")

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["calculated_size"] > 0
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["max_size"] == 10

    def test_clear(self, cache):
        cache.set("openai", make_request(), "ws-1", make_response())
        cache.clear()
        assert cache.get_stats()["size"] == 0

    def test_invalidate_workspace(self, cache):
        cache.set("openai", make_request("a"), "ws-1", make_response())
        cache.set("openai", make_request("b"), "ws-1", make_response())
        cache.set("openai", make_request("a"), "ws-2", make_response())

        assert cache.invalidate_workspace("ws-1") == 2
        assert len(cache) == 1
        assert cache.get("openai", make_request("a"), "ws-2") is not None
