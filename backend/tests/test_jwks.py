import httpx
import pytest

from hzsite.errors import UpstreamProviderUnavailable
from hzsite.services.jwks import JWKSClient, NullCache, TTLCache

from conftest import RSAKeyPair, build_jwks_client

JWKS_URL = "https://issuer.example.com/jwks.json"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_ttl_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    cache.set("k", ["value"])

    clock.now += 59
    assert cache.get("k") == ["value"]

    clock.now += 1
    assert cache.get("k") is None


def test_ttl_cache_invalidate():
    cache = TTLCache(ttl_seconds=60)
    cache.set("k", 1)
    cache.invalidate("k")
    assert cache.get("k") is None


def test_null_cache_never_stores():
    cache = NullCache()
    cache.set("k", 1)
    assert cache.get("k") is None


def test_keys_are_fetched_once_while_cached(rsa_key):
    calls = []
    client = build_jwks_client([rsa_key], calls=calls, cache=TTLCache(ttl_seconds=3600))

    first = client.get_signing_key(JWKS_URL, rsa_key.kid)
    second = client.get_signing_key(JWKS_URL, rsa_key.kid)

    assert first == second == rsa_key.public_jwk
    assert calls == [JWKS_URL]


def test_fetches_again_after_ttl(rsa_key):
    calls = []
    clock = FakeClock()
    client = build_jwks_client([rsa_key], calls=calls, cache=TTLCache(ttl_seconds=10, clock=clock))

    client.get_keys(JWKS_URL)
    clock.now += 11
    client.get_keys(JWKS_URL)

    assert len(calls) == 2


def test_unknown_kid_triggers_single_refresh(rsa_key):
    calls = []
    client = build_jwks_client([rsa_key], calls=calls, cache=TTLCache(ttl_seconds=3600))
    client.get_keys(JWKS_URL)

    assert client.get_signing_key(JWKS_URL, "rotated-away") is None
    assert len(calls) == 2


def test_fetch_failure_is_upstream_unavailable():
    def handler(request):
        return httpx.Response(500, text="boom")

    client = JWKSClient(NullCache(), http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(UpstreamProviderUnavailable):
        client.get_keys(JWKS_URL)


def test_response_without_keys_is_upstream_unavailable():
    def handler(request):
        return httpx.Response(200, json={"not_keys": []})

    client = JWKSClient(NullCache(), http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(UpstreamProviderUnavailable):
        client.get_keys(JWKS_URL)


def test_multiple_keys_resolved_by_kid(rsa_key):
    other = RSAKeyPair("test-key-2")
    client = build_jwks_client([rsa_key, other])

    assert client.get_signing_key(JWKS_URL, "test-key-2") == other.public_jwk


def test_bogus_kids_cannot_force_repeated_fetches(rsa_key):
    calls = []
    client = build_jwks_client([rsa_key], calls=calls, cache=TTLCache(ttl_seconds=3600))

    for i in range(10):
        assert client.get_signing_key(JWKS_URL, f"bogus-{i}") is None

    assert len(calls) <= 2
    assert client.get_signing_key(JWKS_URL, rsa_key.kid) == rsa_key.public_jwk
    assert len(calls) <= 2


def test_forced_refresh_allowed_again_after_interval(rsa_key):
    calls = []
    clock = FakeClock()
    client = build_jwks_client([rsa_key], calls=calls, cache=TTLCache(ttl_seconds=3600, clock=clock), clock=clock)

    client.get_signing_key(JWKS_URL, "rotated-in")
    client.get_signing_key(JWKS_URL, "rotated-in")
    assert len(calls) == 2

    clock.now += 61
    client.get_signing_key(JWKS_URL, "rotated-in")
    assert len(calls) == 3
