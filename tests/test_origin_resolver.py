from __future__ import annotations

import pytest

from algoqube.core.db_models import DBChatbox
from algoqube.services.origin_resolver import (
    ChatboxDomainStore,
    OriginResolver,
    domain_to_origin,
    hosts_match,
    normalize_origin,
)

STATIC_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "https://algoqube.com",
    "https://www.algoqube.com",
    "https://client-algoqubeai.vercel.app",
    "https://rococo-kashata-839276.netlify.app",
    "null",
]


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDomainStore:
    def __init__(self, domain_urls=None) -> None:
        self.domain_urls = list(domain_urls or [])
        self.calls = 0
        self.fail = False

    def fetch_domain_urls(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("store unreachable")
        return list(self.domain_urls)


def _resolver(store, clock=None, **kwargs) -> OriginResolver:
    return OriginResolver(
        store,
        static_origins=lambda: list(STATIC_ORIGINS),
        primary_domain="algoqube.com",
        ttl_seconds=300,
        clock=clock or FakeClock(),
        **kwargs,
    )


def test_normalize_origin_strips_scheme_and_trailing_slash():
    assert normalize_origin("https://shop.example.com/") == "shop.example.com"
    assert normalize_origin("http://Shop.Example.com") == "shop.example.com"
    assert normalize_origin("shop.example.com") == "shop.example.com"
    assert normalize_origin("https://shop.example.com:8443") == "shop.example.com:8443"


@pytest.mark.parametrize(
    "left,right",
    [
        ("shop.example.com", "shop.example.com"),
        ("www.shop.example.com", "shop.example.com"),
        ("shop.example.com", "www.shop.example.com"),
    ],
)
def test_hosts_match_is_symmetric_for_www_variants(left, right):
    assert hosts_match(left, right)
    assert hosts_match(right, left)


def test_hosts_match_rejects_other_hosts():
    assert not hosts_match("evil.com", "shop.example.com")
    assert not hosts_match("www.www.shop.example.com", "shop.example.com")
    assert not hosts_match("myshop.example.com", "shop.example.com")


def test_domain_to_origin_adds_scheme_and_skips_malformed_values():
    assert domain_to_origin("shop.example.com") == "https://shop.example.com"
    assert domain_to_origin("http://legacy.example.com") == "http://legacy.example.com"
    assert domain_to_origin("  ") is None
    assert domain_to_origin("") is None
    assert domain_to_origin(None) is None
    assert domain_to_origin(42) is None


def test_static_origins_allowed_even_when_store_is_down():
    store = FakeDomainStore()
    store.fail = True
    resolver = _resolver(store)
    for origin in STATIC_ORIGINS:
        assert resolver.is_origin_allowed(origin), origin


@pytest.mark.parametrize(
    "origin",
    ["https://app.algoqube.com", "https://preview.staging.algoqube.com", "https://algoqube.com"],
)
def test_primary_domain_and_subdomains_allowed_without_store_lookup(origin):
    store = FakeDomainStore()
    resolver = _resolver(store)
    assert resolver.is_origin_allowed(origin)
    assert store.calls == 0


def test_lookalike_primary_domain_is_rejected():
    resolver = _resolver(FakeDomainStore())
    assert not resolver.is_origin_allowed("https://evilalgoqube.com")


def test_dynamic_tenant_domain_scenario():
    store = FakeDomainStore(["shop.example.com"])
    resolver = _resolver(store)

    assert resolver.is_origin_allowed("https://algoqube.com")
    assert resolver.is_origin_allowed("https://shop.example.com")
    assert resolver.is_origin_allowed("https://www.shop.example.com")
    assert not resolver.is_origin_allowed("https://evil.com")


def test_www_tenant_domain_matches_bare_origin():
    resolver = _resolver(FakeDomainStore(["https://www.shop.example.com/"]))
    assert resolver.is_origin_allowed("https://shop.example.com")
    assert resolver.is_origin_allowed("http://shop.example.com")


def test_uppercase_scheme_in_stored_domain_is_not_doubled():
    assert domain_to_origin("HTTPS://Shop.example.com") == "HTTPS://Shop.example.com"
    resolver = _resolver(FakeDomainStore(["HTTPS://Shop.example.com"]))
    assert resolver.is_origin_allowed("https://shop.example.com")
    assert resolver.is_origin_allowed("https://www.shop.example.com")


def test_malformed_stored_domains_are_skipped():
    store = FakeDomainStore(["", "   ", None, 17, "shop.example.com", "shop.example.com"])
    resolver = _resolver(store)
    origins = resolver.get_allowed_origins()
    assert origins.count("https://shop.example.com") == 1
    assert set(origins) == set(STATIC_ORIGINS) | {"https://shop.example.com"}


def test_null_sentinel_is_not_used_for_dynamic_matching():
    resolver = _resolver(FakeDomainStore())
    assert resolver.is_origin_allowed("null")
    assert not resolver.is_origin_allowed("https://null")


def test_cache_hit_within_ttl_does_not_query_store_again():
    store = FakeDomainStore(["shop.example.com"])
    clock = FakeClock()
    resolver = _resolver(store, clock)

    first = resolver.get_allowed_origins()
    clock.advance(299)
    second = resolver.get_allowed_origins()

    assert first == second
    assert store.calls == 1


def test_cache_expiry_triggers_exactly_one_new_query():
    store = FakeDomainStore(["shop.example.com"])
    clock = FakeClock()
    resolver = _resolver(store, clock)

    resolver.get_allowed_origins()
    clock.advance(301)
    resolver.get_allowed_origins()
    resolver.get_allowed_origins()

    assert store.calls == 2


def test_new_tenant_domain_is_picked_up_after_expiry():
    store = FakeDomainStore()
    clock = FakeClock()
    resolver = _resolver(store, clock)

    assert not resolver.is_origin_allowed("https://late.example.com")
    store.domain_urls.append("late.example.com")
    assert not resolver.is_origin_allowed("https://late.example.com")

    clock.advance(300)
    assert resolver.is_origin_allowed("https://late.example.com")


def test_refresh_forces_store_query_regardless_of_elapsed_time():
    store = FakeDomainStore()
    resolver = _resolver(store)

    resolver.get_allowed_origins()
    store.domain_urls.append("fresh.example.com")
    resolver.refresh()

    assert store.calls == 2
    assert "https://fresh.example.com" in resolver.get_allowed_origins()
    assert store.calls == 2


def test_back_to_back_calls_are_idempotent():
    store = FakeDomainStore(["a.example.com", "b.example.com"])
    clock = FakeClock()
    resolver = _resolver(store, clock)

    first = resolver.get_allowed_origins()
    resolver.refresh()
    second = resolver.get_allowed_origins()

    assert set(first) == set(second)


def test_store_failure_returns_static_list_and_updates_timestamp():
    store = FakeDomainStore(["shop.example.com"])
    store.fail = True
    clock = FakeClock(start=5_000.0)
    resolver = _resolver(store, clock)

    origins = resolver.get_allowed_origins()

    assert set(origins) == set(STATIC_ORIGINS)
    assert resolver.last_refreshed_at == 5_000.0


def test_store_failure_after_success_drops_dynamic_entries():
    store = FakeDomainStore(["shop.example.com"])
    resolver = _resolver(store)
    assert resolver.is_origin_allowed("https://shop.example.com")

    store.fail = True
    resolver.refresh()

    assert set(resolver.get_allowed_origins()) == set(STATIC_ORIGINS)
    assert not resolver.is_origin_allowed("https://shop.example.com")


def test_store_failure_can_retain_previous_dynamic_entries():
    store = FakeDomainStore(["shop.example.com"])
    resolver = _resolver(store, retain_dynamic_on_failure=True)
    resolver.get_allowed_origins()

    store.fail = True
    resolver.refresh()

    assert resolver.is_origin_allowed("https://shop.example.com")


def test_chatbox_domain_store_only_returns_active_domains(session_factory):
    db = session_factory()
    try:
        db.add_all(
            [
                DBChatbox(name="active-1", organization_name="A", status="active", domain_url="shop.example.com"),
                DBChatbox(name="inactive-1", organization_name="B", status="inactive", domain_url="closed.example.com"),
                DBChatbox(name="blank-1", organization_name="C", status="active", domain_url=""),
                DBChatbox(name="none-1", organization_name="D", status="active", domain_url=None),
            ]
        )
        db.commit()
    finally:
        db.close()

    resolver = _resolver(ChatboxDomainStore(session_factory))

    assert resolver.is_origin_allowed("https://shop.example.com")
    assert not resolver.is_origin_allowed("https://closed.example.com")
