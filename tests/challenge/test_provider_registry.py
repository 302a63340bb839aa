"""Tests for ProviderRegistry ordering and loading."""

from __future__ import annotations

import pytest

from certcycle.challenge.dns01 import Dns01Provider
from certcycle.challenge.http01 import Http01Provider
from certcycle.challenge.registry import ProviderRegistry
from certcycle.config.settings import build_settings
from certcycle.core.types import ChallengeType


def _challenges(order=("http-01", "dns-01"), *, http=True, dns=True):
    return build_settings(
        {
            "domain": "example.com",
            "challenges": {
                "order": list(order),
                "http01": {"enabled": http, "webroot": "/srv/www"},
                "dns01": {"enabled": dns},
            },
        },
    ).challenges


class TestLoadFromSettings:
    def test_default_order(self):
        registry = ProviderRegistry(_challenges())
        providers = registry.ordered()
        assert [type(p) for p in providers] == [Http01Provider, Dns01Provider]
        assert len(registry) == 2

    def test_configured_order(self):
        registry = ProviderRegistry(_challenges(order=("dns-01", "http-01")))
        assert registry.enabled_types == [ChallengeType.DNS_01, ChallengeType.HTTP_01]

    def test_disabled_types_skipped(self):
        registry = ProviderRegistry(_challenges(dns=False))
        assert registry.enabled_types == [ChallengeType.HTTP_01]
        assert registry.get(ChallengeType.DNS_01) is None

    def test_type_missing_from_order_is_not_loaded(self):
        registry = ProviderRegistry(_challenges(order=("dns-01",)))
        assert registry.enabled_types == [ChallengeType.DNS_01]

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="tls-alpn-01"):
            ProviderRegistry(_challenges(order=("tls-alpn-01",)))


class TestOrdering:
    def test_preferred_moves_first(self, make_provider):
        http = make_provider(ChallengeType.HTTP_01)
        dns = make_provider(ChallengeType.DNS_01)
        registry = ProviderRegistry(providers=[http, dns])
        assert registry.ordered(ChallengeType.DNS_01) == [dns, http]
        assert registry.ordered(ChallengeType.HTTP_01) == [http, dns]
        assert registry.ordered() == [http, dns]

    def test_preferred_but_disabled(self, make_provider):
        http = make_provider(ChallengeType.HTTP_01)
        registry = ProviderRegistry(providers=[http])
        assert registry.ordered(ChallengeType.DNS_01) == [http]


class TestRegister:
    def test_duplicate(self, make_provider):
        registry = ProviderRegistry(providers=[make_provider(ChallengeType.HTTP_01)])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(make_provider(ChallengeType.HTTP_01))

    def test_not_a_provider(self):
        registry = ProviderRegistry()
        with pytest.raises(TypeError):
            registry.register(object())  # type: ignore[arg-type]
