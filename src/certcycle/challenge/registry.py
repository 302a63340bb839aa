"""Challenge provider registry.

Builds the ordered list of providers from ``challenges.order``,
skipping types that are disabled, and hands them to the acquirer in
the order they should be tried.

Usage::

    from certcycle.challenge.registry import ProviderRegistry

    registry = ProviderRegistry(challenge_settings)
    for provider in registry.ordered(preferred=ChallengeType.DNS_01):
        ...
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from certcycle.challenge.base import ChallengeProvider
from certcycle.core.types import ChallengeType

if TYPE_CHECKING:
    from certcycle.config.settings import ChallengeSettings

log = logging.getLogger(__name__)

# Maps config string -> (module_path, class_name, per-type settings attribute)
_BUILTIN_PROVIDERS: dict[str, tuple[str, str, str]] = {
    "http-01": ("certcycle.challenge.http01", "Http01Provider", "http01"),
    "dns-01": ("certcycle.challenge.dns01", "Dns01Provider", "dns01"),
}


class ProviderRegistry:
    """Ordered registry of enabled challenge providers.

    Parameters
    ----------
    settings:
        The ``challenges`` section from :class:`CertcycleSettings`.
    providers:
        Pre-built providers, used instead of loading from *settings*
        (tests and embedding).

    """

    def __init__(
        self,
        settings: ChallengeSettings | None = None,
        *,
        providers: list[ChallengeProvider] | None = None,
    ) -> None:
        self._providers: list[ChallengeProvider] = []
        if providers is not None:
            for provider in providers:
                self.register(provider)
        elif settings is not None:
            self._load(settings)

    def _load(self, settings: ChallengeSettings) -> None:
        for type_str in settings.order:
            if type_str not in _BUILTIN_PROVIDERS:
                msg = f"Unknown challenge type '{type_str}' in challenges.order"
                raise ValueError(msg)
            mod_path, cls_name, settings_attr = _BUILTIN_PROVIDERS[type_str]
            per_type = getattr(settings, settings_attr)
            if not per_type.enabled:
                log.info("Challenge type %s is disabled, skipping", type_str)
                continue
            module = importlib.import_module(mod_path)
            cls = getattr(module, cls_name)
            self.register(cls(per_type))
            log.debug("Loaded challenge provider: %s", type_str)

    def register(self, provider: ChallengeProvider) -> None:
        if not isinstance(provider, ChallengeProvider):
            msg = f"{provider!r} is not a ChallengeProvider"
            raise TypeError(msg)
        if self.get(provider.challenge_type) is not None:
            msg = f"Provider for {provider.challenge_type.value} already registered"
            raise ValueError(msg)
        self._providers.append(provider)

    def get(self, challenge_type: ChallengeType) -> ChallengeProvider | None:
        for provider in self._providers:
            if provider.challenge_type == challenge_type:
                return provider
        return None

    def ordered(self, preferred: ChallengeType | None = None) -> list[ChallengeProvider]:
        """Return providers in try order, *preferred* first when enabled."""
        providers = list(self._providers)
        if preferred is not None:
            providers.sort(key=lambda p: p.challenge_type != preferred)
        return providers

    @property
    def enabled_types(self) -> list[ChallengeType]:
        return [p.challenge_type for p in self._providers]

    def __len__(self) -> int:
        return len(self._providers)
