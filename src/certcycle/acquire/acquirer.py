"""Certificate acquisition.

:class:`CertificateAcquirer` produces :class:`CertificateBundle` objects
and nothing else: it never touches the store or the active pointer.

Let's Encrypt acquisition tries the enabled challenge providers in
order.  For each one the authority is driven through a
:class:`ProviderResponder` that prepares and awaits every challenge,
and whatever was published is cleaned up in a ``finally`` block no
matter how the attempt ends.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING

from certcycle.acquire.authority import AcmeowAuthority, ChallengeResponder
from certcycle.acquire.errors import AllChallengesFailed, AuthorityError, CryptoFailure
from certcycle.acquire.keys import (
    build_csr_der,
    generate_csr_key,
    private_key_pem,
    unique_names,
)
from certcycle.acquire.selfsigned import build_self_signed
from certcycle.challenge.base import ChallengeError, PropagationTimeout
from certcycle.challenge.registry import ProviderRegistry
from certcycle.core.types import CertificateType, Readiness
from certcycle.models.certificate import CertificateBundle

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certcycle.acquire.authority import AcmeAuthority
    from certcycle.challenge.base import ChallengeHandle, ChallengeProvider
    from certcycle.config.settings import AcmeSettings, CertcycleSettings, SelfSignedSettings
    from certcycle.core.clock import Clock
    from certcycle.core.types import ChallengeType

log = logging.getLogger(__name__)


class ProviderResponder(ChallengeResponder):
    """Bridges authority callbacks to one :class:`ChallengeProvider`.

    Tracks every handle it prepared so :meth:`close` can clean up
    whatever the authority did not withdraw itself.  Once closed, late
    callbacks from an abandoned attempt are refused.
    """

    def __init__(self, provider: ChallengeProvider, max_wait: float | None = None) -> None:
        self._provider = provider
        self._max_wait = max_wait
        self._handles: dict[tuple[str, str], ChallengeHandle] = {}
        self._lock = threading.Lock()
        self._closed = False

    def present(self, domain: str, token: str, value: str) -> None:
        with self._lock:
            if self._closed:
                msg = f"{self._provider.challenge_type.value} attempt for {domain} was abandoned"
                raise ChallengeError(msg)
        handle = self._provider.prepare(domain, token=token, value=value)
        with self._lock:
            self._handles[(domain, token)] = handle
        readiness = self._provider.await_ready(handle, self._max_wait)
        if readiness is Readiness.TIMED_OUT:
            msg = (
                f"{self._provider.challenge_type.value} response for {domain} "
                "did not become visible in time"
            )
            raise PropagationTimeout(msg, retryable=True)

    def withdraw(self, domain: str, token: str) -> None:
        with self._lock:
            handle = self._handles.pop((domain, token), None)
        if handle is not None:
            self._cleanup(handle)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            self._cleanup(handle)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._handles)

    def _cleanup(self, handle: ChallengeHandle) -> None:
        try:
            self._provider.cleanup(handle)
        except Exception:  # noqa: BLE001
            log.warning(
                "Cleanup of %s challenge for %s raised",
                handle.challenge_type.value,
                handle.domain,
                exc_info=True,
            )


class CertificateAcquirer:
    """Produces self-signed and Let's Encrypt certificate bundles.

    Parameters
    ----------
    registry:
        Enabled challenge providers, in try order.
    authority:
        ACME authority used for Let's Encrypt issuance.
    self_signed:
        Self-signed key and validity settings.
    acme:
        ACME settings (key type for the CSR, per-call timeout).
    clock:
        Source of "now" for self-signed validity.

    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        authority: AcmeAuthority,
        self_signed: SelfSignedSettings,
        acme: AcmeSettings,
        clock: Clock | None = None,
    ) -> None:
        self._registry = registry
        self._authority = authority
        self._self_signed = self_signed
        self._acme = acme
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: CertcycleSettings,
        *,
        clock: Clock | None = None,
    ) -> CertificateAcquirer:
        return cls(
            registry=ProviderRegistry(settings.challenges),
            authority=AcmeowAuthority(settings.acme, settings.contact_email),
            self_signed=settings.self_signed,
            acme=settings.acme,
            clock=clock,
        )

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    # -- self-signed ---------------------------------------------------------

    def acquire_self_signed(
        self,
        domain: str,
        alternative_names: Sequence[str] = (),
    ) -> CertificateBundle:
        """Generate a self-signed bundle.  Raises :class:`CryptoFailure`."""
        return build_self_signed(domain, alternative_names, self._self_signed, clock=self._clock)

    # -- Let's Encrypt -------------------------------------------------------

    def acquire_lets_encrypt(
        self,
        domain: str,
        alternative_names: Sequence[str] = (),
        preferred_challenge: ChallengeType | None = None,
    ) -> CertificateBundle:
        """Obtain a Let's Encrypt bundle, trying each challenge method in turn.

        Parameters
        ----------
        domain:
            Primary name (CSR subject CN).
        alternative_names:
            Additional SAN entries.
        preferred_challenge:
            Method to try first, if enabled.

        Raises
        ------
        AllChallengesFailed
            When every enabled method failed; carries a reason per method.
        CryptoFailure
            When the CSR key cannot be generated.

        """
        identifiers = unique_names(domain, alternative_names)
        try:
            key = generate_csr_key(self._acme.key_type)
            key_pem = private_key_pem(key)
            csr_der = build_csr_der(key, domain, identifiers[1:])
        except (ValueError, TypeError) as exc:
            msg = f"CSR generation failed: {exc}"
            raise CryptoFailure(msg) from exc

        failures: dict[ChallengeType, str] = {}
        for provider in self._registry.ordered(preferred_challenge):
            ctype = provider.challenge_type
            try:
                provider.check_preconditions()
                cert_pem = self._attempt(provider, identifiers, csr_der)
                bundle = CertificateBundle.from_pem(
                    certificate_type=CertificateType.LETS_ENCRYPT,
                    cert_pem=cert_pem,
                    key_pem=key_pem,
                    source_challenge=ctype,
                    domain=domain,
                    alternative_names=identifiers[1:],
                )
            except ChallengeError as exc:
                failures[ctype] = exc.detail
                log.warning("%s challenge failed for %s: %s", ctype.value, domain, exc.detail)
                continue
            except AuthorityError as exc:
                failures[ctype] = exc.detail
                log.warning("%s issuance failed for %s: %s", ctype.value, domain, exc.detail)
                continue
            except ValueError as exc:
                failures[ctype] = f"Authority returned an unreadable certificate: {exc}"
                log.warning("%s issuance for %s returned bad PEM: %s", ctype.value, domain, exc)
                continue

            log.info(
                "Obtained Let's Encrypt certificate for %s via %s (expires %s)",
                domain,
                ctype.value,
                bundle.not_after.isoformat(),
            )
            return bundle

        raise AllChallengesFailed(failures)

    def _attempt(
        self,
        provider: ChallengeProvider,
        identifiers: list[str],
        csr_der: bytes,
    ) -> str:
        """Run one authority call for *provider* under an overall timeout."""
        # Authorizations are answered one after another, so each may
        # consume the provider's full propagation wait.
        timeout = self._acme.timeout_seconds + provider.max_wait * len(identifiers)
        responder = ProviderResponder(provider, provider.max_wait or None)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="certcycle-acme")
        try:
            future = executor.submit(
                self._authority.issue,
                identifiers,
                challenge_type=provider.challenge_type,
                csr_der=csr_der,
                responder=responder,
            )
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                msg = f"ACME authority timed out after {timeout:.0f}s"
                raise AuthorityError(msg, retryable=True) from None
        finally:
            responder.close()
            executor.shutdown(wait=False, cancel_futures=True)
