"""DNS-01 challenge provider.

Creates ``_acme-challenge.<domain>`` TXT records through a
:class:`DnsRecordApi` and polls public DNS with dnspython until the
value is visible.  Polling uses exponential backoff bounded both by an
attempt count and by a total wait budget.
"""

from __future__ import annotations

import abc
import logging
import os
import subprocess
import time
from typing import TYPE_CHECKING

import dns.exception
import dns.resolver

from certcycle.challenge.base import (
    ChallengeError,
    ChallengeHandle,
    ChallengeProvider,
    CredentialsMissing,
)
from certcycle.core.backoff import backoff_schedule
from certcycle.core.types import ChallengeType, Readiness

if TYPE_CHECKING:
    from collections.abc import Callable

    from certcycle.config.settings import Dns01Settings

log = logging.getLogger(__name__)

_QUERY_LIFETIME = 10.0


def challenge_record_name(domain: str) -> str:
    """Return the TXT record name for *domain*, ignoring a wildcard label."""
    return f"_acme-challenge.{domain.removeprefix('*.')}"


class DnsRecordApi(abc.ABC):
    """Creates and deletes TXT records at the DNS provider."""

    @abc.abstractmethod
    def create_record(self, domain: str, record_name: str, value: str) -> None:
        """Publish *value* as a TXT record at *record_name*.

        Must raise :class:`ChallengeError` on failure.
        """

    @abc.abstractmethod
    def delete_record(self, domain: str, record_name: str) -> None:
        """Remove the TXT record at *record_name*."""


class CallbackDnsApi(DnsRecordApi):
    """Runs external scripts to manage TXT records.

    Scripts are called as::

        create_script <domain> <record_name> <record_value>
        delete_script <domain> <record_name>

    with the DNS credentials exported in the environment:
    ``DNS_API_TOKEN`` for ``api_token`` and each ``credentials`` entry
    under its own (upper-cased) name.
    """

    def __init__(
        self,
        create_script: str,
        delete_script: str,
        *,
        env: dict[str, str] | None = None,
        timeout: int = 60,
    ) -> None:
        self._create_script = create_script
        self._delete_script = delete_script
        self._env = dict(env or {})
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Dns01Settings) -> CallbackDnsApi:
        env = {k.upper(): v for k, v in settings.credentials.items()}
        if settings.api_token:
            env["DNS_API_TOKEN"] = settings.api_token
        return cls(
            settings.create_script or "",
            settings.delete_script or "",
            env=env,
            timeout=settings.script_timeout,
        )

    def create_record(self, domain: str, record_name: str, value: str) -> None:
        log.info("DNS create: %s %s via %s", record_name, domain, self._create_script)
        self._run([self._create_script, domain, record_name, value])

    def delete_record(self, domain: str, record_name: str) -> None:
        log.info("DNS delete: %s %s via %s", record_name, domain, self._delete_script)
        self._run([self._delete_script, domain, record_name])

    def _run(self, argv: list[str]) -> None:
        if not argv[0]:
            msg = "No DNS callback script configured"
            raise ChallengeError(msg, retryable=False)
        try:
            subprocess.run(  # noqa: S603
                argv,
                check=True,
                timeout=self._timeout,
                capture_output=True,
                text=True,
                env={**os.environ, **self._env},
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            msg = f"DNS script {argv[0]} exited with {exc.returncode}: {stderr}"
            raise ChallengeError(msg, retryable=True) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"DNS script {argv[0]} timed out after {self._timeout}s"
            raise ChallengeError(msg, retryable=True) from exc
        except OSError as exc:
            msg = f"DNS script {argv[0]} could not be run: {exc}"
            raise ChallengeError(msg, retryable=False) from exc


class Dns01Provider(ChallengeProvider):
    """DNS-01 provider backed by a :class:`DnsRecordApi`.

    Parameters
    ----------
    settings:
        DNS-01 settings (credentials, scripts, polling limits).
    api:
        Record API; defaults to :class:`CallbackDnsApi` built from
        *settings*.
    sleep:
        Sleep function used between polls.
    monotonic:
        Monotonic clock used to enforce the wait budget.

    """

    challenge_type = ChallengeType.DNS_01

    def __init__(
        self,
        settings: Dns01Settings,
        *,
        api: DnsRecordApi | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(settings=settings)
        self._api = api or CallbackDnsApi.from_settings(settings)
        self._sleep = sleep
        self._monotonic = monotonic

    @property
    def max_wait(self) -> float:
        return float(self.settings.max_wait_seconds)

    def check_preconditions(self) -> None:
        if not self.settings.has_credentials:
            msg = "DNS-01 requires challenges.dns01.api_token or challenges.dns01.credentials"
            raise CredentialsMissing(msg, retryable=False)

    def prepare(self, domain: str, *, token: str, value: str) -> ChallengeHandle:
        self.check_preconditions()
        record_name = challenge_record_name(domain)
        self._api.create_record(domain, record_name, value)
        return ChallengeHandle(
            challenge_type=self.challenge_type,
            domain=domain,
            token=token,
            value=value,
            location=record_name,
        )

    def await_ready(self, handle: ChallengeHandle, max_wait: float | None = None) -> Readiness:
        """Poll TXT records for *handle* until the value is visible.

        Stops after ``max_attempts`` queries, or earlier when the next
        sleep would exceed *max_wait* (default ``max_wait_seconds``).
        """
        budget = self.max_wait if max_wait is None else min(max_wait, self.max_wait)
        attempts = self.settings.max_attempts
        started = self._monotonic()

        queries = 1
        if handle.value in self._txt_values(handle.location):
            return self._visible(handle, queries)

        schedule = backoff_schedule(
            attempts,
            self.settings.backoff_base_seconds,
            self.settings.backoff_max_seconds,
        )
        for delay in schedule:
            elapsed = self._monotonic() - started
            if elapsed + delay > budget:
                log.warning(
                    "DNS-01 record %s not visible; wait budget of %.0fs exhausted",
                    handle.location,
                    budget,
                )
                return Readiness.TIMED_OUT
            log.debug(
                "DNS-01 record %s not visible yet (attempt %d/%d), retrying in %.1fs",
                handle.location,
                queries,
                attempts,
                delay,
            )
            self._sleep(delay)
            queries += 1
            if handle.value in self._txt_values(handle.location):
                return self._visible(handle, queries)

        log.warning(
            "DNS-01 record %s not visible after %d attempts",
            handle.location,
            attempts,
        )
        return Readiness.TIMED_OUT

    @staticmethod
    def _visible(handle: ChallengeHandle, queries: int) -> Readiness:
        log.info("DNS-01 record %s visible after %d attempt(s)", handle.location, queries)
        return Readiness.READY

    def cleanup(self, handle: ChallengeHandle) -> None:
        try:
            self._api.delete_record(handle.domain, handle.location)
        except ChallengeError as exc:
            log.warning("DNS-01 cleanup of %s failed: %s", handle.location, exc.detail)

    def _txt_values(self, query_name: str) -> list[str]:
        resolver = dns.resolver.Resolver()
        if self.settings.resolvers:
            resolver.nameservers = list(self.settings.resolvers)
        resolver.lifetime = _QUERY_LIFETIME
        try:
            answer = resolver.resolve(query_name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as exc:
            log.debug("DNS-01 query for %s failed: %s", query_name, exc)
            return []
        # TXT rdata carries a tuple of byte segments; concatenate them.
        return [b"".join(rdata.strings).decode("ascii", errors="replace") for rdata in answer]
