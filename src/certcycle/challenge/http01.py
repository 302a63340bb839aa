"""HTTP-01 challenge provider.

Writes the key authorization to
``<webroot>/.well-known/acme-challenge/<token>`` where the reverse proxy
serves it, then optionally fetches it back through the proxy on the
loopback interface (with ``Host: <domain>``) to catch a missing
``location`` block before the authority is asked to validate.
"""

from __future__ import annotations

import logging
import re
import secrets
import urllib.error
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING

from certcycle.challenge.base import (
    ChallengeError,
    ChallengeHandle,
    ChallengeProvider,
    DomainUnreachable,
)
from certcycle.core.types import ChallengeType, Readiness
from certcycle.store.filesystem import atomic_write_text

if TYPE_CHECKING:
    from certcycle.config.settings import Http01Settings

log = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/acme-challenge"

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class Http01Provider(ChallengeProvider):
    """Webroot HTTP-01 provider."""

    challenge_type = ChallengeType.HTTP_01

    def __init__(self, settings: Http01Settings) -> None:
        super().__init__(settings=settings)
        self._webroot = Path(settings.webroot)

    @property
    def challenge_dir(self) -> Path:
        return self._webroot / WELL_KNOWN_PATH

    def prepare(self, domain: str, *, token: str, value: str) -> ChallengeHandle:
        """Write the token file and, if enabled, self-check it.

        Raises
        ------
        ChallengeError
            If the token is malformed or the file cannot be written.
        DomainUnreachable
            If the loopback self-check does not return *value*.

        """
        if not _TOKEN_RE.match(token):
            msg = f"HTTP-01 token contains characters outside base64url: {token!r}"
            raise ChallengeError(msg, retryable=False)

        path = self.challenge_dir / token
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(path, value, 0o644)
        except OSError as exc:
            msg = f"HTTP-01 could not write token file {path}: {exc}"
            raise ChallengeError(msg, retryable=False) from exc

        handle = ChallengeHandle(
            challenge_type=self.challenge_type,
            domain=domain,
            token=token,
            value=value,
            location=str(path),
        )
        log.debug("HTTP-01 token for %s written to %s", domain, path)

        if self.settings.self_check:
            try:
                self._self_check(domain, token, value)
            except DomainUnreachable:
                self.cleanup(handle)
                raise
        return handle

    def await_ready(self, handle: ChallengeHandle, max_wait: float | None = None) -> Readiness:  # noqa: ARG002
        # The file is visible as soon as it is written.
        return Readiness.READY

    def cleanup(self, handle: ChallengeHandle) -> None:
        try:
            Path(handle.location).unlink(missing_ok=True)
        except OSError as exc:
            log.warning("HTTP-01 cleanup of %s failed: %s", handle.location, exc)

    def _self_check(self, domain: str, token: str, expected: str) -> None:
        host = self.settings.self_check_host
        port = self.settings.self_check_port
        timeout = self.settings.timeout_seconds
        url = f"http://{host}:{port}/{WELL_KNOWN_PATH}/{token}"

        log.debug("HTTP-01 self-check: fetching %s (Host: %s)", url, domain)
        req = urllib.request.Request(url, method="GET", headers={"Host": domain})  # noqa: S310
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
                body = resp.read(4096)
        except urllib.error.HTTPError as exc:
            msg = f"HTTP-01 self-check for {domain}: server returned HTTP {exc.code} for {url}"
            raise DomainUnreachable(msg, retryable=True) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"HTTP-01 self-check for {domain}: could not connect to {host}:{port}: {exc}"
            raise DomainUnreachable(msg, retryable=True) from exc

        body_text = body.decode("utf-8", errors="replace").strip()
        if not secrets.compare_digest(body_text.encode(), expected.encode()):
            msg = (
                f"HTTP-01 self-check for {domain}: response body does not match "
                f"the key authorization (is {WELL_KNOWN_PATH} served from "
                f"{self._webroot}?)"
            )
            raise DomainUnreachable(msg, retryable=True)

        log.info("HTTP-01 self-check succeeded for %s", domain)
