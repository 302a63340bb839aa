"""ACME authority abstraction.

The acquirer talks to the authority only through :class:`AcmeAuthority`.
During :meth:`AcmeAuthority.issue` the authority calls back into a
:class:`ChallengeResponder` for every authorization, so the challenge
providers stay independent of the ACME client library.

:class:`AcmeowAuthority` is the built-in implementation on top of
ACMEOW (``pip install certcycle[acme]``).  Requires ACMEOW >= 1.1.0 for
external CSR support via ``finalize_order(csr=<bytes>)``.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from certcycle.acquire.errors import AuthorityError
from certcycle.challenge.base import ChallengeError
from certcycle.core.types import ChallengeType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certcycle.config.settings import AcmeSettings

log = logging.getLogger(__name__)


class ChallengeResponder(abc.ABC):
    """Answers the authority's challenges for one issuance attempt."""

    @abc.abstractmethod
    def present(self, domain: str, token: str, value: str) -> None:
        """Publish *value* for *domain* and block until it is observable.

        Raises :class:`ChallengeError` when that is impossible.
        """

    @abc.abstractmethod
    def withdraw(self, domain: str, token: str) -> None:
        """Remove what :meth:`present` published.  Never raises."""


class AcmeAuthority(abc.ABC):
    """Issues certificates through an ACME server."""

    @abc.abstractmethod
    def issue(
        self,
        identifiers: Sequence[str],
        *,
        challenge_type: ChallengeType,
        csr_der: bytes,
        responder: ChallengeResponder,
    ) -> str:
        """Run order, challenges, and finalisation; return the PEM chain.

        Raises
        ------
        ChallengeError
            Propagated from *responder*.
        AuthorityError
            On any other ACME failure.

        """


class AcmeowAuthority(AcmeAuthority):
    """Let's Encrypt (or any ACME CA) via the ACMEOW client.

    The ACMEOW client keeps per-order state, so every call to :meth:`issue`
    builds its own client and no state is shared between attempts.  An
    attempt abandoned after a timeout therefore cannot block the next
    one.  The account key lives under ``storage_path``, so registering
    again on a fresh client resolves to the same ACME account.

    Parameters
    ----------
    settings:
        The ``acme`` configuration section.
    contact_email:
        Account contact address.

    """

    def __init__(self, settings: AcmeSettings, contact_email: str | None) -> None:
        self._settings = settings
        self._contact_email = contact_email

    def issue(
        self,
        identifiers: Sequence[str],
        *,
        challenge_type: ChallengeType,
        csr_der: bytes,
        responder: ChallengeResponder,
    ) -> str:
        try:
            client = self._new_client()
            handler = self._build_handler(challenge_type, responder)

            log.info(
                "ACME: creating order for %d identifier(s) at %s",
                len(identifiers),
                self._settings.directory_url,
            )
            client.create_order(list(identifiers))

            log.info("ACME: completing %s challenges", challenge_type.value)
            client.complete_challenges(handler, challenge_type=challenge_type.value)

            log.info("ACME: finalising order")
            client.finalize_order(csr=csr_der)

            cert_pem, _ = client.get_certificate()
        except (ChallengeError, AuthorityError):
            raise
        except Exception as exc:  # noqa: BLE001
            exc_type = type(exc).__name__
            msg = f"ACME error ({exc_type}): {exc}"
            raise AuthorityError(msg, retryable=_is_retryable(exc)) from exc

        log.info("ACME: certificate issued")
        return cert_pem

    def _new_client(self) -> Any:  # noqa: ANN401
        try:
            from acmeow import AcmeClient  # noqa: PLC0415
        except ImportError as exc:
            msg = "ACMEOW is not installed. Install with: pip install certcycle[acme]"
            raise AuthorityError(msg) from exc

        storage = Path(self._settings.storage_path)
        try:
            storage.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create ACME storage directory '{storage}': {exc}"
            raise AuthorityError(msg) from exc

        client_kwargs: dict[str, Any] = {
            "directory_url": self._settings.directory_url,
            "storage_path": str(storage),
        }
        if self._settings.proxy_url:
            client_kwargs["proxy_url"] = self._settings.proxy_url
        if not self._settings.verify_ssl:
            client_kwargs["verify_ssl"] = False
        client = AcmeClient(**client_kwargs)

        account_kwargs: dict[str, str] = {"email": self._contact_email or ""}
        if self._settings.eab_kid and self._settings.eab_hmac_key:
            account_kwargs["eab_kid"] = self._settings.eab_kid
            account_kwargs["eab_hmac_key"] = self._settings.eab_hmac_key
        client.create_account(**account_kwargs)
        log.info("ACME: account ready at %s", self._settings.directory_url)
        return client

    @staticmethod
    def _build_handler(challenge_type: ChallengeType, responder: ChallengeResponder) -> Any:  # noqa: ANN401
        from acmeow.handlers import CallbackDnsHandler, CallbackHttpHandler  # noqa: PLC0415

        if challenge_type == ChallengeType.HTTP_01:

            def deploy(domain: str, token: str, key_authorization: str) -> None:
                responder.present(domain, token, key_authorization)

            def cleanup(domain: str, token: str) -> None:
                responder.withdraw(domain, token)

            return CallbackHttpHandler(deploy=deploy, cleanup=cleanup)

        def create_record(domain: str, record_name: str, record_value: str) -> None:
            responder.present(domain, record_name, record_value)

        def delete_record(domain: str, record_name: str) -> None:
            responder.withdraw(domain, record_name)

        # Propagation is awaited by the responder itself.
        return CallbackDnsHandler(
            create_record=create_record,
            delete_record=delete_record,
            propagation_delay=0,
        )


def _is_retryable(exc: Exception) -> bool:
    """Determine whether an ACME error is retryable via heuristics."""
    exc_name = type(exc).__name__.lower()
    retryable_patterns = (
        "timeout",
        "connection",
        "network",
        "server",
        "503",
        "429",
    )
    msg = str(exc).lower()
    return any(p in exc_name or p in msg for p in retryable_patterns)
