"""Root conftest for the certcycle test suite."""

from __future__ import annotations

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec  # noqa: E402
from cryptography.hazmat.primitives.serialization import Encoding  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402

from certcycle.acquire.acquirer import CertificateAcquirer  # noqa: E402
from certcycle.acquire.authority import AcmeAuthority  # noqa: E402
from certcycle.acquire.keys import generate_private_key, private_key_pem  # noqa: E402
from certcycle.challenge.base import ChallengeHandle, ChallengeProvider  # noqa: E402
from certcycle.challenge.registry import ProviderRegistry  # noqa: E402
from certcycle.config.settings import (  # noqa: E402
    AcmeSettings,
    RenewalSettings,
    SelfSignedSettings,
)
from certcycle.core.types import CertificateType, ChallengeType, Readiness  # noqa: E402
from certcycle.lifecycle.manager import LifecycleManager  # noqa: E402
from certcycle.models.certificate import CertificateBundle  # noqa: E402
from certcycle.notify.reload import ReloadNotificationFailed, ReloadNotifier  # noqa: E402
from certcycle.store.filesystem import FilesystemCertificateStore  # noqa: E402
from certcycle.store.memory import MemoryCertificateStore  # noqa: E402

DOMAIN = "example.com"
ALT_NAMES = ("www.example.com",)
START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Test CA standing in for Let's Encrypt
# ---------------------------------------------------------------------------


class TestCA:
    """Issues leaf certificates with an EC P-256 root."""

    __test__ = False

    def __init__(self) -> None:
        self.key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "certcycle test CA")])
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(datetime(2020, 1, 1, tzinfo=UTC))
            .not_valid_after(datetime(2040, 1, 1, tzinfo=UTC))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.key, hashes.SHA256())
        )

    def issue(
        self,
        public_key,
        names: list[str] | tuple[str, ...],
        *,
        not_before: datetime,
        not_after: datetime,
    ) -> str:
        leaf = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])]))
            .issuer_name(self.cert.subject)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
                critical=False,
            )
            .sign(self.key, hashes.SHA256())
        )
        return (
            leaf.public_bytes(Encoding.PEM).decode("ascii")
            + self.cert.public_bytes(Encoding.PEM).decode("ascii")
        )

    def issue_from_csr(self, csr_der: bytes, *, not_before: datetime, not_after: datetime) -> str:
        csr = x509.load_der_x509_csr(csr_der)
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names = san.value.get_values_for_type(x509.DNSName)
        return self.issue(csr.public_key(), names, not_before=not_before, not_after=not_after)


@pytest.fixture(scope="session")
def test_ca() -> TestCA:
    return TestCA()


@pytest.fixture()
def make_bundle(test_ca: TestCA, clock: FakeClock):
    """Build a bundle of either type, valid for *days* from *start*."""

    def _make(
        certificate_type: CertificateType = CertificateType.LETS_ENCRYPT,
        *,
        days: float = 90,
        start: datetime | None = None,
        names: tuple[str, ...] = (DOMAIN, *ALT_NAMES),
        source: ChallengeType | None = ChallengeType.HTTP_01,
    ) -> CertificateBundle:
        begin = start or clock()
        key = generate_private_key("ec", ec_curve="P-256")
        cert_pem = test_ca.issue(
            key.public_key(),
            names,
            not_before=begin - timedelta(minutes=1),
            not_after=begin + timedelta(days=days),
        )
        return CertificateBundle.from_pem(
            certificate_type=certificate_type,
            cert_pem=cert_pem,
            key_pem=private_key_pem(key),
            source_challenge=(
                source if certificate_type == CertificateType.LETS_ENCRYPT else None
            ),
            domain=names[0],
            alternative_names=names[1:],
        )

    return _make


# ---------------------------------------------------------------------------
# Fakes for the acquirer's collaborators
# ---------------------------------------------------------------------------


class FakeProvider(ChallengeProvider):
    """In-memory provider that records what it published."""

    def __init__(
        self,
        challenge_type: ChallengeType,
        *,
        prepare_error: Exception | None = None,
        precondition_error: Exception | None = None,
        readiness: Readiness = Readiness.READY,
        max_wait: float = 0.0,
    ) -> None:
        super().__init__(settings=None)
        self.challenge_type = challenge_type  # type: ignore[misc]
        self.prepare_error = prepare_error
        self.precondition_error = precondition_error
        self.readiness = readiness
        self._max_wait = max_wait
        self.prepared: list[ChallengeHandle] = []
        self.cleaned: list[ChallengeHandle] = []

    @property
    def max_wait(self) -> float:
        return self._max_wait

    @property
    def published(self) -> list[ChallengeHandle]:
        return [h for h in self.prepared if h not in self.cleaned]

    def check_preconditions(self) -> None:
        if self.precondition_error is not None:
            raise self.precondition_error

    def prepare(self, domain: str, *, token: str, value: str) -> ChallengeHandle:
        if self.prepare_error is not None:
            raise self.prepare_error
        handle = ChallengeHandle(self.challenge_type, domain, token, value, f"fake:{token}")
        self.prepared.append(handle)
        return handle

    def await_ready(self, handle: ChallengeHandle, max_wait: float | None = None) -> Readiness:
        return self.readiness

    def cleanup(self, handle: ChallengeHandle) -> None:
        self.cleaned.append(handle)


class FakeAuthority(AcmeAuthority):
    """Answers every identifier through the responder, then signs the CSR.

    *fail* maps a challenge type to the exception raised after the
    challenges were presented.  *valid_days* controls the lifetime of
    issued certificates.
    """

    def __init__(self, ca: TestCA, clock: FakeClock, *, valid_days: float = 90) -> None:
        self.ca = ca
        self.clock = clock
        self.valid_days = valid_days
        self.fail: dict[ChallengeType, Exception] = {}
        self.calls: list[tuple[list[str], ChallengeType]] = []
        self.withdraw = True

    def issue(self, identifiers, *, challenge_type, csr_der, responder) -> str:
        self.calls.append((list(identifiers), challenge_type))
        for i, name in enumerate(identifiers):
            responder.present(name, f"token{i}", f"value-{name}")
        try:
            if challenge_type in self.fail:
                raise self.fail[challenge_type]
            now = self.clock()
            return self.ca.issue_from_csr(
                csr_der,
                not_before=now - timedelta(minutes=1),
                not_after=now + timedelta(days=self.valid_days),
            )
        finally:
            if self.withdraw:
                for i, name in enumerate(identifiers):
                    responder.withdraw(name, f"token{i}")


class RecordingNotifier(ReloadNotifier):
    def __init__(self, *, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    def notify_reload(self) -> None:
        self.calls += 1
        if self.fail:
            msg = "nginx: [emerg] cannot load certificate"
            raise ReloadNotificationFailed(msg)


@pytest.fixture()
def self_signed_settings() -> SelfSignedSettings:
    # EC keeps key generation fast
    return SelfSignedSettings(
        key_type="ec",
        key_size=2048,
        ec_curve="P-256",
        validity_days=365,
        include_localhost=True,
    )


@pytest.fixture()
def acme_settings(tmp_path: Path) -> AcmeSettings:
    return AcmeSettings(
        directory_url="https://acme.test/directory",
        storage_path=str(tmp_path / "acme"),
        timeout_seconds=30,
        key_type="ec",
        eab_kid=None,
        eab_hmac_key=None,
        proxy_url=None,
        verify_ssl=True,
    )


@pytest.fixture()
def renewal_settings() -> RenewalSettings:
    return RenewalSettings(threshold_days=30, check_interval_seconds=3600)


@pytest.fixture()
def authority(test_ca: TestCA, clock: FakeClock) -> FakeAuthority:
    return FakeAuthority(test_ca, clock)


@pytest.fixture()
def make_provider():
    """Return the :class:`FakeProvider` constructor."""
    return FakeProvider


@pytest.fixture()
def make_authority(test_ca: TestCA, clock: FakeClock):
    def _make(**kwargs) -> FakeAuthority:
        return FakeAuthority(test_ca, clock, **kwargs)

    return _make


@pytest.fixture()
def http_provider() -> FakeProvider:
    return FakeProvider(ChallengeType.HTTP_01)


@pytest.fixture()
def dns_provider() -> FakeProvider:
    return FakeProvider(ChallengeType.DNS_01)


@pytest.fixture()
def make_acquirer(authority, self_signed_settings, acme_settings, clock):
    def _make(providers: list[ChallengeProvider]) -> CertificateAcquirer:
        return CertificateAcquirer(
            registry=ProviderRegistry(providers=providers),
            authority=authority,
            self_signed=self_signed_settings,
            acme=acme_settings,
            clock=clock,
        )

    return _make


@pytest.fixture()
def fs_store(tmp_path: Path, clock: FakeClock) -> FilesystemCertificateStore:
    return FilesystemCertificateStore(tmp_path / "ssl", clock=clock)


@pytest.fixture()
def memory_store(clock: FakeClock) -> MemoryCertificateStore:
    return MemoryCertificateStore(clock=clock)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def make_manager(make_acquirer, fs_store, notifier, renewal_settings, http_provider):
    """Build a manager over the filesystem store with fake collaborators."""

    def _make(
        providers: list[ChallengeProvider] | None = None,
        *,
        store=None,
        **kwargs,
    ) -> LifecycleManager:
        return LifecycleManager(
            store=store if store is not None else fs_store,
            acquirer=make_acquirer([http_provider] if providers is None else providers),
            notifier=kwargs.pop("notifier", notifier),
            domain=DOMAIN,
            alternative_names=ALT_NAMES,
            renewal=kwargs.pop("renewal", renewal_settings),
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# Config files
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a dict containing the minimum useful config fields."""
    return {
        "domain": DOMAIN,
        "alternative_names": list(ALT_NAMES),
        "contact_email": "admin@example.com",
        "store": {"path": str(tmp_path / "ssl")},
        "challenges": {
            "http01": {"webroot": str(tmp_path / "webroot")},
            "dns01": {"enabled": False},
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Config singleton cleanup -- autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the CertcycleConfig singleton before and after every test."""
    from certcycle.config.certcycle_config import CertcycleConfig

    CertcycleConfig.reset()
    yield
    CertcycleConfig.reset()


@pytest.fixture(autouse=True)
def reset_certcycle_logger():
    """Undo ``configure_logging`` so caplog keeps seeing certcycle records."""
    yield
    import logging

    logger = logging.getLogger("certcycle")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
