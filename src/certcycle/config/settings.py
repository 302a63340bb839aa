"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation -- these builders
are what the application actually reads.

Access pattern::

    from certcycle.config import get_config

    renewal = get_config().settings.renewal
    print(renewal.threshold_days, renewal.check_interval_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass

LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreSettings:
    """Where certificates, pointers, and the journal live."""

    path: str
    keep_versions: int


def _build_store(data: dict | None) -> StoreSettings:
    d = data or {}
    return StoreSettings(
        path=d.get("path", "/etc/nginx/ssl"),
        keep_versions=d.get("keep_versions", 3),
    )


# ---------------------------------------------------------------------------
# Renewal policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalSettings:
    """When renewal is due and how often the scheduled check runs."""

    threshold_days: int
    check_interval_seconds: int


def _build_renewal(data: dict | None) -> RenewalSettings:
    d = data or {}
    return RenewalSettings(
        threshold_days=d.get("threshold_days", 30),
        check_interval_seconds=d.get("check_interval_seconds", 43200),
    )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Http01Settings:
    enabled: bool
    webroot: str
    self_check: bool
    self_check_host: str
    self_check_port: int
    timeout_seconds: int


@dataclass(frozen=True)
class Dns01Settings:
    enabled: bool
    api_token: str | None
    credentials: dict[str, str]
    create_script: str | None
    delete_script: str | None
    script_timeout: int
    resolvers: tuple[str, ...]
    max_attempts: int
    backoff_base_seconds: float
    backoff_max_seconds: float
    max_wait_seconds: float

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_token) or any(self.credentials.values())


@dataclass(frozen=True)
class ChallengeSettings:
    """Challenge methods and the order they are tried in."""

    order: tuple[str, ...]
    http01: Http01Settings
    dns01: Dns01Settings


def _build_challenges(data: dict | None) -> ChallengeSettings:
    d = data or {}
    http_d = d.get("http01") or {}
    dns_d = d.get("dns01") or {}
    return ChallengeSettings(
        order=tuple(d.get("order", ["http-01", "dns-01"])),
        http01=Http01Settings(
            enabled=http_d.get("enabled", True),
            webroot=http_d.get("webroot", "/var/www/certbot"),
            self_check=http_d.get("self_check", True),
            self_check_host=http_d.get("self_check_host", "127.0.0.1"),
            self_check_port=http_d.get("self_check_port", 80),
            timeout_seconds=http_d.get("timeout_seconds", 10),
        ),
        dns01=Dns01Settings(
            enabled=dns_d.get("enabled", True),
            api_token=dns_d.get("api_token") or None,
            credentials={str(k): str(v) for k, v in (dns_d.get("credentials") or {}).items()},
            create_script=dns_d.get("create_script"),
            delete_script=dns_d.get("delete_script"),
            script_timeout=dns_d.get("script_timeout", 60),
            resolvers=tuple(dns_d.get("resolvers", [])),
            max_attempts=dns_d.get("max_attempts", 10),
            backoff_base_seconds=dns_d.get("backoff_base_seconds", 5.0),
            backoff_max_seconds=dns_d.get("backoff_max_seconds", 300.0),
            max_wait_seconds=dns_d.get("max_wait_seconds", 900.0),
        ),
    )


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """ACME authority connection (Let's Encrypt by default)."""

    directory_url: str
    storage_path: str
    timeout_seconds: int
    key_type: str
    eab_kid: str | None
    eab_hmac_key: str | None
    proxy_url: str | None
    verify_ssl: bool


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    default_directory = (
        LETS_ENCRYPT_STAGING_DIRECTORY if d.get("staging", False) else LETS_ENCRYPT_DIRECTORY
    )
    return AcmeSettings(
        directory_url=d.get("directory_url") or default_directory,
        storage_path=d.get("storage_path", "/var/lib/certcycle/acme"),
        timeout_seconds=d.get("timeout_seconds", 60),
        key_type=d.get("key_type", "ec"),
        eab_kid=d.get("eab_kid"),
        eab_hmac_key=d.get("eab_hmac_key"),
        proxy_url=d.get("proxy_url"),
        verify_ssl=d.get("verify_ssl", True),
    )


# ---------------------------------------------------------------------------
# Self-signed fallback
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SelfSignedSettings:
    key_type: str
    key_size: int
    ec_curve: str
    validity_days: int
    include_localhost: bool


def _build_self_signed(data: dict | None) -> SelfSignedSettings:
    d = data or {}
    return SelfSignedSettings(
        key_type=d.get("key_type", "rsa"),
        key_size=d.get("key_size", 4096),
        ec_curve=d.get("ec_curve", "P-384"),
        validity_days=d.get("validity_days", 365),
        include_localhost=d.get("include_localhost", True),
    )


# ---------------------------------------------------------------------------
# Reload
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReloadSettings:
    """Command that tells the reverse proxy to pick up the new certificate."""

    command: tuple[str, ...]
    timeout_seconds: int


def _build_reload(data: dict | None) -> ReloadSettings:
    d = data or {}
    return ReloadSettings(
        command=tuple(d.get("command", [])),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str
    file: str | None


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        file=d.get("file"),
    )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricsSettings:
    textfile_path: str | None


def _build_metrics(data: dict | None) -> MetricsSettings:
    d = data or {}
    return MetricsSettings(textfile_path=d.get("textfile_path"))


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertcycleSettings:
    domain: str
    alternative_names: tuple[str, ...]
    contact_email: str | None
    store: StoreSettings
    renewal: RenewalSettings
    challenges: ChallengeSettings
    acme: AcmeSettings
    self_signed: SelfSignedSettings
    reload: ReloadSettings
    logging: LoggingSettings
    metrics: MetricsSettings


def build_settings(data: dict) -> CertcycleSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`CertcycleConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return CertcycleSettings(
        domain=data["domain"],
        alternative_names=tuple(data.get("alternative_names", [])),
        contact_email=data.get("contact_email") or None,
        store=_build_store(data.get("store")),
        renewal=_build_renewal(data.get("renewal")),
        challenges=_build_challenges(data.get("challenges")),
        acme=_build_acme(data.get("acme")),
        self_signed=_build_self_signed(data.get("self_signed")),
        reload=_build_reload(data.get("reload")),
        logging=_build_logging(data.get("logging")),
        metrics=_build_metrics(data.get("metrics")),
    )
