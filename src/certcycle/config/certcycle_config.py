"""certcycle configuration loader.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    CertcycleConfig(config_file="/etc/certcycle/config.yaml")

    # 2. Any module retrieves it afterwards
    from certcycle.config import get_config
    cfg = get_config()
    cfg.settings.renewal.threshold_days  # typed access
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from certcycle.config.settings import CertcycleSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_KNOWN_CHALLENGE_TYPES = frozenset({"http-01", "dns-01"})

_MIN_RSA_KEY_SIZE = 2048

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: CertcycleConfig | None = None


def get_config() -> CertcycleConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`CertcycleConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "CertcycleConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when schema or cross-field validation finds problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(data: Any, path: str = "") -> None:  # noqa: ANN401
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _read_file(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:  # noqa: PTH123
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigValidationError([f"Config file not found: {path}"]) from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError([f"Cannot parse {path}: {exc}"]) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            [f"Top level of {path} must be a mapping, got {type(data).__name__}"],
        )
    return data


def _schema_errors(data: dict) -> list[str]:
    with open(_SCHEMA_PATH, encoding="utf-8") as f:  # noqa: PTH123
        schema = json.load(f)
    validator = jsonschema.Draft202012Validator(schema)
    errors = []
    for err in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        where = ".".join(str(p) for p in err.absolute_path) or "<root>"
        errors.append(f"{where}: {err.message}")
    return errors


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class CertcycleConfig:
    """Central configuration for certcycle.

    The JSON schema is bundled at ``config/schema.json``; users supply
    only ``config_file``.  After construction the typed settings tree is
    available at :pyattr:`settings` and the raw dict via
    :pyattr:`data` / :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        """Load, resolve, validate, and publish the configuration.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.

        Raises
        ------
        ConfigValidationError
            If the file is missing, unparsable, violates the schema,
            or fails a cross-field check.

        """
        global _instance  # noqa: PLW0603

        self._source = Path(config_file)
        self._data = _read_file(self._source)
        # Env vars are resolved before schema validation so substituted
        # values are checked against enum constraints too.
        _resolve_env_vars(self._data)

        errors = _schema_errors(self._data)
        if errors:
            raise ConfigValidationError(errors)
        self.additional_checks()

        self._settings: CertcycleSettings = build_settings(self._data)
        _instance = self

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> CertcycleSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict:
        return self._data

    @property
    def source(self) -> Path:
        return self._source

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation, run after schema validation."""
        errors: list[str] = []
        warnings: list[str] = []

        challenges = self._data.get("challenges") or {}
        http01 = challenges.get("http01") or {}
        dns01 = challenges.get("dns01") or {}
        acme = self._data.get("acme") or {}
        self_signed = self._data.get("self_signed") or {}
        renewal = self._data.get("renewal") or {}

        # -- challenges --
        order = challenges.get("order", ["http-01", "dns-01"])
        for name in order:
            if name not in _KNOWN_CHALLENGE_TYPES:
                errors.append(
                    f"challenges.order contains unknown challenge type '{name}'",
                )
        if len(set(order)) != len(order):
            errors.append("challenges.order must not list a challenge type twice")

        http_enabled = http01.get("enabled", True) and "http-01" in order
        dns_enabled = dns01.get("enabled", True) and "dns-01" in order

        if http_enabled and not http01.get("webroot", "/var/www/certbot"):
            errors.append(
                "challenges.http01.webroot is required when http-01 is enabled",
            )

        if dns_enabled:
            has_creds = bool(dns01.get("api_token")) or any(
                (dns01.get("credentials") or {}).values(),
            )
            if not has_creds:
                warnings.append(
                    "dns-01 is enabled but neither challenges.dns01.api_token "
                    "nor challenges.dns01.credentials is set; it will be skipped",
                )
            elif not (dns01.get("create_script") and dns01.get("delete_script")):
                errors.append(
                    "challenges.dns01.create_script and delete_script are "
                    "required when dns-01 credentials are configured",
                )
            base = dns01.get("backoff_base_seconds", 5.0)
            cap = dns01.get("backoff_max_seconds", 300.0)
            if base > cap:
                errors.append(
                    f"challenges.dns01.backoff_base_seconds ({base}) must be <= "
                    f"backoff_max_seconds ({cap})",
                )

        if not http_enabled and not dns_enabled:
            warnings.append(
                "No challenge method is enabled; only self-signed "
                "certificates can be produced",
            )

        # -- ACME --
        if (http_enabled or dns_enabled) and not self._data.get("contact_email"):
            errors.append(
                "contact_email is required when a Let's Encrypt challenge is enabled",
            )
        if acme.get("staging") and acme.get("directory_url"):
            warnings.append(
                "acme.staging is ignored because acme.directory_url is set explicitly",
            )
        if bool(acme.get("eab_kid")) != bool(acme.get("eab_hmac_key")):
            errors.append("acme.eab_kid and acme.eab_hmac_key must be set together")

        # -- self-signed --
        if self_signed.get("key_type", "rsa") == "rsa":
            key_size = self_signed.get("key_size", 4096)
            if key_size < _MIN_RSA_KEY_SIZE:
                errors.append(
                    f"self_signed.key_size ({key_size}) must be >= {_MIN_RSA_KEY_SIZE}",
                )
        threshold = renewal.get("threshold_days", 30)
        validity = self_signed.get("validity_days", 365)
        if threshold >= validity:
            errors.append(
                f"renewal.threshold_days ({threshold}) must be < "
                f"self_signed.validity_days ({validity})",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        return f"<CertcycleConfig config_file={self._source}>"
