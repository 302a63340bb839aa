"""Configuration subsystem for certcycle.

Public API::

    from certcycle.config import get_config, CertcycleConfig

    # At startup (CLI only):
    CertcycleConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    days = cfg.settings.renewal.threshold_days   # typed access
"""

from certcycle.config.certcycle_config import (
    CertcycleConfig,
    ConfigValidationError,
    get_config,
)
from certcycle.config.settings import (
    AcmeSettings,
    CertcycleSettings,
    ChallengeSettings,
    Dns01Settings,
    Http01Settings,
    LoggingSettings,
    MetricsSettings,
    ReloadSettings,
    RenewalSettings,
    SelfSignedSettings,
    StoreSettings,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    "CertcycleConfig",
    "CertcycleSettings",
    "ChallengeSettings",
    "ConfigValidationError",
    "Dns01Settings",
    "Http01Settings",
    "LoggingSettings",
    "MetricsSettings",
    "ReloadSettings",
    "RenewalSettings",
    "SelfSignedSettings",
    "StoreSettings",
    "build_settings",
    "get_config",
]
