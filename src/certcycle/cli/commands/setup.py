"""Setup subcommand: activate self-signed, then attempt Let's Encrypt."""

from __future__ import annotations


def run_setup(args) -> int:
    """Run the initial setup.

    A failed upgrade raises so the caller exits non-zero; the
    self-signed certificate stays live either way.
    """
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager

    settings = get_config().settings
    manager = LifecycleManager.from_settings(settings)
    outcome = manager.setup(raise_on_failure=True)
    print(f"setup: {outcome.value} ({manager.state().value})")  # noqa: T201
    return 0
