"""Letsencrypt subcommand: force an upgrade or renewal attempt."""

from __future__ import annotations


def run_letsencrypt(args) -> int:
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager

    settings = get_config().settings
    manager = LifecycleManager.from_settings(settings)
    outcome = manager.upgrade(raise_on_failure=True)
    print(f"letsencrypt: {outcome.value} ({manager.state().value})")  # noqa: T201
    return 0
