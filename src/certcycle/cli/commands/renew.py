"""Renew subcommand: run the scheduled-check logic once.

``--scheduled`` is meant for timers (cron, systemd): a concurrent run
is skipped and recoverable failures still exit 0, to be retried on the
next trigger.
"""

from __future__ import annotations


def run_renew(args) -> int:
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager

    settings = get_config().settings
    manager = LifecycleManager.from_settings(settings)
    if args.scheduled:
        outcome = manager.scheduled_check()
    else:
        outcome = manager.check(raise_on_failure=True)
    print(f"renew: {outcome.value} ({manager.state().value})")  # noqa: T201
    return 0
