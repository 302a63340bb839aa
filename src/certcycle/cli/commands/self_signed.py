"""Self-signed subcommand: regenerate the fallback certificate."""

from __future__ import annotations


def run_self_signed(args) -> int:
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager

    settings = get_config().settings
    manager = LifecycleManager.from_settings(settings)
    changed = manager.force_self_signed()
    if changed:
        print(f"self-signed: live certificate replaced ({manager.state().value})")  # noqa: T201
    else:
        print("self-signed: candidate stored; valid Let's Encrypt certificate kept live")  # noqa: T201
    return 0
