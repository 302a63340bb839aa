"""Prune subcommand: delete archived certificate versions."""

from __future__ import annotations

import sys


def run_prune(args) -> int:
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager

    settings = get_config().settings

    keep = args.keep if args.keep is not None else settings.store.keep_versions
    if keep < 0:
        print("certcycle: error: --keep must not be negative", file=sys.stderr)  # noqa: T201
        return 1

    manager = LifecycleManager.from_settings(settings)
    removed = manager.prune(keep)
    print(f"prune: removed {removed} archived version(s), kept {keep} per type")  # noqa: T201
    return 0
