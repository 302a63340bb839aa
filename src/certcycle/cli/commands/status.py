"""Status subcommand: report the live certificate without reading logs."""

from __future__ import annotations

import json


def run_status(args) -> int:
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager

    settings = get_config().settings
    manager = LifecycleManager.from_settings(settings)

    if args.prometheus:
        print(manager.refresh_metrics().export(), end="")  # noqa: T201
        return 0

    report = manager.status()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))  # noqa: T201
    else:
        print(report.render_text())  # noqa: T201
    return 0
