"""Tests for reload notifiers."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from certcycle.config.settings import ReloadSettings
from certcycle.notify.reload import (
    CommandReloadNotifier,
    NullReloadNotifier,
    ReloadNotificationFailed,
    build_notifier,
)

_RUN = "certcycle.notify.reload.subprocess.run"


class TestBuildNotifier:
    def test_no_command(self):
        notifier = build_notifier(ReloadSettings(command=(), timeout_seconds=30))
        assert isinstance(notifier, NullReloadNotifier)
        notifier.notify_reload()

    def test_command(self):
        notifier = build_notifier(
            ReloadSettings(command=("nginx", "-s", "reload"), timeout_seconds=10),
        )
        assert isinstance(notifier, CommandReloadNotifier)
        assert notifier.command == ["nginx", "-s", "reload"]


class TestCommandReloadNotifier:
    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            CommandReloadNotifier([])

    def test_success(self):
        notifier = CommandReloadNotifier(["nginx", "-s", "reload"], timeout=5)
        with patch(_RUN) as run:
            notifier.notify_reload()
        run.assert_called_once_with(
            ["nginx", "-s", "reload"],
            check=True,
            timeout=5,
            capture_output=True,
            text=True,
        )

    def test_nonzero_exit(self):
        notifier = CommandReloadNotifier(["nginx", "-s", "reload"])
        err = subprocess.CalledProcessError(1, ["nginx"], stderr="bad config\n")
        with patch(_RUN, side_effect=err), pytest.raises(ReloadNotificationFailed) as exc_info:
            notifier.notify_reload()
        assert exc_info.value.detail == "Reload command exited with 1: bad config"

    def test_timeout(self):
        notifier = CommandReloadNotifier(["sleep", "100"], timeout=2)
        err = subprocess.TimeoutExpired(["sleep"], 2)
        with patch(_RUN, side_effect=err), pytest.raises(ReloadNotificationFailed, match="2s"):
            notifier.notify_reload()

    def test_missing_binary(self):
        notifier = CommandReloadNotifier(["/nonexistent/reload"])
        with (
            patch(_RUN, side_effect=FileNotFoundError("No such file")),
            pytest.raises(ReloadNotificationFailed, match="could not be run"),
        ):
            notifier.notify_reload()
