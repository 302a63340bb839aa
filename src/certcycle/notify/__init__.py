"""Reverse-proxy reload notification."""

from certcycle.notify.reload import (
    CommandReloadNotifier,
    NullReloadNotifier,
    ReloadNotificationFailed,
    ReloadNotifier,
    build_notifier,
)

__all__ = [
    "CommandReloadNotifier",
    "NullReloadNotifier",
    "ReloadNotificationFailed",
    "ReloadNotifier",
    "build_notifier",
]
