"""Reload notification for the consuming reverse proxy.

After the live certificate changes, the proxy must re-read it.  A
failed notification never undoes the activation: the new certificate is
already in place and will be picked up on the proxy's next reload.
"""

from __future__ import annotations

import abc
import logging
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certcycle.config.settings import ReloadSettings

log = logging.getLogger(__name__)


class ReloadNotificationFailed(Exception):
    """The proxy could not be told to reload."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ReloadNotifier(abc.ABC):
    @abc.abstractmethod
    def notify_reload(self) -> None:
        """Ask the consumer to reload.  Raises :class:`ReloadNotificationFailed`."""


class NullReloadNotifier(ReloadNotifier):
    """Used when no reload command is configured."""

    def notify_reload(self) -> None:
        log.info("Certificate changed; no reload command configured")


class CommandReloadNotifier(ReloadNotifier):
    """Runs a command such as ``["nginx", "-s", "reload"]``.

    Parameters
    ----------
    command:
        argv to execute (no shell).
    timeout:
        Seconds before the command is killed.

    """

    def __init__(self, command: Sequence[str], timeout: int = 30) -> None:
        if not command:
            msg = "Reload command must not be empty"
            raise ValueError(msg)
        self._command = list(command)
        self._timeout = timeout

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def notify_reload(self) -> None:
        log.info("Reloading consumer: %s", " ".join(self._command))
        try:
            subprocess.run(  # noqa: S603
                self._command,
                check=True,
                timeout=self._timeout,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            msg = f"Reload command exited with {exc.returncode}: {stderr}"
            raise ReloadNotificationFailed(msg) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"Reload command timed out after {self._timeout}s"
            raise ReloadNotificationFailed(msg) from exc
        except OSError as exc:
            msg = f"Reload command could not be run: {exc}"
            raise ReloadNotificationFailed(msg) from exc


def build_notifier(settings: ReloadSettings) -> ReloadNotifier:
    if settings.command:
        return CommandReloadNotifier(settings.command, settings.timeout_seconds)
    return NullReloadNotifier()
