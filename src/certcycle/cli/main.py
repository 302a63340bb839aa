"""certcycle command-line entry point.

Usage::

    certcycle -c /etc/certcycle/config.yaml setup
    certcycle -c config.yaml --validate-only
    certcycle -c config.yaml letsencrypt
    certcycle -c config.yaml renew --scheduled
    certcycle -c config.yaml status --json
    certcycle -c config.yaml run
    python -m certcycle -c config.yaml status
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_CRYPTO = 2
EXIT_ACQUISITION = 3
EXIT_BUSY = 4


def _get_version() -> str:
    from certcycle import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certcycle",
        description="certcycle: TLS certificate lifecycle manager for reverse proxies",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "setup",
        help="Activate a self-signed certificate, then try Let's Encrypt",
    )
    subparsers.add_parser("self-signed", help="Regenerate the self-signed certificate")
    subparsers.add_parser("letsencrypt", help="Force a Let's Encrypt upgrade or renewal")

    renew_parser = subparsers.add_parser("renew", help="Run the scheduled check once")
    renew_parser.add_argument(
        "--scheduled",
        action="store_true",
        default=False,
        help="Behave like a timer-driven run: skip when busy, exit 0 on recoverable failures.",
    )

    status_parser = subparsers.add_parser("status", help="Show the live certificate and history")
    fmt = status_parser.add_mutually_exclusive_group()
    fmt.add_argument("--json", action="store_true", default=False, help="Print JSON")
    fmt.add_argument(
        "--prometheus",
        action="store_true",
        default=False,
        help="Print metrics in Prometheus text format",
    )

    subparsers.add_parser("run", help="Run scheduled checks until stopped")

    prune_parser = subparsers.add_parser("prune", help="Delete archived certificate versions")
    prune_parser.add_argument(
        "--keep",
        type=int,
        default=None,
        metavar="N",
        help="Versions to keep per type (default: store.keep_versions).",
    )

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"certcycle: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, runs the command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(EXIT_CONFIG)

    # Basic stderr logging until the config is loaded
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        from certcycle.config import CertcycleConfig, ConfigValidationError

        config = CertcycleConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(EXIT_CONFIG)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(EXIT_CONFIG)

    from certcycle.logging import configure_logging

    configure_logging(config.settings.logging, debug=args.debug)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(EXIT_OK)

    if args.command is None:
        parser.print_help(sys.stderr)
        sys.exit(EXIT_CONFIG)

    code = _dispatch(args)
    if code != EXIT_OK:
        sys.exit(code)


def _dispatch(args) -> int:
    """Run the selected command and map failures to exit codes."""
    from certcycle.acquire.errors import AllChallengesFailed, CryptoFailure
    from certcycle.lifecycle.manager import BusyError
    from certcycle.store.base import StoreError

    try:
        return _run_command(args)
    except CryptoFailure as exc:
        log.critical("Key or certificate generation failed: %s", exc.detail)
        _print_error(exc.detail)
        return EXIT_CRYPTO
    except AllChallengesFailed as exc:
        _print_error(exc.detail)
        for method, reason in exc.failure_map().items():
            print(f"  {method}: {reason}", file=sys.stderr)  # noqa: T201
        return EXIT_ACQUISITION
    except StoreError as exc:
        _print_error(exc.detail)
        return EXIT_ACQUISITION
    except BusyError as exc:
        _print_error(exc.detail)
        return EXIT_BUSY


def _run_command(args) -> int:
    command = args.command

    if command == "setup":
        from certcycle.cli.commands.setup import run_setup

        return run_setup(args)
    if command == "self-signed":
        from certcycle.cli.commands.self_signed import run_self_signed

        return run_self_signed(args)
    if command == "letsencrypt":
        from certcycle.cli.commands.letsencrypt import run_letsencrypt

        return run_letsencrypt(args)
    if command == "renew":
        from certcycle.cli.commands.renew import run_renew

        return run_renew(args)
    if command == "status":
        from certcycle.cli.commands.status import run_status

        return run_status(args)
    if command == "run":
        from certcycle.cli.commands.run import run_daemon

        return run_daemon(args)
    if command == "prune":
        from certcycle.cli.commands.prune import run_prune

        return run_prune(args)

    _print_error(f"unknown command: {command}")
    return EXIT_CONFIG


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    names = ", ".join((s.domain, *s.alternative_names))
    enabled = [
        name
        for name, section in (("http-01", s.challenges.http01), ("dns-01", s.challenges.dns01))
        if section.enabled
    ]
    lines = [
        f"Configuration OK: {config.source}",
        f"  names:      {names}",
        f"  store:      {s.store.path}",
        f"  directory:  {s.acme.directory_url}",
        f"  challenges: {', '.join(enabled) or 'none'} (order: {', '.join(s.challenges.order)})",
        f"  renewal:    {s.renewal.threshold_days} days before expiry, "
        f"checked every {s.renewal.check_interval_seconds}s",
    ]
    print("\n".join(lines))  # noqa: T201
