"""CLI entry point for graphite-client.

Usage:
    python -m graphite_client <command> [options]

Commands:
    send <path> <value> [--config PATH] [--protocol tcp|udp]
    relay [--config PATH] [--protocol tcp|udp] [--interval SECONDS]
    config validate [--config PATH]
    config get <key> [--config PATH]
"""

from __future__ import annotations

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import NoReturn

from graphite_client import __version__

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="graphite-client",
        description="Aggregate metrics and send them to graphite",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log connection details"
    )
    parser.add_argument("--log-file", help="Write logs to a rotating file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # send command
    send_parser = subparsers.add_parser("send", help="Send a single metric")
    send_parser.add_argument("path", help="Metric path (namespace is prepended)")
    send_parser.add_argument("value", help="Metric value")
    _add_connection_args(send_parser)

    # relay command
    relay_parser = subparsers.add_parser(
        "relay", help="Aggregate metric commands read from stdin"
    )
    _add_connection_args(relay_parser)
    relay_parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between flushes. Defaults to config value.",
    )

    # config command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config subcommands"
    )

    # config validate
    validate_parser = config_subparsers.add_parser(
        "validate", help="Validate configuration"
    )
    validate_parser.add_argument("--config", help="Path to config.toml")

    # config get
    get_parser = config_subparsers.add_parser("get", help="Get configuration value")
    get_parser.add_argument("key", help="Configuration key (e.g. namespace)")
    get_parser.add_argument("--config", help="Path to config.toml")

    return parser


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to config.toml")
    parser.add_argument(
        "--protocol",
        choices=["tcp", "udp"],
        help="Protocol to use. Defaults to config value.",
    )


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure the graphite_client logger."""
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    logger = logging.getLogger("graphite_client")
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    # Avoid adding multiple handlers if re-initialized
    if not logger.handlers:
        logger.addHandler(handler)


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config) if getattr(args, "config", None) else None


def cmd_send(args: argparse.Namespace) -> int:
    """Handle 'send' command."""
    from graphite_client.config import Config
    from graphite_client.transport import GraphiteClient, TransportError

    try:
        config = Config.load_or_default(_config_path(args))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    path = config.metric_path(args.path)
    with GraphiteClient(config, args.protocol) as client:
        try:
            written = client.send(path, args.value)
        except UnicodeEncodeError:
            print(f"Error: Metric path cannot be encoded: {path!r}", file=sys.stderr)
            return 1
        except TransportError as e:
            print(f"Error sending metric: {e}", file=sys.stderr)
            return 1

    print(f"Sent {path} {args.value} ({written} bytes)")
    return 0


def cmd_config_get(args: argparse.Namespace) -> int:
    """Handle 'config get' command."""
    from graphite_client.config import Config

    try:
        config = Config.load_or_default(_config_path(args))
        value = config.get_value(args.key)
        print(value)
        return 0
    except KeyError:
        print(f"Error: Config key not found: {args.key}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1


def cmd_config_validate(args: argparse.Namespace) -> int:
    """Handle 'config validate' command."""
    from graphite_client.config import Config

    try:
        config = Config.load(_config_path(args))
        print(f"Configuration valid: {config.config_path}")
        print(f"  Endpoint: {config.protocol}://{config.address}")
        print(f"  Namespace: {config.namespace or '(none)'}")
        print(f"  Timeout: {config.get_timeout()}s")
        print(f"  Force reconnect: {config.force_reconnect}")
        print(f"  Flush interval: {config.aggregator.flush_interval}s")
        return 0
    except FileNotFoundError as e:
        print(f"No configuration found: {e}", file=sys.stderr)
        return 0  # Missing config is not an error
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


def main() -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    setup_logging(args.verbose, args.log_file)

    if args.command == "send":
        sys.exit(cmd_send(args))
    elif args.command == "relay":
        from graphite_client.relay import cmd_relay

        sys.exit(cmd_relay(args))
    elif args.command == "config":
        if args.config_command == "validate":
            sys.exit(cmd_config_validate(args))
        elif args.config_command == "get":
            sys.exit(cmd_config_get(args))
        else:
            parser.parse_args(["config", "--help"])
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
