"""Relay metric commands from a stream into an aggregator.

Each input line holds one command:

    sum <path> <int>     add a value to a sum metric
    inc <path>           add 1 to a sum metric
    avg <path> <int>     add a value to an average metric
    on <path>            mark a status metric active
    off <path>           mark a status metric inactive

Blank lines and lines starting with '#' are ignored.

Usage:
    some-producer | python -m graphite_client relay --interval 10
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from graphite_client.metrics import MetricTypeError

if TYPE_CHECKING:
    import argparse

    from graphite_client.aggregator import Aggregator

logger = logging.getLogger(__name__)

# command -> whether it takes a value
COMMANDS = {
    "sum": True,
    "inc": False,
    "avg": True,
    "on": False,
    "off": False,
}


@dataclass
class RelayCommand:
    """A parsed relay command."""

    name: str
    path: str
    value: int | None = None

    def apply(self, aggregator: Aggregator) -> None:
        """Record this command in the aggregator."""
        if self.name == "sum":
            aggregator.add_sum(self.path, self.value)
        elif self.name == "inc":
            aggregator.increase(self.path)
        elif self.name == "avg":
            aggregator.add_average(self.path, self.value)
        elif self.name == "on":
            aggregator.set_active(self.path)
        elif self.name == "off":
            aggregator.set_inactive(self.path)
        else:
            raise ValueError(f"Unknown command '{self.name}'")


def parse_command(line: str) -> RelayCommand | None:
    """Parse one input line.

    Args:
        line: Raw input line.

    Returns:
        The parsed command, or None for blank and comment lines.

    Raises:
        ValueError: If the line is not a valid command.
    """
    parts = line.split()
    if not parts or parts[0].startswith("#"):
        return None

    name = parts[0].lower()
    if name not in COMMANDS:
        raise ValueError(
            f"Unknown command '{parts[0]}'. "
            f"Valid commands are: {', '.join(sorted(COMMANDS))}"
        )

    expected = 3 if COMMANDS[name] else 2
    if len(parts) != expected:
        usage = f"{name} <path> <int>" if COMMANDS[name] else f"{name} <path>"
        raise ValueError(f"Expected '{usage}', got '{line.strip()}'")

    value = None
    if COMMANDS[name]:
        try:
            value = int(parts[2])
        except ValueError:
            raise ValueError(f"Invalid integer value '{parts[2]}'") from None

    return RelayCommand(name=name, path=parts[1], value=value)


def relay_lines(lines: Iterable[str], aggregator: Aggregator) -> tuple[int, int]:
    """Feed lines into the aggregator.

    Invalid lines are logged and skipped.

    Returns:
        Tuple of (commands applied, lines rejected).
    """
    applied = 0
    rejected = 0
    for lineno, line in enumerate(lines, start=1):
        try:
            command = parse_command(line)
        except ValueError as e:
            logger.warning(f"Line {lineno}: {e}")
            rejected += 1
            continue
        if command is None:
            continue
        try:
            command.apply(aggregator)
        except MetricTypeError as e:
            logger.warning(f"Line {lineno}: {e}")
            rejected += 1
            continue
        applied += 1
    return applied, rejected


def cmd_relay(args: argparse.Namespace) -> int:
    """Handle 'relay' command.

    Runs the periodic flush loop while stdin is read, then flushes what is
    left once input ends.
    """
    from graphite_client.config import Config
    from graphite_client.transport import GraphiteClient, TransportError

    try:
        config = Config.load_or_default(Path(args.config) if args.config else None)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.interval is not None:
        interval = args.interval
    else:
        interval = config.aggregator.flush_interval
    client = GraphiteClient(config, args.protocol)
    aggregator = client.new_aggregator()

    try:
        aggregator.run(interval)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with client:
        try:
            applied, rejected = relay_lines(sys.stdin, aggregator)
        finally:
            aggregator.stop()

        try:
            aggregator.flush()
        except TransportError as e:
            logger.warning(f"Unable to send metrics: {e}")
            try:
                aggregator.retry()
            except TransportError as e:
                print(f"Error sending metrics: {e}", file=sys.stderr)
                return 1

    print(f"Relayed {applied} command(s), rejected {rejected}", file=sys.stderr)
    return 0
