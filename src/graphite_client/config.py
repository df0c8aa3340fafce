"""Configuration parsing for graphite-client.

Parses .graphite/config.toml files for the collector endpoint, the metric
namespace and the aggregator flush interval.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_DIR = ".graphite"
CONFIG_FILE = "config.toml"

PROTOCOL_TCP = "tcp"
PROTOCOL_UDP = "udp"
VALID_PROTOCOLS = frozenset({PROTOCOL_TCP, PROTOCOL_UDP})

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 2003
DEFAULT_TIMEOUT = 1.0  # seconds
DEFAULT_FLUSH_INTERVAL = 60.0  # seconds


def get_metric_path(namespace: str, path: str) -> str:
    """Build the full dotted path of a metric.

    Args:
        namespace: Prefix shared by every metric (may be empty).
        path: Metric path relative to the namespace (may be empty).

    Returns:
        "namespace.path" when both are set, otherwise whichever is set.
    """
    if namespace and path:
        return f"{namespace}.{path}"
    return namespace + path


@dataclass
class AggregatorConfig:
    """Configuration for the periodic aggregator."""

    flush_interval: float = DEFAULT_FLUSH_INTERVAL  # seconds between flushes


@dataclass
class Config:
    """Main configuration container.

    Attributes:
        host: Host name or IP address where carbon listens.
        port: Port where carbon listens.
        protocol: "tcp" or "udp".
        namespace: Prefix prepended to every metric path.
        timeout: Connect timeout in seconds. Values <= 0 use the default.
        force_reconnect: Reopen the connection before every send. Useful
            behind load balancers that silently drop idle connections.
        aggregator: Settings of the periodic flush loop.
        config_path: File the configuration was loaded from, if any.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    protocol: str = PROTOCOL_TCP
    namespace: str = ""
    timeout: float = DEFAULT_TIMEOUT
    force_reconnect: bool = False
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    config_path: Path | None = None

    @property
    def address(self) -> str:
        """The "host:port" endpoint string."""
        return f"{self.host}:{self.port}"

    def get_timeout(self) -> float:
        """Return the connect timeout, falling back to the default."""
        if self.timeout > 0:
            return self.timeout
        return DEFAULT_TIMEOUT

    def metric_path(self, path: str) -> str:
        """Resolve a metric path against the configured namespace."""
        return get_metric_path(self.namespace, path)

    @classmethod
    def load(cls, path: Path | None = None) -> Config:
        """Load configuration from a file.

        Args:
            path: Path to config file. If None, searches for .graphite/config.toml
                  in current directory and parents.

        Returns:
            Loaded configuration.

        Raises:
            FileNotFoundError: If no config file found.
            ValueError: If config file is invalid.
        """
        if path is None:
            path = cls._find_config()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid TOML in {path}: {e}") from e

        return cls._from_dict(data, path)

    @classmethod
    def load_or_default(cls, path: Path | None = None) -> Config:
        """Load configuration or return default if not found."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            return cls()

    @classmethod
    def _find_config(cls) -> Path:
        """Find config file by searching current directory and parents."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_path = parent / CONFIG_DIR / CONFIG_FILE
            if config_path.exists():
                return config_path

        # Return expected path even if it doesn't exist
        return cwd / CONFIG_DIR / CONFIG_FILE

    @classmethod
    def _from_dict(cls, data: dict[str, Any], path: Path | None = None) -> Config:
        """Create a Config from a dictionary.

        Raises:
            ValueError: If a value has the wrong type or is out of range.
        """
        graphite = data.get("graphite", {})

        protocol = graphite.get("protocol", PROTOCOL_TCP)
        if protocol not in VALID_PROTOCOLS:
            raise ValueError(
                f"Invalid protocol '{protocol}'. "
                f"Valid protocols are: {', '.join(sorted(VALID_PROTOCOLS))}"
            )

        port = graphite.get("port", DEFAULT_PORT)
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValueError(f"Invalid 'port': expected integer, got {port!r}")

        host = graphite.get("host", DEFAULT_HOST)
        if not isinstance(host, str):
            raise ValueError(f"Invalid 'host': expected string, got {host!r}")

        namespace = graphite.get("namespace", "")
        if not isinstance(namespace, str):
            raise ValueError(f"Invalid 'namespace': expected string, got {namespace!r}")

        force_reconnect = graphite.get("force_reconnect", False)
        if not isinstance(force_reconnect, bool):
            raise ValueError(
                f"Invalid 'force_reconnect': expected boolean, got {force_reconnect!r}"
            )

        timeout = graphite.get("timeout", DEFAULT_TIMEOUT)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise ValueError(f"Invalid 'timeout': expected number, got {timeout!r}")

        # Parse aggregator config
        aggregator_data = data.get("aggregator", {})
        flush_interval = aggregator_data.get("flush_interval", DEFAULT_FLUSH_INTERVAL)
        if (
            isinstance(flush_interval, bool)
            or not isinstance(flush_interval, (int, float))
            or flush_interval <= 0
        ):
            raise ValueError(
                f"Invalid 'flush_interval': expected positive number, got {flush_interval!r}"
            )

        return cls(
            host=host,
            port=port,
            protocol=protocol,
            namespace=namespace,
            timeout=float(timeout),
            force_reconnect=force_reconnect,
            aggregator=AggregatorConfig(flush_interval=float(flush_interval)),
            config_path=path,
        )

    def get_value(self, key_path: str) -> Any:
        """Get a configuration value by dot-separated path.

        Args:
            key_path: Dot-separated path to value (e.g. "aggregator.flush_interval").

        Returns:
            The configuration value.

        Raises:
            KeyError: If path is invalid.
        """
        parts = key_path.split(".")
        current = self
        for part in parts:
            if hasattr(current, part):
                current = getattr(current, part)
            elif isinstance(current, dict) and part in current:
                current = current[part]
            else:
                raise KeyError(f"Invalid config path: {key_path}")
        return current
