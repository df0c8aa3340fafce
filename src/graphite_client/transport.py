"""Graphite transport over TCP or UDP.

Delivers lines in the carbon plaintext protocol:

    <path> <value> <unix-timestamp>\\n

The client owns the connection lifecycle. Sends (re)connect on demand, so
callers never have to call connect() explicitly.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import TYPE_CHECKING, Protocol

from graphite_client.config import PROTOCOL_TCP, PROTOCOL_UDP, Config

if TYPE_CHECKING:
    from graphite_client.aggregator import Aggregator

logger = logging.getLogger(__name__)

ENCODING = "utf-8"


class TransportError(OSError):
    """Raised when metrics cannot be delivered to graphite."""


class Transport(Protocol):
    """What the aggregator needs from a transport."""

    def send_buffer(self, buffer: bytes) -> int:
        """Send a batch of formatted lines, returning the bytes written."""

    def reconnect(self) -> None:
        """Close the current connection, if any, and open a new one."""


def format_line(path: str, value: str, timestamp: int) -> str:
    """Format a single metric in the plaintext protocol."""
    return f"{path} {value} {timestamp}\n"


class GraphiteClient:
    """Graphite client bound to one endpoint and protocol.

    Usage:
        client = GraphiteClient.tcp(Config(host="carbon.local", port=2003))
        client.send("app.requests", "1")

        agg = client.new_aggregator().run(10.0)
        agg.increase("requests")
    """

    def __init__(self, config: Config, protocol: str | None = None):
        """Initialize the client.

        Args:
            config: Endpoint, timeout and namespace settings.
            protocol: "tcp" or "udp". Defaults to config.protocol.
        """
        self.config = config
        self.protocol = protocol or config.protocol
        self._connection: socket.socket | None = None
        self._lock = threading.RLock()

    @classmethod
    def tcp(cls, config: Config) -> GraphiteClient:
        """Create a client that talks to graphite over TCP."""
        return cls(config, PROTOCOL_TCP)

    @classmethod
    def udp(cls, config: Config) -> GraphiteClient:
        """Create a client that talks to graphite over UDP."""
        return cls(config, PROTOCOL_UDP)

    @property
    def connected(self) -> bool:
        """Whether a connection is currently open."""
        return self._connection is not None

    def connect(self) -> None:
        """Open a connection to graphite.

        Raises:
            TransportError: If the protocol is unknown or the endpoint
                cannot be reached.
        """
        with self._lock:
            self._connection = self._open(self.protocol)

    def disconnect(self) -> None:
        """Close the current connection.

        Raises:
            TransportError: If no connection was open.
        """
        with self._lock:
            if self._connection is None:
                raise TransportError(
                    "Connection was previously disconnected or never established"
                )
            connection, self._connection = self._connection, None
            try:
                connection.close()
            except OSError as e:
                raise TransportError(f"Error closing connection: {e}") from e

    def reconnect(self) -> None:
        """Close the current connection, if any, and open a new one."""
        with self._lock:
            if self._connection is not None:
                try:
                    self.disconnect()
                except TransportError as e:
                    logger.debug(f"Ignoring error on disconnect: {e}")
            self.connect()

    def send(self, path: str, value: str) -> int:
        """Send a single metric stamped with the current time.

        Args:
            path: Full metric path. The namespace is not applied here.
            value: Rendered metric value.

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If connecting or writing fails.
            UnicodeEncodeError: If the line cannot be encoded.
        """
        line = format_line(path, value, int(time.time()))
        return self.send_buffer(line.encode(ENCODING))

    def send_buffer(self, buffer: bytes) -> int:
        """Send a batch of already formatted lines.

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If connecting or writing fails. A failed write
                drops the connection so the next send reconnects.
        """
        with self._lock:
            connection = self._get_connection()
            try:
                if self.protocol == PROTOCOL_UDP:
                    return connection.send(buffer)
                connection.sendall(buffer)
                return len(buffer)
            except OSError as e:
                self._drop_connection()
                raise TransportError(
                    f"Unable to send metrics to {self.config.address}: {e}"
                ) from e

    def close(self) -> None:
        """Close the connection if one is open."""
        with self._lock:
            if self._connection is not None:
                self._drop_connection()

    def new_aggregator(self) -> Aggregator:
        """Return an aggregator that flushes through this client."""
        from graphite_client.aggregator import Aggregator

        return Aggregator(self.config, self)

    def __enter__(self) -> GraphiteClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get_connection(self) -> socket.socket:
        if self.config.force_reconnect or self._connection is None:
            try:
                self.reconnect()
            except TransportError as e:
                raise TransportError(
                    f"Unable to connect/reconnect before sending metrics: {e}"
                ) from e
        assert self._connection is not None
        return self._connection

    def _drop_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.close()
            except OSError as e:
                logger.debug(f"Error closing broken connection: {e}")

    def _open(self, protocol: str) -> socket.socket:
        if protocol == PROTOCOL_TCP:
            return self._open_tcp()
        if protocol == PROTOCOL_UDP:
            return self._open_udp()
        raise TransportError(f"Protocol [{protocol}] not supported")

    def _open_tcp(self) -> socket.socket:
        address = self.config.address
        logger.info(f"Graphite: connecting to {address} via TCP")
        try:
            sock = socket.create_connection(
                (self.config.host, self.config.port),
                timeout=self.config.get_timeout(),
            )
        except (OSError, OverflowError) as e:
            raise TransportError(f"Unable to connect to {address}: {e}") from e
        # The timeout only bounds the connect; sends block until written
        sock.settimeout(None)
        return sock

    def _open_udp(self) -> socket.socket:
        address = self.config.address
        logger.info(f"Graphite: connecting to {address} via UDP")
        try:
            family, kind, proto, _, sockaddr = socket.getaddrinfo(
                self.config.host, self.config.port, type=socket.SOCK_DGRAM
            )[0]
            sock = socket.socket(family, kind, proto)
        except (OSError, OverflowError) as e:
            raise TransportError(f"Unable to resolve {address}: {e}") from e
        try:
            sock.connect(sockaddr)
        except OSError as e:
            sock.close()
            raise TransportError(f"Unable to connect to {address}: {e}") from e
        return sock
