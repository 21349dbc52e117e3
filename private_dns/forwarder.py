# private_dns/forwarder.py
# Version: 1.0.0
# Upstream DNS forwarding with ordered failover

"""
Upstream Forwarder

Relays raw DNS query bytes to a fixed, ordered list of upstream resolvers.
Servers are tried one after another; the first reply wins. Each attempt
uses its own ephemeral UDP port, so concurrent forwards share no socket
state.
"""

import ipaddress
import logging
from typing import Iterable, Optional, Tuple

from twisted.internet import defer, error, protocol

from private_dns.constants import (
    DEFAULT_UPSTREAM_SERVERS,
    DNS_QUERY_TIMEOUT,
    DNS_RECEIVE_BUFFER_SIZE,
    MAX_PORT_NUMBER,
    MIN_PORT_NUMBER,
)

logger = logging.getLogger(__name__)

UpstreamServer = Tuple[str, int]


class InvalidConfigurationError(ValueError):
    """Raised when an upstream server entry cannot be parsed"""

    pass


class AllUpstreamsFailedError(Exception):
    """Raised when no upstream server produced a reply"""

    pass


def parse_endpoint(endpoint: str) -> UpstreamServer:
    """
    Parse an ``address:port`` string

    Args:
        endpoint: Server specification, e.g. "8.8.8.8:53"

    Returns:
        (host, port) tuple

    Raises:
        InvalidConfigurationError: If the entry is not a valid IP:PORT pair
    """
    parts = endpoint.strip().split(":")
    if len(parts) != 2:
        raise InvalidConfigurationError(
            f"Invalid endpoint format: {endpoint}. Expected format: IP:PORT"
        )

    host, port_str = parts
    try:
        address = ipaddress.ip_address(host)
        port = int(port_str)
    except ValueError:
        raise InvalidConfigurationError(
            f"Invalid endpoint format: {endpoint}. Expected format: IP:PORT"
        )

    if port < MIN_PORT_NUMBER or port > MAX_PORT_NUMBER:
        raise InvalidConfigurationError(
            f"Invalid port in endpoint {endpoint}: "
            f"must be between {MIN_PORT_NUMBER} and {MAX_PORT_NUMBER}"
        )

    return str(address), port


class UpstreamQueryProtocol(protocol.DatagramProtocol):
    """One-shot protocol: send a query to one server and wait for its reply"""

    def __init__(self, server: UpstreamServer):
        self.server = server
        self.deferred = defer.Deferred()

    def startProtocol(self):
        # Connected UDP so ICMP port-unreachable surfaces as connectionRefused
        self.transport.connect(*self.server)

    def datagramReceived(self, data: bytes, addr):
        if not self.deferred.called:
            self.deferred.callback(data)

    def connectionRefused(self):
        if not self.deferred.called:
            host, port = self.server
            self.deferred.errback(error.ConnectionRefusedError(f"{host}:{port}"))


class UpstreamForwarder:
    """Forwards raw DNS queries to upstream resolvers in configured order"""

    def __init__(
        self,
        upstream_servers: Optional[Iterable[str]] = None,
        timeout: float = DNS_QUERY_TIMEOUT,
        reactor=None,
    ):
        """
        Initialize forwarder

        Args:
            upstream_servers: Ordered "address:port" strings; the built-in
                public resolvers are used when empty
            timeout: Seconds to wait for each server's reply
            reactor: Twisted reactor, defaults to the global one

        Raises:
            InvalidConfigurationError: If any entry fails to parse
        """
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        self.timeout = timeout

        entries = list(upstream_servers or ())
        if not entries:
            entries = list(DEFAULT_UPSTREAM_SERVERS)

        self._servers = tuple(parse_endpoint(entry) for entry in entries)

        logger.info(
            f"Configured {len(self._servers)} upstream DNS servers: "
            f"{', '.join(f'{host}:{port}' for host, port in self._servers)}"
        )

    @property
    def servers(self) -> Tuple[UpstreamServer, ...]:
        return self._servers

    def forward_dns_query(self, query: bytes) -> defer.Deferred:
        """
        Forward a raw query and return the first upstream reply

        Cancelling the returned Deferred aborts the in-flight attempt and
        fails it with CancelledError.

        Raises:
            ValueError: If the query is empty

        Returns:
            Deferred firing with the reply bytes, or failing with
            AllUpstreamsFailedError
        """
        if not query:
            raise ValueError("DNS query must not be empty")
        return self._forward(query)

    @defer.inlineCallbacks
    def _forward(self, query: bytes):
        for server in self._servers:
            host, port = server
            try:
                reply = yield self._query_server(server, query)
            except defer.CancelledError:
                logger.debug(f"Forward to {host}:{port} cancelled")
                raise
            except Exception as e:
                logger.warning(f"Failed to forward DNS query to {host}:{port}: {e!r}")
                continue

            logger.debug(f"DNS query forwarded successfully to {host}:{port}")
            return reply

        raise AllUpstreamsFailedError("All upstream DNS servers failed")

    def _query_server(self, server: UpstreamServer, query: bytes) -> defer.Deferred:
        query_protocol = UpstreamQueryProtocol(server)
        port = self._reactor.listenUDP(0, query_protocol, maxPacketSize=DNS_RECEIVE_BUFFER_SIZE)

        try:
            query_protocol.transport.write(query)
        except Exception:
            port.stopListening()
            raise

        d = query_protocol.deferred
        d.addTimeout(self.timeout, self._reactor)
        d.addBoth(self._close_port, port)
        return d

    @staticmethod
    def _close_port(result, port):
        port.stopListening()
        return result
