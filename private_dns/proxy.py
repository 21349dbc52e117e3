# private_dns/proxy.py
# Version: 1.0.0
# UDP listener that filters queries through the allowlist

"""
Proxy Dispatcher

``DNSProxyProtocol`` handles inbound datagrams: each one is decoded, checked
against the domain policy and either forwarded upstream verbatim or answered
with a synthesized blocked response. Every datagram is processed as its own
Deferred chain so a slow upstream never stalls reception.

``DNSProxyService`` owns the listening port and the start/stop lifecycle.
"""

import errno
import logging
import socket
from enum import Enum
from typing import Set, Tuple

from twisted.application import service
from twisted.internet import defer, protocol
from twisted.internet.error import CannotListenError

from private_dns.constants import (
    BLOCKED_RESPONSE_ADDRESS,
    BLOCKED_RESPONSE_TTL,
    DNS_CLASS_IN,
    DNS_DEFAULT_PORT,
    DNS_FLAGS_STANDARD_RESPONSE,
    DNS_RECEIVE_BUFFER_SIZE,
    DNS_STANDARD_PORT,
    DNS_TYPE_A,
    MAX_IN_FLIGHT_QUERIES,
)
from private_dns.forwarder import AllUpstreamsFailedError
from private_dns.message import DNSAnswer, DNSMessage, MalformedMessageError

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class ProxyState(Enum):
    """Lifecycle states of the proxy service"""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def create_blocked_response(request: DNSMessage) -> DNSMessage:
    """
    Build the reply for a denied query

    Every A question is answered with the loopback address; other question
    types get no answer.
    """
    response = DNSMessage(
        id=request.id,
        flags=DNS_FLAGS_STANDARD_RESPONSE,
        questions=list(request.questions),
    )

    loopback = socket.inet_aton(BLOCKED_RESPONSE_ADDRESS)
    for question in request.questions:
        if question.type == DNS_TYPE_A:
            response.answers.append(
                DNSAnswer(
                    name=question.name,
                    type=DNS_TYPE_A,
                    cls=DNS_CLASS_IN,
                    ttl=BLOCKED_RESPONSE_TTL,
                    data=loopback,
                )
            )

    return response


class DNSProxyProtocol(protocol.DatagramProtocol):
    """UDP DNS proxy protocol"""

    def __init__(self, policy, forwarder, max_in_flight: int = MAX_IN_FLIGHT_QUERIES):
        self.policy = policy
        self.forwarder = forwarder
        self.max_in_flight = max_in_flight
        self.pending: Set[defer.Deferred] = set()

    def datagramReceived(self, data: bytes, addr: Address):
        """Start an independent handler for one inbound datagram"""
        if self.max_in_flight and len(self.pending) >= self.max_in_flight:
            logger.warning(
                f"Dropping DNS request from {addr}: {len(self.pending)} requests in flight"
            )
            return

        d = self._process_request(data, addr)
        self.pending.add(d)
        d.addErrback(self._handle_error, addr)
        d.addBoth(self._request_finished, d)

    @defer.inlineCallbacks
    def _process_request(self, data: bytes, addr: Address):
        try:
            request = DNSMessage.from_bytes(data)
        except MalformedMessageError as e:
            logger.warning(f"Dropping malformed DNS request from {addr}: {e}")
            return

        if not request.questions:
            logger.warning(f"Received DNS request with no questions from {addr}")
            return

        domain = request.questions[0].name
        logger.info(f"DNS request for {domain} from {addr}")

        if self.policy.is_allowed(domain):
            logger.info(f"Domain {domain} is allowed, forwarding to upstream DNS")
            try:
                response_data = yield self.forwarder.forward_dns_query(data)
            except AllUpstreamsFailedError as e:
                logger.error(f"Failed to resolve {domain} for {addr}: {e}")
                return
        else:
            logger.info(f"Domain {domain} is blocked, returning {BLOCKED_RESPONSE_ADDRESS}")
            response_data = create_blocked_response(request).to_bytes()

        self._send_response(response_data, addr)

    def _send_response(self, response_data: bytes, addr: Address):
        if self.transport is None:
            logger.debug(f"Listener closed, discarding response for {addr}")
            return

        try:
            self.transport.write(response_data, addr)
            logger.debug(f"Sent UDP response to {addr} ({len(response_data)} bytes)")
        except Exception as e:
            logger.error(f"Failed to send UDP response to {addr}: {e}")

    def _handle_error(self, failure, addr: Address):
        if failure.check(defer.CancelledError):
            logger.debug(f"Request from {addr} cancelled")
            return None

        logger.error(f"Error processing DNS request from {addr}: {failure.getErrorMessage()}")
        logger.debug(failure.getTraceback())
        return None

    def _request_finished(self, result, d: defer.Deferred):
        self.pending.discard(d)
        return result

    def cancel_pending(self):
        """Cancel every in-flight request; no responses are sent for them"""
        for d in list(self.pending):
            d.cancel()


class DNSProxyService(service.Service):
    """Owns the listening UDP port and drives the proxy lifecycle"""

    name = "private-dns"

    def __init__(
        self,
        policy,
        forwarder,
        port: int = DNS_DEFAULT_PORT,
        interface: str = "",
        max_in_flight: int = MAX_IN_FLIGHT_QUERIES,
        reactor=None,
    ):
        if reactor is None:
            from twisted.internet import reactor
        self._reactor = reactor
        self.policy = policy
        self.port = port
        self.interface = interface
        self.protocol = DNSProxyProtocol(policy, forwarder, max_in_flight)
        self.state = ProxyState.STOPPED
        self._listening_port = None

    def startService(self):
        """
        Reload the allowlist, then bind the listening port

        Returns:
            Deferred that fires once the service is running, or has fallen
            back to stopped after a bind failure
        """
        service.Service.startService(self)
        self._set_state(ProxyState.STARTING)

        d = defer.maybeDeferred(self.policy.load_configuration)
        d.addErrback(self._log_load_failure)
        d.addCallback(lambda _: self._listen())
        return d

    def stopService(self):
        """Close the listening port and abandon in-flight requests"""
        service.Service.stopService(self)
        if self.state == ProxyState.STOPPED:
            return defer.succeed(None)

        self._set_state(ProxyState.STOPPING)
        listening_port, self._listening_port = self._listening_port, None
        if listening_port is not None:
            d = defer.maybeDeferred(listening_port.stopListening)
        else:
            d = defer.succeed(None)

        self.protocol.cancel_pending()
        d.addCallback(self._stopped)
        return d

    @property
    def listening_port(self):
        return self._listening_port

    def _listen(self):
        if self.state != ProxyState.STARTING:
            logger.info("DNS Proxy stopped before the listener was opened")
            return

        try:
            self._listening_port = self._reactor.listenUDP(
                self.port,
                self.protocol,
                interface=self.interface,
                maxPacketSize=DNS_RECEIVE_BUFFER_SIZE,
            )
        except CannotListenError as e:
            _log_bind_error(e, self.port, self.interface or "0.0.0.0")
            self.running = 0
            self._set_state(ProxyState.STOPPED)
            return

        actual_port = self._listening_port.getHost().port
        self._set_state(ProxyState.RUNNING)
        self._log_startup(actual_port)

    def _log_startup(self, actual_port: int):
        logger.info(f"DNS Proxy UDP server listening on {self.interface or '0.0.0.0'}:{actual_port}")
        if actual_port == DNS_STANDARD_PORT:
            logger.warning(
                f"Using standard DNS port {DNS_STANDARD_PORT} - this requires administrator privileges"
            )
        else:
            logger.info(f"Running in non-privileged mode on port {actual_port}")
            logger.info(
                f"To use this DNS proxy, configure your DNS client to use 127.0.0.1:{actual_port}"
            )

    def _log_load_failure(self, failure):
        logger.error(f"Failed to load allowed domains: {failure.getErrorMessage()}")
        return None

    def _stopped(self, _):
        self._set_state(ProxyState.STOPPED)
        logger.info("DNS Proxy stopped")

    def _set_state(self, state: ProxyState):
        logger.debug(f"DNS Proxy state {self.state.value} -> {state.value}")
        self.state = state


def _log_bind_error(error: CannotListenError, port: int, address: str):
    """Log port binding errors with helpful messages"""
    socket_error = getattr(error, "socketError", None)
    code = getattr(socket_error, "errno", None)

    if code == errno.EADDRINUSE:
        logger.error(f"Port {port} is already in use on {address}")
        logger.error("Please check if another instance is running or use a different port")
    elif code == errno.EACCES:
        logger.error(f"Permission denied to bind to port {port}")
        if port < 1024:
            logger.error("Ports below 1024 require root privileges")
            logger.error("Try running with sudo or use a port >= 1024")
    else:
        logger.error(f"Failed to bind to {address}:{port}: {error}")
