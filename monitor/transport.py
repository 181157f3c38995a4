"""
Echo transports for the probe runners.

A transport sends a single ICMP echo request and reports the packet loss
of that request. Construction proves that probing is possible at all
(e.g. that an ICMP socket can be opened); a failure there is isolated to
the runner that owns the transport.
"""

import ipaddress
import logging
import socket
from abc import ABC, abstractmethod
from typing import Optional

import ping3

from models import Probe
from monitor.errors import TransportError


logger = logging.getLogger(__name__)


class EchoTransport(ABC):
    """Sends one echo request per call to a fixed destination."""

    @abstractmethod
    def send(self, timeout: float) -> float:
        """
        Send exactly one echo request and wait up to timeout for the reply.

        Returns the loss percentage for that request (0.0 or 100.0).
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release any resources held by the transport."""
        pass


class Ping3Transport(EchoTransport):
    """
    ICMP echo transport backed by ping3.

    privileged only selects the socket kind opened by the check at
    construction time. ping3 chooses its own socket for every echo: it
    tries a raw socket first and falls back to a datagram ICMP socket on
    PermissionError, so the check proves that the expected kind of
    socket is available, not which one each echo uses.

    Attributes:
        destination: Resolved destination address
        source: Optional source address to bind to
        privileged: Whether raw sockets are required
    """

    def __init__(self, probe: Probe, privileged: bool = False):
        """
        Initialize the transport and verify an ICMP socket can be opened.

        Args:
            probe: Resolved probe to send echoes for
            privileged: Use raw ICMP sockets instead of datagram ICMP sockets

        Raises:
            TransportError: If no ICMP socket can be opened
        """
        self.destination = probe.destination
        self.source: Optional[str] = probe.source
        self.privileged = privileged
        self._check_socket()

    def _check_socket(self) -> None:
        """Open and close a throwaway ICMP socket of the configured kind."""
        try:
            version = ipaddress.ip_address(self.destination).version
        except ValueError as e:
            raise TransportError(f"{self.destination} is not a valid IP address") from e

        if version == 6:
            family, proto = socket.AF_INET6, socket.IPPROTO_ICMPV6
        else:
            family, proto = socket.AF_INET, socket.IPPROTO_ICMP
        kind = socket.SOCK_RAW if self.privileged else socket.SOCK_DGRAM

        try:
            sock = socket.socket(family, kind, proto)
        except OSError as e:
            raise TransportError(
                f"cannot open ICMP socket for {self.destination}: {e}"
            ) from e
        sock.close()

    def send(self, timeout: float) -> float:
        # ping3 returns the delay on success, None on timeout and False on error
        rtt_ms = ping3.ping(
            self.destination,
            timeout=timeout,
            src_addr=self.source,
            unit="ms",
        )

        if rtt_ms is None or rtt_ms is False:
            logger.debug(f"Echo to {self.destination} lost")
            return 100.0

        logger.debug(f"Echo to {self.destination}: {rtt_ms:.2f}ms")
        return 0.0
