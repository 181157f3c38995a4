"""
Address resolution for probes.

Destinations are resolved with the system resolver, source interface
names are mapped to their first IPv4 address using iproute2. Resolution
happens once, when a probe is created, and never inside a running loop.
"""

import logging
import socket
import subprocess
from typing import List

from models import Probe, is_ip_address
from monitor.errors import ProbeValidationError


logger = logging.getLogger(__name__)


def resolve_destination(host: str) -> str:
    """
    Resolve a destination hostname to its first address.

    Literal addresses are returned unchanged.

    Args:
        host: Hostname or IP address

    Returns:
        Resolved IP address

    Raises:
        ProbeValidationError: If the name cannot be resolved
    """
    if is_ip_address(host):
        return host

    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError) as e:
        raise ProbeValidationError(f"could not resolve {host}: {e}") from e

    addrs = [info[4][0] for info in infos]
    if not addrs:
        raise ProbeValidationError(f"no addresses returned for {host}")

    logger.debug(f"Resolved {host} to {addrs[0]}")
    return addrs[0]


def interface_addresses(interface: str) -> List[str]:
    """
    List the IPv4 addresses bound to a network interface.

    Executes 'ip -4 -o addr show dev <interface>' and parses the output.

    Args:
        interface: Interface name (e.g. "eth0")

    Returns:
        Addresses in the order iproute2 reports them

    Raises:
        ProbeValidationError: If the interface cannot be queried
    """
    try:
        result = subprocess.run(
            ["ip", "-4", "-o", "addr", "show", "dev", interface],
            capture_output=True,
            text=True,
            check=True,
            timeout=5
        )
    except subprocess.CalledProcessError as e:
        raise ProbeValidationError(
            f"could not determine address of {interface}: {e.stderr.strip()}"
        ) from e
    except (subprocess.TimeoutExpired, OSError) as e:
        raise ProbeValidationError(f"could not determine address of {interface}: {e}") from e

    addrs = []

    # Lines look like:
    # "2: eth0    inet 192.168.1.10/24 brd 192.168.1.255 scope global eth0\ ..."
    for line in result.stdout.splitlines():
        parts = line.split()
        if "inet" not in parts:
            continue
        inet_index = parts.index("inet")
        if inet_index + 1 < len(parts):
            addrs.append(parts[inet_index + 1].split('/')[0])

    return addrs


def interface_address(interface: str) -> str:
    """
    Return the first IPv4 address of an interface.

    Raises:
        ProbeValidationError: If the interface is unknown or has no address
    """
    addrs = interface_addresses(interface)
    if not addrs:
        raise ProbeValidationError(f"interface {interface} has no addresses")
    return addrs[0]


def resolve_probe(probe: Probe) -> Probe:
    """
    Resolve a probe's destination and source to literal addresses.

    A source that is not an IP address is treated as an interface name.

    Args:
        probe: Probe as configured

    Returns:
        A new Probe whose addresses are all literal

    Raises:
        ProbeValidationError: If any part of the probe cannot be resolved
    """
    source = probe.source
    if source is not None and not is_ip_address(source):
        source = interface_address(source)

    destination = resolve_destination(probe.destination)

    if probe.destination != destination or probe.source != source:
        logger.info(f"Resolved probe {probe.source or '-'} -> {probe.destination} "
                    f"as {source or '-'} -> {destination}")

    return Probe(destination=destination, source=source)
