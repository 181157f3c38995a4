"""
Pydantic data models for Lite Failover Monitor.

These models define the probe configuration, the per-destination loss
statistics produced by the engine, and the payloads exchanged with
external consumers (control API, webhooks).
"""

import ipaddress
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Probe(BaseModel):
    """
    A (source, destination) pair to be measured.

    Before a runner is started, destination must be a resolved IP address
    and source, if set, a literal address. Unresolved probes (hostnames,
    interface names) are accepted here and resolved by monitor.resolver.

    Attributes:
        destination: Destination hostname or IP address
        source: Optional source IP address or interface name
    """
    model_config = ConfigDict(frozen=True)

    destination: str = Field(..., min_length=1, description="Destination host or address")
    source: Optional[str] = Field(None, description="Source address or interface name")

    @field_validator('source')
    @classmethod
    def empty_source_is_none(cls, v):
        """Treat an empty source as unset."""
        if v is not None and not v.strip():
            return None
        return v

    def is_resolved(self) -> bool:
        """Return True if destination and source are literal addresses."""
        return is_ip_address(self.destination) and (
            self.source is None or is_ip_address(self.source)
        )


class ProbeStats(BaseModel):
    """
    Loss measurement for a single probe.

    Attributes:
        destination: Resolved destination address
        source: Source address the probe is sent from (None for default)
        loss: Packet loss percentage (0.0 = no loss, 100.0 = total loss)
    """
    model_config = ConfigDict(frozen=True)

    destination: str = Field(..., description="Destination address")
    source: Optional[str] = Field(None, description="Source address")
    loss: float = Field(..., ge=0.0, le=100.0, description="Packet loss percentage (0-100)")


class StatsResponse(BaseModel):
    """
    Snapshot of all probe statistics returned by the control API.

    Attributes:
        stats: Statistics for every destination with at least one measurement
    """
    stats: List[ProbeStats] = Field(default_factory=list, description="Per-destination statistics")


class HookEvent(BaseModel):
    """
    Payload posted to webhook consumers.

    Attributes:
        event: One of "probe_update", "periodic_update", "shutdown"
        timestamp: Unix timestamp when the event was emitted
        probe: Updated probe statistics (probe_update only)
        stats: Full snapshot at the time of the event
    """
    event: str = Field(..., description="Event name")
    timestamp: int = Field(..., gt=0, description="Unix timestamp")
    probe: Optional[ProbeStats] = Field(None, description="Updated probe")
    stats: List[ProbeStats] = Field(default_factory=list, description="Snapshot")


def is_ip_address(value: str) -> bool:
    """Return True if value is a literal IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def snapshot_to_list(snapshot: Dict[str, ProbeStats]) -> List[ProbeStats]:
    """Flatten a snapshot into a list ordered by destination."""
    return [snapshot[dst] for dst in sorted(snapshot)]
