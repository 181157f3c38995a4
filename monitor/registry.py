"""
Probe registry for the engine.

Maps each destination to its latest statistics, its sliding window
tracker and the runner measuring it. The registry is owned by the engine
loop and is never shared with other threads, so it carries no lock.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from models import ProbeStats
from monitor.errors import DuplicateProbeError, UnknownProbeError
from monitor.runner import ProbeRunner
from monitor.window import SlidingWindowTracker


@dataclass
class RegistryEntry:
    """State kept for one active destination."""
    tracker: SlidingWindowTracker
    runner: ProbeRunner
    stats: Optional[ProbeStats] = None
    name: Optional[str] = None


class Registry:
    """
    Destination-keyed store of active probes.

    Attributes:
        _entries: Dictionary mapping destination to RegistryEntry
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._entries: Dict[str, RegistryEntry] = {}

    def insert(
        self,
        destination: str,
        tracker: SlidingWindowTracker,
        runner: ProbeRunner,
        name: Optional[str] = None
    ) -> RegistryEntry:
        """
        Register a new destination.

        Args:
            destination: Resolved address, used as the key
            tracker: Sliding window tracker for the destination
            runner: Runner measuring the destination
            name: Name the probe was configured with, if it differs

        Raises:
            DuplicateProbeError: If destination is already registered
        """
        if destination in self._entries:
            raise DuplicateProbeError(f"probe for {destination} already exists")

        entry = RegistryEntry(tracker=tracker, runner=runner, name=name)
        self._entries[destination] = entry
        return entry

    def remove(self, destination: str) -> RegistryEntry:
        """
        Remove a destination and return its entry.

        Raises:
            UnknownProbeError: If destination is not registered
        """
        try:
            return self._entries.pop(destination)
        except KeyError:
            raise UnknownProbeError(f"no probe for {destination}") from None

    def update(self, destination: str, stats: ProbeStats) -> None:
        """
        Store the latest statistics for a destination.

        Raises:
            UnknownProbeError: If destination is not registered
        """
        entry = self.get(destination)
        if entry is None:
            raise UnknownProbeError(f"no probe for {destination}")
        entry.stats = stats

    def get(self, destination: str) -> Optional[RegistryEntry]:
        """Return the entry for destination, or None if not registered."""
        return self._entries.get(destination)

    def lookup(self, name: str) -> Optional[str]:
        """
        Find the destination registered under an address or configured name.

        Returns:
            The destination key, or None if nothing matches
        """
        if name in self._entries:
            return name
        for destination, entry in self._entries.items():
            if entry.name == name:
                return destination
        return None

    def snapshot(self) -> Dict[str, ProbeStats]:
        """
        Copy the latest statistics of every measured destination.

        Destinations without a completed measurement are left out.
        """
        return {
            destination: entry.stats
            for destination, entry in self._entries.items()
            if entry.stats is not None
        }

    def destinations(self) -> List[str]:
        """Return all registered destinations."""
        return list(self._entries.keys())

    def entries(self) -> List[RegistryEntry]:
        """Return all registry entries."""
        return list(self._entries.values())

    def __contains__(self, destination: str) -> bool:
        return destination in self._entries

    def __len__(self) -> int:
        return len(self._entries)
