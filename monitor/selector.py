"""
Path selection over loss snapshots.

Picks the destination with the lowest smoothed loss and applies
hysteresis so the selected path does not flap when losses fluctuate.
"""

import logging
from typing import Dict, Optional

from models import ProbeStats


logger = logging.getLogger(__name__)


def lowest_loss(snapshot: Dict[str, ProbeStats]) -> Optional[ProbeStats]:
    """
    Return the statistics with the lowest loss.

    Ties are broken by destination so the result is deterministic.

    Args:
        snapshot: Mapping of destination to ProbeStats

    Returns:
        Lowest-loss ProbeStats, or None for an empty snapshot
    """
    if not snapshot:
        return None
    return min(snapshot.values(), key=lambda stats: (stats.loss, stats.destination))


class PathSelector:
    """
    Lowest-loss path selection with hysteresis.

    The current path is kept unless a candidate's loss is lower by more
    than hysteresis percentage points, or the current path is no longer
    present in the snapshot.

    Attributes:
        hysteresis: Minimum loss improvement (percentage points) to switch
        current: Destination of the currently selected path
    """

    def __init__(self, hysteresis: float = 5.0):
        """
        Initialize selector.

        Args:
            hysteresis: Minimum improvement required to switch (default: 5.0)
        """
        if hysteresis < 0:
            raise ValueError("hysteresis must be non-negative")
        self.hysteresis = hysteresis
        self.current: Optional[str] = None

    def select(self, snapshot: Dict[str, ProbeStats]) -> Optional[ProbeStats]:
        """
        Choose the active path for a snapshot.

        Returns:
            ProbeStats of the selected path, or None if the snapshot is empty
        """
        best = lowest_loss(snapshot)
        if best is None:
            self.current = None
            return None

        current = snapshot.get(self.current) if self.current else None
        if current is None:
            self.current = best.destination
            return best

        if best.loss < current.loss - self.hysteresis:
            logger.debug(f"Path {best.destination} beats {current.destination}: "
                         f"{best.loss:.1f}% < {current.loss:.1f}%")
            self.current = best.destination
            return best

        return current

    def reset(self) -> None:
        """Forget the currently selected path."""
        self.current = None
