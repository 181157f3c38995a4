"""
Sliding window tracker for per-destination loss averaging.

The window is a circular buffer of one-second buckets. Values inserted
during the same second accumulate in the current bucket; every tick the
oldest bucket is evicted so the average always covers the trailing
window_seconds seconds.
"""

from typing import List


class _Bucket:
    """Accumulated value and insert count for one second of the window."""

    __slots__ = ("value", "count")

    def __init__(self):
        self.value = 0.0
        self.count = 0

    def clear(self) -> None:
        self.value = 0.0
        self.count = 0


class SlidingWindowTracker:
    """
    Decaying average of loss values over a fixed number of buckets.

    Running totals mirror the contents of all buckets so average() is O(1).
    Not thread-safe: the engine owns every tracker and is the only caller
    of insert(), average() and tick().

    Attributes:
        window_seconds: Number of buckets in the window
    """

    def __init__(self, window_seconds: int = 10):
        """
        Initialize tracker.

        Args:
            window_seconds: Window length in seconds (default: 10)
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self._buckets: List[_Bucket] = [_Bucket() for _ in range(window_seconds)]
        self._pointer = 0
        self._total_sum = 0.0
        self._total_count = 0

    def insert(self, value: float) -> None:
        """
        Add a value to the current bucket and the running totals.

        Args:
            value: Loss percentage to record
        """
        bucket = self._buckets[self._pointer]
        bucket.value += value
        bucket.count += 1
        self._total_sum += value
        self._total_count += 1

    def average(self) -> float:
        """
        Return the average of all values currently in the window.

        Returns:
            Average value, or 0.0 if the window holds no data
        """
        if self._total_count == 0:
            return 0.0
        return self._total_sum / self._total_count

    def tick(self) -> None:
        """
        Advance to the next bucket, evicting its previous contents.
        """
        self._pointer = (self._pointer + 1) % self.window_seconds

        bucket = self._buckets[self._pointer]
        self._total_sum -= bucket.value
        self._total_count -= bucket.count
        bucket.clear()

        if self._total_count == 0:
            # float drift
            self._total_sum = 0.0

    def __len__(self) -> int:
        """Return the number of values currently in the window."""
        return self._total_count
