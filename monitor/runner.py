"""
Probe runner - the per-destination measurement loop.

Each runner owns one thread that sends an echo request once per period
and reports the outcome to the engine as a message. The runner never
touches engine state; it only puts ProbeResult and RunnerFailed messages
on the queue it was given.

Per cycle the runner waits for the first of three events:
    * the transport reports completion -> emit the reported loss
    * the period deadline passes        -> emit 100% loss
    * the runner is cancelled           -> exit without emitting
and then waits out the rest of the period, so replies never speed up
the probing rate.

At most one echo is in flight per runner. While a send that never
completed is still blocked, later cycles skip sending and report 100%
loss at their deadline.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from models import Probe, ProbeStats
from monitor.errors import TransportError
from monitor.transport import EchoTransport


logger = logging.getLogger(__name__)


TransportFactory = Callable[[Probe, bool], EchoTransport]


class RunnerState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    CYCLING = "cycling"
    STOPPED = "stopped"


@dataclass
class ProbeResult:
    """Raw measurement emitted by a runner once per completed cycle."""
    runner: "ProbeRunner"
    stats: ProbeStats
    emitted_at: float


@dataclass
class RunnerFailed:
    """Emitted when a runner terminates because its transport failed."""
    runner: "ProbeRunner"
    error: Exception


# Inbox message kinds
_REPLY = "reply"
_CANCEL = "cancel"


class ProbeRunner:
    """
    Fixed-rate echo loop for a single probe.

    Attributes:
        probe: Resolved probe being measured
        period: Probe period in seconds (also the reply timeout)
        privileged: Passed through to the transport factory
        state: Current RunnerState
    """

    def __init__(
        self,
        probe: Probe,
        results: "queue.Queue",
        transport_factory: TransportFactory,
        period: float = 1.0,
        privileged: bool = False,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize runner.

        Args:
            probe: Resolved probe to measure
            results: Queue receiving ProbeResult/RunnerFailed messages
            transport_factory: Callable building the echo transport
            period: Probe period in seconds (default: 1.0)
            privileged: Whether the transport should use raw sockets
            clock: Monotonic clock, replaceable for tests
        """
        if period <= 0:
            raise ValueError("period must be positive")
        self.probe = probe
        self.period = period
        self.privileged = privileged
        self.state = RunnerState.IDLE

        self._results = results
        self._transport_factory = transport_factory
        self._clock = clock

        self._inbox: "queue.Queue" = queue.Queue()
        self._stop_event = threading.Event()
        self._seq = 0
        self._thread: Optional[threading.Thread] = None
        self._sender: Optional[threading.Thread] = None

    @property
    def destination(self) -> str:
        return self.probe.destination

    def start(self) -> None:
        """Launch the runner thread."""
        if self._thread is not None:
            raise RuntimeError(f"runner for {self.destination} already started")

        self._thread = threading.Thread(
            target=self._run,
            name=f"ProbeRunner-{self.destination}",
            daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        """Signal the runner to stop. Does not wait for it to exit."""
        self._stop_event.set()
        self._inbox.put((_CANCEL, None, None))

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the runner thread to exit.

        Returns:
            True if the runner has exited (or was never started)
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        try:
            transport = self._transport_factory(self.probe, self.privileged)
        except TransportError as e:
            logger.error(f"Cannot probe {self.destination}: {e}")
            self.state = RunnerState.STOPPED
            self._results.put(RunnerFailed(runner=self, error=e))
            return
        except Exception as e:
            logger.error(f"Unexpected error creating transport for {self.destination}: {e}",
                         exc_info=True)
            self.state = RunnerState.STOPPED
            self._results.put(RunnerFailed(runner=self, error=e))
            return

        logger.info(f"Probe runner started: {self.probe.source or '-'} -> {self.destination}, "
                    f"period={self.period}s")
        try:
            self._loop(transport)
        finally:
            transport.close()
            self.state = RunnerState.STOPPED
            logger.info(f"Probe runner stopped: {self.destination}")

    def _loop(self, transport: EchoTransport) -> None:
        while not self._stop_event.is_set():
            self._seq += 1
            seq = self._seq
            deadline = self._clock() + self.period

            self.state = RunnerState.PROBING
            self._send_async(transport, seq)

            loss = self._await_outcome(seq, deadline)
            if loss is None or self._stop_event.is_set():
                return

            self._results.put(ProbeResult(
                runner=self,
                stats=ProbeStats(
                    destination=self.probe.destination,
                    source=self.probe.source,
                    loss=loss
                ),
                emitted_at=self._clock()
            ))

            self.state = RunnerState.CYCLING
            remaining = deadline - self._clock()
            if remaining > 0 and self._stop_event.wait(remaining):
                return

    def _send_async(self, transport: EchoTransport, seq: int) -> None:
        """
        Run one blocking transport send in a helper thread.

        Does nothing while the previous send is still blocked; the cycle
        then ends at its deadline.
        """
        if self._sender is not None:
            # a helper that just replied may still be exiting
            self._sender.join(timeout=0.01)
        if self._sender is not None and self._sender.is_alive():
            logger.debug(f"Echo to {self.destination} still pending, skipping request {seq}")
            return

        def send():
            try:
                loss = min(max(float(transport.send(self.period)), 0.0), 100.0)
            except Exception as e:
                logger.warning(f"Echo to {self.destination} failed: {e}")
                loss = 100.0
            self._inbox.put((_REPLY, seq, loss))

        self._sender = threading.Thread(
            target=send,
            name=f"Echo-{self.destination}-{seq}",
            daemon=True
        )
        self._sender.start()

    def _await_outcome(self, seq: int, deadline: float) -> Optional[float]:
        """
        Wait for the reply to request seq, the deadline or cancellation.

        Returns:
            Loss percentage for this cycle, or None if cancelled
        """
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return self._timed_out(seq)

            try:
                kind, reply_seq, loss = self._inbox.get(timeout=remaining)
            except queue.Empty:
                return self._timed_out(seq)

            if kind == _CANCEL:
                return None

            if reply_seq != seq:
                # reply to an abandoned request
                continue

            # A reply and the deadline at the same instant count as a timeout
            if self._clock() >= deadline:
                return self._timed_out(seq)

            return loss

    def _timed_out(self, seq: int) -> float:
        logger.debug(f"Echo {seq} to {self.destination} timed out")
        return 100.0
