"""
Monitoring engine - the single owner of all probe state.

The engine runs one event loop that serializes every change to the
registry and the sliding window trackers. Probe runners post their
results into the loop's queue; external callers submit typed requests
(add, stop, snapshot, shutdown) and block on a Future for the reply.
Nothing outside the loop thread ever reads or writes the registry.

States:
    IDLE -> RUNNING -> DRAINING -> STOPPED
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from models import Probe, ProbeStats, is_ip_address
from monitor.errors import (
    DuplicateProbeError,
    EngineNotRunning,
    MonitorError,
    ProbeValidationError,
    UnknownProbeError,
)
from monitor.hooks import UpdateHooks
from monitor.registry import Registry
from monitor.resolver import resolve_destination, resolve_probe
from monitor.runner import ProbeResult, ProbeRunner, RunnerFailed, TransportFactory
from monitor.transport import Ping3Transport
from monitor.window import SlidingWindowTracker


logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class _AddRequest:
    probe: Probe
    name: Optional[str] = None
    reply: Future = field(default_factory=Future)


@dataclass
class _StopRequest:
    destination: str
    address: Optional[str] = None
    reply: Future = field(default_factory=Future)


@dataclass
class _LookupRequest:
    name: str
    reply: Future = field(default_factory=Future)


@dataclass
class _SnapshotRequest:
    reply: Future = field(default_factory=Future)


@dataclass
class _ShutdownRequest:
    pass


class Engine:
    """
    Probe scheduling and loss aggregation engine.

    Attributes:
        period: Probe period in seconds
        window_seconds: Sliding window length in seconds
        privileged: Whether transports use raw ICMP sockets
        tick_interval: Seconds between sliding window ticks
    """

    def __init__(
        self,
        probes: Iterable[Probe],
        period: float = 1.0,
        window_seconds: int = 10,
        privileged: bool = False,
        hooks: Optional[UpdateHooks] = None,
        transport_factory: TransportFactory = Ping3Transport,
        tick_interval: float = 1.0
    ):
        """
        Resolve all probes and prepare the engine. Nothing runs until run()
        or start() is called.

        Args:
            probes: Probes to measure from the start
            period: Probe period in seconds (default: 1.0)
            window_seconds: Sliding window length in seconds (default: 10)
            privileged: Use raw ICMP sockets (default: False)
            hooks: Receives on_probe_update for every refreshed destination
            transport_factory: Builds the echo transport for a probe
            tick_interval: Seconds between window ticks (default: 1.0)

        Raises:
            ValueError: If a numeric setting is out of range
            ProbeValidationError: If any probe fails to resolve or two probes
                resolve to the same destination
        """
        if period <= 0:
            raise ValueError("period must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")

        self.period = period
        self.window_seconds = window_seconds
        self.privileged = privileged
        self.tick_interval = tick_interval

        self._hooks = hooks
        self._transport_factory = transport_factory

        # (configured name, resolved probe)
        self._probes: List[Tuple[str, Probe]] = []
        seen = set()
        for probe in probes:
            resolved = resolve_probe(probe)
            if resolved.destination in seen:
                raise ProbeValidationError(
                    f"{probe.destination} resolves to duplicate destination {resolved.destination}"
                )
            seen.add(resolved.destination)
            self._probes.append((probe.destination, resolved))

        self._events: "queue.Queue" = queue.Queue()
        self._registry = Registry()

        self._state = EngineState.IDLE
        self._state_lock = threading.Lock()
        self._started = threading.Event()
        self._stopped = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None

        logger.info(f"Engine initialized with {len(self._probes)} probes, "
                    f"period={period}s, window={window_seconds}s, privileged={privileged}")

    @property
    def state(self) -> EngineState:
        with self._state_lock:
            return self._state

    # Lifecycle

    def run(self) -> None:
        """
        Start every probe runner and run the event loop in this thread.

        Blocks until stop() has drained the engine.
        """
        with self._state_lock:
            if self._state != EngineState.IDLE:
                raise RuntimeError(f"engine cannot be started from state {self._state.value}")
            self._state = EngineState.RUNNING
            self._loop_thread = threading.current_thread()

        logger.info("Engine starting")
        try:
            for name, probe in self._probes:
                self._start_probe(probe, name)
            self._started.set()
            self._loop()
        finally:
            self._drain()

    def start(self) -> None:
        """
        Run the engine in a background thread.

        Returns once the engine has started, even if it was stopped again
        before this call noticed.

        Raises:
            EngineNotRunning: If the engine thread exits without starting
        """
        thread = threading.Thread(target=self.run, name="EngineLoop", daemon=True)
        thread.start()

        while not self._started.wait(0.05):
            if not thread.is_alive() and not self._started.is_set():
                raise EngineNotRunning("engine failed to start")

    def stop(self) -> None:
        """
        Stop every runner and terminate the loop.

        Blocks until all runners have exited. Safe to call more than once.
        """
        with self._state_lock:
            if self._state == EngineState.IDLE:
                self._state = EngineState.STOPPED
                self._stopped.set()
                return
            if self._state == EngineState.RUNNING:
                logger.info("Stopping engine")
                self._state = EngineState.DRAINING
                self._events.put(_ShutdownRequest())

        if self._in_loop():
            # The loop exits after the current event
            return

        self._stopped.wait()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the engine to stop. Returns True if it has stopped."""
        return self._stopped.wait(timeout)

    # Requests

    def add_probe(self, probe: Probe) -> Probe:
        """
        Resolve a probe and start measuring it.

        Resolution runs in the caller's thread; only the resolved probe is
        handed to the loop.

        Returns:
            The resolved probe

        Raises:
            ProbeValidationError: If the probe cannot be resolved
            DuplicateProbeError: If the destination is already measured
            EngineNotRunning: If the engine is not running
        """
        resolved = resolve_probe(probe)

        if self._in_loop():
            return self._handle_add(resolved, probe.destination)
        return self._submit(_AddRequest(probe=resolved, name=probe.destination))

    def stop_probe(self, destination: str) -> None:
        """
        Stop measuring a destination and discard its window history.

        Returns after the destination's runner has exited.

        Args:
            destination: Registered address, the name a probe was added
                under, or a name currently resolving to a registered address

        Raises:
            UnknownProbeError: If the destination is not registered
            EngineNotRunning: If the engine is not running
        """
        address = None
        if not is_ip_address(destination):
            try:
                address = resolve_destination(destination)
            except ProbeValidationError as e:
                logger.debug(f"Cannot resolve {destination}, matching configured names only: {e}")

        if self._in_loop():
            self._handle_stop(destination, address)
            return
        self._submit(_StopRequest(destination=destination, address=address))

    def stats(self) -> Dict[str, ProbeStats]:
        """
        Return a point-in-time copy of the latest statistics, keyed by
        resolved address.

        Raises:
            EngineNotRunning: If the engine is not running
        """
        if self._in_loop():
            return self._registry.snapshot()
        return self._submit(_SnapshotRequest())

    def probe_stats(self, name: str) -> Optional[ProbeStats]:
        """
        Return the latest statistics of one probe.

        Args:
            name: Resolved address, or the name the probe was added under

        Returns:
            ProbeStats, or None if the probe is unknown or not measured yet

        Raises:
            EngineNotRunning: If the engine is not running
        """
        if self._in_loop():
            return self._lookup(name)
        return self._submit(_LookupRequest(name=name))

    def _in_loop(self) -> bool:
        return self._loop_thread is threading.current_thread()

    def _submit(self, request):
        with self._state_lock:
            if self._state != EngineState.RUNNING:
                raise EngineNotRunning(f"engine is {self._state.value}")
            self._events.put(request)
        return request.reply.result()

    # Loop

    def _loop(self) -> None:
        next_tick = time.monotonic() + self.tick_interval

        while True:
            event = None
            timeout = next_tick - time.monotonic()
            if timeout > 0:
                try:
                    event = self._events.get(timeout=timeout)
                except queue.Empty:
                    pass

            now = time.monotonic()
            while now >= next_tick:
                self._tick()
                next_tick += self.tick_interval

            if event is None:
                continue
            if isinstance(event, _ShutdownRequest):
                return
            self._dispatch(event)

    def _dispatch(self, event) -> None:
        if isinstance(event, ProbeResult):
            try:
                self._handle_result(event)
            except Exception as e:
                logger.error(f"Error handling result for {event.stats.destination}: {e}", exc_info=True)
            return

        if isinstance(event, RunnerFailed):
            self._handle_failure(event)
            return

        try:
            if isinstance(event, _AddRequest):
                event.reply.set_result(self._handle_add(event.probe, event.name))
            elif isinstance(event, _StopRequest):
                event.reply.set_result(self._handle_stop(event.destination, event.address))
            elif isinstance(event, _SnapshotRequest):
                event.reply.set_result(self._registry.snapshot())
            elif isinstance(event, _LookupRequest):
                event.reply.set_result(self._lookup(event.name))
            else:
                logger.error(f"Unknown engine event: {event!r}")
        except MonitorError as e:
            event.reply.set_exception(e)
        except Exception as e:
            logger.error(f"Error handling {type(event).__name__}: {e}", exc_info=True)
            event.reply.set_exception(e)

    def _tick(self) -> None:
        for entry in self._registry.entries():
            entry.tracker.tick()

    def _handle_result(self, result: ProbeResult) -> None:
        destination = result.stats.destination
        entry = self._registry.get(destination)
        if entry is None or entry.runner is not result.runner:
            logger.debug(f"Discarding result from stopped runner for {destination}")
            return

        entry.tracker.insert(result.stats.loss)
        loss = min(max(entry.tracker.average(), 0.0), 100.0)

        stats = ProbeStats(
            destination=destination,
            source=result.stats.source,
            loss=loss
        )
        self._registry.update(destination, stats)
        logger.debug(f"{destination}: sample={result.stats.loss:.1f}% average={loss:.1f}%")

        if self._hooks is not None:
            try:
                self._hooks.on_probe_update(stats, self._registry.snapshot())
            except Exception as e:
                logger.error(f"on_probe_update hook failed: {e}", exc_info=True)

    def _handle_failure(self, failure: RunnerFailed) -> None:
        destination = failure.runner.destination
        entry = self._registry.get(destination)
        if entry is None or entry.runner is not failure.runner:
            return

        self._registry.remove(destination)
        logger.warning(f"Probe for {destination} disabled: {failure.error}")

    def _handle_add(self, probe: Probe, name: Optional[str] = None) -> Probe:
        if probe.destination in self._registry:
            raise DuplicateProbeError(f"probe for {probe.destination} already exists")

        self._start_probe(probe, name)
        logger.info(f"Added probe {probe.source or '-'} -> {probe.destination}")
        return probe

    def _handle_stop(self, name: str, address: Optional[str] = None) -> None:
        destination = self._registry.lookup(name)
        if destination is None and address is not None and address in self._registry:
            destination = address
        if destination is None:
            raise UnknownProbeError(f"no probe for {name}")

        entry = self._registry.get(destination)
        entry.runner.cancel()
        entry.runner.join()
        self._registry.remove(destination)
        logger.info(f"Stopped probe for {destination}")

    def _lookup(self, name: str) -> Optional[ProbeStats]:
        destination = self._registry.lookup(name)
        if destination is None:
            return None
        return self._registry.get(destination).stats

    def _start_probe(self, probe: Probe, name: Optional[str] = None) -> None:
        tracker = SlidingWindowTracker(self.window_seconds)
        runner = ProbeRunner(
            probe=probe,
            results=self._events,
            transport_factory=self._transport_factory,
            period=self.period,
            privileged=self.privileged
        )
        self._registry.insert(probe.destination, tracker, runner, name=name)
        runner.start()

    def _drain(self) -> None:
        """Cancel and join every runner, then empty the event queue."""
        with self._state_lock:
            self._state = EngineState.DRAINING

        entries = self._registry.entries()
        for entry in entries:
            entry.runner.cancel()
        for entry in entries:
            entry.runner.join()
        for destination in self._registry.destinations():
            self._registry.remove(destination)

        discarded = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            reply = getattr(event, "reply", None)
            if reply is not None:
                reply.set_exception(EngineNotRunning("engine is shutting down"))
            else:
                discarded += 1

        with self._state_lock:
            self._state = EngineState.STOPPED
        self._stopped.set()
        logger.info(f"Engine stopped ({len(entries)} runners joined, {discarded} events discarded)")
