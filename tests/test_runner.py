"""
Tests for the probe runner: fixed-rate cycling, timeouts, cancellation
and transport construction failures.
"""

import queue
import threading
import time

import pytest

from models import Probe
from monitor.errors import TransportError
from monitor.runner import ProbeResult, ProbeRunner, RunnerFailed, RunnerState


PERIOD = 0.1
PROBE = Probe(destination="192.0.2.1", source="198.51.100.7")


def collect(results, duration):
    """Drain results for duration seconds."""
    collected = []
    deadline = time.monotonic() + duration
    while time.monotonic() < deadline:
        try:
            collected.append(results.get(timeout=0.01))
        except queue.Empty:
            continue
    return collected


class TestCycling:
    """Test the fixed-rate send/wait cycle."""

    def test_fast_replies_report_transport_loss(self, scripted_transport):
        results = queue.Queue()
        transport = scripted_transport(script=(0.0,))
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=PERIOD)
        runner.start()

        collected = collect(results, 0.35)
        runner.cancel()
        assert runner.join(timeout=1)

        assert len(collected) >= 2
        for msg in collected:
            assert isinstance(msg, ProbeResult)
            assert msg.runner is runner
            assert msg.stats.destination == "192.0.2.1"
            assert msg.stats.source == "198.51.100.7"
            assert msg.stats.loss == 0.0

    def test_fast_replies_do_not_speed_up_sending(self, scripted_transport):
        """A reply well inside the period still waits out the full period."""
        results = queue.Queue()
        transport = scripted_transport(script=(0.0,))
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=PERIOD)
        runner.start()

        collect(results, 0.55)
        runner.cancel()
        assert runner.join(timeout=1)

        sends = list(transport.send_times)
        assert 2 <= len(sends) <= 7
        for earlier, later in zip(sends, sends[1:]):
            assert later - earlier >= PERIOD - 0.02

    def test_never_completing_transport_reports_full_loss_each_period(self, blocking_transport):
        results = queue.Queue()
        transport = blocking_transport()
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=PERIOD)
        runner.start()

        collected = collect(results, 0.75)
        runner.cancel()
        assert runner.join(timeout=1)

        assert 4 <= len(collected) <= 8
        assert all(msg.stats.loss == 100.0 for msg in collected)

        emitted = [msg.emitted_at for msg in collected]
        for earlier, later in zip(emitted, emitted[1:]):
            assert later - earlier >= PERIOD - 1e-6

    def test_late_reply_is_discarded(self, scripted_transport):
        """A reply to an abandoned request never counts for a later cycle."""
        class SlowFirstTransport(scripted_transport):
            def send(self, timeout):
                first = not self.send_times
                loss = super().send(timeout)
                if first:
                    time.sleep(PERIOD * 1.5)
                return loss

        results = queue.Queue()
        # first echo arrives after 1.5 periods, later ones immediately
        transport = SlowFirstTransport(script=(0.0,))
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=PERIOD)
        runner.start()

        first = results.get(timeout=1)
        second = results.get(timeout=1)
        rest = collect(results, 0.3)
        runner.cancel()
        assert runner.join(timeout=1)

        # the second cycle overlaps the pending first echo and sends nothing;
        # the first echo's late reply must not be credited to it
        assert first.stats.loss == 100.0
        assert second.stats.loss == 100.0
        assert rest
        assert all(msg.stats.loss == 0.0 for msg in rest)

    def test_blocked_send_limits_echo_threads(self, blocking_transport):
        """A transport that never completes holds at most one echo thread."""
        results = queue.Queue()
        transport = blocking_transport()
        probe = Probe(destination="192.0.2.77")
        runner = ProbeRunner(probe, results, lambda p, priv: transport, period=0.02)
        runner.start()

        collected = collect(results, 0.5)
        echo_threads = [t for t in threading.enumerate() if t.name.startswith("Echo-192.0.2.77-")]
        runner.cancel()
        assert runner.join(timeout=1)

        assert len(collected) >= 10
        assert all(msg.stats.loss == 100.0 for msg in collected)
        assert len(transport.send_times) == 1
        assert len(echo_threads) <= 1

    def test_send_exception_counts_as_loss(self, scripted_transport):
        class ExplodingTransport(scripted_transport):
            def send(self, timeout):
                raise OSError("Network is unreachable")

        results = queue.Queue()
        runner = ProbeRunner(PROBE, results, lambda p, priv: ExplodingTransport(), period=PERIOD)
        runner.start()

        msg = results.get(timeout=1)
        runner.cancel()
        assert runner.join(timeout=1)

        assert msg.stats.loss == 100.0

    def test_out_of_range_loss_is_clamped(self, scripted_transport):
        results = queue.Queue()
        transport = scripted_transport(script=(250.0,))
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=PERIOD)
        runner.start()

        msg = results.get(timeout=1)
        runner.cancel()
        assert runner.join(timeout=1)

        assert msg.stats.loss == 100.0

    def test_privileged_flag_passed_to_factory(self, scripted_transport):
        seen = []

        def factory(probe, privileged):
            seen.append((probe, privileged))
            return scripted_transport()

        results = queue.Queue()
        runner = ProbeRunner(PROBE, results, factory, period=PERIOD, privileged=True)
        runner.start()
        results.get(timeout=1)
        runner.cancel()
        assert runner.join(timeout=1)

        assert seen == [(PROBE, True)]


class TestTieBreak:
    """A reply observed at the deadline is treated as a timeout."""

    def test_reply_at_deadline_counts_as_timeout(self):
        times = iter([10.0, 10.5])
        runner = ProbeRunner(PROBE, queue.Queue(), lambda p, priv: None,
                             period=1.0, clock=lambda: next(times))
        runner._inbox.put(("reply", 1, 0.0))

        assert runner._await_outcome(seq=1, deadline=10.5) == 100.0

    def test_reply_before_deadline_wins(self):
        times = iter([10.0, 10.2])
        runner = ProbeRunner(PROBE, queue.Queue(), lambda p, priv: None,
                             period=1.0, clock=lambda: next(times))
        runner._inbox.put(("reply", 1, 0.0))

        assert runner._await_outcome(seq=1, deadline=10.5) == 0.0

    def test_cancel_wins_over_pending_wait(self):
        runner = ProbeRunner(PROBE, queue.Queue(), lambda p, priv: None, period=1.0)
        runner.cancel()

        assert runner._await_outcome(seq=1, deadline=time.monotonic() + 5) is None


class TestCancellation:
    """Test cooperative cancellation."""

    def test_cancel_while_waiting_for_reply(self, blocking_transport):
        results = queue.Queue()
        transport = blocking_transport()
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=1.0)
        runner.start()
        time.sleep(0.05)

        started = time.monotonic()
        runner.cancel()
        assert runner.join(timeout=2)

        assert time.monotonic() - started < 1.0
        assert results.empty()
        assert runner.state == RunnerState.STOPPED
        assert transport.closed

    def test_cancel_while_cycling(self, scripted_transport):
        results = queue.Queue()
        runner = ProbeRunner(PROBE, results, lambda p, priv: scripted_transport(), period=1.0)
        runner.start()
        results.get(timeout=1)

        started = time.monotonic()
        runner.cancel()
        assert runner.join(timeout=2)

        assert time.monotonic() - started < 0.5
        assert results.empty()

    def test_cancel_before_start_never_sends(self, scripted_transport):
        results = queue.Queue()
        transport = scripted_transport()
        runner = ProbeRunner(PROBE, results, lambda p, priv: transport, period=PERIOD)
        runner.cancel()
        runner.start()

        assert runner.join(timeout=1)
        assert transport.send_times == []
        assert results.empty()

    def test_join_unstarted_runner(self):
        runner = ProbeRunner(PROBE, queue.Queue(), lambda p, priv: None, period=PERIOD)
        assert runner.join(timeout=0)
        assert not runner.is_alive()

    def test_start_twice_rejected(self, scripted_transport):
        runner = ProbeRunner(PROBE, queue.Queue(), lambda p, priv: scripted_transport(), period=PERIOD)
        runner.start()
        try:
            with pytest.raises(RuntimeError):
                runner.start()
        finally:
            runner.cancel()
            runner.join(timeout=1)


class TestTransportFailure:
    """Transport construction failures terminate only the affected runner."""

    def test_construction_failure_reports_and_exits(self):
        def factory(probe, privileged):
            raise TransportError("cannot open ICMP socket")

        results = queue.Queue()
        runner = ProbeRunner(PROBE, results, factory, period=PERIOD)
        runner.start()

        assert runner.join(timeout=1)
        msg = results.get(timeout=1)
        assert isinstance(msg, RunnerFailed)
        assert msg.runner is runner
        assert isinstance(msg.error, TransportError)
        assert runner.state == RunnerState.STOPPED
        assert results.empty()

    def test_unexpected_construction_error_reports_and_exits(self):
        def factory(probe, privileged):
            raise RuntimeError("boom")

        results = queue.Queue()
        runner = ProbeRunner(PROBE, results, factory, period=PERIOD)
        runner.start()

        assert runner.join(timeout=1)
        assert isinstance(results.get(timeout=1), RunnerFailed)

    def test_non_positive_period_rejected(self):
        with pytest.raises(ValueError):
            ProbeRunner(PROBE, queue.Queue(), lambda p, priv: None, period=0)
