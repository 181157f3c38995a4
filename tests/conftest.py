"""
Shared fixtures: fake echo transports and polling helpers.
"""

import threading
import time
from collections import defaultdict, deque

import pytest

from monitor.errors import TransportError
from monitor.transport import EchoTransport


class ScriptedTransport(EchoTransport):
    """
    Replies immediately with scripted loss values.

    script: sequence of loss values returned by successive sends; the last
    value repeats once the script is exhausted. A value of None blocks the
    send until release() is called (the reply never arrives in time).
    """

    def __init__(self, script=(0.0,), delay=0.0):
        self.script = deque(script)
        self.last = self.script[-1] if self.script else 0.0
        self.delay = delay
        self.send_times = []
        self.closed = False
        self._released = threading.Event()

    def send(self, timeout):
        self.send_times.append(time.monotonic())
        value = self.script.popleft() if self.script else self.last
        if value is None:
            self._released.wait()
            return 100.0
        if self.delay:
            time.sleep(self.delay)
        return value

    def release(self):
        self._released.set()

    def close(self):
        self.closed = True


class BlockingTransport(ScriptedTransport):
    """A transport whose replies never arrive."""

    def __init__(self):
        super().__init__(script=(None,))


class FakeTransportFactory:
    """
    Transport factory keyed by destination.

    scripts: destination -> list of scripts, one per construction; the
    last script is reused. Destinations listed in failing raise
    TransportError on construction.
    """

    def __init__(self, scripts=None, failing=(), default=(0.0,)):
        self.scripts = {dst: deque(s) for dst, s in (scripts or {}).items()}
        self.failing = set(failing)
        self.default = default
        self.transports = defaultdict(list)

    def __call__(self, probe, privileged):
        if probe.destination in self.failing:
            raise TransportError(f"cannot open ICMP socket for {probe.destination}")

        queue_ = self.scripts.get(probe.destination)
        if queue_:
            script = queue_.popleft() if len(queue_) > 1 else queue_[0]
        else:
            script = self.default

        transport = BlockingTransport() if script is None else ScriptedTransport(script)
        self.transports[probe.destination].append(transport)
        return transport

    def release_all(self):
        for transports in self.transports.values():
            for transport in transports:
                transport.release()


def _wait_for(predicate, timeout=3.0, interval=0.01):
    """Poll predicate until it is truthy or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def wait_for():
    return _wait_for


@pytest.fixture
def scripted_transport():
    return ScriptedTransport


@pytest.fixture
def blocking_transport():
    transports = []

    def make():
        transport = BlockingTransport()
        transports.append(transport)
        return transport

    yield make

    for transport in transports:
        transport.release()


@pytest.fixture
def transport_factory():
    factories = []

    def make(scripts=None, failing=(), default=(0.0,)):
        factory = FakeTransportFactory(scripts=scripts, failing=failing, default=default)
        factories.append(factory)
        return factory

    yield make

    for factory in factories:
        factory.release_all()
