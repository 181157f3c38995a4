"""
Update hooks - the consumers of monitoring results.

The engine and the daemon talk to consumers only through UpdateHooks:
    * on_probe_update    - every time one destination's average changes
    * on_periodic_update - every update interval, from the daemon
    * on_shutdown        - once, before the engine is stopped

on_probe_update runs synchronously inside the engine loop, so slow
implementations delay every other event.
"""

import logging
import string
import subprocess
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from models import HookEvent, ProbeStats, snapshot_to_list
from monitor.selector import PathSelector


logger = logging.getLogger(__name__)


Snapshot = Dict[str, ProbeStats]

# Fields available to failover command templates
COMMAND_FIELDS = ("destination", "source", "loss")


def check_command_template(command: List[str]) -> None:
    """
    Verify every placeholder in a command template is a known field.

    Literal braces must be doubled ("{{" and "}}").

    Raises:
        ValueError: If a part is malformed or names an unknown field
    """
    for part in command:
        for _, field_name, _, _ in string.Formatter().parse(str(part)):
            if field_name is not None and field_name not in COMMAND_FIELDS:
                raise ValueError(
                    f"unknown placeholder {{{field_name}}} in {part!r}, "
                    f"expected one of {', '.join(COMMAND_FIELDS)}"
                )


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""
    pass


class UpdateHooks:
    """Base hook set. Every method is a no-op; override what you need."""

    def on_probe_update(self, stats: ProbeStats, snapshot: Snapshot) -> None:
        pass

    def on_periodic_update(self, snapshot: Snapshot) -> None:
        pass

    def on_shutdown(self, snapshot: Snapshot) -> None:
        pass


class CompositeHooks(UpdateHooks):
    """
    Fans every event out to several hook sets.

    A failing hook is logged and does not prevent the others from running.
    """

    def __init__(self, hooks: List[UpdateHooks]):
        self.hooks = list(hooks)

    def _dispatch(self, name: str, *args) -> None:
        for hook in self.hooks:
            try:
                getattr(hook, name)(*args)
            except Exception as e:
                logger.error(f"{type(hook).__name__}.{name} failed: {e}", exc_info=True)

    def on_probe_update(self, stats: ProbeStats, snapshot: Snapshot) -> None:
        self._dispatch("on_probe_update", stats, snapshot)

    def on_periodic_update(self, snapshot: Snapshot) -> None:
        self._dispatch("on_periodic_update", snapshot)

    def on_shutdown(self, snapshot: Snapshot) -> None:
        self._dispatch("on_shutdown", snapshot)


class FailoverHooks(UpdateHooks):
    """
    Runs a command whenever the selected path changes.

    The command is an argv template; every element is formatted with
    {destination}, {source} and {loss} of the newly selected path.
    Example: ["ip", "route", "replace", "default", "via", "{destination}"]

    Attributes:
        selector: PathSelector choosing the active path
        command: Argv template run on path changes
        shutdown_command: Optional argv run once on shutdown
        timeout: Command timeout in seconds
    """

    def __init__(
        self,
        selector: PathSelector,
        command: Optional[List[str]] = None,
        shutdown_command: Optional[List[str]] = None,
        timeout: int = 5
    ):
        self.selector = selector
        self.command = command
        self.shutdown_command = shutdown_command
        self.timeout = timeout

    def build_command(self, stats: ProbeStats) -> List[str]:
        """Format the command template for the selected path."""
        values = {
            "destination": stats.destination,
            "source": stats.source or "",
            "loss": f"{stats.loss:.1f}",
        }
        return [part.format(**values) for part in self.command]

    def on_periodic_update(self, snapshot: Snapshot) -> None:
        """
        Select a path and run the command when the selection changes.

        If the command cannot be built or fails, the previous selection is
        restored so the next update tries the switch again.
        """
        previous = self.selector.current
        selected = self.selector.select(snapshot)

        if selected is None or selected.destination == previous:
            return

        logger.info(f"Switching path: {previous or '-'} -> {selected.destination} "
                    f"(loss={selected.loss:.1f}%)")
        if not self.command:
            return

        try:
            command = self.build_command(selected)
        except (KeyError, IndexError, ValueError) as e:
            logger.error(f"Invalid failover command template {self.command}: {e}")
            self.selector.current = previous
            return

        if not self._execute(command):
            logger.warning(f"Path switch to {selected.destination} failed, keeping {previous or '-'}")
            self.selector.current = previous

    def on_shutdown(self, snapshot: Snapshot) -> None:
        if self.shutdown_command:
            self._execute(list(self.shutdown_command))
        self.selector.reset()

    def _execute(self, command: List[str]) -> bool:
        """
        Run a command, logging failures.

        Returns:
            True if the command exited successfully
        """
        try:
            subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout
            )
            logger.info(f"Executed: {' '.join(command)}")
            return True
        except subprocess.TimeoutExpired:
            logger.error(f"Timeout executing {' '.join(command)}")
            return False
        except subprocess.CalledProcessError as e:
            logger.error(f"Command {' '.join(command)} failed: {e.stderr}")
            return False
        except OSError as e:
            logger.error(f"Cannot execute {' '.join(command)}: {e}")
            return False


class WebhookHooks(UpdateHooks):
    """
    Posts monitoring events as JSON to an HTTP endpoint.

    Periodic and shutdown events are retried with backoff. Per-probe
    events run inside the engine loop and are therefore sent only when
    each_probe is enabled, and without retries.

    Attributes:
        url: Endpoint receiving HookEvent payloads
        timeout: HTTP request timeout in seconds
        retry_attempts: Maximum number of attempts
        retry_backoff: List of backoff delays in seconds (e.g., [1, 2, 4])
        each_probe: Whether to post every probe update
    """

    def __init__(
        self,
        url: str,
        timeout: int = 5,
        retry_attempts: int = 3,
        retry_backoff: List[int] = None,
        each_probe: bool = False
    ):
        self.url = url
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff or [1, 2, 4]
        self.each_probe = each_probe

        logger.info(f"WebhookHooks initialized: url={url}, "
                    f"timeout={timeout}s, retry_attempts={retry_attempts}")

    def _retry_with_backoff(self, operation: Callable[[], Any], operation_name: str) -> Any:
        """
        Execute an operation, retrying while it returns None or raises.

        Raises:
            RetryExhausted: If all retry attempts fail
        """
        for attempt in range(self.retry_attempts):
            try:
                result = operation()
                if result is not None:
                    return result

                logger.warning(f"{operation_name} failed (attempt {attempt + 1}/{self.retry_attempts})")

            except Exception as e:
                logger.warning(f"{operation_name} raised exception (attempt {attempt + 1}/{self.retry_attempts}): {e}")

            if attempt < self.retry_attempts - 1:
                delay = self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)]
                logger.debug(f"Backing off for {delay}s before retry")
                time.sleep(delay)

        logger.error(f"{operation_name} failed after {self.retry_attempts} attempts")
        raise RetryExhausted(f"{operation_name} failed after {self.retry_attempts} attempts")

    def post_event(self, event: HookEvent) -> bool:
        """
        POST a single event.

        Returns:
            True if the endpoint accepted the event, False otherwise
        """
        try:
            response = requests.post(
                self.url,
                json=event.model_dump(),
                timeout=self.timeout
            )

            if 200 <= response.status_code < 300:
                logger.debug(f"Posted {event.event} to {self.url}")
                return True

            logger.error(f"Webhook returned status {response.status_code}: {response.text}")
            return False

        except requests.exceptions.Timeout:
            logger.error(f"Timeout posting {event.event} to {self.url}")
            return False
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error posting {event.event}: {e}")
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error posting {event.event}: {e}")
            return False

    def post_event_with_retry(self, event: HookEvent) -> bool:
        """POST an event with backoff retry. Returns False once retries are exhausted."""
        def operation():
            return True if self.post_event(event) else None

        try:
            return self._retry_with_backoff(operation, f"post_{event.event}")
        except RetryExhausted:
            return False

    def _event(self, name: str, snapshot: Snapshot, probe: Optional[ProbeStats] = None) -> HookEvent:
        return HookEvent(
            event=name,
            timestamp=int(datetime.now().timestamp()),
            probe=probe,
            stats=snapshot_to_list(snapshot)
        )

    def on_probe_update(self, stats: ProbeStats, snapshot: Snapshot) -> None:
        if self.each_probe:
            self.post_event(self._event("probe_update", snapshot, probe=stats))

    def on_periodic_update(self, snapshot: Snapshot) -> None:
        self.post_event_with_retry(self._event("periodic_update", snapshot))

    def on_shutdown(self, snapshot: Snapshot) -> None:
        self.post_event_with_retry(self._event("shutdown", snapshot))
