"""
Main daemon program for Lite Failover Monitor.

This module wires the configuration, the engine, the update hooks and the
optional control API together, runs the periodic update loop and handles
graceful shutdown.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

import uvicorn

from config.parser import MonitorConfig, ConfigurationError
from control import api
from monitor.engine import Engine
from monitor.errors import EngineNotRunning, ProbeValidationError
from monitor.hooks import CompositeHooks, FailoverHooks, UpdateHooks, WebhookHooks
from monitor.runner import TransportFactory
from monitor.selector import PathSelector
from monitor.transport import Ping3Transport


logger = logging.getLogger(__name__)


def build_hooks(config: MonitorConfig) -> CompositeHooks:
    """
    Build the hook set described by the configuration.

    Failover selection is always active so path changes are logged even
    when no command is configured; the webhook is added only with a URL.
    """
    hooks: List[UpdateHooks] = [
        FailoverHooks(
            selector=PathSelector(hysteresis=config.failover_hysteresis),
            command=config.failover_command,
            shutdown_command=config.failover_shutdown_command
        )
    ]

    if config.webhook_url:
        hooks.append(WebhookHooks(
            url=config.webhook_url,
            timeout=config.webhook_timeout,
            retry_attempts=config.webhook_retry_attempts,
            retry_backoff=config.webhook_retry_backoff,
            each_probe=config.webhook_each_probe
        ))

    return CompositeHooks(hooks)


class Daemon:
    """
    Main daemon coordinator.

    Owns the engine, calls the periodic and shutdown hooks and serves the
    control API when enabled.

    Attributes:
        config: Monitor configuration
        hooks: Hooks receiving every update
        engine: Probe engine
    """

    def __init__(
        self,
        config: MonitorConfig,
        hooks: Optional[UpdateHooks] = None,
        transport_factory: TransportFactory = Ping3Transport
    ):
        """
        Initialize daemon. Resolves every configured probe.

        Args:
            config: MonitorConfig object with all settings
            hooks: Hook set to use instead of the one built from config
            transport_factory: Echo transport factory for the engine

        Raises:
            ProbeValidationError: If any configured probe cannot be resolved
        """
        self.config = config
        self.hooks = hooks if hooks is not None else build_hooks(config)

        self.engine = Engine(
            config.probes,
            period=config.probe_period,
            window_seconds=config.window_seconds,
            privileged=config.privileged,
            hooks=self.hooks,
            transport_factory=transport_factory
        )

        # Thread control
        self.running = False
        self._shutdown = threading.Event()
        self.update_thread: Optional[threading.Thread] = None
        self.api_server: Optional[uvicorn.Server] = None
        self.api_thread: Optional[threading.Thread] = None

        logger.info(f"Daemon initialized with {len(config.probes)} probes")

    def _update_loop(self) -> None:
        """
        Periodic update thread main loop.

        Hands a snapshot to on_periodic_update every update interval.
        """
        logger.info("Update thread started")

        while not self._shutdown.wait(self.config.update_interval):
            try:
                snapshot = self.engine.stats()
            except EngineNotRunning:
                logger.warning("Engine stopped, ending update loop")
                break

            try:
                self.hooks.on_periodic_update(snapshot)
            except Exception as e:
                logger.error(f"on_periodic_update hook failed: {e}", exc_info=True)

        logger.info("Update thread stopped")

    def _start_api(self) -> None:
        api.bind_engine(self.engine)
        server_config = uvicorn.Config(
            api.app,
            host=self.config.api_listen_address,
            port=self.config.api_port,
            log_level="warning"
        )
        self.api_server = uvicorn.Server(server_config)
        self.api_thread = threading.Thread(
            target=self.api_server.run,
            name="ApiThread",
            daemon=True
        )
        self.api_thread.start()
        logger.info(f"Control API listening on "
                    f"{self.config.api_listen_address}:{self.config.api_port}")

    def start(self) -> None:
        """
        Start the daemon.

        Starts the engine, the update thread and the API server.
        """
        if self.running:
            logger.warning("Daemon already running")
            return

        logger.info("Starting daemon")
        self.running = True
        self._shutdown.clear()

        self.engine.start()

        if self.config.api_enabled:
            self._start_api()

        self.update_thread = threading.Thread(
            target=self._update_loop,
            name="UpdateThread",
            daemon=True
        )
        self.update_thread.start()

        logger.info("Daemon started successfully")

    def request_shutdown(self, *args) -> None:
        """Ask run() to return. Usable as a signal handler."""
        self._shutdown.set()

    def stop(self) -> None:
        """
        Stop the daemon.

        Calls on_shutdown with the final statistics, then drains the engine.
        """
        if not self.running:
            logger.warning("Daemon not running")
            return

        logger.info("Stopping daemon")
        self.running = False
        self._shutdown.set()

        if self.update_thread and self.update_thread.is_alive():
            self.update_thread.join(timeout=10)

        try:
            snapshot = self.engine.stats()
        except EngineNotRunning:
            snapshot = {}

        try:
            self.hooks.on_shutdown(snapshot)
        except Exception as e:
            logger.error(f"on_shutdown hook failed: {e}", exc_info=True)

        self.engine.stop()

        if self.api_server is not None:
            self.api_server.should_exit = True
            if self.api_thread and self.api_thread.is_alive():
                self.api_thread.join(timeout=10)
            api.bind_engine(None)

        logger.info("Daemon stopped")

    def run(self) -> None:
        """
        Run the daemon (blocking).

        Starts the daemon and blocks until SIGINT or SIGTERM.
        """
        signal.signal(signal.SIGTERM, self.request_shutdown)
        self.start()

        try:
            while not self._shutdown.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        finally:
            self.stop()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Packet loss monitor with failover hooks")
    parser.add_argument("-c", "--config", default="config.yaml",
                        help="Path to YAML configuration file")
    parser.add_argument("--log-level", default=None,
                        help="Override the configured log level")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """
    Main entry point for the daemon.
    """
    args = parse_args(argv)

    try:
        config = MonitorConfig.from_file(args.config)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    # Configure logging
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        daemon = Daemon(config)
    except ProbeValidationError as e:
        logger.error(f"Invalid probe configuration: {e}")
        sys.exit(1)

    daemon.run()


if __name__ == "__main__":
    main()
