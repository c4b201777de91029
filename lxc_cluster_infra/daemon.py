"""Reconfigure loop with signal handling and exponential backoff."""

from __future__ import annotations

import logging
import random
import signal
import threading
import time
from types import FrameType

from .config import AppConfig
from .context import Context
from .exceptions import OperationCancelled, is_terminal_error
from .loadbalancer import ClusterIdentity, Manager, manager_for_cluster
from .lxc.client import LXCClient

logger = logging.getLogger(__name__)


def build_manager(config: AppConfig, client: LXCClient | None = None) -> Manager:
    """Connect to the server and return the Manager for the configured strategy."""
    if client is None:
        client = LXCClient.connect(config.lxc, operation_poll_interval=config.timeouts.operation_poll_interval)
    return manager_for_cluster(
        client,
        ClusterIdentity(config.cluster.name, config.cluster.namespace),
        config.load_balancer,
        config.cluster.control_plane_endpoint,
        config.timeouts,
    )


class Daemon:
    """Polling daemon: reconfigure the load balancer -> sleep, until shutdown or a terminal error."""

    def __init__(self, config: AppConfig, manager: Manager | None = None):
        self._config = config
        self._manager = manager or build_manager(config)
        self._cancel = threading.Event()
        self._ctx = Context(
            logging.getLogger("lxc_cluster_infra"),
            cancel_event=self._cancel,
            values={"cluster": config.cluster.name, "namespace": config.cluster.namespace},
        )
        self._consecutive_failures = 0

    @property
    def context(self) -> Context:
        return self._ctx

    def run_once(self) -> None:
        """Execute a single reconfigure cycle."""
        self._cycle()

    def run(self) -> None:
        """Run the polling loop until a shutdown signal.

        A terminal error stops the loop and is re-raised; retrying cannot fix it.
        """
        self._install_signal_handlers()
        logger.info("Daemon started, polling every %ds", self._config.polling.interval_seconds)

        while not self._cancel.is_set():
            cycle_start = time.monotonic()

            try:
                self._cycle()
                self._consecutive_failures = 0
            except OperationCancelled:
                break
            except Exception as exc:
                if is_terminal_error(exc):
                    logger.error("Terminal error, stopping: %s", exc)
                    raise
                self._consecutive_failures += 1
                logger.exception(
                    "Cycle failed (consecutive failures: %d)",
                    self._consecutive_failures,
                )

            elapsed = time.monotonic() - cycle_start
            sleep_time = self._calculate_sleep(elapsed)
            logger.debug("Sleeping %.1fs before next cycle", sleep_time)
            self._interruptible_sleep(sleep_time)

        logger.info("Daemon stopped")

    def stop(self) -> None:
        """Stop the loop and cancel any in-flight wait."""
        self._cancel.set()

    def _cycle(self) -> None:
        start = time.monotonic()

        self._manager.reconfigure(self._ctx)

        elapsed = time.monotonic() - start
        logger.info(
            "Cycle complete",
            extra={"elapsed_seconds": round(elapsed, 2), "cluster": self._config.cluster.name},
        )

    def _calculate_sleep(self, elapsed: float) -> float:
        """Determine how long to sleep, applying backoff and jitter."""
        base = self._config.polling.interval_seconds

        if self._consecutive_failures > 0:
            backoff = min(
                self._config.polling.backoff_base_seconds * (2 ** (self._consecutive_failures - 1)),
                self._config.polling.max_backoff_seconds,
            )
            base = backoff

        # Jitter
        jitter = random.uniform(0, self._config.polling.jitter_seconds)

        # Subtract elapsed time from interval
        sleep = max(0.0, base - elapsed + jitter)
        return sleep

    def _interruptible_sleep(self, seconds: float) -> None:
        """Sleep until the timeout elapses or a shutdown signal arrives."""
        self._cancel.wait(seconds)

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        self.stop()
