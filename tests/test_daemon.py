"""Tests for the reconfigure loop."""

from unittest.mock import MagicMock, patch

import pytest

from lxc_cluster_infra.config import AppConfig, ClusterConfig, PollingConfig
from lxc_cluster_infra.daemon import Daemon
from lxc_cluster_infra.exceptions import LoadBalancerConflict, LXCAPIError, OperationCancelled


@pytest.fixture
def config():
    return AppConfig(
        cluster=ClusterConfig(name="c1"),
        polling=PollingConfig(interval_seconds=30, jitter_seconds=0, backoff_base_seconds=5, max_backoff_seconds=40),
    )


def _daemon(config, manager):
    daemon = Daemon(config, manager=manager)
    daemon._install_signal_handlers = MagicMock()
    return daemon


class TestRunOnce:
    def test_reconfigures_with_cluster_context(self, config):
        manager = MagicMock()
        _daemon(config, manager).run_once()

        ctx = manager.reconfigure.call_args[0][0]
        assert ctx.log.extra == {"cluster": "c1", "namespace": "default"}


class TestRun:
    def test_stops_on_terminal_error(self, config):
        manager = MagicMock()
        manager.reconfigure.side_effect = LoadBalancerConflict("conflict")
        daemon = _daemon(config, manager)

        with pytest.raises(LoadBalancerConflict):
            daemon.run()
        assert manager.reconfigure.call_count == 1

    def test_transient_errors_back_off(self, config):
        manager = MagicMock()
        manager.reconfigure.side_effect = [LXCAPIError("HTTP 500"), LXCAPIError("HTTP 500"), None]
        daemon = _daemon(config, manager)
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                daemon.stop()

        with patch.object(daemon, "_interruptible_sleep", side_effect=sleep):
            daemon.run()

        assert manager.reconfigure.call_count == 3
        assert sleeps[0] == pytest.approx(5, abs=0.5)
        assert sleeps[1] == pytest.approx(10, abs=0.5)
        assert sleeps[2] == pytest.approx(30, abs=0.5)
        assert daemon._consecutive_failures == 0

    def test_cancellation_ends_loop(self, config):
        manager = MagicMock()
        manager.reconfigure.side_effect = OperationCancelled("context cancelled")
        _daemon(config, manager).run()
        assert manager.reconfigure.call_count == 1

    def test_stop_cancels_context(self, config):
        daemon = _daemon(config, MagicMock())
        daemon.stop()
        assert daemon.context.cancelled


class TestCalculateSleep:
    def test_backoff_is_capped(self, config):
        daemon = _daemon(config, MagicMock())
        daemon._consecutive_failures = 10
        assert daemon._calculate_sleep(0) == 40

    def test_subtracts_elapsed(self, config):
        daemon = _daemon(config, MagicMock())
        assert daemon._calculate_sleep(12) == 18
        assert daemon._calculate_sleep(45) == 0
