"""Tests for configuration loading and validation."""

import pytest
import yaml

from lxc_cluster_infra.config import load_config, parse_config
from lxc_cluster_infra.exceptions import ConfigError, is_terminal_error

MINIMAL = {"cluster": {"name": "c1", "control_plane_endpoint": {"host": "10.0.0.100"}}}


def _write_config(tmp_path, data: dict) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    return str(path)


def _with(**sections):
    data = {"cluster": dict(MINIMAL["cluster"])}
    data.update(sections)
    return data


class TestLoadConfig:
    def test_minimal_valid_config(self, tmp_path):
        config = load_config(_write_config(tmp_path, MINIMAL))
        assert config.cluster.name == "c1"
        assert config.cluster.namespace == "default"
        assert config.cluster.control_plane_endpoint.port == 6443
        assert config.lxc.server == "unix://"
        assert config.load_balancer.declared_strategies() == []
        assert config.timeouts.instance_create == 300
        assert config.polling.interval_seconds == 30

    def test_missing_file_raises(self):
        with pytest.raises(ConfigError, match="not found"):
            load_config("/nonexistent/file.yaml")

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("just a string")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(path))

    def test_config_errors_are_terminal(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_config(_write_config(tmp_path, {"cluster": {}}))
        assert is_terminal_error(exc_info.value)

    def test_full_config(self, tmp_path):
        data = {
            "lxc": {
                "server": "https://incus.example:8443",
                "client_crt": "/etc/capn/client.crt",
                "client_key": "/etc/capn/client.key",
                "server_crt": "/etc/capn/server.crt",
                "project": "capn",
            },
            "cluster": {"name": "c1", "namespace": "prod"},
            "load_balancer": {
                "lxc": {
                    "flavor": "c1-m1",
                    "profiles": ["default", "lb"],
                    "image": {"name": "debian/12", "server": "https://images.linuxcontainers.org"},
                    "target": "@lb-group",
                },
                "frontend_port": 443,
            },
            "timeouts": {"instance_create": 600, "operation_poll_interval": 0.5},
            "polling": {"interval_seconds": 60, "jitter_seconds": 10},
            "logging": {"level": "DEBUG", "format": "text"},
        }
        config = load_config(_write_config(tmp_path, data))
        assert config.lxc.project == "capn"
        assert config.load_balancer.declared_strategies() == ["lxc"]
        assert config.load_balancer.lxc.profiles == ["default", "lb"]
        assert config.load_balancer.lxc.image.name == "debian/12"
        assert config.load_balancer.lxc.target == "@lb-group"
        assert config.load_balancer.frontend_port == 443
        assert config.load_balancer.backend_port == 6443
        assert config.timeouts.instance_create == 600
        assert config.timeouts.instance_start == 120
        assert config.logging.format == "text"

    def test_dashed_keys(self):
        config = parse_config(_with(load_balancer={"kube-vip": {"interface": "eth0"}}))
        assert config.load_balancer.kube_vip.interface == "eth0"

    def test_unknown_keys_ignored(self):
        config = parse_config(_with(extra={"a": 1}))
        assert config.cluster.name == "c1"

    def test_env_var_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_CLUSTER_NAME", "from-env")
        data = {"cluster": {"name": "${TEST_CLUSTER_NAME}"}, "load_balancer": {"oci": {}}}
        config = load_config(_write_config(tmp_path, data))
        assert config.cluster.name == "from-env"

    def test_env_var_missing_raises(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SURELY_MISSING_VAR", raising=False)
        data = _with(lxc={"project": "${SURELY_MISSING_VAR}"})
        with pytest.raises(ConfigError, match="SURELY_MISSING_VAR"):
            load_config(_write_config(tmp_path, data))


class TestValidation:
    def test_missing_cluster_name(self):
        with pytest.raises(ConfigError, match="cluster.name"):
            parse_config({"cluster": {"control_plane_endpoint": {"host": "10.0.0.100"}}})

    def test_one_strategy_only(self):
        with pytest.raises(ConfigError, match="Only one load_balancer strategy"):
            parse_config(_with(load_balancer={"lxc": {}, "ovn": {"network_name": "ovn0"}}))

    def test_ovn_requires_network_name(self):
        with pytest.raises(ConfigError, match="network_name"):
            parse_config(_with(load_balancer={"ovn": {}}))

    @pytest.mark.parametrize("load_balancer", [{}, {"ovn": {"network_name": "ovn0"}}, {"kube_vip": {}}, {"external": {}}])
    def test_endpoint_required(self, load_balancer):
        with pytest.raises(ConfigError, match="control_plane_endpoint.host"):
            parse_config({"cluster": {"name": "c1"}, "load_balancer": load_balancer})

    @pytest.mark.parametrize("strategy", ["lxc", "oci"])
    def test_instance_strategies_do_not_need_endpoint(self, strategy):
        config = parse_config({"cluster": {"name": "c1"}, "load_balancer": {strategy: {}}})
        assert config.load_balancer.declared_strategies() == [strategy]

    def test_https_requires_client_certificate(self):
        with pytest.raises(ConfigError, match="client_crt"):
            parse_config(_with(lxc={"server": "https://incus.example:8443"}))

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigError, match="is not unix:// or https://"):
            parse_config(_with(lxc={"server": "tcp://incus.example:8443"}))

    def test_timeouts_must_be_positive(self):
        with pytest.raises(ConfigError, match="timeouts.instance_stop"):
            parse_config(_with(timeouts={"instance_stop": 0}))

    def test_polling_interval_too_low(self):
        with pytest.raises(ConfigError, match="interval_seconds"):
            parse_config(_with(polling={"interval_seconds": 2}))

    def test_invalid_logging_format(self):
        with pytest.raises(ConfigError, match="logging.format"):
            parse_config(_with(logging={"format": "xml"}))
