"""Tests for haproxy.cfg rendering."""

import pytest

from lxc_cluster_infra.exceptions import ConfigError
from lxc_cluster_infra.loadbalancer.backends import BackendServer, BackendView
from lxc_cluster_infra.loadbalancer.haproxy_config import hostport, render_haproxy_config, render_template

VIEW = BackendView(
    frontend_port=6443,
    backend_port=6443,
    servers=(
        BackendServer("c1-cp-b", "10.0.0.2"),
        BackendServer("c1-cp-a", "10.0.0.1"),
    ),
)


class TestHostPort:
    @pytest.mark.parametrize("address, expected", [
        ("10.0.0.1", "10.0.0.1:6443"),
        ("fd42::1", "[fd42::1]:6443"),
        ("[fd42::1]", "[fd42::1]:6443"),
        ("cp.example.com", "cp.example.com:6443"),
    ])
    def test_hostport(self, address, expected):
        assert hostport(address, 6443) == expected


class TestRenderHaproxyConfig:
    def test_default_template(self):
        config = render_haproxy_config(VIEW).decode()

        assert "bind *:6443" in config
        assert "mode tcp" in config
        lines = [line.strip() for line in config.splitlines() if line.strip().startswith("server ")]
        assert lines == [
            "server c1-cp-a 10.0.0.1:6443 weight 100 check check-ssl verify none",
            "server c1-cp-b 10.0.0.2:6443 weight 100 check check-ssl verify none",
        ]
        assert config.endswith("\n")

    def test_is_deterministic(self):
        reordered = BackendView(servers=tuple(reversed(VIEW.servers)))
        assert render_haproxy_config(VIEW) == render_haproxy_config(reordered)

    def test_no_servers(self):
        config = render_haproxy_config(BackendView()).decode()
        assert "backend kube-apiservers" in config
        assert "server " not in config

    def test_ipv6_backend(self):
        view = BackendView(backend_port=6444, servers=(BackendServer("cp", "fd42::5"),))
        assert "server cp [fd42::5]:6444 weight 100" in render_haproxy_config(view).decode()

    def test_custom_template(self):
        template = (
            "listen api :{{ frontend_port }}\n"
            "{% for server in servers %}\n"
            "  server {{ server.name }} {{ server.address | hostport(backend_port) }}\n"
            "{% endfor %}\n"
        )
        config = render_haproxy_config(VIEW, template).decode()
        assert config == "listen api :6443\n  server c1-cp-a 10.0.0.1:6443\n  server c1-cp-b 10.0.0.2:6443\n"

    def test_unknown_variable_is_a_config_error(self):
        with pytest.raises(ConfigError, match="failed to render template"):
            render_haproxy_config(VIEW, "bind *:{{ listen_port }}\n")

    def test_syntax_error_is_a_config_error(self):
        with pytest.raises(ConfigError):
            render_template(None, {}, source="{% for x in %}")
