"""Tests for instance filters and address parsing."""

from lxd_api import instance, instance_state

from lxc_cluster_infra.lxc.filters import ListFilter, match_all, parse_host_addresses


class TestListFilter:
    def test_config_values_must_match(self):
        inst = instance("a", {"user.cluster-name": "c1", "user.cluster-role": "control-plane"})
        assert ListFilter.with_config({"user.cluster-name": "c1"}).matches(inst)
        assert not ListFilter.with_config({"user.cluster-name": "c2"}).matches(inst)

    def test_config_keys(self):
        inst = instance("a", {"user.cluster-name": "c1"})
        assert ListFilter.with_config_keys("user.cluster-name").matches(inst)
        assert not ListFilter.with_config_keys("user.cluster-role").matches(inst)

    def test_all_filters_must_match(self):
        inst = instance("a", {"user.cluster-name": "c1"})
        filters = [ListFilter.with_config({"user.cluster-name": "c1"}), ListFilter.with_config_keys("missing")]
        assert not match_all(inst, filters)
        assert match_all(inst, [])


class TestParseHostAddresses:
    def test_skips_loopback_and_link_local(self):
        state = instance_state("Running", addresses=("10.0.0.5", "fd42::5"))
        assert parse_host_addresses(state) == ["10.0.0.5", "fd42::5"]

    def test_empty(self):
        assert parse_host_addresses(None) == []
        assert parse_host_addresses(instance_state("Stopped")) == []
