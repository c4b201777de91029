"""Tests for cluster labels and control plane backend discovery."""

import responses
from lxd_api import BASE, instance, sync

from lxc_cluster_infra.loadbalancer.backends import (
    ROLE_CONTROL_PLANE,
    ROLE_LOAD_BALANCER,
    BackendServer,
    ClusterIdentity,
    get_backend_view,
)

CLUSTER = ClusterIdentity("c1", "default")


def _control_plane(name, address=None, cluster=CLUSTER):
    return instance(name, cluster.labels(ROLE_CONTROL_PLANE), address)


class TestClusterIdentity:
    def test_labels(self):
        assert CLUSTER.labels() == {"user.cluster-name": "c1", "user.cluster-namespace": "default"}
        assert CLUSTER.labels(ROLE_LOAD_BALANCER)["user.cluster-role"] == "loadbalancer"

    def test_owns(self):
        assert CLUSTER.owns({"user.cluster-name": "c1", "user.cluster-namespace": "default", "other": "x"})
        assert not CLUSTER.owns({"user.cluster-name": "c1", "user.cluster-namespace": "prod"})
        assert not CLUSTER.owns(None)

    def test_load_balancer_name_depends_on_namespace(self):
        a = ClusterIdentity("c1", "default").load_balancer_instance_name()
        b = ClusterIdentity("c1", "prod").load_balancer_instance_name()
        assert a != b
        assert a.startswith("c1-") and a.endswith("-lb")
        assert len(a) == len("c1-") + 5 + len("-lb")


class TestGetBackendView:
    @responses.activate
    def test_sorted_by_name_with_defaults(self, lifecycle, ctx):
        responses.add(responses.GET, f"{BASE}/1.0/instances", json=sync([
            _control_plane("c1-cp-c", "10.0.0.3"),
            _control_plane("c1-cp-a", "10.0.0.1"),
            _control_plane("c1-cp-b", "10.0.0.2"),
        ]))

        view = get_backend_view(ctx, lifecycle, CLUSTER)
        assert view.servers == (
            BackendServer("c1-cp-a", "10.0.0.1", 100),
            BackendServer("c1-cp-b", "10.0.0.2", 100),
            BackendServer("c1-cp-c", "10.0.0.3", 100),
        )
        assert (view.frontend_port, view.backend_port) == (6443, 6443)

    @responses.activate
    def test_follows_membership_changes(self, lifecycle, ctx):
        responses.add(responses.GET, f"{BASE}/1.0/instances", json=sync([
            _control_plane("c1-cp-a", "10.0.0.1"),
            _control_plane("c1-cp-b", "10.0.0.2"),
            _control_plane("c1-cp-c", "10.0.0.3"),
        ]))
        responses.add(responses.GET, f"{BASE}/1.0/instances", json=sync([
            _control_plane("c1-cp-a", "10.0.0.1"),
            _control_plane("c1-cp-c", "10.0.0.3"),
        ]))

        assert len(get_backend_view(ctx, lifecycle, CLUSTER).servers) == 3
        assert get_backend_view(ctx, lifecycle, CLUSTER).addresses == ["10.0.0.1", "10.0.0.3"]

    @responses.activate
    def test_skips_other_clusters_roles_and_addressless(self, lifecycle, ctx):
        responses.add(responses.GET, f"{BASE}/1.0/instances", json=sync([
            _control_plane("c1-cp-a", "10.0.0.1"),
            _control_plane("c1-cp-pending"),
            _control_plane("c2-cp-a", "10.0.1.1", cluster=ClusterIdentity("c2")),
            _control_plane("c1-cp-other-ns", "10.0.2.1", cluster=ClusterIdentity("c1", "prod")),
            instance("c1-worker", CLUSTER.labels("worker"), "10.0.0.9"),
            instance("c1-lb", CLUSTER.labels(ROLE_LOAD_BALANCER), "10.0.0.10"),
            instance("unlabeled", {}, "10.0.0.11"),
        ]))

        view = get_backend_view(ctx, lifecycle, CLUSTER, frontend_port=443, backend_port=6444)
        assert view.summary() == {"c1-cp-a": "10.0.0.1"}
        assert (view.frontend_port, view.backend_port) == (443, 6444)

    @responses.activate
    def test_empty(self, lifecycle, ctx):
        responses.add(responses.GET, f"{BASE}/1.0/instances", json=sync([]))
        assert get_backend_view(ctx, lifecycle, CLUSTER).servers == ()
