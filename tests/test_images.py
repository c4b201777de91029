"""Tests for image resolution and OCI reference parsing."""

import pytest

from lxc_cluster_infra.exceptions import ConfigError, TerminalError
from lxc_cluster_infra.lxc.images import (
    DEFAULT_SIMPLESTREAMS_SERVER,
    CapnImage,
    Image,
    KindestNodeImage,
    parse_oci_image,
    strip_tag_when_pinned,
)


class TestImageFamilies:
    def test_literal_image_is_identity(self):
        image = Image(protocol="simplestreams", server="https://images.linuxcontainers.org", alias="debian/12")
        assert image.for_server("lxd") is image

    @pytest.mark.parametrize("server_name", ["incus", "lxd"])
    def test_capn_image(self, server_name):
        image = CapnImage("kubeadm/v1.33.0").for_server(server_name)
        assert image == Image(protocol="simplestreams", server=DEFAULT_SIMPLESTREAMS_SERVER, alias="kubeadm/v1.33.0")

    def test_capn_image_unknown_server(self):
        with pytest.raises(TerminalError):
            CapnImage("kubeadm/v1.33.0").for_server("unknown")

    def test_kindest_node_on_incus_is_oci(self):
        image = KindestNodeImage("v1.33.0").for_server("incus")
        assert image.protocol == "oci"
        assert image.server == "https://docker.io"
        assert image.alias == "kindest/node:v1.33.0"

    def test_kindest_node_on_lxd_uses_catalog(self):
        image = KindestNodeImage("v1.33.0").for_server("lxd")
        assert image.protocol == "simplestreams"
        assert image.alias == "kindest/v1.33.0"

    def test_instance_source_omits_empty_fields(self):
        assert Image(fingerprint="abc").instance_source() == {"type": "image", "fingerprint": "abc"}


class TestParseOCIImage:
    @pytest.mark.parametrize("ref, server, alias", [
        ("kindest/node:v1.33.0", "https://docker.io", "kindest/node:v1.33.0"),
        ("haproxy", "https://docker.io", "library/haproxy"),
        ("index.docker.io/library/haproxy:2.9", "https://docker.io", "library/haproxy:2.9"),
        (
            "ghcr.io/lxc/cluster-api-provider-incus/haproxy:v20230606-42a2262b",
            "https://ghcr.io",
            "lxc/cluster-api-provider-incus/haproxy:v20230606-42a2262b",
        ),
        ("localhost:5000/img@sha256:0123", "https://localhost:5000", "img@sha256:0123"),
    ])
    def test_server_and_alias(self, ref, server, alias):
        image = parse_oci_image(ref)
        assert image.server == server
        assert image.alias == alias

    def test_tag_and_digest(self):
        image = parse_oci_image("ghcr.io/org/img:v1@sha256:beef")
        assert image.tag == "v1"
        assert image.digest == "sha256:beef"
        assert image.to_image().protocol == "oci"

    @pytest.mark.parametrize("ref", ["", "has space", "img@md5:abc"])
    def test_invalid(self, ref):
        with pytest.raises(ConfigError):
            parse_oci_image(ref)


class TestStripTag:
    @pytest.mark.parametrize("alias, expected", [
        ("kindest/node:v1@sha256:abc", "kindest/node@sha256:abc"),
        ("kindest/node@sha256:abc", "kindest/node@sha256:abc"),
        ("kindest/node:v1", "kindest/node:v1"),
    ])
    def test_strip(self, alias, expected):
        assert strip_tag_when_pinned(alias) == expected
