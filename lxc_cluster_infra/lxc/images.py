"""Image references and their resolution against a server implementation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..exceptions import ConfigError, TerminalError
from .server_info import INCUS, LXD

# Image server protocols
SIMPLESTREAMS = "simplestreams"
OCI = "oci"
INCUS_PROTOCOL = "incus"

# Hosted release catalog of pre-built node images
DEFAULT_SIMPLESTREAMS_SERVER = "https://d14dnvi2l3tc5t.cloudfront.net"

DEFAULT_OCI_REGISTRY = "docker.io"


@dataclass(frozen=True)
class Image:
    """A concrete image source."""

    protocol: str = ""
    server: str = ""
    alias: str = ""
    fingerprint: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.alias and not self.fingerprint

    def for_server(self, server_name: str) -> Image:
        return self

    def instance_source(self) -> dict[str, Any]:
        """The ``source`` object of an instance create request."""
        source: dict[str, Any] = {"type": "image"}
        if self.protocol:
            source["protocol"] = self.protocol
        if self.server:
            source["server"] = self.server
        if self.alias:
            source["alias"] = self.alias
        if self.fingerprint:
            source["fingerprint"] = self.fingerprint
        return source

    def __str__(self) -> str:
        ref = self.alias or self.fingerprint
        return f"{self.server}/{ref}" if self.server else ref


@dataclass(frozen=True)
class CapnImage:
    """An image from the hosted release catalog, e.g. ``CapnImage("kubeadm/v1.33.0")``."""

    name: str

    def for_server(self, server_name: str) -> Image:
        if server_name not in (INCUS, LXD):
            raise TerminalError(f"image {self.name!r} is not available for server {server_name!r}")
        return Image(protocol=SIMPLESTREAMS, server=DEFAULT_SIMPLESTREAMS_SERVER, alias=self.name)

    def __str__(self) -> str:
        return f"capn:{self.name}"


@dataclass(frozen=True)
class KindestNodeImage:
    """A ``kindest/node`` image by Kubernetes version.

    Incus pulls it straight from the OCI registry; LXD has no OCI support, so
    the release catalog re-publishes it as ``kindest/<version>``.
    """

    version: str

    def for_server(self, server_name: str) -> Image:
        if server_name == INCUS:
            return Image(protocol=OCI, server=f"https://{DEFAULT_OCI_REGISTRY}", alias=f"kindest/node:{self.version}")
        if server_name == LXD:
            return CapnImage(f"kindest/{self.version}").for_server(server_name)
        raise TerminalError(f"kindest/node image is not available for server {server_name!r}")

    def __str__(self) -> str:
        return f"kindest/node:{self.version}"


@dataclass(frozen=True)
class OCIImage:
    """A parsed OCI image reference: ``[registry/]repository[:tag][@digest]``."""

    registry: str
    repository: str
    tag: str = ""
    digest: str = ""

    @property
    def server(self) -> str:
        return f"https://{self.registry}"

    @property
    def alias(self) -> str:
        """The reference without its registry, as the server expects it."""
        alias = self.repository
        if self.tag:
            alias += f":{self.tag}"
        if self.digest:
            alias += f"@{self.digest}"
        return alias

    def to_image(self) -> Image:
        return Image(protocol=OCI, server=self.server, alias=self.alias)


def parse_oci_image(ref: str) -> OCIImage:
    """Parse an OCI image reference, defaulting to the Docker Hub registry."""
    if not ref or any(c.isspace() for c in ref):
        raise ConfigError(f"invalid OCI image reference {ref!r}")

    rest, _, digest = ref.partition("@")
    registry = DEFAULT_OCI_REGISTRY
    first, sep, remainder = rest.partition("/")
    # A registry host has a dot or port, or is "localhost"
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, rest = first, remainder
    if registry == "index.docker.io":
        registry = DEFAULT_OCI_REGISTRY

    repository, tag = rest, ""
    name_start = rest.rfind("/") + 1
    if ":" in rest[name_start:]:
        repository, _, tag = rest.rpartition(":")

    if not repository or (digest and not digest.startswith("sha256:")):
        raise ConfigError(f"invalid OCI image reference {ref!r}")
    if registry == DEFAULT_OCI_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"

    return OCIImage(registry=registry, repository=repository, tag=tag, digest=digest)


def strip_tag_when_pinned(alias: str) -> str:
    """Turn ``IMG[:TAG]@sha256:HASH`` into ``IMG@sha256:HASH``; other aliases pass through."""
    image, sep, digest = alias.partition("@")
    if not sep:
        return alias
    name_start = image.rfind("/") + 1
    if ":" in image[name_start:]:
        image = image.rpartition(":")[0]
    return f"{image}@{digest}"
