"""Instance provisioning and control plane load balancing on LXD/Incus."""

__version__ = "0.1.0"
