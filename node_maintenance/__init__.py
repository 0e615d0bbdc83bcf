"""Package update, reboot decision and kubelet remediation for RKE1 nodes."""

__version__ = "0.1.0"
