"""Rewind API: REST control plane for the snapshot lifecycle orchestrator."""

__version__ = "0.4.0"
