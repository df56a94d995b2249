"""Core domain layer for the Rewind snapshot lifecycle orchestrator."""

__version__ = "0.4.0"
