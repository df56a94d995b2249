"""Command-line client for the Rewind API."""

__version__ = "0.4.0"
