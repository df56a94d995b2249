"""Orchestration services used by the API routers and the CLI."""
