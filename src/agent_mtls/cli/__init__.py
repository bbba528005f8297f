"""Command line interface for agent-mtls."""
