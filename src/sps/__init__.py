"""Command-line interface for safe-py-supervisor."""
