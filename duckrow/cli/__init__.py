"""Command-line interface for duckrow."""
