"""Command-line interface for Sentinel."""
