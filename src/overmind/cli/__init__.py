"""Command-line interface for Overmind."""
