"""Command-line interface for Dishcovery."""
