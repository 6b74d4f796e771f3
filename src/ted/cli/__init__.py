"""Command line interface for ted."""
