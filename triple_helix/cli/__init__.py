"""Command line interface for Triple-Helix (entry point: triple_helix.cli.main:main)."""
