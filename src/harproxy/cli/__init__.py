"""Command line interface for harproxy."""
