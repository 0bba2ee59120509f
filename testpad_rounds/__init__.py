"""Testpad test rounds: folder duplication and tester progress aggregation."""

__version__ = "0.1.0"
