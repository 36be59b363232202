"""Mutual-availability scheduling and hangout request lifecycle."""

__version__ = "0.1.0"
