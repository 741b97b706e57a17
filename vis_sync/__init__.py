"""Resilient synchronization of FIVB VIS tournaments and match schedules."""

__version__ = "0.1.0"
