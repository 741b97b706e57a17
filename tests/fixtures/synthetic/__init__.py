"""Synthetic data fixtures package for testing."""

from __future__ import annotations

from . import vis_fixtures

__all__ = [
    "vis_fixtures",
]
