"""Deployment recipes."""

from .common import register
from .lifecycle import STATE_KEY, ReleaseState

__all__ = ["register", "ReleaseState", "STATE_KEY"]
