"""Local execution for hosts that live on the controlling machine."""

from .session import LocalSession

__all__ = ["LocalSession"]
