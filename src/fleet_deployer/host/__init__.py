"""Hosts and their configuration."""

from .configuration import Configuration
from .host import Host, Localhost

__all__ = ["Configuration", "Host", "Localhost"]
