"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, Tuple

_LOGGING_CONFIGURED = False


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
        )
        _LOGGING_CONFIGURED = True
    return logging.getLogger(name)


class HostLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the host alias."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['host']}] {msg}", kwargs


def host_logger(alias: str, name: str = "fleet_deployer.host") -> HostLoggerAdapter:
    return HostLoggerAdapter(logging.getLogger(name), {"host": alias})
