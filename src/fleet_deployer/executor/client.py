"""Worker-side client for the coordinator."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from ..exceptions import RPCError

logger = logging.getLogger(__name__)


class CoordinatorClient:
    """Talks to the master's coordinator over loopback HTTP."""

    def __init__(
        self,
        port: int,
        *,
        host: str = "127.0.0.1",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def load(self, host: str) -> Dict[str, Dict[str, Any]]:
        return self._post("/load", {"host": host})

    def save(self, host: str, config: Dict[str, Any]) -> bool:
        return bool(self._post("/save", {"host": host, "config": config}))

    def proxy(self, host: str, func: str, arguments: List[Any]) -> Any:
        return self._post("/proxy", {"host": host, "func": func, "arguments": arguments})

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(
                url,
                data=json.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise RPCError(f"Coordinator call {path} timed out after {self.timeout}s", kind="Timeout") from exc
        except requests.RequestException as exc:
            raise RPCError(f"Coordinator unreachable at {url}: {exc}", kind="TransportError") from exc

        if response.status_code == 200:
            return response.json()

        content_type = response.headers.get("Content-Type", "")
        if content_type.startswith("application/json"):
            try:
                error = response.json().get("error", {})
            except ValueError:
                error = {}
            raise RPCError(
                error.get("message", response.text),
                kind=error.get("type", "RPCError"),
                status=response.status_code,
            )
        kind = "NotFound" if response.status_code == 404 else "MasterError"
        raise RPCError(response.text, kind=kind, status=response.status_code)
