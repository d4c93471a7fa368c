"""Coordinator: the master-side RPC endpoint for worker processes.

Served by a single-threaded werkzeug server bound to an ephemeral loopback
port. Requests are handled one at a time in arrival order, which serializes
every mutation of the master's host configuration.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any, List, Optional

from flask import Flask, Response, request as flask_request
from werkzeug.exceptions import NotFound
from werkzeug.serving import BaseWSGIServer, make_server

from ..exceptions import RPCError
from ..task import Context, context_stack

if TYPE_CHECKING:
    from ..deployer import Deployer

logger = logging.getLogger(__name__)

# Request logging is ours; keep werkzeug quiet.
logging.getLogger("werkzeug").setLevel(logging.WARNING)


class Coordinator:
    """Exposes ``/load``, ``/save`` and ``/proxy`` for one deployment run."""

    def __init__(self, deployer: "Deployer", *, bind: str = "127.0.0.1", port: int = 0) -> None:
        self.deployer = deployer
        self.bind = bind
        self._requested_port = port
        self.app = self._create_app()
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Coordinator is not running")
        return self._server.server_port

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self) -> int:
        self._server = make_server(self.bind, self._requested_port, self.app, threaded=False)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="fleet-deployer-coordinator",
            daemon=True,
        )
        self._thread.start()
        logger.info("📡 Coordinator listening on %s:%d", self.bind, self.port)
        return self.port

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join()
        self._server.server_close()
        self._server = None
        self._thread = None
        logger.debug("Coordinator stopped")

    def __enter__(self) -> "Coordinator":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _create_app(self) -> Flask:
        app = Flask("fleet_deployer.coordinator")

        @app.route("/", defaults={"path": ""}, methods=["GET", "POST"])
        @app.route("/<path:path>", methods=["GET", "POST"])
        def dispatch(path: str) -> Response:
            try:
                return self.router("/" + path, flask_request.get_data(as_text=True))
            except RPCError as exc:
                return Response(json.dumps(exc.to_payload()), status=500, mimetype="application/json")
            except NotFound as exc:
                return Response(f"Master error: {exc.description}", status=404, mimetype="text/plain")
            except Exception as exc:
                logger.exception("Coordinator request %s failed", path)
                return Response(f"Master error: {exc}", status=500, mimetype="text/plain")

        return app

    def router(self, path: str, body: str) -> Response:
        if path not in ("/load", "/save", "/proxy"):
            raise NotFound(f"Server path not found: {path}")

        payload = json.loads(body or "null")
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object")
        host = self.deployer.get_host(payload["host"])

        if path == "/load":
            return self._json(host.config.persist())

        if path == "/save":
            config = payload["config"]
            if not isinstance(config, dict):
                raise ValueError("`config` must be a JSON object")
            host.config.update(config)
            return self._json(True)

        return self._json(self.proxy(host.alias, payload["func"], payload.get("arguments", [])))

    def proxy(self, alias: str, func: str, arguments: List[Any]) -> Any:
        """Run registered function ``func`` as if locally on ``alias``."""
        host = self.deployer.get_host(alias)
        function = self.deployer.functions.get(func)
        if not isinstance(arguments, list):
            raise RPCError("`arguments` must be a list", kind="BadRequest")

        try:
            with context_stack().scoped(Context(host)):
                result = function(*arguments)
        except Exception as exc:
            logger.warning("Proxied call %s on %s failed: %s", func, alias, exc)
            raise RPCError(str(exc), kind=type(exc).__name__) from exc

        try:
            json.dumps(result)
        except (TypeError, ValueError) as exc:
            raise RPCError(f"Result of `{func}` is not JSON serializable", kind="SerializationError") from exc
        return result

    @staticmethod
    def _json(value: Any) -> Response:
        return Response(json.dumps(value), status=200, mimetype="application/json")
