"""Functions available to task bodies.

Every function resolves its host from the current context of the calling
execution unit; outside a host context, configuration calls fall back to the
global settings.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .deployer import Deployer
from .exceptions import RemoteExecutionError
from .host import Configuration, Host
from .local import LocalSession
from .task import Context, context_stack, current_context, has_context

logger = logging.getLogger(__name__)

_MISSING = object()
_DEFAULT_TIMEOUT = object()


def current_host() -> Host:
    return current_context().host


def _config() -> Configuration:
    if has_context():
        return current_host().config
    return Deployer.current().config


def get(name: str, default: Any = _MISSING) -> Any:
    if default is _MISSING:
        return _config().get(name)
    return _config().get(name, default)


def set(name: str, value: Any) -> None:
    _config().set(name, value)


def add(name: str, values: Any) -> None:
    _config().add(name, values)


def has(name: str) -> bool:
    return _config().has(name)


def parse(value: Any) -> Any:
    return _config().parse(value)


def cd(path: str) -> None:
    """Run subsequent commands of this host inside ``path``."""
    set("working_path", parse(path))


@contextmanager
def within(path: str) -> Iterator[None]:
    previous = get("working_path", None)
    cd(path)
    try:
        yield
    finally:
        set("working_path", previous)


def run(
    command: str,
    *,
    env: Optional[Dict[str, str]] = None,
    timeout: Any = _DEFAULT_TIMEOUT,
) -> str:
    """Run ``command`` on the current host and return its stdout.

    Raises:
        RemoteExecutionError: on a non-zero exit status or a timeout.
    """
    host = current_host()
    command = parse(command)
    working_path = get("working_path", None)
    if working_path:
        command = f"cd {working_path} && ({command})"
    merged_env = {**(get("env", None) or {}), **(env or {})}
    if timeout is _DEFAULT_TIMEOUT:
        timeout = get("default_timeout", None)

    current_context().output.debug("$ %s", command)
    result = host.session().run(command, env=merged_env or None, timeout=timeout)
    if not result.ok:
        raise RemoteExecutionError(
            host.alias,
            command,
            result.exit_status,
            output=result.stdout,
            error_output=result.stderr,
            timed_out=result.timed_out,
        )
    return result.stdout


def run_locally(
    command: str,
    *,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[int] = None,
) -> str:
    """Run ``command`` on the controlling machine."""
    command = parse(command)
    result = LocalSession().run(command, env=env, timeout=timeout)
    if not result.ok:
        raise RemoteExecutionError(
            "local",
            command,
            result.exit_status,
            output=result.stdout,
            error_output=result.stderr,
            timed_out=result.timed_out,
        )
    return result.stdout


def test(command: str) -> bool:
    """Return whether ``command`` succeeds on the current host."""
    return run(f"if {command}; then echo +true; fi") == "+true"


def info(message: str) -> None:
    _output().info(parse(message))


def warning(message: str) -> None:
    _output().warning(parse(message))


def on_host(alias: str, name: str, *arguments: Any) -> Any:
    """Call registered function ``name`` in the context of another host.

    Inside a worker process the call goes through the coordinator, so it sees
    the master's authoritative state for ``alias``.
    """
    deployer = Deployer.current()
    if deployer.client is not None:
        return deployer.client.proxy(alias, name, list(arguments))
    host = deployer.get_host(alias)
    with context_stack().scoped(Context(host)):
        return deployer.functions.call(name, arguments)


def invoke(task_name: str) -> None:
    """Run another task, with its hooks, on the current host."""
    deployer = Deployer.current()
    for task in deployer.planner.expand(task_name):
        task.run()


def _output():
    if has_context():
        return current_context().output
    return logger
