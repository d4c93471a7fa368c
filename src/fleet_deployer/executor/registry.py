"""Named functions that may be invoked through the coordinator proxy."""

from __future__ import annotations

from typing import Any, Callable, Dict, Sequence

from ..exceptions import RPCError


class FunctionRegistry:
    """Stable identifier -> callable mapping, populated at startup."""

    def __init__(self) -> None:
        self._functions: Dict[str, Callable[..., Any]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        if not callable(fn):
            raise TypeError(f"Function `{name}` is not callable")
        self._functions[name] = fn

    def get(self, name: str) -> Callable[..., Any]:
        try:
            return self._functions[name]
        except KeyError:
            raise RPCError(f"Function `{name}` is not registered", kind="UnknownFunction") from None

    def call(self, name: str, arguments: Sequence[Any] = ()) -> Any:
        return self.get(name)(*arguments)
