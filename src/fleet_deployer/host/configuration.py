"""Hierarchical host configuration with deferred values.

A host's configuration falls back to the global configuration. Values can be
callables: they are evaluated on first read, against whatever host context is
current at the time, and the result is memoized on the configuration the read
went through. Strings may reference other keys with ``{{key}}``.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, Iterator, Optional, Set, Tuple

from ..exceptions import ConfigurationError

_MISSING = object()
_PLACEHOLDER = re.compile(r"\{\{\s*([\w/:.\-]+)\s*\}\}")


def _json_safe(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


class Configuration:
    """Key/value store with a parent fallback and lazy, memoized values."""

    def __init__(self, parent: Optional["Configuration"] = None) -> None:
        self.parent = parent
        self._values: Dict[str, Any] = {}
        self._deferred: Dict[str, Callable[[], Any]] = {}
        # names whose value in _values is a memoized deferred result
        self._memoized: Set[str] = set()
        # names written since the last load()
        self._changed: Set[str] = set()

    def set(self, name: str, value: Any) -> None:
        if callable(value):
            self._deferred[name] = value
            self._values.pop(name, None)
        else:
            self._values[name] = value
            self._deferred.pop(name, None)
        self._memoized.discard(name)
        self._changed.add(name)

    def add(self, name: str, values: Any) -> None:
        """Merge a list or dict into an existing list or dict value."""
        if not self.has(name):
            self.set(name, values)
            return
        current = self.raw(name)
        if isinstance(current, list) and isinstance(values, list):
            self._values[name] = current + [item for item in values if item not in current]
        elif isinstance(current, dict) and isinstance(values, dict):
            self._values[name] = {**current, **values}
        else:
            raise ConfigurationError(f"Configuration parameter `{name}` isn't a list or dict.")
        self._memoized.discard(name)
        self._changed.add(name)

    def has(self, name: str) -> bool:
        if self.has_own(name):
            return True
        return self.parent is not None and self.parent.has(name)

    def has_own(self, name: str) -> bool:
        return name in self._values or name in self._deferred

    def invalidate(self, name: str) -> None:
        """Forget a memoized value so the deferred definition runs again."""
        if name in self._memoized:
            self._values.pop(name, None)
            self._memoized.discard(name)

    def get(self, name: str, default: Any = _MISSING) -> Any:
        if not self.has(name):
            if default is _MISSING:
                raise ConfigurationError(f'Config option "{name}" does not exist.')
            return default
        return self.parse(self.raw(name))

    def raw(self, name: str) -> Any:
        """Return the value without interpolation, evaluating it if deferred."""
        kind, value = self._lookup(name)
        if kind == "deferred":
            value = value()
            self._values[name] = value
            self._memoized.add(name)
            self._changed.add(name)
        return value

    def parse(self, value: Any, _seen: Tuple[str, ...] = ()) -> Any:
        if isinstance(value, str):
            def replace(match: "re.Match[str]") -> str:
                key = match.group(1)
                if key in _seen:
                    raise ConfigurationError(f"Circular reference to `{key}` in configuration.")
                if not self.has(key):
                    raise ConfigurationError(f'Config option "{key}" does not exist.')
                return str(self.parse(self.raw(key), _seen + (key,)))

            return _PLACEHOLDER.sub(replace, value)
        if isinstance(value, list):
            return [self.parse(item, _seen) for item in value]
        if isinstance(value, dict):
            return {key: self.parse(item, _seen) for key, item in value.items()}
        return value

    def keys(self) -> Iterator[str]:
        seen = set()
        if self.parent is not None:
            for key in self.parent.keys():
                seen.add(key)
                yield key
        for key in list(self._values) + list(self._deferred):
            if key not in seen:
                seen.add(key)
                yield key

    def persist(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot every key, tagged as a final value or a placeholder."""
        snapshot: Dict[str, Dict[str, Any]] = {}
        for name in self.keys():
            kind, value = self._lookup(name)
            if kind == "value" and _json_safe(value):
                snapshot[name] = {"resolved": True, "value": value}
            else:
                snapshot[name] = {"resolved": False}
        return snapshot

    def changed_values(self) -> Dict[str, Any]:
        """Serializable values written here since the last ``load()``.

        Values that arrived through the snapshot are not included, so a
        snapshot of inherited settings never turns into host overrides.
        """
        return {
            name: self._values[name]
            for name in self._changed
            if name in self._values and _json_safe(self._values[name])
        }

    def update(self, values: Dict[str, Any]) -> None:
        """Merge plain values, overwriting existing keys."""
        for name, value in values.items():
            self._store_resolved(name, value)
            self._changed.add(name)

    def load(self, snapshot: Dict[str, Dict[str, Any]]) -> None:
        """Apply a ``persist()`` snapshot; placeholders keep the local definition."""
        for name, entry in snapshot.items():
            if entry.get("resolved"):
                self._store_resolved(name, entry.get("value"))
        self._changed.clear()

    def _store_resolved(self, name: str, value: Any) -> None:
        self._values[name] = value
        if self._is_deferred(name):
            self._memoized.add(name)
        else:
            self._memoized.discard(name)

    def _is_deferred(self, name: str) -> bool:
        if name in self._deferred:
            return True
        return self.parent is not None and self.parent._is_deferred(name)

    def _lookup(self, name: str) -> Tuple[str, Any]:
        if name in self._values:
            return "value", self._values[name]
        if name in self._deferred:
            return "deferred", self._deferred[name]
        if self.parent is not None and self.parent.has(name):
            return self.parent._lookup(name)
        raise ConfigurationError(f'Config option "{name}" does not exist.')
