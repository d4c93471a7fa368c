"""Release lifecycle state machine.

Each host carries its position in the lifecycle under ``release_state`` in its
configuration, so the state travels to the master with the rest of the host's
values. Tasks call ``check()`` before touching the target and ``advance()``
once the step succeeded.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

from ..exceptions import LifecycleError
from ..host import Configuration
from ..task import current_context

STATE_KEY = "release_state"


class ReleaseState(str, Enum):
    NEW = "new"
    SETUP = "setup"
    LOCKED = "locked"
    RELEASE_DIR_CREATED = "release_dir_created"
    CODE_UPDATED = "code_updated"
    SHARED_LINKED = "shared_linked"
    WRITABLE_SET = "writable_set"
    SYMLINKED = "symlinked"
    UNLOCKED = "unlocked"
    CLEANED = "cleaned"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


S = ReleaseState

# FAILED is reachable from every state and is not listed here.
TRANSITIONS: Dict[ReleaseState, FrozenSet[ReleaseState]] = {
    S.NEW: frozenset({S.SETUP, S.LOCKED, S.CLEANED}),
    S.SETUP: frozenset({S.SETUP, S.LOCKED}),
    S.LOCKED: frozenset({S.RELEASE_DIR_CREATED, S.ROLLED_BACK, S.UNLOCKED}),
    S.RELEASE_DIR_CREATED: frozenset({S.CODE_UPDATED, S.SHARED_LINKED, S.WRITABLE_SET, S.SYMLINKED, S.UNLOCKED}),
    S.CODE_UPDATED: frozenset({S.SHARED_LINKED, S.WRITABLE_SET, S.SYMLINKED, S.UNLOCKED}),
    # shared and writable are re-derivable from configuration, so they may be retried
    S.SHARED_LINKED: frozenset({S.SHARED_LINKED, S.WRITABLE_SET, S.SYMLINKED, S.UNLOCKED}),
    S.WRITABLE_SET: frozenset({S.WRITABLE_SET, S.SYMLINKED, S.UNLOCKED}),
    S.SYMLINKED: frozenset({S.UNLOCKED}),
    S.ROLLED_BACK: frozenset({S.UNLOCKED}),
    S.UNLOCKED: frozenset({S.CLEANED, S.SETUP, S.LOCKED}),
    S.CLEANED: frozenset({S.SETUP, S.LOCKED, S.CLEANED}),
    S.FAILED: frozenset({S.SETUP, S.LOCKED}),
}


def can_transition(src: ReleaseState, dst: ReleaseState) -> bool:
    if dst is S.FAILED:
        return True
    return dst in TRANSITIONS[src]


def current_state(config: Optional[Configuration] = None) -> ReleaseState:
    config = config if config is not None else _host_config()
    return ReleaseState(config.get(STATE_KEY, S.NEW.value) or S.NEW.value)


def check(dst: ReleaseState, config: Optional[Configuration] = None) -> ReleaseState:
    """Raise ``LifecycleError`` unless the host may move to ``dst``."""
    src = current_state(config)
    if not can_transition(src, dst):
        raise LifecycleError(f"Cannot move release from `{src.value}` to `{dst.value}`")
    return src


def advance(dst: ReleaseState, config: Optional[Configuration] = None) -> ReleaseState:
    config = config if config is not None else _host_config()
    src = check(dst, config)
    config.set(STATE_KEY, dst.value)
    return src


def _host_config() -> Configuration:
    return current_context().host.config
