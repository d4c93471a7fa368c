"""Layout of a deploy target on the remote host.

Everything lives under ``deploy_path``:
- deploy_path/.dep/           # metadata: lock file, release counter, releases log
- deploy_path/releases/N/     # one directory per release
- deploy_path/shared/         # shared dirs and files linked into every release
- deploy_path/current         # symlink to the live release
"""

from __future__ import annotations

import posixpath

META_DIR = ".dep"
RELEASES_DIR = "releases"
SHARED_DIR = "shared"
CURRENT_LINK = "current"
RELEASE_LINK = "release"        # staging symlink, renamed over `current`

LOCK_FILE = "deploy.lock"
LATEST_RELEASE_FILE = "latest_release"
RELEASES_LOG_FILE = "releases_log"
BAD_RELEASE_MARKER = "BAD_RELEASE"


def meta_path(deploy_path: str, *parts: str) -> str:
    return posixpath.join(deploy_path, META_DIR, *parts)


def lock_path(deploy_path: str) -> str:
    return meta_path(deploy_path, LOCK_FILE)


def releases_path(deploy_path: str, *parts: str) -> str:
    return posixpath.join(deploy_path, RELEASES_DIR, *parts)


def shared_path(deploy_path: str, *parts: str) -> str:
    return posixpath.join(deploy_path, SHARED_DIR, *parts)
