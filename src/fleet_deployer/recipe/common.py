"""The standard release recipe: deploy, rollback and their building blocks.

Layout on the target (see ``fleet_deployer.paths``)::

    {{deploy_path}}/.dep/        lock file, release counter, releases log
    {{deploy_path}}/releases/N/  one directory per release
    {{deploy_path}}/shared/      dirs and files linked into every release
    {{deploy_path}}/current      symlink to the live release
"""

from __future__ import annotations

import json
import os
import posixpath
import shlex
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, List, Optional

from .. import functions as dep
from .. import paths
from ..exceptions import ConfigurationError, LifecycleError, RemoteExecutionError
from ..executor.models import OUTCOME_KEY, HostStatus
from ..lock import LockHandle, LockManager, quote_path
from .lifecycle import ReleaseState, advance, check

if TYPE_CHECKING:
    from ..deployer import Deployer

HANDLE_KEY = "lock_handle"

DEFAULTS = {
    "keep_releases": 10,
    "repository": "",
    "branch": None,
    "tag": None,
    "revision": None,
    "env": {},
    "update_code_strategy": "git",
    "shared_dirs": [],
    "shared_files": [],
    "writable_dirs": [],
    "writable_mode": "chmod",
    "writable_chmod_mode": "0755",
    "writable_recursive": True,
    "current_path": "{{deploy_path}}/" + paths.CURRENT_LINK,
    "bin/git": "git",
    "bin/symlink": "ln -nfs",
}


def _user() -> str:
    if os.getenv("CI") is not None:
        return "ci"
    try:
        return dep.run_locally("git config --get user.name")
    except RemoteExecutionError:
        try:
            return dep.run_locally("whoami")
        except RemoteExecutionError:
            return "no_user"


def _target() -> str:
    # revision wins over tag, tag over branch
    for name in ("revision", "tag", "branch"):
        value = dep.get(name, None)
        if value:
            return value
    return "HEAD"


def _deploy_path() -> Any:
    raise ConfigurationError("Please, specify `deploy_path`.")


def _q(path: str) -> str:
    return quote_path(path)


def _int(value: str) -> int:
    value = value.strip()
    return int(value) if value.isdigit() else 0


# Helpers, also exposed as proxy functions


def releases_list() -> List[str]:
    """Names of the releases on the current host, newest first."""
    root = paths.releases_path(dep.get("deploy_path"))
    output = dep.run(f"if [ -d {_q(root)} ]; then ls -1 {_q(root)}; fi")
    names = [line.strip() for line in output.splitlines() if line.strip().isdigit()]
    return sorted(names, key=int, reverse=True)


def bad_releases() -> List[str]:
    """Releases abandoned by a rollback."""
    root = paths.releases_path(dep.get("deploy_path"))
    output = dep.run(f"cd {_q(root)} 2>/dev/null && ls -1 */{paths.BAD_RELEASE_MARKER} 2>/dev/null || true")
    return [posixpath.dirname(line.strip()) for line in output.splitlines() if line.strip()]


def current_release() -> Optional[str]:
    """Name of the release ``current_path`` points to, if any."""
    current = dep.get("current_path")
    if not dep.test(f"[ -L {_q(current)} ]"):
        return None
    target = dep.run(f"readlink {_q(current)}")
    return posixpath.basename(target.rstrip("/")) or None


def rollback_candidate(releases: List[str], current: Optional[str], bad: Iterable[str] = ()) -> Optional[str]:
    """The newest release older than ``current`` that was not rolled back from."""
    if current is None or current not in releases:
        return None
    bad = set(bad)
    for name in releases[releases.index(current) + 1:]:
        if name not in bad:
            return name
    return None


def lock_manager() -> LockManager:
    return LockManager(dep.run, paths.lock_path(dep.get("deploy_path")))


def _release_lock() -> bool:
    data = dep.get(HANDLE_KEY, None)
    if not data:
        return False
    handle = LockHandle.from_dict(data)
    released = LockManager(dep.run, handle.path).release(handle)
    dep.set(HANDLE_KEY, None)
    return released


def _swap_current(release_path: str) -> None:
    """Point ``current_path`` at ``release_path`` with a single rename."""
    staging = posixpath.join(dep.get("deploy_path"), paths.RELEASE_LINK)
    dep.run(
        f"{dep.get('bin/symlink')} {_q(release_path)} {_q(staging)} && "
        f"mv -fT {_q(staging)} {_q(dep.get('current_path'))}"
    )


# Tasks


def deploy_info() -> None:
    current = current_release()
    dep.info(f"🚀 Deploying {dep.get('target')} by {dep.get('user')} (live release: {current or 'none'})")


def deploy_setup() -> None:
    check(ReleaseState.SETUP)
    deploy_path = dep.get("deploy_path")
    for directory in (
        deploy_path,
        paths.meta_path(deploy_path),
        paths.releases_path(deploy_path),
        paths.shared_path(deploy_path),
    ):
        dep.run(f"[ -d {_q(directory)} ] || mkdir -p {_q(directory)}")

    current = dep.get("current_path")
    if dep.test(f"[ ! -L {_q(current)} ] && [ -d {_q(current)} ]"):
        raise ConfigurationError(
            f"There is a directory (not symlink) at {current}.\n"
            "Remove this directory so it can be replaced with a symlink for atomic deployments."
        )
    advance(ReleaseState.SETUP)


def deploy_lock() -> None:
    check(ReleaseState.LOCKED)
    handle = lock_manager().acquire(dep.get("user"))
    dep.set(HANDLE_KEY, handle.to_dict())
    advance(ReleaseState.LOCKED)


def deploy_unlock() -> None:
    check(ReleaseState.UNLOCKED)
    _release_lock()
    advance(ReleaseState.UNLOCKED)


def deploy_force_unlock() -> None:
    lock_manager().force_release()
    dep.set(HANDLE_KEY, None)


def deploy_release() -> None:
    check(ReleaseState.RELEASE_DIR_CREATED)
    deploy_path = dep.get("deploy_path")
    staging = posixpath.join(deploy_path, paths.RELEASE_LINK)
    counter = paths.meta_path(deploy_path, paths.LATEST_RELEASE_FILE)

    # left behind by an interrupted swap
    if dep.test(f"[ -h {_q(staging)} ]"):
        dep.run(f"rm {_q(staging)}")

    latest = _int(dep.run(f"cat {_q(counter)} 2>/dev/null || echo 0"))
    existing = [int(name) for name in releases_list()]
    name = str(max([latest] + existing) + 1)
    release_path = paths.releases_path(deploy_path, name)

    # no -p: an existing directory must fail the step
    dep.run(f"mkdir {_q(release_path)}")
    dep.run(f"echo {name} > {_q(counter)}")
    entry = json.dumps(
        {
            "created_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "release_name": name,
            "user": dep.get("user"),
            "target": dep.get("target"),
        }
    )
    dep.run(f"echo {shlex.quote(entry)} >> {_q(paths.meta_path(deploy_path, paths.RELEASES_LOG_FILE))}")

    dep.set("release_name", name)
    dep.set("release_path", release_path)
    dep.info(f"📦 Release {name} created")
    advance(ReleaseState.RELEASE_DIR_CREATED)


def deploy_update_code() -> None:
    check(ReleaseState.CODE_UPDATED)
    release_path = dep.get("release_path")
    strategy = dep.get("update_code_strategy")

    if strategy == "git":
        repository = dep.get("repository")
        if not repository:
            raise ConfigurationError("Missing `repository` configuration.")
        git = dep.get("bin/git")
        target = shlex.quote(dep.get("target"))
        repo = paths.meta_path(dep.get("deploy_path"), "repo")
        if dep.test(f"[ -f {_q(repo)}/HEAD ]"):
            dep.run(f"{git} --git-dir {_q(repo)} remote update 2>&1")
        else:
            dep.run(f"{git} clone --mirror {shlex.quote(repository)} {_q(repo)} 2>&1")
        dep.run(f"{git} --git-dir {_q(repo)} archive {target} | tar -x -f - -C {_q(release_path)}")
        revision = dep.run(f"{git} --git-dir {_q(repo)} rev-list {target} -1")
        dep.run(f"echo {shlex.quote(revision)} > {_q(release_path)}/REVISION")
    elif strategy == "copy":
        source = dep.get("source_path").rstrip("/")
        dep.run(f"cp -a {_q(source)}/. {_q(release_path)}/")
    else:
        raise ConfigurationError(f"Unknown update_code_strategy `{strategy}`.")
    advance(ReleaseState.CODE_UPDATED)


def deploy_shared() -> None:
    check(ReleaseState.SHARED_LINKED)
    release_path = dep.get("release_path")
    shared_root = paths.shared_path(dep.get("deploy_path"))
    symlink = dep.get("bin/symlink")
    shared_dirs = [d.strip("/") for d in dep.get("shared_dirs")]

    for a in shared_dirs:
        for b in shared_dirs:
            if a != b and (a + "/").startswith(b + "/"):
                raise ConfigurationError(f"Can not share same dirs `{a}` and `{b}`.")

    for directory in shared_dirs:
        shared_dir = posixpath.join(shared_root, directory)
        release_dir = posixpath.join(release_path, directory)
        if not dep.test(f"[ -d {_q(shared_dir)} ]"):
            dep.run(f"mkdir -p {_q(shared_dir)}")
            # seed the shared copy from the first release that has it
            if dep.test(f"[ -d {_q(release_dir)} ]"):
                dep.run(f"cp -r {_q(release_dir)}/. {_q(shared_dir)}/")
        dep.run(f"rm -rf {_q(release_dir)}")
        dep.run(f"mkdir -p {_q(posixpath.dirname(release_dir))}")
        dep.run(f"{symlink} {_q(shared_dir)} {_q(release_dir)}")

    for file in (f.strip("/") for f in dep.get("shared_files")):
        shared_file = posixpath.join(shared_root, file)
        release_file = posixpath.join(release_path, file)
        dep.run(f"mkdir -p {_q(posixpath.dirname(shared_file))}")
        if dep.test(f"[ -f {_q(release_file)} ] && [ ! -f {_q(shared_file)} ]"):
            dep.run(f"cp {_q(release_file)} {_q(shared_file)}")
        dep.run(f"rm -rf {_q(release_file)}")
        dep.run(f"mkdir -p {_q(posixpath.dirname(release_file))}")
        dep.run(f"touch {_q(shared_file)}")
        dep.run(f"{symlink} {_q(shared_file)} {_q(release_file)}")

    advance(ReleaseState.SHARED_LINKED)


def deploy_writable() -> None:
    check(ReleaseState.WRITABLE_SET)
    dirs = dep.get("writable_dirs")
    mode = dep.get("writable_mode")
    if dirs and mode == "chmod":
        targets = " ".join(shlex.quote(d.strip("/")) for d in dirs)
        recursive = "-R " if dep.get("writable_recursive") else ""
        with dep.within(dep.get("release_path")):
            dep.run(f"mkdir -p {targets}")
            dep.run(f"chmod {recursive}{dep.get('writable_chmod_mode')} {targets}")
    elif dirs and mode != "skip":
        raise ConfigurationError(f"Unknown writable_mode `{mode}`.")
    advance(ReleaseState.WRITABLE_SET)


def deploy_symlink() -> None:
    check(ReleaseState.SYMLINKED)
    _swap_current(dep.get("release_path"))
    dep.info(f"🔗 {dep.get('current_path')} -> release {dep.get('release_name')}")
    advance(ReleaseState.SYMLINKED)


def deploy_cleanup() -> None:
    check(ReleaseState.CLEANED)
    deploy_path = dep.get("deploy_path")
    staging = posixpath.join(deploy_path, paths.RELEASE_LINK)
    if dep.test(f"[ -h {_q(staging)} ]"):
        dep.run(f"rm {_q(staging)}")

    keep = int(dep.get("keep_releases"))
    if keep == -1:
        advance(ReleaseState.CLEANED)
        return
    if keep < 1:
        raise ConfigurationError("`keep_releases` must be a positive number or -1.")

    releases = releases_list()
    current = current_release()
    protected = {current, rollback_candidate(releases, current, bad_releases())}
    doomed = [name for name in releases[keep:] if name not in protected]
    for name in reversed(doomed):
        dep.run(f"rm -rf {_q(paths.releases_path(deploy_path, name))}")
    if doomed:
        dep.info(f"🧹 Removed release(s): {', '.join(reversed(doomed))}")
    advance(ReleaseState.CLEANED)


def deploy_success() -> None:
    dep.info("🎉 Successfully deployed!")


def deploy_failed() -> None:
    try:
        if _release_lock():
            dep.warning("🔓 Lock released after failure")
    finally:
        advance(ReleaseState.FAILED)


def rollback_switch() -> None:
    check(ReleaseState.ROLLED_BACK)
    deploy_path = dep.get("deploy_path")
    releases = releases_list()
    current = current_release()
    candidate = rollback_candidate(releases, current, bad_releases())
    if candidate is None:
        raise LifecycleError("No previous release to roll back to.")

    candidate_path = paths.releases_path(deploy_path, candidate)
    _swap_current(candidate_path)
    dep.run(f"touch {_q(paths.releases_path(deploy_path, current, paths.BAD_RELEASE_MARKER))}")

    dep.set("release_name", candidate)
    dep.set("release_path", candidate_path)
    dep.set(OUTCOME_KEY, HostStatus.ROLLED_BACK.value)
    dep.info(f"↩️ Rolled back from release {current} to {candidate}")
    advance(ReleaseState.ROLLED_BACK)


def register(deployer: "Deployer") -> None:
    """Define the release settings, tasks and pipelines on ``deployer``.

    Settings already present (from deploy.json) are left alone.
    """
    defaults = dict(DEFAULTS)
    defaults.update(
        user=_user,
        target=_target,
        deploy_path=_deploy_path,
        source_path=os.getcwd(),
    )
    for name, value in defaults.items():
        if not deployer.config.has_own(name):
            deployer.set(name, value)

    deployer.task("deploy:info", deploy_info).desc("Display info about deployment")
    deployer.task("deploy:setup", deploy_setup).desc("Prepare host for deploy").requires("deploy_path")
    deployer.task("deploy:lock", deploy_lock).desc("Lock deploy").requires("deploy_path")
    deployer.task("deploy:release", deploy_release).desc("Prepare release").requires("deploy_path")
    deployer.task("deploy:update_code", deploy_update_code).desc("Update code").requires("deploy_path")
    deployer.task("deploy:shared", deploy_shared).desc("Create symlinks for shared directories and files")
    deployer.task("deploy:writable", deploy_writable).desc("Make writable dirs")
    deployer.task("deploy:symlink", deploy_symlink).desc("Create symlink to release").requires("deploy_path")
    deployer.task("deploy:unlock", deploy_unlock).desc("Unlock deploy")
    deployer.task("deploy:force_unlock", deploy_force_unlock).desc(
        "Remove the deploy lock whoever holds it"
    ).requires("deploy_path")
    deployer.task("deploy:cleanup", deploy_cleanup).desc("Clean up old releases").requires("deploy_path")
    deployer.task("deploy:success", deploy_success).shallow().hidden()
    deployer.task("deploy:failed", deploy_failed).hidden()
    deployer.task("rollback:switch", rollback_switch).hidden().requires("deploy_path")

    deployer.task(
        "deploy:prepare",
        [
            "deploy:info",
            "deploy:setup",
            "deploy:lock",
            "deploy:release",
            "deploy:update_code",
            "deploy:shared",
            "deploy:writable",
        ],
    ).desc("Prepare a new release")
    deployer.task(
        "deploy:publish",
        ["deploy:symlink", "deploy:unlock", "deploy:cleanup", "deploy:success"],
    ).desc("Publish the release")
    deployer.task("deploy", ["deploy:prepare", "deploy:publish"]).desc("Deploy your project")
    deployer.task("rollback", ["deploy:lock", "rollback:switch", "deploy:unlock"]).desc("Rollback to previous release")

    deployer.fail("deploy", "deploy:failed")
    deployer.fail("rollback", "deploy:failed")

    deployer.function("release_name")(lambda: dep.get("release_name", None))
    deployer.function("releases_list")(releases_list)
    deployer.function("current_release")(current_release)
