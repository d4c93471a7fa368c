import json
import multiprocessing
import os
import tempfile
import threading
import unittest
from pathlib import Path

from fleet_deployer import functions as dep
from fleet_deployer.config import AppConfig, ExecutionConfig
from fleet_deployer.deployer import Deployer
from fleet_deployer.exceptions import ConfigurationError
from fleet_deployer.executor import HostStatus
from fleet_deployer.executor.master import Scheduler
from fleet_deployer.recipe import STATE_KEY, register

HAS_FORK = "fork" in multiprocessing.get_all_start_methods()


class ReleaseFixture(unittest.TestCase):
    parallel = False

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name)

        self.source = self.root / "source"
        (self.source / "storage").mkdir(parents=True)
        (self.source / "index.html").write_text("v1")
        (self.source / "storage" / "seed.txt").write_text("seed")
        self.marks = self.root / "marks"
        self.marks.mkdir()

        execution = ExecutionConfig(parallel=self.parallel, max_workers=4, rpc_timeout=15.0)
        self.deployer = Deployer(AppConfig(execution=execution))
        register(self.deployer)
        d = self.deployer
        d.set("deploy_path", str(self.root / "targets") + "/{{alias}}")
        d.set("update_code_strategy", "copy")
        d.set("source_path", str(self.source))
        d.set("user", "tester")
        d.set("keep_releases", 3)
        d.set("shared_dirs", ["storage"])
        d.set("shared_files", [".env"])
        d.set("writable_dirs", ["cache"])
        for alias in ("h1", "h2"):
            d.localhost(alias)

    def target(self, alias: str, *parts: str) -> Path:
        return self.root.joinpath("targets", alias, *parts)

    def live_release(self, alias: str) -> str:
        return os.path.basename(os.readlink(self.target(alias, "current")))

    def releases(self, alias: str) -> list:
        return sorted(os.listdir(self.target(alias, "releases")), key=int)

    def state(self, alias: str) -> str:
        return self.deployer.get_host(alias).get(STATE_KEY)

    def deploy(self, **kwargs):
        return self.deployer.run("deploy", **kwargs)

    def mark(self, step: str) -> None:
        (self.marks / f"{dep.current_host().alias}.{step}").touch()

    def marked(self, alias: str, step: str) -> bool:
        return (self.marks / f"{alias}.{step}").exists()


class SequentialReleaseTests(ReleaseFixture):
    def test_deploy_publishes_release(self) -> None:
        report = self.deploy()
        self.assertTrue(report.ok, report.summary_lines())
        for alias in ("h1", "h2"):
            self.assertEqual(self.live_release(alias), "1")
            self.assertEqual(self.target(alias, "current", "index.html").read_text(), "v1")
            self.assertTrue(self.target(alias, "releases", "1", "storage").is_symlink())
            self.assertEqual(self.target(alias, "shared", "storage", "seed.txt").read_text(), "seed")
            self.assertTrue(self.target(alias, "releases", "1", ".env").is_symlink())
            self.assertTrue(self.target(alias, "shared", ".env").exists())
            self.assertTrue(self.target(alias, "releases", "1", "cache").is_dir())
            self.assertFalse(self.target(alias, ".dep", "deploy.lock").exists())
            self.assertFalse(self.target(alias, "release").exists())
            self.assertEqual(self.target(alias, ".dep", "latest_release").read_text().strip(), "1")
            self.assertEqual(self.state(alias), "cleaned")
            self.assertEqual(report.status_of(alias), HostStatus.SUCCEEDED)

    def test_releases_log_records_each_release(self) -> None:
        self.deploy()
        self.deploy()
        lines = self.target("h1", ".dep", "releases_log").read_text().splitlines()
        entries = [json.loads(line) for line in lines]
        self.assertEqual([entry["release_name"] for entry in entries], ["1", "2"])
        self.assertEqual(entries[0]["user"], "tester")
        self.assertEqual(entries[0]["target"], "HEAD")

    def test_next_release_never_reuses_an_identifier(self) -> None:
        self.target("h1", "releases", "5").mkdir(parents=True)
        self.assertTrue(self.deploy().ok)
        self.assertEqual(self.live_release("h1"), "6")
        self.assertEqual(self.live_release("h2"), "1")

    def test_shared_data_survives_new_releases(self) -> None:
        self.deploy()
        self.target("h1", "shared", "storage", "upload.txt").write_text("user data")
        (self.source / "index.html").write_text("v2")
        self.deploy()
        self.assertEqual(self.live_release("h1"), "2")
        self.assertEqual(self.target("h1", "current", "index.html").read_text(), "v2")
        self.assertEqual(self.target("h1", "current", "storage", "upload.txt").read_text(), "user data")

    def test_cleanup_keeps_configured_number(self) -> None:
        for _ in range(5):
            self.assertTrue(self.deploy().ok)
        for alias in ("h1", "h2"):
            self.assertEqual(self.releases(alias), ["3", "4", "5"])
            self.assertEqual(self.live_release(alias), "5")

    def test_cleanup_protects_rollback_target(self) -> None:
        self.deployer.set("keep_releases", 1)
        for _ in range(3):
            self.deploy()
        self.assertEqual(self.releases("h1"), ["2", "3"])

    def test_keep_all_releases(self) -> None:
        self.deployer.set("keep_releases", -1)
        for _ in range(4):
            self.deploy()
        self.assertEqual(self.releases("h2"), ["1", "2", "3", "4"])

    def test_failure_on_one_host(self) -> None:
        self.deploy()

        def break_h2():
            if dep.current_host().alias == "h2":
                raise RuntimeError("smoke test failed")

        self.deployer.before("deploy:symlink", break_h2)
        report = self.deploy()

        self.assertFalse(report.ok)
        self.assertEqual(report.failed_hosts, ["h2"])
        self.assertIn("smoke test failed", report.outcomes["h2"].reason)
        self.assertEqual(self.state("h1"), "cleaned")
        self.assertEqual(self.live_release("h1"), "2")
        self.assertEqual(self.state("h2"), "failed")
        # still on the old release, lock released, new release kept for inspection
        self.assertEqual(self.live_release("h2"), "1")
        self.assertFalse(self.target("h2", ".dep", "deploy.lock").exists())
        self.assertTrue(self.target("h2", "releases", "2").is_dir())

    def test_failure_hook_runs_only_on_failed_hosts(self) -> None:
        self.deployer.after("deploy:failed", lambda: self.mark("failed"))
        self.deployer.before("deploy:update_code", self.break_h2_update)
        self.deploy()
        self.assertTrue(self.marked("h2", "failed"))
        self.assertFalse(self.marked("h1", "failed"))
        self.assertFalse(self.target("h2", ".dep", "deploy.lock").exists())
        self.assertFalse(self.target("h2", "current").exists())

    @staticmethod
    def break_h2_update() -> None:
        if dep.current_host().alias == "h2":
            raise RuntimeError("repository unreachable")

    def test_lock_held_stops_host_without_side_effects(self) -> None:
        lock = self.target("h2", ".dep", "deploy.lock")
        lock.parent.mkdir(parents=True)
        lock.write_text("someone else")

        report = self.deploy()

        self.assertEqual(report.failed_hosts, ["h2"])
        self.assertIn("locked by someone else", report.outcomes["h2"].reason)
        self.assertEqual(lock.read_text(), "someone else")
        self.assertEqual(os.listdir(self.target("h2", "releases")), [])
        self.assertEqual(self.live_release("h1"), "1")

    def test_abort_mid_deploy_releases_lock_and_keeps_current(self) -> None:
        self.assertTrue(self.deploy().ok)
        scheduler = Scheduler(self.deployer, parallel=self.parallel, max_workers=4, rpc_timeout=15.0)
        self.deployer.task("halt", scheduler.abort).shallow()
        self.deployer.before("deploy:symlink", "halt")
        self.deployer.before("deploy:symlink", lambda: self.mark("symlink"))

        report = scheduler.run("deploy", self.deployer.select_hosts())

        self.assertEqual(sorted(report.failed_hosts), ["h1", "h2"])
        for alias in ("h1", "h2"):
            self.assertEqual(report.outcomes[alias].reason, "aborted")
            self.assertEqual(self.live_release(alias), "1")
            self.assertFalse(self.target(alias, ".dep", "deploy.lock").exists())
            self.assertTrue(self.target(alias, "releases", "2").is_dir())
            self.assertEqual(self.state(alias), "failed")
            self.assertFalse(self.marked(alias, "symlink"))

    def test_force_unlock(self) -> None:
        lock = self.target("h2", ".dep", "deploy.lock")
        lock.parent.mkdir(parents=True)
        lock.write_text("someone else")
        self.assertTrue(self.deployer.run("deploy:force_unlock", ["h2"]).ok)
        self.assertFalse(lock.exists())
        self.assertTrue(self.deploy().ok)

    def test_missing_deploy_path_aborts_before_any_remote_action(self) -> None:
        deployer = Deployer(AppConfig(execution=ExecutionConfig(parallel=self.parallel)))
        register(deployer)
        deployer.localhost("h1")
        with self.assertRaises(ConfigurationError) as ctx:
            deployer.run("deploy")
        self.assertIn("deploy_path", str(ctx.exception))

    def test_directory_at_current_path_is_rejected(self) -> None:
        self.target("h1", "current").mkdir(parents=True)
        report = self.deploy()
        self.assertEqual(report.failed_hosts, ["h1"])
        self.assertIn("not symlink", report.outcomes["h1"].reason)

    def test_rollback_restores_previous_release(self) -> None:
        self.deploy()
        (self.source / "index.html").write_text("v2")
        self.deploy()
        self.deployer.before("deploy:update_code", lambda: self.mark("update_code"))
        self.deployer.before("deploy:shared", lambda: self.mark("shared"))

        report = self.deployer.run("rollback")

        self.assertTrue(report.ok, report.summary_lines())
        for alias in ("h1", "h2"):
            self.assertEqual(report.status_of(alias), HostStatus.ROLLED_BACK)
            self.assertEqual(self.live_release(alias), "1")
            self.assertEqual(self.target(alias, "current", "index.html").read_text(), "v1")
            self.assertTrue(self.target(alias, "releases", "2", "BAD_RELEASE").exists())
            self.assertFalse(self.target(alias, ".dep", "deploy.lock").exists())
            self.assertEqual(self.state(alias), "unlocked")
            self.assertFalse(self.marked(alias, "update_code"))
            self.assertFalse(self.marked(alias, "shared"))

    def test_rollback_skips_bad_releases(self) -> None:
        for _ in range(3):
            self.deploy()
        self.assertTrue(self.deployer.run("rollback").ok)
        self.assertEqual(self.live_release("h1"), "2")
        self.deploy()
        self.assertEqual(self.live_release("h1"), "4")
        self.assertTrue(self.deployer.run("rollback").ok)
        self.assertEqual(self.live_release("h1"), "2")

    def test_rollback_without_previous_release_fails_and_unlocks(self) -> None:
        self.deploy()
        report = self.deployer.run("rollback")
        self.assertEqual(sorted(report.failed_hosts), ["h1", "h2"])
        for alias in ("h1", "h2"):
            self.assertEqual(self.live_release(alias), "1")
            self.assertFalse(self.target(alias, ".dep", "deploy.lock").exists())
            self.assertEqual(self.state(alias), "failed")

    def test_proxy_functions_report_release_state(self) -> None:
        self.deploy()
        self.deploy()
        self.assertEqual(dep.on_host("h1", "releases_list"), ["2", "1"])
        self.assertEqual(dep.on_host("h1", "current_release"), "2")
        self.assertEqual(dep.on_host("h2", "release_name"), "2")


class AtomicSwitchTests(ReleaseFixture):
    def test_current_is_never_missing_during_deploys(self) -> None:
        self.assertTrue(self.deploy(hosts=["h1"]).ok)
        current = str(self.target("h1", "current"))
        observed, broken = set(), []
        stop = threading.Event()

        def watch():
            while not stop.is_set():
                try:
                    target = os.readlink(current)
                except OSError as exc:
                    broken.append(repr(exc))
                    continue
                if not os.path.isdir(target):
                    broken.append(target)
                observed.add(os.path.basename(target))

        watcher = threading.Thread(target=watch)
        watcher.start()
        try:
            for _ in range(4):
                self.assertTrue(self.deploy(hosts=["h1"]).ok)
        finally:
            stop.set()
            watcher.join()

        self.assertEqual(broken, [])
        self.assertTrue(observed <= {"1", "2", "3", "4", "5"})
        self.assertEqual(self.live_release("h1"), "5")


@unittest.skipUnless(HAS_FORK, "worker processes inherit the deployer through fork")
class ParallelReleaseTests(SequentialReleaseTests):
    parallel = True


if __name__ == "__main__":
    unittest.main()
