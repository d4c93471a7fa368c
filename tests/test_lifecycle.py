import unittest

from fleet_deployer.exceptions import LifecycleError
from fleet_deployer.host import Configuration
from fleet_deployer.recipe.common import rollback_candidate
from fleet_deployer.recipe.lifecycle import STATE_KEY, ReleaseState, advance, can_transition, current_state

S = ReleaseState

NOMINAL = [
    S.SETUP,
    S.LOCKED,
    S.RELEASE_DIR_CREATED,
    S.CODE_UPDATED,
    S.SHARED_LINKED,
    S.WRITABLE_SET,
    S.SYMLINKED,
    S.UNLOCKED,
    S.CLEANED,
]


class LifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = Configuration()

    def test_new_host_starts_in_new(self) -> None:
        self.assertIs(current_state(self.config), S.NEW)

    def test_nominal_forward_order(self) -> None:
        for state in NOMINAL:
            advance(state, self.config)
        self.assertEqual(self.config.get(STATE_KEY), "cleaned")

    def test_failed_reachable_from_every_state(self) -> None:
        for state in ReleaseState:
            self.assertTrue(can_transition(state, S.FAILED))

    def test_cannot_skip_lock(self) -> None:
        advance(S.SETUP, self.config)
        with self.assertRaises(LifecycleError):
            advance(S.RELEASE_DIR_CREATED, self.config)
        self.assertIs(current_state(self.config), S.SETUP)

    def test_no_symlink_after_unlock(self) -> None:
        for state in NOMINAL[:8]:
            advance(state, self.config)
        with self.assertRaises(LifecycleError):
            advance(S.SYMLINKED, self.config)

    def test_rollback_path(self) -> None:
        advance(S.LOCKED, self.config)
        advance(S.ROLLED_BACK, self.config)
        with self.assertRaises(LifecycleError):
            advance(S.CODE_UPDATED, self.config)
        advance(S.UNLOCKED, self.config)

    def test_retryable_steps(self) -> None:
        for state in NOMINAL[:5]:
            advance(state, self.config)
        advance(S.SHARED_LINKED, self.config)
        advance(S.WRITABLE_SET, self.config)
        advance(S.WRITABLE_SET, self.config)

    def test_failed_host_can_start_over(self) -> None:
        advance(S.FAILED, self.config)
        advance(S.SETUP, self.config)


class RollbackCandidateTests(unittest.TestCase):
    def test_previous_release(self) -> None:
        self.assertEqual(rollback_candidate(["3", "2", "1"], "3"), "2")

    def test_skips_bad_releases(self) -> None:
        self.assertEqual(rollback_candidate(["4", "3", "2", "1"], "4", ["3"]), "2")

    def test_no_candidate(self) -> None:
        self.assertIsNone(rollback_candidate(["1"], "1"))
        self.assertIsNone(rollback_candidate(["2", "1"], None))
        self.assertIsNone(rollback_candidate(["2", "1"], "9"))


if __name__ == "__main__":
    unittest.main()
