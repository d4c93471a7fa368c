import unittest

from fleet_deployer.exceptions import ConfigurationError, CycleError
from fleet_deployer.task import TaskPlanner, TaskRegistry


def names(tasks):
    return [task.name for task in tasks]


class PlannerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = TaskRegistry()
        self.planner = TaskPlanner(self.registry)
        for name in ("a", "b", "c", "d"):
            self.registry.define(name, lambda: None)

    def test_group_expands_in_order(self) -> None:
        self.registry.define("g", ["a", "b", "c"])
        self.assertEqual(names(self.planner.expand("g")), ["a", "b", "c"])

    def test_hooks_wrap_their_task(self) -> None:
        self.registry.define("g", ["a", "b"])
        self.registry.before("b", "c")
        self.registry.after("b", "d")
        self.registry.before("g", "d")
        self.assertEqual(names(self.planner.expand("g")), ["d", "a", "c", "b", "d"])

    def test_nested_groups(self) -> None:
        self.registry.define("prepare", ["a", "b"])
        self.registry.define("publish", ["c", "d"])
        self.registry.define("deploy", ["prepare", "publish"])
        self.assertEqual(names(self.planner.expand("deploy")), ["a", "b", "c", "d"])

    def test_expansion_is_deterministic(self) -> None:
        self.registry.define("g", ["a", "b"])
        self.registry.after("a", "c")
        self.assertEqual(names(self.planner.expand("g")), names(self.planner.expand("g")))

    def test_direct_self_reference(self) -> None:
        self.registry.define("loop", ["a", "loop"])
        with self.assertRaises(CycleError) as ctx:
            self.planner.expand("loop")
        self.assertEqual(ctx.exception.chain, ["loop", "loop"])

    def test_transitive_self_reference(self) -> None:
        self.registry.define("x", ["y"])
        self.registry.define("y", ["a", "z"])
        self.registry.define("z", ["x"])
        with self.assertRaises(CycleError) as ctx:
            self.planner.expand("x")
        self.assertEqual(ctx.exception.chain, ["x", "y", "z", "x"])
        self.assertIn("x -> y -> z -> x", str(ctx.exception))

    def test_cycle_through_hook(self) -> None:
        self.registry.define("g", ["a"])
        self.registry.after("a", "g")
        with self.assertRaises(CycleError):
            self.planner.expand("g")

    def test_shared_member_is_not_a_cycle(self) -> None:
        self.registry.define("g", ["a", "a"])
        self.assertEqual(names(self.planner.expand("g")), ["a", "a"])

    def test_once_task_kept_at_first_position(self) -> None:
        self.registry.define("o", lambda: None).once()
        self.registry.define("g", ["o", "a", "o"])
        self.registry.after("a", "o")
        self.assertEqual(names(self.planner.expand("g")), ["o", "a"])

    def test_unknown_task(self) -> None:
        self.registry.define("g", ["a", "missing"])
        with self.assertRaises(ConfigurationError):
            self.planner.expand("g")

    def test_callable_hook_becomes_hidden_task(self) -> None:
        self.registry.before("a", lambda: None)
        operations = self.planner.expand("a")
        self.assertEqual(len(operations), 2)
        self.assertTrue(operations[0].is_hidden)
        self.assertNotIn(operations[0], self.registry.visible())

    def test_redefinition_keeps_hooks(self) -> None:
        self.registry.before("a", "b")
        self.registry.define("a", lambda: None)
        self.assertEqual(names(self.planner.expand("a")), ["b", "a"])

    def test_limit_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            self.registry.get("a").limit(0)


if __name__ == "__main__":
    unittest.main()
