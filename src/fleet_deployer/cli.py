"""Command-line interface for fleet-deployer."""

from __future__ import annotations

import argparse
import json
import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_config
from .deployer import Bootstrap, Deployer
from .exceptions import DeployerError
from .recipe import register
from .task import GroupTask
from .utils.logging import get_logger

_DEFAULT_RECIPE_PATH = Path("deploy.py")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-deployer",
        description="Run deployment pipelines against a fleet of hosts.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to the JSON inventory (default: deploy.json).",
    )
    parser.add_argument(
        "--recipe",
        type=str,
        default=None,
        help="Python file defining extra tasks (default: deploy.py if present).",
    )
    parser.add_argument(
        "-o",
        "--option",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a setting on every host. May be repeated.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a task or pipeline")
    run_parser.add_argument("task", help="Task name, e.g. deploy")
    _add_host_arguments(run_parser)

    subparsers.add_parser("list", help="List available tasks")

    tree_parser = subparsers.add_parser("tree", help="Show how a pipeline expands")
    tree_parser.add_argument("task", help="Task name")

    # 锁文件残留时由操作员显式解锁
    unlock_parser = subparsers.add_parser("unlock", help="Remove the deploy lock, whoever holds it")
    _add_host_arguments(unlock_parser)

    return parser


def _add_host_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--hosts",
        type=str,
        default=None,
        help="Comma-separated host aliases (default: all hosts)",
    )
    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run hosts one after another in this process",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of hosts running at the same time",
    )


def parse_options(pairs: List[str]) -> Dict[str, str]:
    options: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise DeployerError(f"Invalid option `{pair}`, expected KEY=VALUE")
        name, value = pair.split("=", 1)
        options[name.strip()] = value
    return options


def _option_value(value: str) -> Any:
    # numbers, booleans, lists given as JSON; anything else stays a string
    try:
        return json.loads(value)
    except ValueError:
        return value


def build_deployer(
    config_path: Optional[str] = None,
    recipe_path: Optional[str] = None,
    options: Optional[Dict[str, str]] = None,
) -> Deployer:
    """Create the deployer for one invocation.

    Also used by spawned worker processes to rebuild the same deployer.
    """
    options = dict(options or {})
    app_config = load_config(config_path)
    deployer = Deployer.from_config(app_config)
    register(deployer)

    recipe = Path(recipe_path) if recipe_path else _DEFAULT_RECIPE_PATH
    if recipe_path and not recipe.is_file():
        raise FileNotFoundError(f"Recipe not found: {recipe}")
    if recipe.is_file():
        runpy.run_path(str(recipe), init_globals={"deployer": deployer})

    for name, raw in options.items():
        value = _option_value(raw)
        deployer.set(name, value)
        for host in deployer.hosts.values():
            host.set(name, value)

    deployer.bootstrap = Bootstrap(config_path, recipe_path, options)
    return deployer


def _split_hosts(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [alias.strip() for alias in value.split(",") if alias.strip()]


def handle_run_command(deployer: Deployer, task: str, args: argparse.Namespace) -> int:
    report = deployer.run(
        task,
        _split_hosts(args.hosts),
        parallel=False if args.sequential else None,
        max_workers=args.limit,
    )
    print()
    for line in report.summary_lines():
        print(line)
    return report.exit_code


def handle_list_command(deployer: Deployer) -> int:
    tasks = deployer.tasks.visible()
    if not tasks:
        print("📁 No tasks defined.")
        return 0
    width = max(len(task.name) for task in tasks)
    for task in tasks:
        print(f"  {task.name:<{width}}  {task.description}")
    return 0


def handle_tree_command(deployer: Deployer, name: str) -> int:
    # expanding first rejects cycles before anything is printed
    deployer.planner.expand(name)
    print(f"The task-tree for {name}:")
    _print_tree(deployer, name, 0, "")
    return 0


def _print_tree(deployer: Deployer, name: str, depth: int, label: str) -> None:
    task = deployer.tasks.get(name)
    indent = "│  " * depth
    for hook in task.before:
        _print_tree(deployer, hook, depth, "  // before " + name)
    flags = []
    if task.is_shallow:
        flags.append("shallow")
    if task.is_once:
        flags.append("once")
    if task.max_hosts:
        flags.append(f"limit {task.max_hosts}")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    print(f"{indent}├── {name}{suffix}{label}")
    if isinstance(task, GroupTask):
        for member in task.members:
            _print_tree(deployer, member, depth + 1, "")
    for hook in task.after:
        _print_tree(deployer, hook, depth, "  // after " + name)


def dispatch_command(args: argparse.Namespace) -> int:
    deployer = build_deployer(args.config, args.recipe, parse_options(args.option))

    if args.command == "run":
        return handle_run_command(deployer, args.task, args)

    if args.command == "list":
        return handle_list_command(deployer)

    if args.command == "tree":
        return handle_tree_command(deployer, args.task)

    if args.command == "unlock":
        return handle_run_command(deployer, "deploy:force_unlock", args)

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[List[str]] = None) -> int:
    get_logger("fleet_deployer")
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args)
    except (DeployerError, FileNotFoundError) as exc:
        print(f"❌ {exc}")
        return 1
