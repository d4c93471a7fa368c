"""The deployer: inventory, settings, tasks and proxy functions for one run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from .config import AppConfig
from .exceptions import ConfigurationError, DeployerError
from .executor.registry import FunctionRegistry
from .host import Configuration, Host, Localhost
from .task import Task, TaskPlanner, TaskRegistry
from .task.registry import TaskBody

if TYPE_CHECKING:
    from .executor.client import CoordinatorClient
    from .executor.models import RunReport


@dataclass
class Bootstrap:
    """How to rebuild the deployer inside a freshly spawned worker process."""

    config_path: Optional[str] = None
    recipe_path: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)

    def build(self) -> "Deployer":
        from .cli import build_deployer

        return build_deployer(self.config_path, self.recipe_path, self.options)


class Deployer:
    """Holds everything a pipeline run needs.

    The most recently created deployer is the process-wide instance returned
    by ``Deployer.current()``; worker processes reach it through fork inheritance
    or rebuild it from ``bootstrap``.
    """

    _instance: Optional["Deployer"] = None

    def __init__(self, app_config: Optional[AppConfig] = None) -> None:
        self.app_config = app_config or AppConfig()
        self.config = Configuration()
        self.hosts: Dict[str, Host] = {}
        self.tasks = TaskRegistry()
        self.planner = TaskPlanner(self.tasks)
        self.functions = FunctionRegistry()
        self.client: Optional["CoordinatorClient"] = None
        self.bootstrap: Optional[Bootstrap] = None
        self.config.set("default_timeout", self.app_config.execution.command_timeout)
        Deployer._instance = self

    @classmethod
    def current(cls) -> "Deployer":
        if cls._instance is None:
            raise DeployerError("No deployer has been created in this process")
        return cls._instance

    @classmethod
    def has_instance(cls) -> bool:
        return cls._instance is not None

    @classmethod
    def from_config(cls, app_config: AppConfig) -> "Deployer":
        deployer = cls(app_config)
        for name, value in app_config.settings.items():
            deployer.set(name, value)
        for entry in app_config.hosts:
            host = deployer.host(
                entry.alias,
                hostname=entry.hostname,
                port=entry.port,
                user=entry.user,
                auth_method=entry.auth_method,
                password=entry.password,
                key_path=entry.key_path,
                local=entry.local,
            )
            for name, value in entry.config.items():
                host.set(name, value)
        return deployer

    # Inventory

    def host(self, alias: str, **kwargs: Any) -> Host:
        if alias in self.hosts:
            raise ConfigurationError(f"Host `{alias}` is already defined")
        host = Host(alias, parent=self.config, **kwargs)
        self.hosts[alias] = host
        return host

    def localhost(self, alias: str = "localhost", **kwargs: Any) -> Host:
        if alias in self.hosts:
            raise ConfigurationError(f"Host `{alias}` is already defined")
        host = Localhost(alias, parent=self.config, **kwargs)
        self.hosts[alias] = host
        return host

    def get_host(self, alias: str) -> Host:
        try:
            return self.hosts[alias]
        except KeyError:
            raise ConfigurationError(f"Host `{alias}` not found") from None

    def select_hosts(self, aliases: Optional[Iterable[str]] = None) -> List[Host]:
        if aliases is None:
            return list(self.hosts.values())
        return [self.get_host(alias) for alias in aliases]

    # Settings

    def set(self, name: str, value: Any) -> None:
        self.config.set(name, value)

    def add(self, name: str, values: Any) -> None:
        self.config.add(name, values)

    def get(self, name: str, default: Any = None) -> Any:
        return self.config.get(name, default)

    # Tasks

    def task(self, name: str, body: TaskBody = None) -> Task:
        return self.tasks.define(name, body)

    def before(self, target: str, hook: Any) -> None:
        self.tasks.before(target, hook)

    def after(self, target: str, hook: Any) -> None:
        self.tasks.after(target, hook)

    def fail(self, target: str, hook: str) -> None:
        self.tasks.fail(target, hook)

    def function(self, name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Register a function that other hosts may call through the coordinator."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.functions.register(name, fn)
            return fn

        return decorator

    # Running

    def run(
        self,
        pipeline: str,
        hosts: Optional[Iterable[str]] = None,
        *,
        parallel: Optional[bool] = None,
        max_workers: Optional[int] = None,
    ) -> "RunReport":
        from .executor.master import Scheduler

        execution = self.app_config.execution
        scheduler = Scheduler(
            self,
            parallel=execution.parallel if parallel is None else parallel,
            max_workers=max_workers or execution.max_workers,
            rpc_timeout=execution.rpc_timeout,
        )
        return scheduler.run(pipeline, self.select_hosts(hosts))
