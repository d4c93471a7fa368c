"""Configuration loading utilities for fleet-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("deploy.json")

_HOST_FIELDS = ("hostname", "port", "user", "auth_method", "password", "key_path", "local")


def _str_to_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass
class ExecutionConfig:
    """How pipelines are executed."""

    parallel: bool = True                  # worker process per host
    max_workers: int = 10                  # cap on simultaneously active workers
    command_timeout: Optional[int] = 300   # seconds per remote command, None disables
    rpc_timeout: float = 30.0              # seconds per coordinator call


@dataclass
class HostEntry:
    """One host of the inventory."""

    alias: str
    hostname: Optional[str] = None
    port: int = 22
    user: Optional[str] = None
    auth_method: str = "key"
    password: Optional[str] = None
    key_path: Optional[str] = None
    local: bool = False
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, alias: str, payload: Dict[str, Any]) -> "HostEntry":
        payload = {k: v for k, v in (payload or {}).items() if not k.startswith("_")}
        connection = {k: payload.pop(k) for k in _HOST_FIELDS if k in payload}
        config = dict(payload.pop("config", {}) or {})
        payload.pop("alias", None)
        # Anything else on the host entry is a host-level setting.
        config.update(payload)
        return cls(alias=alias, config=config, **connection)


@dataclass
class AppConfig:
    """Top-level configuration."""

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    hosts: List[HostEntry] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        execution_payload = payload.get("execution", {}) or {}
        hosts_payload = payload.get("hosts", {}) or {}
        settings_payload = payload.get("settings", {}) or {}

        # 过滤掉以下划线开头的注释字段
        execution_payload = {k: v for k, v in execution_payload.items() if not k.startswith("_")}
        settings_payload = {k: v for k, v in settings_payload.items() if not k.startswith("_")}

        if isinstance(hosts_payload, dict):
            hosts = [HostEntry.from_dict(alias, entry) for alias, entry in hosts_payload.items()]
        else:
            hosts = [HostEntry.from_dict(entry["alias"], entry) for entry in hosts_payload]

        return cls(
            execution=ExecutionConfig(**{**ExecutionConfig().__dict__, **execution_payload}),
            hosts=hosts,
            settings=settings_payload,
        )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Environment variables (higher priority than config file):
    - FLEET_DEPLOYER_MAX_WORKERS: Cap on parallel worker processes
    - FLEET_DEPLOYER_COMMAND_TIMEOUT: Default timeout of remote commands
    - FLEET_DEPLOYER_RPC_TIMEOUT: Timeout of coordinator calls
    - FLEET_DEPLOYER_SEQUENTIAL: Run hosts one after another in this process
    - FLEET_DEPLOYER_SSH_USERNAME: SSH username for hosts that set none
    - FLEET_DEPLOYER_SSH_KEY_PATH: SSH private key for hosts that set none
    """

    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            config = AppConfig.from_dict(data)

            env_workers = os.getenv("FLEET_DEPLOYER_MAX_WORKERS")
            if env_workers:
                config.execution.max_workers = int(env_workers)

            env_timeout = os.getenv("FLEET_DEPLOYER_COMMAND_TIMEOUT")
            if env_timeout:
                config.execution.command_timeout = int(env_timeout)

            env_rpc_timeout = os.getenv("FLEET_DEPLOYER_RPC_TIMEOUT")
            if env_rpc_timeout:
                config.execution.rpc_timeout = float(env_rpc_timeout)

            env_sequential = os.getenv("FLEET_DEPLOYER_SEQUENTIAL")
            if env_sequential:
                config.execution.parallel = not _str_to_bool(env_sequential)

            env_username = os.getenv("FLEET_DEPLOYER_SSH_USERNAME")
            env_key_path = os.getenv("FLEET_DEPLOYER_SSH_KEY_PATH")
            for host in config.hosts:
                if env_username and not host.user:
                    host.user = env_username
                if env_key_path and not host.key_path and host.auth_method == "key":
                    host.key_path = env_key_path

            return config

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
