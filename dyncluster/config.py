"""
Configuration loading for dyncluster

Configuration and cluster definitions are read from YAML or JSON files.
"""
import dataclasses
import getpass
import json
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError
from .models import ClusterDef, NodeGroupDef

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")


def _default_creator() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


@dataclass
class DockerConfig:
    """Settings for the container backend"""
    network_name: str = "dyncluster"
    mgmt_port: int = 8091
    query_port: int = 8093
    username: str = "Administrator"
    password: str = "password"
    image_repository: str = "couchbase/server"
    readiness_interval: float = 1.0
    readiness_timeout: float = 300.0
    remove_poll_interval: float = 0.1
    remove_timeout: float = 120.0
    rebalance_timeout: float = 600.0
    memory_quota_mb: int = 1024
    index_memory_quota_mb: int = 256


@dataclass
class AppConfig:
    """Top-level dyncluster configuration"""
    docker: DockerConfig = field(default_factory=DockerConfig)
    default_expiry: timedelta = timedelta(hours=1)
    creator: str = field(default_factory=_default_creator)


def parse_duration(value: Union[str, int, float]) -> timedelta:
    """Parse '1h', '90m', '2h30m' or a plain number of seconds"""
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    parts = _DURATION_RE.findall(text)
    if not parts or "".join(number + unit for number, unit in parts) != text:
        raise ConfigurationError(f"invalid duration: {value!r}")

    units = {"h": "hours", "m": "minutes", "s": "seconds"}
    total = timedelta()
    for number, unit in parts:
        total += timedelta(**{units[unit]: float(number)})
    return total


def read_config_file(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML or JSON document"""
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, 'r') as f:
        if path.suffix in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        elif path.suffix == '.json':
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    return data


def _build_dataclass(cls, data: Dict[str, Any], section: str):
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"unknown keys in {section}: {', '.join(sorted(unknown))}")
    return cls(**data)


def config_from_dict(data: Dict[str, Any]) -> AppConfig:
    data = dict(data)
    docker_config = _build_dataclass(DockerConfig, data.pop("docker", None) or {}, "docker")

    if "default_expiry" in data:
        data["default_expiry"] = parse_duration(data["default_expiry"])

    config = _build_dataclass(AppConfig, data, "config")
    config.docker = docker_config
    return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """Load configuration from a file, or return defaults when no path is given"""
    if config_path is None:
        return AppConfig()
    return config_from_dict(read_config_file(config_path))


def cluster_def_from_dict(data: Dict[str, Any], default_expiry: timedelta = timedelta(hours=1)) -> ClusterDef:
    nodes = data.get("nodes")
    if not nodes:
        raise ConfigurationError("cluster definition has no nodes")

    groups = []
    for index, node in enumerate(nodes):
        if "version" not in node:
            raise ConfigurationError(f"node group {index} has no version")
        group = _build_dataclass(NodeGroupDef, {"count": 1, **node}, f"node group {index}")
        if group.count < 1:
            raise ConfigurationError(f"node group {index} must have a positive count")
        group.version = str(group.version)
        groups.append(group)

    expiry = parse_duration(data["expiry"]) if "expiry" in data else default_expiry
    return ClusterDef(purpose=data.get("purpose", ""), expiry=expiry, node_groups=groups)


def load_cluster_def(def_path: Union[str, Path], default_expiry: timedelta = timedelta(hours=1)) -> ClusterDef:
    """Load a cluster definition file"""
    return cluster_def_from_dict(read_config_file(def_path), default_expiry)
