"""Run options for a publish.

CLI flags win over ``MLPUBLISH_*`` environment variables, which win over
the defaults below.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path

from mlpublish.errors import ConfigError
from mlpublish.manifest_tool import DEFAULT_TIMEOUT

_ENV_PREFIX = "MLPUBLISH_"


@dataclass
class PublishOptions:
    config_path: Path
    store_path: Path | None = None
    dry_run: bool = False
    registry_override: str | None = None
    repo_prefix: str = ""
    jobs: int = 1
    timeout: float = DEFAULT_TIMEOUT
    manifest_tool: str = "manifest-tool"


def _env(name: str) -> str | None:
    value = os.environ.get(f"{_ENV_PREFIX}{name}")
    return value if value else None


def _pick(args: argparse.Namespace, attr: str, env_name: str) -> str | None:
    value = getattr(args, attr, None)
    if value is not None:
        return str(value)
    return _env(env_name)


def _positive_int(value: str, name: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number < 1:
        raise ConfigError(f"{name} must be at least 1, got {number}")
    return number


def _positive_float(value: str, name: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number:g}")
    return number


def from_args(args: argparse.Namespace) -> PublishOptions:
    """Resolve :class:`PublishOptions` from parsed CLI arguments."""
    jobs = _pick(args, "jobs", "JOBS")
    timeout = _pick(args, "timeout", "TIMEOUT")
    store = getattr(args, "store", None)
    return PublishOptions(
        config_path=Path(args.config),
        store_path=Path(store) if store else None,
        dry_run=bool(getattr(args, "dry_run", False)),
        registry_override=_pick(args, "registry", "REGISTRY"),
        repo_prefix=_pick(args, "repo_prefix", "REPO_PREFIX") or "",
        jobs=_positive_int(jobs, "jobs") if jobs else 1,
        timeout=_positive_float(timeout, "timeout") if timeout else DEFAULT_TIMEOUT,
        manifest_tool=_pick(args, "manifest_tool", "MANIFEST_TOOL") or "manifest-tool",
    )
