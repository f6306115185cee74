"""Load yagwt configuration from TOML files."""

from __future__ import annotations

import os
import sys
import tomllib
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

from .exceptions import config_error
from .filters import parse_duration

ROOT_STRATEGIES = ("sibling", "inside")
POLICY_ON_DIRTY = ("fail", "stash", "patch", "wip-commit")
CONFIG_ENV_VAR = "YAGWT_CONFIG"


@dataclass(frozen=True, slots=True)
class WorkspaceConfig:
    root_strategy: str = "sibling"
    root_dir: str = ".workspaces"
    name_template: str = "{branch}"


@dataclass(frozen=True, slots=True)
class CleanupPolicyConfig:
    remove_ephemeral: bool = True
    idle_threshold: timedelta = timedelta(days=30)
    respect_pinned: bool = True
    on_dirty: str = "fail"


@dataclass(frozen=True, slots=True)
class HooksConfig:
    post_create: str = ""
    pre_remove: str = ""
    post_remove: str = ""
    post_open: str = ""


def _default_policies() -> dict[str, CleanupPolicyConfig]:
    return {
        "default": CleanupPolicyConfig(idle_threshold=timedelta(days=30)),
        "conservative": CleanupPolicyConfig(idle_threshold=timedelta(days=90)),
        "aggressive": CleanupPolicyConfig(
            idle_threshold=timedelta(days=7),
            respect_pinned=False,
            on_dirty="stash",
        ),
    }


@dataclass(frozen=True, slots=True)
class Config:
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    policies: dict[str, CleanupPolicyConfig] = field(default_factory=_default_policies)
    hooks: HooksConfig = field(default_factory=HooksConfig)
    source: Path | None = None


def user_config_path() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "yagwt" / "config.toml"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "yagwt" / "config.toml"
    return home / ".config" / "yagwt" / "config.toml"


def candidate_paths(repo_root: Path | None, config_path: Path | None = None) -> list[Path]:
    """Config files in precedence order; the first one that exists is used."""
    paths: list[Path] = []
    if config_path:
        paths.append(config_path.expanduser())
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        paths.append(Path(env_path).expanduser())
    if repo_root:
        paths.append(repo_root / ".yagwt" / "config.toml")
    paths.append(user_config_path())
    return paths


def load_config(repo_root: Path | None, config_path: Path | None = None) -> Config:
    config = Config()
    for path in candidate_paths(repo_root, config_path):
        if not path.exists():
            continue
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise (
                config_error("failed to parse config file", exc)
                .with_detail("path", str(path))
                .with_hint("Check TOML syntax")
            ) from exc
        except OSError as exc:
            raise config_error("failed to read config file", exc).with_detail("path", str(path)) from exc
        config = merge_config(config, data, source=path)
        break
    validate_config(config)
    return config


def merge_config(base: Config, data: dict[str, Any], *, source: Path | None = None) -> Config:
    """Overlay a parsed TOML document on top of `base`, field by field."""

    ws_raw = data.get("workspace") or {}
    workspace = base.workspace
    if ws_raw.get("rootStrategy"):
        workspace = replace(workspace, root_strategy=str(ws_raw["rootStrategy"]))
    if ws_raw.get("rootDir"):
        workspace = replace(workspace, root_dir=str(ws_raw["rootDir"]))
    if ws_raw.get("nameTemplate"):
        workspace = replace(workspace, name_template=str(ws_raw["nameTemplate"]))

    policies = dict(base.policies)
    for name, raw in ((data.get("cleanup") or {}).get("policies") or {}).items():
        policies[name] = _parse_policy(name, raw, policies.get(name, CleanupPolicyConfig()))

    hooks_raw = data.get("hooks") or {}
    hooks = HooksConfig(
        post_create=str(hooks_raw.get("postCreate") or base.hooks.post_create),
        pre_remove=str(hooks_raw.get("preRemove") or base.hooks.pre_remove),
        post_remove=str(hooks_raw.get("postRemove") or base.hooks.post_remove),
        post_open=str(hooks_raw.get("postOpen") or base.hooks.post_open),
    )
    return Config(workspace=workspace, policies=policies, hooks=hooks, source=source or base.source)


def _parse_policy(name: str, raw: dict[str, Any], base: CleanupPolicyConfig) -> CleanupPolicyConfig:
    if not isinstance(raw, dict):
        raise config_error("cleanup policy must be a table").with_detail("policy", name)
    policy = base
    if "removeEphemeral" in raw:
        policy = replace(policy, remove_ephemeral=bool(raw["removeEphemeral"]))
    if "idleThreshold" in raw:
        policy = replace(policy, idle_threshold=parse_duration(str(raw["idleThreshold"])))
    if "respectPinned" in raw:
        policy = replace(policy, respect_pinned=bool(raw["respectPinned"]))
    if "onDirty" in raw:
        policy = replace(policy, on_dirty=str(raw["onDirty"]))
    return policy


def validate_config(config: Config) -> None:
    if config.workspace.root_strategy not in ROOT_STRATEGIES:
        raise (
            config_error("invalid rootStrategy")
            .with_detail("value", config.workspace.root_strategy)
            .with_detail("valid", ", ".join(ROOT_STRATEGIES))
        )
    for name, policy in config.policies.items():
        if policy.on_dirty and policy.on_dirty not in POLICY_ON_DIRTY:
            raise (
                config_error("invalid onDirty value in cleanup policy")
                .with_detail("policy", name)
                .with_detail("value", policy.on_dirty)
                .with_detail("valid", ", ".join(POLICY_ON_DIRTY))
            )


__all__ = [
    "Config",
    "WorkspaceConfig",
    "CleanupPolicyConfig",
    "HooksConfig",
    "load_config",
    "merge_config",
    "validate_config",
    "user_config_path",
]
