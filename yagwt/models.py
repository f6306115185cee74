"""Dataclasses shared across modules."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

NO_METADATA_ID = "<no-metadata>"


class OnDirty(str, enum.Enum):
    FAIL = "fail"
    STASH = "stash"
    PATCH = "patch"
    WIP_COMMIT = "wip-commit"
    FORCE = "force"


@dataclass(slots=True)
class Target:
    """The ref a workspace is tracking."""

    type: str  # "branch" or "commit"
    ref: str
    short: str
    head_sha: str = ""
    upstream: str = ""


@dataclass(slots=True)
class WorkspaceFlags:
    pinned: bool = False
    ephemeral: bool = False
    locked: bool = False
    broken: bool = False


@dataclass(slots=True)
class EphemeralInfo:
    ttl_seconds: int
    expires_at: datetime


@dataclass(slots=True)
class ActivityInfo:
    last_opened_at: datetime | None = None
    last_git_activity_at: datetime | None = None


@dataclass(slots=True)
class StatusInfo:
    dirty: bool = False
    conflicts: bool = False
    ahead: int = 0
    behind: int = 0
    branch: str = ""
    detached: bool = False


@dataclass(slots=True)
class Workspace:
    """Merged view of one worktree and its metadata, computed on every read."""

    id: str
    name: str
    path: str
    is_primary: bool = False
    target: Target | None = None
    flags: WorkspaceFlags = field(default_factory=WorkspaceFlags)
    ephemeral: EphemeralInfo | None = None
    activity: ActivityInfo = field(default_factory=ActivityInfo)
    status: StatusInfo = field(default_factory=StatusInfo)

    @property
    def has_metadata(self) -> bool:
        return self.id != NO_METADATA_ID

    @property
    def branch(self) -> str | None:
        if self.target is not None and self.target.type == "branch":
            return self.target.short
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "isPrimary": self.is_primary,
            "target": None,
            "flags": {
                "pinned": self.flags.pinned,
                "ephemeral": self.flags.ephemeral,
                "locked": self.flags.locked,
                "broken": self.flags.broken,
            },
            "activity": {
                "lastOpenedAt": _iso(self.activity.last_opened_at),
                "lastGitActivityAt": _iso(self.activity.last_git_activity_at),
            },
            "status": {
                "dirty": self.status.dirty,
                "conflicts": self.status.conflicts,
                "ahead": self.status.ahead,
                "behind": self.status.behind,
                "branch": self.status.branch,
                "detached": self.status.detached,
            },
        }
        if self.target is not None:
            data["target"] = {
                "type": self.target.type,
                "ref": self.target.ref,
                "short": self.target.short,
                "upstream": self.target.upstream,
                "headSha": self.target.head_sha,
            }
        if self.ephemeral is not None:
            data["ephemeral"] = {
                "ttlSeconds": self.ephemeral.ttl_seconds,
                "expiresAt": _iso(self.ephemeral.expires_at),
            }
        return data


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class ListOptions:
    filter: str = ""
    include_all: bool = True


@dataclass(slots=True)
class CreateOptions:
    target: str = ""
    name: str = ""
    dir: str = ""
    base: str = ""
    new_branch: bool = False
    detached: bool = False
    ephemeral: bool = False
    ttl: timedelta | None = None
    pin: bool = False
    checkout: bool = True


@dataclass(slots=True)
class RemoveOptions:
    on_dirty: str = ""
    patch_dir: str = ""
    wip_message: str = ""
    delete_branch: bool = False


@dataclass(slots=True)
class CleanupOptions:
    policy: str = "default"
    dry_run: bool = True
    on_dirty: str = ""
    max: int = 0


@dataclass(slots=True)
class DoctorOptions:
    dry_run: bool = True
    forget_missing: bool = False


@dataclass(slots=True)
class PlanWarning:
    code: str
    message: str


@dataclass(slots=True)
class Repair:
    workspace_id: str
    issue: str
    fix: str
    applied: bool = False


@dataclass(slots=True)
class DoctorReport:
    broken: list[Workspace] = field(default_factory=list)
    untracked: list[Workspace] = field(default_factory=list)
    repairs: list[Repair] = field(default_factory=list)
    warnings: list[PlanWarning] = field(default_factory=list)


__all__ = [
    "NO_METADATA_ID",
    "OnDirty",
    "Target",
    "WorkspaceFlags",
    "EphemeralInfo",
    "ActivityInfo",
    "StatusInfo",
    "Workspace",
    "ListOptions",
    "CreateOptions",
    "RemoveOptions",
    "CleanupOptions",
    "DoctorOptions",
    "PlanWarning",
    "Repair",
    "DoctorReport",
]
