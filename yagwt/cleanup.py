"""Cleanup policies and removal plans."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Protocol

from .models import ActivityInfo, EphemeralInfo, PlanWarning, StatusInfo, WorkspaceFlags

EXPIRED_EPHEMERAL = "expired_ephemeral"
IDLE_30D = "idle_30d"
IDLE_7D = "idle_7d"

_SAFETY_ORDER = {EXPIRED_EPHEMERAL: 0, IDLE_30D: 1, IDLE_7D: 2}


class CleanupCandidate(Protocol):
    """The slice of a workspace that policies look at."""

    name: str
    flags: WorkspaceFlags
    ephemeral: EphemeralInfo | None
    activity: ActivityInfo
    status: StatusInfo


class PolicyKind(str, enum.Enum):
    DEFAULT = "default"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True, slots=True)
class RemovalReason:
    code: str
    message: str


@dataclass(frozen=True, slots=True)
class Policy:
    kind: PolicyKind

    @property
    def name(self) -> str:
        return self.kind.value

    def evaluate(self, ws: CleanupCandidate, now: datetime | None = None) -> RemovalReason | None:
        """Return why `ws` should be removed, or None to keep it."""
        now = now or datetime.now(timezone.utc)
        # pinned and locked workspaces are never eligible, aggressive included
        if ws.flags.pinned or ws.flags.locked:
            return None
        if ws.flags.ephemeral and ws.ephemeral is not None and now > ws.ephemeral.expires_at:
            return RemovalReason(EXPIRED_EPHEMERAL, "Ephemeral workspace has expired")
        if self.kind is PolicyKind.CONSERVATIVE:
            return None
        last = ws.activity.last_git_activity_at
        if last is None:
            return None
        idle = now - last
        if self.kind is PolicyKind.DEFAULT:
            if idle > timedelta(days=30) and not ws.status.dirty:
                return RemovalReason(IDLE_30D, "Workspace idle for more than 30 days")
            return None
        # aggressive ignores dirty state
        if idle > timedelta(days=7):
            return RemovalReason(IDLE_7D, "Workspace idle for more than 7 days")
        return None


def get_policy(name: str) -> Policy:
    """Look up a built-in policy; unknown names fall back to `default`."""
    try:
        return Policy(PolicyKind(name))
    except ValueError:
        return Policy(PolicyKind.DEFAULT)


@dataclass(slots=True)
class RemovalAction:
    workspace: Any
    reason: RemovalReason
    on_dirty: str = ""


@dataclass(slots=True)
class CleanupPlan:
    policy: str
    actions: list[RemovalAction] = field(default_factory=list)
    warnings: list[PlanWarning] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    dry_run: bool = True


def generate_plan(workspaces: Iterable[CleanupCandidate], policy: Policy, now: datetime | None = None) -> CleanupPlan:
    plan = CleanupPlan(policy=policy.name)
    for ws in workspaces:
        reason = policy.evaluate(ws, now)
        if reason is None:
            continue
        plan.actions.append(RemovalAction(workspace=ws, reason=reason))
        if ws.status.dirty:
            plan.warnings.append(PlanWarning("dirty_workspace", f"Workspace '{ws.name}' has uncommitted changes"))
        if ws.status.conflicts:
            plan.warnings.append(PlanWarning("conflicts", f"Workspace '{ws.name}' has merge conflicts"))
        if ws.status.ahead > 0:
            plan.warnings.append(PlanWarning("unpushed_commits", f"Workspace '{ws.name}' has unpushed commits"))
    plan.actions = sort_actions(plan.actions)
    return plan


def sort_actions(actions: list[RemovalAction]) -> list[RemovalAction]:
    """Safest first: expired ephemeral, idle 30d, idle 7d, then the rest (stable)."""
    return sorted(actions, key=lambda action: _SAFETY_ORDER.get(action.reason.code, len(_SAFETY_ORDER)))


__all__ = [
    "EXPIRED_EPHEMERAL",
    "IDLE_30D",
    "IDLE_7D",
    "CleanupCandidate",
    "PolicyKind",
    "Policy",
    "RemovalReason",
    "RemovalAction",
    "CleanupPlan",
    "get_policy",
    "generate_plan",
    "sort_actions",
]
