"""Filter expressions for narrowing workspace listings.

Grammar::

    expr  := ""                      (matches everything)
           | term ("|" term)*        (OR)
           | term ("," term)*        (AND)
    term  := kind ":" value

An expression containing `|` is split on `|` only; commas inside the pieces
are not treated as AND, so `a,b|c` does not mean `(a AND b) OR c`.
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .exceptions import ErrorCode, WorkspaceError
from .models import Workspace

VALID_FLAGS = ("pinned", "ephemeral", "locked", "broken")
VALID_STATUSES = ("dirty", "clean", "conflicts")
VALID_TARGETS = ("branch", "detached")
VALID_KINDS = ("flag", "status", "target", "activity", "name", "branch")

_DURATION_RE = re.compile(r"^(\d+)([dhms])$")
_ACTIVITY_RE = re.compile(r"^(idle>|active<)(\d+[dhms])$")
_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


class Filter(Protocol):
    def match(self, ws: Workspace) -> bool: ...


def _invalid(message: str, hint: str, **details: str) -> WorkspaceError:
    err = WorkspaceError(ErrorCode.CONFIG, message)
    for key, value in details.items():
        err.with_detail(key, value)
    return err.with_hint(hint)


def parse_duration(raw: str) -> timedelta:
    """Parse `30d`, `12h`, `45m` or `10s`."""

    match = _DURATION_RE.match(raw)
    if not match:
        raise _invalid("invalid duration", "Use a number followed by d, h, m or s (e.g. 30d)", value=raw)
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


@dataclass(slots=True)
class FilterExpr:
    filters: list[Filter] = field(default_factory=list)
    logic: str = "and"

    def match(self, ws: Workspace) -> bool:
        if not self.filters:
            return True
        if self.logic == "or":
            return any(f.match(ws) for f in self.filters)
        return all(f.match(ws) for f in self.filters)


@dataclass(slots=True)
class FlagFilter:
    flag: str

    def match(self, ws: Workspace) -> bool:
        return bool(getattr(ws.flags, self.flag, False))


@dataclass(slots=True)
class StatusFilter:
    status: str

    def match(self, ws: Workspace) -> bool:
        if self.status == "dirty":
            return ws.status.dirty
        if self.status == "clean":
            return not ws.status.dirty
        return ws.status.conflicts


@dataclass(slots=True)
class TargetFilter:
    type: str

    def match(self, ws: Workspace) -> bool:
        if self.type == "branch":
            return ws.target is not None and ws.target.type == "branch"
        return (ws.target is not None and ws.target.type == "commit") or ws.status.detached


@dataclass(slots=True)
class ActivityFilter:
    """`idle>` matches workspaces with no recorded activity; `active<` never does."""

    idle: bool
    threshold: timedelta

    def match(self, ws: Workspace) -> bool:
        last = ws.activity.last_git_activity_at
        if last is None:
            return self.idle
        elapsed = datetime.now(timezone.utc) - last
        if self.idle:
            return elapsed > self.threshold
        return elapsed < self.threshold


@dataclass(slots=True)
class NameFilter:
    pattern: str

    def match(self, ws: Workspace) -> bool:
        return fnmatch.fnmatchcase(ws.name, self.pattern)


@dataclass(slots=True)
class BranchFilter:
    pattern: str

    def match(self, ws: Workspace) -> bool:
        if ws.target is None or ws.target.type != "branch":
            return False
        return fnmatch.fnmatchcase(ws.target.short, self.pattern)


def parse_filter(expr: str) -> Filter:
    if not expr:
        return FilterExpr()
    if "|" in expr:
        return FilterExpr([parse_term(part.strip()) for part in expr.split("|")], logic="or")
    if "," in expr:
        return FilterExpr([parse_term(part.strip()) for part in expr.split(",")], logic="and")
    return parse_term(expr)


def parse_term(term: str) -> Filter:
    kind, sep, value = term.partition(":")
    if not sep:
        raise _invalid("invalid filter syntax", "Use format 'type:value' (e.g., flag:pinned)", filter=term)
    if kind == "flag":
        if value not in VALID_FLAGS:
            raise _invalid("invalid flag filter value", f"Valid flags: {', '.join(VALID_FLAGS)}", value=value)
        return FlagFilter(value)
    if kind == "status":
        if value not in VALID_STATUSES:
            raise _invalid(
                "invalid status filter value", f"Valid statuses: {', '.join(VALID_STATUSES)}", value=value
            )
        return StatusFilter(value)
    if kind == "target":
        if value not in VALID_TARGETS:
            raise _invalid(
                "invalid target filter value", f"Valid targets: {', '.join(VALID_TARGETS)}", value=value
            )
        return TargetFilter(value)
    if kind == "activity":
        match = _ACTIVITY_RE.match(value)
        if not match:
            raise _invalid("invalid activity filter condition", "Use format 'idle>30d' or 'active<1h'", value=value)
        op, duration = match.groups()
        return ActivityFilter(idle=op == "idle>", threshold=parse_duration(duration))
    if kind == "name":
        if not value:
            raise _invalid("name filter cannot be empty", "Use a name pattern (e.g., name:feature-*)")
        return NameFilter(value)
    if kind == "branch":
        if not value:
            raise _invalid("branch filter cannot be empty", "Use a branch pattern (e.g., branch:main)")
        return BranchFilter(value)
    raise _invalid("unknown filter type", f"Valid types: {', '.join(VALID_KINDS)}", type=kind)


__all__ = ["Filter", "FilterExpr", "parse_filter", "parse_term", "parse_duration"]
