"""Selector parsing and matching against the merged workspace list."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Callable, Sequence

from .models import Workspace


class SelectorType(str, enum.Enum):
    BARE = "bare"
    ID = "id"
    NAME = "name"
    PATH = "path"
    BRANCH = "branch"


@dataclass(frozen=True, slots=True)
class Selector:
    type: SelectorType
    value: str

    def __str__(self) -> str:
        if self.type is SelectorType.BARE:
            return self.value
        return f"{self.type.value}:{self.value}"


def normalize_path(path: str) -> str:
    """Return a cleaned absolute path without resolving symlinks."""

    return os.path.abspath(os.path.normpath(path))


def parse_selector(raw: str) -> Selector:
    """Parse `id:`, `name:`, `path:` and `branch:` prefixes; anything else is bare.

    Bare values that look like filesystem paths (contain `/` or start with
    `.`) are normalized to absolute paths even though they stay bare.
    """

    prefix, sep, value = raw.partition(":")
    if sep and prefix:
        if prefix == SelectorType.PATH.value:
            return Selector(SelectorType.PATH, normalize_path(value))
        if prefix in (SelectorType.ID.value, SelectorType.NAME.value, SelectorType.BRANCH.value):
            return Selector(SelectorType(prefix), value)
    if "/" in raw or raw.startswith("."):
        return Selector(SelectorType.BARE, normalize_path(raw))
    return Selector(SelectorType.BARE, raw)


def _by_id(ws: Workspace, value: str) -> bool:
    return ws.id == value


def _by_name(ws: Workspace, value: str) -> bool:
    return ws.name == value


def _by_path(ws: Workspace, value: str) -> bool:
    return normalize_path(ws.path) == normalize_path(value)


def _by_branch(ws: Workspace, value: str) -> bool:
    if ws.target is None or ws.target.type != "branch":
        return False
    return value in (ws.target.short, ws.target.ref)


_MATCHERS: dict[SelectorType, Callable[[Workspace, str], bool]] = {
    SelectorType.ID: _by_id,
    SelectorType.NAME: _by_name,
    SelectorType.PATH: _by_path,
    SelectorType.BRANCH: _by_branch,
}

_BARE_ORDER = (SelectorType.ID, SelectorType.NAME, SelectorType.PATH, SelectorType.BRANCH)


def resolve_selector(workspaces: Sequence[Workspace], selector: Selector) -> list[Workspace]:
    """Return every workspace the selector matches, in list order.

    Bare selectors try id, name, path and branch in turn and stop at the
    first kind that matches anything.
    """

    if selector.type is not SelectorType.BARE:
        matcher = _MATCHERS[selector.type]
        return [ws for ws in workspaces if matcher(ws, selector.value)]
    for kind in _BARE_ORDER:
        matcher = _MATCHERS[kind]
        matches = [ws for ws in workspaces if matcher(ws, selector.value)]
        if matches:
            return matches
    return []


__all__ = ["SelectorType", "Selector", "normalize_path", "parse_selector", "resolve_selector"]
