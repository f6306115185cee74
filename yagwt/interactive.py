"""Interactive prompt helpers built on InquirerPy."""

from __future__ import annotations

import sys
from typing import Any, Iterable, Sequence

from InquirerPy import inquirer
from InquirerPy.base.control import Choice

from .exceptions import config_error

NEW_BRANCH = "__new__"


def _ensure_tty() -> None:
    if not sys.stdin.isatty():
        raise config_error("interactive mode requires a TTY").with_hint(
            "Provide the missing arguments to run non-interactively"
        )


def fuzzy_select(message: str, choices: Sequence[Choice | str]) -> Any:
    _ensure_tty()
    return inquirer.fuzzy(message=message, choices=choices).execute()


def text_input(message: str, default: str | None = None) -> str:
    _ensure_tty()
    return inquirer.text(message=message, default=default or "").execute().strip()


def confirm(message: str, default: bool = False) -> bool:
    _ensure_tty()
    return bool(inquirer.confirm(message=message, default=default).execute())


def build_choices(options: Iterable[str], *, highlight: Sequence[str] | None = None) -> list[Choice]:
    """Return Choice objects with highlighted entries placed first."""

    highlight = highlight or []
    result: list[Choice] = []
    seen: set[str] = set()
    for item in list(highlight) + list(options):
        if not item or item in seen:
            continue
        seen.add(item)
        result.append(Choice(value=item, name=item))
    return result


def prompt_target(branches: Sequence[str], in_use: Iterable[str], default_branch: str = "") -> tuple[str, bool]:
    """Ask for a branch to check out; returns (branch, is_new_branch)."""

    taken = set(in_use)
    available = [branch for branch in branches if branch not in taken]
    highlight = [default_branch] if default_branch in available else []
    choices = build_choices(available, highlight=highlight)
    choices.append(Choice(value=NEW_BRANCH, name="Create new branch…"))
    selection = fuzzy_select("Select branch", choices)
    if selection == NEW_BRANCH:
        name = text_input("New branch name")
        if not name:
            raise config_error("branch name cannot be empty")
        return name, True
    return str(selection), False


__all__ = ["fuzzy_select", "text_input", "confirm", "build_choices", "prompt_target"]
