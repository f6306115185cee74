"""Tests for selector parsing and resolution."""

from __future__ import annotations

import os
import unittest

from yagwt.models import Target, Workspace
from yagwt.selector import Selector, SelectorType, normalize_path, parse_selector, resolve_selector


def _ws(ws_id: str, name: str, path: str, branch: str | None = None) -> Workspace:
    target = None
    if branch:
        target = Target(type="branch", ref=f"refs/heads/{branch}", short=branch)
    return Workspace(id=ws_id, name=name, path=path, target=target)


class ParseSelectorTests(unittest.TestCase):
    def test_typed_prefixes(self) -> None:
        self.assertEqual(parse_selector("id:abc"), Selector(SelectorType.ID, "abc"))
        self.assertEqual(parse_selector("name:auth"), Selector(SelectorType.NAME, "auth"))
        self.assertEqual(parse_selector("branch:feature/x"), Selector(SelectorType.BRANCH, "feature/x"))

    def test_path_prefix_is_normalized(self) -> None:
        selector = parse_selector("path:/tmp/a/../b/")

        self.assertEqual(selector, Selector(SelectorType.PATH, "/tmp/b"))

    def test_unknown_prefix_is_bare(self) -> None:
        self.assertEqual(parse_selector("tag:v1"), Selector(SelectorType.BARE, "tag:v1"))

    def test_bare_values_that_look_like_paths_are_normalized(self) -> None:
        self.assertEqual(parse_selector(".").value, os.getcwd())
        self.assertEqual(parse_selector("feature/x").value, os.path.join(os.getcwd(), "feature", "x"))
        self.assertEqual(parse_selector("auth"), Selector(SelectorType.BARE, "auth"))

    def test_str_round_trips_prefix(self) -> None:
        self.assertEqual(str(parse_selector("name:auth")), "name:auth")
        self.assertEqual(str(parse_selector("auth")), "auth")

    def test_normalize_path_does_not_expand_home(self) -> None:
        self.assertEqual(normalize_path("/a/./b//c/"), "/a/b/c")


class ResolveSelectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.workspaces = [
            _ws("primary-id", "repo", "/src/repo", branch="main"),
            _ws("id-auth", "auth", "/src/auth", branch="feature-auth"),
            _ws("id-main-copy", "main-copy", "/src/main-copy", branch="main"),
            # a name that collides with another workspace's id
            _ws("id-other", "id-auth", "/src/other"),
        ]

    def test_bare_prefers_id_over_name(self) -> None:
        matches = resolve_selector(self.workspaces, parse_selector("id-auth"))

        self.assertEqual([ws.id for ws in matches], ["id-auth"])

    def test_bare_falls_back_to_name_then_branch(self) -> None:
        self.assertEqual([ws.id for ws in resolve_selector(self.workspaces, parse_selector("auth"))], ["id-auth"])
        by_branch = resolve_selector(self.workspaces, parse_selector("feature-auth"))
        self.assertEqual([ws.id for ws in by_branch], ["id-auth"])

    def test_bare_path(self) -> None:
        matches = resolve_selector(self.workspaces, parse_selector("/src/auth/"))

        self.assertEqual([ws.id for ws in matches], ["id-auth"])

    def test_branch_selector_returns_every_match_in_order(self) -> None:
        matches = resolve_selector(self.workspaces, parse_selector("branch:main"))

        self.assertEqual([ws.id for ws in matches], ["primary-id", "id-main-copy"])

    def test_branch_selector_accepts_full_ref(self) -> None:
        matches = resolve_selector(self.workspaces, parse_selector("branch:refs/heads/feature-auth"))

        self.assertEqual([ws.id for ws in matches], ["id-auth"])

    def test_typed_name_ignores_ids(self) -> None:
        matches = resolve_selector(self.workspaces, parse_selector("name:id-auth"))

        self.assertEqual([ws.id for ws in matches], ["id-other"])

    def test_no_match_is_empty(self) -> None:
        self.assertEqual(resolve_selector(self.workspaces, parse_selector("nothing")), [])

    def test_repeated_resolution_is_stable(self) -> None:
        selector = parse_selector("branch:main")

        first = resolve_selector(self.workspaces, selector)
        second = resolve_selector(self.workspaces, selector)

        self.assertEqual([ws.id for ws in first], [ws.id for ws in second])


if __name__ == "__main__":
    unittest.main()
