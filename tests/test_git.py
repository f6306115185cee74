"""Tests for git porcelain parsing and stderr translation."""

from __future__ import annotations

import unittest

from tests.gitrepo import GitRepoTestCase, requires_git
from yagwt.exceptions import ErrorCode, GitCommandError, WorkspaceError
from yagwt.git import parse_status_v2, parse_worktree_list, translate_git_error

WORKTREE_LIST = """\
worktree /src/repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /src/repo-feature
branch refs/heads/feature/auth
locked
HEAD 2222222222222222222222222222222222222222

worktree /src/repo-snapshot
HEAD 3333333333333333333333333333333333333333
detached
prunable gitdir file points to non-existent location
"""

STATUS = """\
# branch.oid 1111111111111111111111111111111111111111
# branch.head feature/auth
# branch.upstream origin/feature/auth
# branch.ab +2 -1
1 .M N... 100644 100644 100644 aaaa aaaa README.md
? scratch.txt
"""


class ParseWorktreeListTests(unittest.TestCase):
    def test_parses_blocks_with_fields_in_any_order(self) -> None:
        entries = parse_worktree_list(WORKTREE_LIST)

        self.assertEqual([e.path for e in entries], ["/src/repo", "/src/repo-feature", "/src/repo-snapshot"])
        self.assertEqual(entries[0].branch, "main")
        self.assertEqual(entries[1].branch, "feature/auth")
        self.assertEqual(entries[1].head, "2" * 40)
        self.assertTrue(entries[1].locked)

    def test_detached_clears_branch_and_prunable_is_recorded(self) -> None:
        snapshot = parse_worktree_list(WORKTREE_LIST)[2]

        self.assertEqual(snapshot.branch, "")
        self.assertTrue(snapshot.prunable)
        self.assertFalse(snapshot.locked)

    def test_last_block_without_trailing_blank_line(self) -> None:
        entries = parse_worktree_list("worktree /a\nHEAD abc\nbranch refs/heads/x")

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].branch, "x")

    def test_empty_output(self) -> None:
        self.assertEqual(parse_worktree_list(""), [])


class ParseStatusTests(unittest.TestCase):
    def test_branch_ahead_behind_and_dirty(self) -> None:
        status = parse_status_v2(STATUS)

        self.assertEqual(status.branch, "feature/auth")
        self.assertEqual((status.ahead, status.behind), (2, 1))
        self.assertTrue(status.dirty)
        self.assertFalse(status.conflicts)
        self.assertFalse(status.detached)

    def test_clean_detached(self) -> None:
        status = parse_status_v2("# branch.oid abc\n# branch.head (detached)\n")

        self.assertTrue(status.detached)
        self.assertEqual(status.branch, "")
        self.assertFalse(status.dirty)

    def test_unmerged_entry_marks_conflicts(self) -> None:
        status = parse_status_v2("# branch.head main\nu UU N... 100644 100644 100644 100644 a b c file.txt\n")

        self.assertTrue(status.conflicts)
        self.assertTrue(status.dirty)


class TranslateGitErrorTests(unittest.TestCase):
    def _error(self, stderr: str) -> GitCommandError:
        return GitCommandError(["git", "worktree", "remove", "/w"], 128, stderr=stderr)

    def test_dirty_worktree(self) -> None:
        err = translate_git_error(
            "remove", self._error("fatal: '/w' contains modified or untracked files, use --force"), path="/w"
        )

        self.assertEqual(err.code, ErrorCode.DIRTY)
        self.assertEqual(err.details["path"], "/w")
        self.assertIn("git -C /w status", [hint.command for hint in err.hints])

    def test_locked_worktree(self) -> None:
        err = translate_git_error("remove", self._error("fatal: cannot remove a locked working tree, is locked"))

        self.assertEqual(err.code, ErrorCode.LOCKED)

    def test_unknown_revision_is_not_found(self) -> None:
        exc = GitCommandError(["git", "rev-parse"], 128, stderr="fatal: bad revision 'nope'")

        err = translate_git_error("resolve", exc, ref="nope")

        self.assertEqual(err.code, ErrorCode.NOT_FOUND)
        self.assertEqual(err.details["ref"], "nope")

    def test_unrecognized_failure_stays_a_git_error_with_stderr(self) -> None:
        exc = self._error("fatal: something unexpected")

        err = translate_git_error("remove", exc, path="/w")

        self.assertIs(err, exc)
        self.assertEqual(err.code, ErrorCode.GIT)
        self.assertEqual(err.message, "failed to remove")
        self.assertEqual(err.details["stderr"], "fatal: something unexpected")
        self.assertEqual(err.details["path"], "/w")


@requires_git
class RepositoryTests(GitRepoTestCase):
    def test_resolve_ref_and_get_branch(self) -> None:
        repo = self.manager.repo

        self.assertEqual(repo.resolve_ref("main"), self.head())
        branch = repo.get_branch("refs/heads/feature-test")
        self.assertEqual(branch.name, "feature-test")
        self.assertEqual(branch.head, self.head())
        self.assertEqual(branch.upstream, "")
        self.assertEqual(sorted(repo.local_branches()), ["feature-test", "main"])

    def test_resolve_missing_ref_is_not_found(self) -> None:
        with self.assertRaises(WorkspaceError) as ctx:
            self.manager.repo.resolve_ref("no-such-branch")

        self.assertEqual(ctx.exception.code, ErrorCode.NOT_FOUND)
        self.assertEqual(ctx.exception.details["ref"], "no-such-branch")


if __name__ == "__main__":
    unittest.main()
