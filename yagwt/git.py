"""Thin wrappers around git CLI commands."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .exceptions import ErrorCode, GitCommandError, WorkspaceError

log = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"


def run_git(
    args: Sequence[str],
    *,
    cwd: Path | str | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a git command and optionally raise on failure."""

    command = ["git", *args]
    log.debug("Running command: %s (cwd=%s)", " ".join(command), cwd)
    try:
        result = subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        raise GitCommandError(command, 127, stderr=str(exc), message="git executable not found") from exc
    if check and result.returncode != 0:
        raise GitCommandError(command, result.returncode, stdout=result.stdout, stderr=result.stderr)
    return result


@dataclass(slots=True)
class Worktree:
    path: str
    head: str = ""
    branch: str = ""
    locked: bool = False
    prunable: bool = False


@dataclass(slots=True)
class Status:
    dirty: bool = False
    conflicts: bool = False
    branch: str = ""
    detached: bool = False
    ahead: int = 0
    behind: int = 0


@dataclass(slots=True)
class Branch:
    name: str
    head: str
    upstream: str = ""


@dataclass(slots=True)
class AddOptions:
    new_branch: str = ""
    detach: bool = False
    force: bool = False
    checkout: bool = True
    track: str = ""


_MISSING_REF_MARKERS = ("unknown revision", "bad revision", "not a valid", "Needed a single revision")


def translate_git_error(operation: str, exc: GitCommandError, **details: str) -> WorkspaceError:
    """Map git's human-readable stderr onto a specific error kind.

    This relies on git's English error text and is the only place that does
    so; newer git releases that reword these messages need changes here only.
    """

    stderr = exc.stderr
    path = details.get("path", "")
    if operation == "remove":
        if "is locked" in stderr:
            return (
                WorkspaceError(ErrorCode.LOCKED, "worktree is locked")
                .with_detail("path", path)
                .with_hint("Use --force to remove locked worktree")
            )
        if "contains modified or untracked files" in stderr:
            return (
                WorkspaceError(ErrorCode.DIRTY, "worktree contains uncommitted changes")
                .with_detail("path", path)
                .with_hint("Commit or stash changes, or use --force", f"git -C {path} status")
            )
    if operation == "resolve":
        if any(marker in stderr for marker in _MISSING_REF_MARKERS):
            return WorkspaceError(ErrorCode.NOT_FOUND, "ref not found").with_detail("ref", details.get("ref", ""))
    if operation == "open" and "not a git repository" in stderr:
        return (
            WorkspaceError(ErrorCode.GIT, "not a git repository")
            .with_detail("path", path)
            .with_hint("Initialize a git repository first", "git init")
        )
    exc.message = f"failed to {operation.replace('-', ' ')}"
    for key, value in details.items():
        exc.with_detail(key, value)
    return exc


def parse_worktree_list(text: str) -> list[Worktree]:
    """Parse `git worktree list --porcelain` output.

    Blocks are separated by blank lines; keys may come in any order after the
    leading `worktree` line.
    """

    entries: list[Worktree] = []
    current: Worktree | None = None
    for line in text.splitlines() + [""]:
        if not line.strip():
            if current is not None:
                entries.append(current)
                current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            if current is not None:
                entries.append(current)
            current = Worktree(path=value)
        elif current is None:
            continue
        elif key == "HEAD":
            current.head = value.strip()
        elif key == "branch":
            current.branch = _sanitize_branch(value)
        elif key == "detached":
            current.branch = ""
        elif key == "locked":
            current.locked = True
        elif key == "prunable":
            current.prunable = True
    return entries


def parse_status_v2(text: str) -> Status:
    """Parse `git status --porcelain=v2 --branch` output."""

    status = Status()
    for line in text.splitlines():
        if line.startswith("# branch.head "):
            head = line[len("# branch.head ") :]
            if head == "(detached)":
                status.detached = True
            else:
                status.branch = head
        elif line.startswith("# branch.ab "):
            parts = line.split()
            if len(parts) >= 4:
                try:
                    status.ahead = int(parts[2].lstrip("+"))
                    status.behind = int(parts[3].lstrip("-"))
                except ValueError:
                    log.debug("Ignoring malformed branch.ab line: %s", line)
        elif line.startswith(("1 ", "2 ", "? ")):
            status.dirty = True
        elif line.startswith("u "):
            status.conflicts = True
            status.dirty = True
    return status


def _sanitize_branch(value: str) -> str:
    stripped = value.strip()
    if stripped.startswith(BRANCH_REF_PREFIX):
        return stripped[len(BRANCH_REF_PREFIX) :]
    return stripped


class Repository:
    """A git repository located through git's own root discovery."""

    def __init__(self, root: Path, git_dir: Path):
        self.root = root
        self.git_dir = git_dir

    @classmethod
    def open(cls, path: Path | str) -> "Repository":
        path = Path(path).expanduser()
        try:
            root = Path(run_git(["-C", str(path), "rev-parse", "--show-toplevel"]).stdout.strip())
            # --git-common-dir keeps metadata shared between all worktrees
            raw = run_git(["-C", str(root), "rev-parse", "--git-common-dir"]).stdout.strip()
        except GitCommandError as exc:
            raise translate_git_error("open", exc, path=str(path)) from exc
        git_dir = Path(raw)
        if not git_dir.is_absolute():
            git_dir = root / git_dir
        return cls(root=root, git_dir=git_dir.resolve())

    def _git(self, *args: str, cwd: Path | str | None = None, check: bool = True) -> subprocess.CompletedProcess[str]:
        return run_git(["-C", str(cwd or self.root), *args], check=check)

    def list_worktrees(self) -> list[Worktree]:
        try:
            output = self._git("worktree", "list", "--porcelain")
        except GitCommandError as exc:
            raise translate_git_error("list-worktrees", exc) from exc
        return parse_worktree_list(output.stdout)

    def add_worktree(self, path: str, ref: str, opts: AddOptions | None = None) -> None:
        opts = opts or AddOptions()
        args = ["worktree", "add"]
        if opts.force:
            args.append("--force")
        if opts.detach:
            args.append("--detach")
        if not opts.checkout:
            args.append("--no-checkout")
        if opts.new_branch:
            args.extend(["-b", opts.new_branch])
            if opts.track:
                args.append("--track")
        args.append(path)
        if opts.track and opts.new_branch:
            args.append(opts.track)
        elif ref:
            args.append(ref)
        try:
            self._git(*args)
        except GitCommandError as exc:
            raise translate_git_error("add worktree", exc, path=path, ref=ref) from exc

    def remove_worktree(self, path: str, force: bool = False) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(path)
        try:
            self._git(*args)
        except GitCommandError as exc:
            raise translate_git_error("remove", exc, path=path) from exc

    def get_status(self, path: str) -> Status:
        try:
            output = self._git("status", "--porcelain=v2", "--branch", cwd=path)
        except GitCommandError as exc:
            raise translate_git_error("get-status", exc, path=path) from exc
        return parse_status_v2(output.stdout)

    def resolve_ref(self, ref: str, cwd: Path | str | None = None) -> str:
        try:
            output = self._git("rev-parse", "--verify", ref, cwd=cwd)
        except GitCommandError as exc:
            raise translate_git_error("resolve", exc, ref=ref) from exc
        return output.stdout.strip()

    def get_branch(self, ref: str) -> Branch:
        head = self.resolve_ref(ref)
        name = _sanitize_branch(ref)
        try:
            output = self._git(
                "for-each-ref",
                "--format=%(refname:short)\t%(upstream:short)\t%(objectname)",
                BRANCH_REF_PREFIX + name,
            )
        except GitCommandError as exc:
            raise translate_git_error("get-branch", exc, ref=ref) from exc
        line = output.stdout.strip()
        if not line:
            return Branch(name=ref, head=head)
        parts = line.split("\t")
        upstream = parts[1] if len(parts) > 1 else ""
        return Branch(name=parts[0], head=head, upstream=upstream)

    def branch_upstreams(self) -> dict[str, str]:
        """Map every local branch with an upstream to that upstream's short name."""
        try:
            output = self._git("for-each-ref", "--format=%(refname:short)\t%(upstream:short)", "refs/heads")
        except GitCommandError as exc:
            raise translate_git_error("list-branches", exc) from exc
        upstreams: dict[str, str] = {}
        for line in output.stdout.splitlines():
            name, _, upstream = line.partition("\t")
            if name and upstream:
                upstreams[name] = upstream
        return upstreams

    def local_branches(self) -> list[str]:
        try:
            output = self._git("for-each-ref", "--format=%(refname:short)", "refs/heads")
        except GitCommandError as exc:
            raise translate_git_error("list-branches", exc) from exc
        return [line.strip() for line in output.stdout.splitlines() if line.strip()]

    def prune_worktrees(self) -> None:
        try:
            self._git("worktree", "prune")
        except GitCommandError as exc:
            raise translate_git_error("prune-worktrees", exc) from exc

    def delete_branch(self, name: str) -> None:
        try:
            self._git("branch", "-D", name)
        except GitCommandError as exc:
            raise translate_git_error("delete-branch", exc, branch=name) from exc

    def stash(self, path: str, message: str) -> None:
        try:
            self._git("stash", "push", "--include-untracked", "-m", message, cwd=path)
        except GitCommandError as exc:
            raise translate_git_error("stash", exc, path=path, message=message) from exc

    def create_patch(self, path: str, patch_file: Path) -> None:
        try:
            patch_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceError(ErrorCode.GIT, "failed to create patch directory", cause=exc).with_detail(
                "dir", str(patch_file.parent)
            ) from exc
        # intent-to-add makes untracked files show up in the diff against HEAD
        try:
            self._git("add", "--all", "--intent-to-add", cwd=path)
            output = self._git("diff", "--binary", "HEAD", cwd=path)
        except GitCommandError as exc:
            raise translate_git_error("generate-diff", exc, path=path) from exc
        try:
            patch_file.write_text(output.stdout)
        except OSError as exc:
            raise WorkspaceError(ErrorCode.GIT, "failed to write patch", cause=exc).with_detail(
                "file", str(patch_file)
            ) from exc

    def create_wip_commit(self, path: str, message: str) -> str:
        try:
            self._git("add", "-A", cwd=path)
        except GitCommandError as exc:
            raise translate_git_error("add-changes", exc, path=path) from exc
        try:
            self._git("commit", "--no-verify", "-m", message, cwd=path)
        except GitCommandError as exc:
            raise translate_git_error("create-wip-commit", exc, path=path, message=message) from exc
        return self.resolve_ref("HEAD", cwd=path)

    def update_ref(self, ref: str, sha: str) -> None:
        try:
            self._git("update-ref", ref, sha)
        except GitCommandError as exc:
            raise translate_git_error("update-ref", exc, ref=ref) from exc


__all__ = [
    "run_git",
    "Repository",
    "Worktree",
    "Status",
    "Branch",
    "AddOptions",
    "parse_worktree_list",
    "parse_status_v2",
    "translate_git_error",
]
