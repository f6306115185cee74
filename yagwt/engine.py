"""Workspace manager: merges live worktrees with persisted metadata."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import timedelta
from pathlib import Path

from .cleanup import CleanupPlan, generate_plan, get_policy
from .config import Config, load_config
from .exceptions import ErrorCode, WorkspaceError, config_error, not_found
from .filters import parse_filter
from .git import BRANCH_REF_PREFIX, AddOptions, Repository, Status, Worktree
from .locking import DEFAULT_TIMEOUT, FileLock
from .metadata import (
    STORE_DIR_NAME,
    ActivityMetadata,
    EphemeralMetadata,
    MetadataStore,
    WorkspaceMetadata,
    build_index,
    utcnow,
)
from .models import (
    NO_METADATA_ID,
    ActivityInfo,
    CleanupOptions,
    CreateOptions,
    DoctorOptions,
    DoctorReport,
    EphemeralInfo,
    ListOptions,
    OnDirty,
    PlanWarning,
    RemoveOptions,
    Repair,
    StatusInfo,
    Target,
    Workspace,
    WorkspaceFlags,
)
from .selector import Selector, SelectorType, normalize_path, parse_selector, resolve_selector

log = logging.getLogger(__name__)

LOCK_FILE_NAME = "lock"
DEFAULT_WIP_MESSAGE = "WIP: yagwt auto-commit before removal"
WIP_REF_PREFIX = "refs/yagwt/wip/"


def _coerce_selector(selector: Selector | str) -> Selector:
    if isinstance(selector, Selector):
        return selector
    return parse_selector(selector)


def _slug_from_target(target: str) -> str:
    name = target[len(BRANCH_REF_PREFIX) :] if target.startswith(BRANCH_REF_PREFIX) else target
    return name.replace("/", "-")


def _apply_metadata_flags(flags: WorkspaceFlags, meta: WorkspaceMetadata) -> None:
    flags.pinned = meta.flags.get("pinned", flags.pinned)
    flags.ephemeral = meta.flags.get("ephemeral", flags.ephemeral)
    flags.locked = meta.flags.get("locked", flags.locked)


def _ephemeral_info(meta: WorkspaceMetadata) -> EphemeralInfo | None:
    if meta.ephemeral is None:
        return None
    return EphemeralInfo(ttl_seconds=meta.ephemeral.ttl_seconds, expires_at=meta.ephemeral.expires_at)


def _activity_info(meta: WorkspaceMetadata) -> ActivityInfo:
    return ActivityInfo(
        last_opened_at=meta.activity.last_opened_at,
        last_git_activity_at=meta.activity.last_git_activity_at,
    )


class WorkspaceManager:
    """Lifecycle operations over workspaces.

    Reads never take the lock and may observe a document another process is
    about to replace. Every write holds the lock across load, validate,
    mutate and save.
    """

    def __init__(
        self,
        repo: Repository,
        store: MetadataStore,
        config: Config | None = None,
        *,
        lock_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.repo = repo
        self.store = store
        self.config = config or Config()
        self.lock_path = Path(repo.git_dir) / STORE_DIR_NAME / LOCK_FILE_NAME
        self.lock_timeout = lock_timeout

    @classmethod
    def open(cls, path: Path | str, config_path: Path | None = None) -> "WorkspaceManager":
        repo = Repository.open(path)
        store = MetadataStore(repo.git_dir)
        config = load_config(repo.root, config_path)
        return cls(repo, store, config)

    def _lock(self) -> FileLock:
        return FileLock(self.lock_path, timeout=self.lock_timeout)

    # -- Read operations -----------------------------------------------------

    def list(self, opts: ListOptions | None = None) -> list[Workspace]:
        opts = opts or ListOptions()
        workspaces = self._merge(self.repo.list_worktrees())
        if not opts.include_all:
            workspaces = [ws for ws in workspaces if not ws.is_primary]
        if opts.filter:
            predicate = parse_filter(opts.filter)
            workspaces = [ws for ws in workspaces if predicate.match(ws)]
        return workspaces

    def _merge(self, worktrees: list[Worktree]) -> list[Workspace]:
        metadata = self.store.load()
        by_path = {normalize_path(meta.path): meta for meta in metadata.workspaces.values()}
        upstreams = self._upstreams() if any(wt.branch for wt in worktrees) else {}

        workspaces: list[Workspace] = []
        seen: set[str] = set()
        for position, wt in enumerate(worktrees):
            key = normalize_path(wt.path)
            seen.add(key)
            missing = wt.prunable or not os.path.isdir(wt.path)
            ws = Workspace(
                id=NO_METADATA_ID,
                name=os.path.basename(wt.path.rstrip(os.sep)),
                path=wt.path,
                is_primary=position == 0,
                target=self._target_for(wt, upstreams),
                flags=WorkspaceFlags(locked=wt.locked, broken=missing),
                status=StatusInfo() if missing else self._status_info(wt.path),
            )
            meta = by_path.get(key)
            if meta is not None:
                ws.id = meta.id
                ws.name = meta.name
                _apply_metadata_flags(ws.flags, meta)
                ws.ephemeral = _ephemeral_info(meta)
                ws.activity = _activity_info(meta)
            workspaces.append(ws)

        for key, meta in by_path.items():
            if key in seen:
                continue
            flags = WorkspaceFlags(broken=True)
            _apply_metadata_flags(flags, meta)
            workspaces.append(
                Workspace(
                    id=meta.id,
                    name=meta.name,
                    path=meta.path,
                    flags=flags,
                    ephemeral=_ephemeral_info(meta),
                    activity=_activity_info(meta),
                )
            )
        return workspaces

    def _upstreams(self) -> dict[str, str]:
        try:
            return self.repo.branch_upstreams()
        except WorkspaceError as exc:
            log.debug("Could not read branch upstreams: %s", exc)
            return {}

    @staticmethod
    def _target_for(wt: Worktree, upstreams: dict[str, str]) -> Target:
        if wt.branch:
            return Target(
                type="branch",
                ref=BRANCH_REF_PREFIX + wt.branch,
                short=wt.branch,
                head_sha=wt.head,
                upstream=upstreams.get(wt.branch, ""),
            )
        return Target(type="commit", ref=wt.head, short=wt.head[:7], head_sha=wt.head)

    def _status_info(self, path: str) -> StatusInfo:
        try:
            status = self.repo.get_status(path)
        except WorkspaceError as exc:
            log.debug("Status unavailable for %s: %s", path, exc)
            status = Status()
        return StatusInfo(
            dirty=status.dirty,
            conflicts=status.conflicts,
            ahead=status.ahead,
            behind=status.behind,
            branch=status.branch,
            detached=status.detached,
        )

    def resolve(self, selector: Selector | str) -> list[Workspace]:
        return resolve_selector(self.list(), _coerce_selector(selector))

    def get(self, selector: Selector | str) -> Workspace:
        selector = _coerce_selector(selector)
        matches = self.resolve(selector)
        if not matches:
            raise not_found("workspace not found").with_detail("selector", str(selector))
        if len(matches) > 1:
            raise (
                WorkspaceError(ErrorCode.AMBIGUOUS, "selector matches multiple workspaces")
                .with_detail("selector", str(selector))
                .with_detail("count", len(matches))
                .with_hint("Use a more specific selector (id:, name:, or path:)")
            )
        return matches[0]

    # -- Write operations ----------------------------------------------------

    def create(self, opts: CreateOptions) -> Workspace:
        if not opts.target and not opts.detached:
            raise config_error("a target branch or commit is required").with_hint(
                "Pass a branch name, or --detach to start from HEAD"
            )
        if opts.new_branch and opts.detached:
            raise config_error("--new-branch and --detach cannot be combined")

        with self._lock():
            ws_path = normalize_path(opts.dir) if opts.dir else self._derive_path(opts)
            add_opts = AddOptions(detach=opts.detached, checkout=opts.checkout)
            ref = opts.target
            if opts.new_branch:
                add_opts.new_branch = opts.target
                ref = opts.base
            self.repo.add_worktree(ws_path, ref, add_opts)
            # record the path the way git reports it so List can join on it
            added = self._find_worktree(ws_path)
            if added is not None:
                ws_path = normalize_path(added.path)

            ws_id = str(uuid.uuid4())
            now = utcnow()
            meta = WorkspaceMetadata(
                id=ws_id,
                name=opts.name or self._derive_name(opts, ws_path),
                path=ws_path,
                flags={"pinned": opts.pin, "ephemeral": opts.ephemeral, "locked": False},
                activity=ActivityMetadata(last_git_activity_at=now),
                branch=added.branch if added is not None else "",
                created_at=now,
                updated_at=now,
            )
            if opts.ephemeral and opts.ttl and opts.ttl > timedelta(0):
                meta.ephemeral = EphemeralMetadata(ttl_seconds=int(opts.ttl.total_seconds()), expires_at=now + opts.ttl)

            try:
                self.store.set(ws_id, meta)
            except WorkspaceError as exc:
                self._rollback_worktree(ws_path, exc)
                raise
            log.debug("Created workspace %s (%s) at %s", meta.name, ws_id, ws_path)

        return self.get(Selector(SelectorType.ID, ws_id))

    def _rollback_worktree(self, ws_path: str, cause: WorkspaceError) -> None:
        try:
            self.repo.remove_worktree(ws_path, force=True)
        except WorkspaceError as rollback_exc:
            log.warning("Could not remove worktree %s after metadata failure: %s", ws_path, rollback_exc)
            cause.with_detail("rollback_error", str(rollback_exc))
            cause.with_hint("Remove the orphaned worktree manually", f"git worktree remove --force {ws_path}")

    def _derive_path(self, opts: CreateOptions) -> str:
        dir_name = opts.name
        if not dir_name:
            if not opts.target:
                raise config_error("cannot derive workspace path: name or target required").with_hint(
                    "Pass --name or --dir"
                )
            dir_name = self._apply_template(_slug_from_target(opts.target))
        root = self.repo.root
        strategy = self.config.workspace.root_strategy
        if strategy == "sibling":
            return normalize_path(str(root.parent / dir_name))
        if strategy == "inside":
            return normalize_path(str(root / (self.config.workspace.root_dir or ".workspaces") / dir_name))
        raise config_error("invalid rootStrategy in config").with_detail("strategy", strategy)

    def _apply_template(self, slug: str) -> str:
        template = self.config.workspace.name_template or "{branch}"
        try:
            return template.format(branch=slug, repo=self.repo.root.name)
        except (KeyError, IndexError, ValueError) as exc:
            raise config_error("invalid nameTemplate", exc).with_detail("template", template) from exc

    def _derive_name(self, opts: CreateOptions, ws_path: str) -> str:
        if opts.target and not opts.detached:
            return _slug_from_target(opts.target)
        return os.path.basename(ws_path)

    def _find_worktree(self, ws_path: str) -> Worktree | None:
        key = os.path.realpath(ws_path)
        for wt in self.repo.list_worktrees():
            if os.path.realpath(wt.path) == key:
                return wt
        return None

    def remove(self, selector: Selector | str, opts: RemoveOptions | None = None) -> None:
        opts = opts or RemoveOptions()
        try:
            on_dirty = OnDirty(opts.on_dirty or OnDirty.FAIL.value)
        except ValueError:
            raise (
                config_error("invalid on-dirty strategy")
                .with_detail("value", opts.on_dirty)
                .with_detail("valid", ", ".join(item.value for item in OnDirty))
            ) from None

        with self._lock():
            ws = self.get(selector)
            # pinned and locked are checked before anything that touches git
            if ws.flags.pinned:
                raise (
                    WorkspaceError(ErrorCode.LOCKED, "workspace is pinned")
                    .with_detail("id", ws.id)
                    .with_detail("name", ws.name)
                    .with_hint("Unpin the workspace first", f"yagwt unpin {ws.name}")
                )
            if ws.flags.locked:
                raise (
                    WorkspaceError(ErrorCode.LOCKED, "workspace is locked")
                    .with_detail("id", ws.id)
                    .with_detail("name", ws.name)
                    .with_hint("Unlock the workspace first", f"yagwt unlock {ws.name}")
                )
            if ws.is_primary:
                raise (
                    WorkspaceError(ErrorCode.POLICY, "cannot remove the primary workspace")
                    .with_detail("path", ws.path)
                )
            if ws.flags.broken:
                self._remove_broken(ws, on_dirty)
                return

            force = on_dirty is OnDirty.FORCE
            if ws.status.dirty:
                force = self._preserve_changes(ws, on_dirty, opts) or force
            self.repo.remove_worktree(ws.path, force=force)
            if ws.has_metadata:
                self.store.delete(ws.id)
            if opts.delete_branch and ws.branch:
                self.repo.delete_branch(ws.branch)
            log.debug("Removed workspace %s at %s", ws.name, ws.path)

    def _preserve_changes(self, ws: Workspace, on_dirty: OnDirty, opts: RemoveOptions) -> bool:
        """Save uncommitted work according to `on_dirty`; return whether git must force."""
        if on_dirty is OnDirty.FAIL:
            raise (
                WorkspaceError(ErrorCode.DIRTY, "workspace has uncommitted changes")
                .with_detail("id", ws.id)
                .with_detail("name", ws.name)
                .with_hint("Commit or stash changes, or use --on-dirty=force", f"git -C {ws.path} status")
            )
        if on_dirty is OnDirty.STASH:
            self.repo.stash(ws.path, f"yagwt: {ws.name} before removal")
            return False
        if on_dirty is OnDirty.WIP_COMMIT:
            sha = self.repo.create_wip_commit(ws.path, opts.wip_message or DEFAULT_WIP_MESSAGE)
            if not ws.branch:
                # a detached commit dies with the worktree's HEAD unless a ref points at it
                ref = f"{WIP_REF_PREFIX}{ws.id if ws.has_metadata else sha[:12]}"
                self.repo.update_ref(ref, sha)
                log.info("Saved detached WIP commit of %s as %s", ws.name, ref)
            return False
        if on_dirty is OnDirty.PATCH:
            patch_dir = Path(opts.patch_dir) if opts.patch_dir else Path(self.repo.git_dir) / STORE_DIR_NAME / "patches"
            stamp = utcnow().strftime("%Y%m%dT%H%M%SZ")
            patch_file = patch_dir / f"{ws.name}-{stamp}.patch"
            self.repo.create_patch(ws.path, patch_file)
            log.info("Saved uncommitted changes of %s to %s", ws.name, patch_file)
            return True
        return True

    def _remove_broken(self, ws: Workspace, on_dirty: OnDirty) -> None:
        if on_dirty is not OnDirty.FORCE:
            raise (
                WorkspaceError(ErrorCode.BROKEN, "workspace worktree is missing")
                .with_detail("id", ws.id)
                .with_detail("name", ws.name)
                .with_detail("path", ws.path)
                .with_hint("Forget the missing workspace", "yagwt doctor --forget-missing")
            )
        self.repo.prune_worktrees()
        if ws.has_metadata:
            self.store.delete(ws.id)

    def rename(self, selector: Selector | str, new_name: str) -> None:
        if not new_name.strip():
            raise config_error("workspace name cannot be empty")
        with self._lock():
            ws = self.get(selector)
            self._require_metadata(ws)
            clashes = [other for other in self.resolve(Selector(SelectorType.NAME, new_name)) if other.id != ws.id]
            if clashes:
                raise WorkspaceError(ErrorCode.CONFLICT, "workspace with this name already exists").with_detail(
                    "name", new_name
                )
            meta = self.store.get(ws.id)
            meta.name = new_name
            meta.updated_at = utcnow()
            self.store.set(ws.id, meta)

    def move(self, selector: Selector | str, new_path: str) -> None:
        raise config_error("move operation not yet implemented")

    def pin(self, selector: Selector | str) -> None:
        self._set_flag(selector, "pinned", True)

    def unpin(self, selector: Selector | str) -> None:
        self._set_flag(selector, "pinned", False)

    def lock(self, selector: Selector | str) -> None:
        self._set_flag(selector, "locked", True)

    def unlock(self, selector: Selector | str) -> None:
        self._set_flag(selector, "locked", False)

    def _set_flag(self, selector: Selector | str, flag: str, value: bool) -> None:
        with self._lock():
            ws = self.get(selector)
            self._require_metadata(ws)
            meta = self.store.get(ws.id)
            meta.flags[flag] = value
            meta.updated_at = utcnow()
            self.store.set(ws.id, meta)

    def touch(self, selector: Selector | str) -> Workspace:
        """Record that a workspace was opened."""
        with self._lock():
            ws = self.get(selector)
            if not ws.has_metadata:
                return ws
            meta = self.store.get(ws.id)
            meta.activity.last_opened_at = utcnow()
            self.store.set(ws.id, meta)
            ws.activity.last_opened_at = meta.activity.last_opened_at
        return ws

    @staticmethod
    def _require_metadata(ws: Workspace) -> None:
        if not ws.has_metadata:
            raise (
                WorkspaceError(ErrorCode.BROKEN, "workspace has no metadata")
                .with_detail("path", ws.path)
                .with_hint("Inspect untracked worktrees", "yagwt doctor")
            )

    # -- Maintenance ---------------------------------------------------------

    def cleanup(self, opts: CleanupOptions | None = None) -> CleanupPlan:
        opts = opts or CleanupOptions()
        policy = get_policy(opts.policy)
        candidates = [ws for ws in self.list() if not ws.is_primary and not ws.flags.broken]
        plan = generate_plan(candidates, policy)
        plan.dry_run = opts.dry_run

        configured = self.config.policies.get(policy.name)
        on_dirty = opts.on_dirty or (configured.on_dirty if configured else "") or OnDirty.FAIL.value
        for action in plan.actions:
            action.on_dirty = on_dirty
        if opts.dry_run:
            return plan

        actions = plan.actions[: opts.max] if opts.max > 0 else plan.actions
        for action in actions:
            ws = action.workspace
            selector = (
                Selector(SelectorType.ID, ws.id) if ws.has_metadata else Selector(SelectorType.PATH, ws.path)
            )
            try:
                self.remove(selector, RemoveOptions(on_dirty=on_dirty))
            except WorkspaceError as exc:
                log.warning("Cleanup could not remove %s: %s", ws.name, exc)
                plan.warnings.append(PlanWarning("removal_failed", f"Workspace '{ws.name}' was not removed: {exc}"))
                continue
            plan.removed.append(ws.name)
        return plan

    def doctor(self, opts: DoctorOptions | None = None) -> DoctorReport:
        opts = opts or DoctorOptions()
        if opts.dry_run:
            return self._diagnose()

        with self._lock():
            report = self._diagnose()
            if opts.forget_missing and report.broken:
                self.repo.prune_worktrees()
            for repair in report.repairs:
                if repair.workspace_id and opts.forget_missing:
                    self.store.delete(repair.workspace_id)
                    repair.applied = True
            self.store.rebuild_index()
            for repair in report.repairs:
                if not repair.workspace_id:
                    repair.applied = True
        return report

    def _diagnose(self) -> DoctorReport:
        report = DoctorReport()
        for ws in self.list():
            if ws.flags.broken and ws.has_metadata:
                report.broken.append(ws)
                report.repairs.append(
                    Repair(ws.id, f"worktree missing at {ws.path}", "forget metadata (--forget-missing)")
                )
            elif not ws.has_metadata and not ws.is_primary:
                report.untracked.append(ws)
                report.warnings.append(
                    PlanWarning("untracked_worktree", f"Worktree at {ws.path} has no yagwt metadata")
                )

        metadata = self.store.load()
        current = metadata.index.to_dict()
        collisions = build_index(metadata)
        index_stale = metadata.index.to_dict() != current
        for collision in collisions:
            report.warnings.append(PlanWarning("index_collision", f"{collision.message}: {collision.details}"))
        if index_stale:
            report.repairs.append(Repair("", "metadata index out of date", "rebuild index"))
        return report


__all__ = ["WorkspaceManager"]
