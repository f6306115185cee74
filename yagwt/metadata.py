"""Persistent workspace metadata, stored in <gitDir>/yagwt/meta.json."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .exceptions import ErrorCode, WorkspaceError, config_error, not_found

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1
STORE_DIR_NAME = "yagwt"
STORE_FILE_NAME = "meta.json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class EphemeralMetadata:
    ttl_seconds: int
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"ttlSeconds": self.ttl_seconds, "expiresAt": format_timestamp(self.expires_at)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> EphemeralMetadata:
        return cls(ttl_seconds=int(d.get("ttlSeconds", 0)), expires_at=parse_timestamp(d["expiresAt"]))


@dataclass
class ActivityMetadata:
    last_opened_at: datetime | None = None
    last_git_activity_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.last_opened_at is not None:
            data["lastOpenedAt"] = format_timestamp(self.last_opened_at)
        if self.last_git_activity_at is not None:
            data["lastGitActivityAt"] = format_timestamp(self.last_git_activity_at)
        return data

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ActivityMetadata:
        return cls(
            last_opened_at=parse_timestamp(d.get("lastOpenedAt")),
            last_git_activity_at=parse_timestamp(d.get("lastGitActivityAt")),
        )


@dataclass
class WorkspaceMetadata:
    """Per-workspace persistent data."""

    id: str
    name: str
    path: str
    flags: dict[str, bool] = field(default_factory=dict)
    ephemeral: EphemeralMetadata | None = None
    activity: ActivityMetadata = field(default_factory=ActivityMetadata)
    branch: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def flag(self, key: str) -> bool:
        return bool(self.flags.get(key, False))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "flags": dict(self.flags),
            "activity": self.activity.to_dict(),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.ephemeral is not None:
            data["ephemeral"] = self.ephemeral.to_dict()
        if self.branch:
            data["branch"] = self.branch
        return data

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> WorkspaceMetadata:
        ephemeral = d.get("ephemeral")
        return cls(
            id=d.get("id", ""),
            name=d.get("name", ""),
            path=d.get("path", ""),
            flags={key: bool(value) for key, value in (d.get("flags") or {}).items()},
            ephemeral=EphemeralMetadata.from_dict(ephemeral) if ephemeral else None,
            activity=ActivityMetadata.from_dict(d.get("activity") or {}),
            branch=d.get("branch", ""),
            created_at=parse_timestamp(d.get("createdAt")) or utcnow(),
            updated_at=parse_timestamp(d.get("updatedAt")) or utcnow(),
        )


@dataclass
class Index:
    """Reverse lookups derived from the workspaces map."""

    by_path: dict[str, str] = field(default_factory=dict)
    by_name: dict[str, str] = field(default_factory=dict)
    by_branch: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "byPath": dict(self.by_path),
            "byName": dict(self.by_name),
            "byBranch": {branch: sorted(ids) for branch, ids in self.by_branch.items()},
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Index:
        return cls(
            by_path=dict(d.get("byPath") or {}),
            by_name=dict(d.get("byName") or {}),
            by_branch={branch: list(ids) for branch, ids in (d.get("byBranch") or {}).items()},
        )


@dataclass
class Metadata:
    schema_version: int = SCHEMA_VERSION
    workspaces: dict[str, WorkspaceMetadata] = field(default_factory=dict)
    index: Index = field(default_factory=Index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "workspaces": {ws_id: meta.to_dict() for ws_id, meta in self.workspaces.items()},
            "index": self.index.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Metadata:
        return cls(
            schema_version=d.get("schemaVersion", 0),
            workspaces={
                ws_id: WorkspaceMetadata.from_dict(raw) for ws_id, raw in (d.get("workspaces") or {}).items()
            },
            index=Index.from_dict(d.get("index") or {}),
        )


def rebuild_branch_index(metadata: Metadata) -> None:
    by_branch: dict[str, list[str]] = {}
    for ws_id in sorted(metadata.workspaces):
        branch = metadata.workspaces[ws_id].branch
        if branch:
            by_branch.setdefault(branch, []).append(ws_id)
    metadata.index.by_branch = by_branch


def build_index(metadata: Metadata) -> list[WorkspaceError]:
    """Regenerate every index from the workspaces map.

    Path and name collisions between different IDs are reported but the
    last entry (in ID order) wins.
    """

    collisions: list[WorkspaceError] = []
    metadata.index = Index()
    for ws_id in sorted(metadata.workspaces):
        ws = metadata.workspaces[ws_id]
        existing = metadata.index.by_path.get(ws.path)
        if existing is not None and existing != ws_id:
            collisions.append(
                WorkspaceError(ErrorCode.BROKEN, "duplicate path in metadata")
                .with_detail("path", ws.path)
                .with_detail("id1", existing)
                .with_detail("id2", ws_id)
            )
        existing = metadata.index.by_name.get(ws.name)
        if existing is not None and existing != ws_id:
            collisions.append(
                WorkspaceError(ErrorCode.BROKEN, "duplicate name in metadata")
                .with_detail("name", ws.name)
                .with_detail("id1", existing)
                .with_detail("id2", ws_id)
            )
        metadata.index.by_path[ws.path] = ws_id
        metadata.index.by_name[ws.name] = ws_id
    rebuild_branch_index(metadata)
    for collision in collisions:
        log.warning("%s: %s", collision.message, collision.details)
    return collisions


class MetadataStore:
    """Reads and atomically rewrites the metadata document.

    Every mutation is a full read-modify-write of the document; callers that
    mutate must hold the repository lock.
    """

    def __init__(self, git_dir: Path | str):
        self.path = Path(git_dir) / STORE_DIR_NAME / STORE_FILE_NAME

    def load(self) -> Metadata:
        if not self.path.exists():
            return Metadata()
        try:
            raw = self.path.read_text()
        except OSError as exc:
            raise config_error("failed to read metadata file", exc).with_detail("path", str(self.path)) from exc
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("metadata document must be a JSON object")
            metadata = Metadata.from_dict(data)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise (
                config_error("corrupted metadata file", exc)
                .with_detail("path", str(self.path))
                .with_hint("Try removing the metadata file to start fresh", f"rm {self.path}")
            ) from exc
        if metadata.schema_version != SCHEMA_VERSION:
            raise (
                config_error("unsupported metadata schema version")
                .with_detail("version", metadata.schema_version)
                .with_detail("expected", SCHEMA_VERSION)
            )
        return metadata

    def get(self, ws_id: str) -> WorkspaceMetadata:
        metadata = self.load()
        try:
            return metadata.workspaces[ws_id]
        except KeyError:
            raise not_found("workspace not found").with_detail("id", ws_id) from None

    def find_by_name(self, name: str) -> WorkspaceMetadata:
        return self._find("name", name, self.load(), lambda m: m.index.by_name)

    def find_by_path(self, path: str) -> WorkspaceMetadata:
        return self._find("path", path, self.load(), lambda m: m.index.by_path)

    @staticmethod
    def _find(kind: str, key: str, metadata: Metadata, index_of) -> WorkspaceMetadata:
        ws_id = index_of(metadata).get(key)
        if ws_id is None:
            raise not_found("workspace not found").with_detail(kind, key)
        try:
            return metadata.workspaces[ws_id]
        except KeyError:
            raise (
                WorkspaceError(ErrorCode.BROKEN, "metadata index is inconsistent")
                .with_detail(kind, key)
                .with_detail("id", ws_id)
                .with_hint("Try rebuilding the index", "yagwt doctor")
            ) from None

    def save(self, metadata: Metadata) -> None:
        """Atomically write the full document: temp file, fsync, then rename."""
        metadata.schema_version = SCHEMA_VERSION
        payload = json.dumps(metadata.to_dict(), indent=2, sort_keys=True) + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".meta-", suffix=".tmp")
        except OSError as exc:
            raise config_error("failed to write metadata file", exc).with_detail("path", str(self.path)) from exc
        try:
            with open(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as exc:
            Path(tmp).unlink(missing_ok=True)
            raise config_error("failed to save metadata file", exc).with_detail("path", str(self.path)) from exc
        log.debug("Saved metadata (%d workspaces) to %s", len(metadata.workspaces), self.path)

    def set(self, ws_id: str, meta: WorkspaceMetadata) -> None:
        metadata = self.load()
        previous = metadata.workspaces.get(ws_id)
        meta.id = ws_id
        meta.updated_at = utcnow()
        metadata.workspaces[ws_id] = meta

        index = metadata.index
        if previous is not None:
            if previous.path != meta.path and index.by_path.get(previous.path) == ws_id:
                del index.by_path[previous.path]
            if previous.name != meta.name and index.by_name.get(previous.name) == ws_id:
                del index.by_name[previous.name]
        # last write wins on collision; see DESIGN.md
        for kind, table, key in (("path", index.by_path, meta.path), ("name", index.by_name, meta.name)):
            holder = table.get(key)
            if holder is not None and holder != ws_id:
                log.warning("Index %s %r moves from workspace %s to %s", kind, key, holder, ws_id)
            table[key] = ws_id
        rebuild_branch_index(metadata)
        self.save(metadata)

    def delete(self, ws_id: str) -> None:
        metadata = self.load()
        ws = metadata.workspaces.pop(ws_id, None)
        if ws is None:
            raise not_found("workspace not found").with_detail("id", ws_id)
        if metadata.index.by_path.get(ws.path) == ws_id:
            del metadata.index.by_path[ws.path]
        if metadata.index.by_name.get(ws.name) == ws_id:
            del metadata.index.by_name[ws.name]
        rebuild_branch_index(metadata)
        self.save(metadata)

    def rebuild_index(self) -> list[WorkspaceError]:
        metadata = self.load()
        collisions = build_index(metadata)
        self.save(metadata)
        return collisions


__all__ = [
    "SCHEMA_VERSION",
    "Metadata",
    "WorkspaceMetadata",
    "EphemeralMetadata",
    "ActivityMetadata",
    "Index",
    "MetadataStore",
    "build_index",
    "utcnow",
]
