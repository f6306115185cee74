"""Terminal output for workspaces, plans and errors."""

from __future__ import annotations

import enum
from typing import Any, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .cleanup import CleanupPlan
from .exceptions import WorkspaceError
from .models import DoctorReport, Workspace


class OutputFormat(str, enum.Enum):
    HUMAN = "human"
    JSON = "json"
    PORCELAIN = "porcelain"


def flag_labels(ws: Workspace) -> list[str]:
    labels = []
    if ws.is_primary:
        labels.append("primary")
    for flag in ("pinned", "ephemeral", "locked", "broken"):
        if getattr(ws.flags, flag):
            labels.append(flag)
    return labels


def _target_label(ws: Workspace) -> str:
    if ws.target is None:
        return "-"
    if ws.target.type == "branch":
        return ws.target.short
    return f"({ws.target.short})"


def _status_label(ws: Workspace) -> str:
    if ws.flags.broken:
        return "[red]missing[/red]"
    parts = []
    if ws.status.conflicts:
        parts.append("[red]conflicts[/red]")
    elif ws.status.dirty:
        parts.append("[yellow]dirty[/yellow]")
    else:
        parts.append("[green]clean[/green]")
    if ws.status.ahead:
        parts.append(f"↑{ws.status.ahead}")
    if ws.status.behind:
        parts.append(f"↓{ws.status.behind}")
    return " ".join(parts)


def _raw(console: Console, line: str) -> None:
    # bypass rich rendering so tabs survive
    console.file.write(line + "\n")


def porcelain_line(ws: Workspace) -> str:
    """Tab separated: id, name, path, target, comma separated flags."""
    return "\t".join([ws.id, ws.name, ws.path, _target_label(ws), ",".join(flag_labels(ws)) or "-"])


def render_workspaces(workspaces: Sequence[Workspace], console: Console, fmt: OutputFormat) -> None:
    if fmt is OutputFormat.JSON:
        console.print_json(data=[ws.to_dict() for ws in workspaces])
        return
    if fmt is OutputFormat.PORCELAIN:
        for ws in workspaces:
            _raw(console, porcelain_line(ws))
        return
    if not workspaces:
        console.print("No workspaces found.")
        return
    table = Table(title="Workspaces", show_header=True, header_style="bold")
    table.add_column("Name", no_wrap=True)
    table.add_column("Target", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Flags")
    table.add_column("Path")
    for ws in workspaces:
        table.add_row(
            escape(ws.name), escape(_target_label(ws)), _status_label(ws), ", ".join(flag_labels(ws)), escape(ws.path)
        )
    console.print(table)


def render_workspace(ws: Workspace, console: Console, fmt: OutputFormat) -> None:
    if fmt is OutputFormat.JSON:
        console.print_json(data=ws.to_dict())
        return
    if fmt is OutputFormat.PORCELAIN:
        _raw(console, porcelain_line(ws))
        return
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("ID", escape(ws.id))
    table.add_row("Name", escape(ws.name))
    table.add_row("Path", escape(ws.path))
    table.add_row("Target", escape(_target_label(ws)))
    if ws.target is not None and ws.target.upstream:
        table.add_row("Upstream", escape(ws.target.upstream))
    table.add_row("Status", _status_label(ws))
    table.add_row("Flags", ", ".join(flag_labels(ws)) or "-")
    if ws.ephemeral is not None:
        table.add_row("Expires", ws.ephemeral.expires_at.isoformat())
    if ws.activity.last_opened_at is not None:
        table.add_row("Last opened", ws.activity.last_opened_at.isoformat())
    console.print(table)


def plan_to_dict(plan: CleanupPlan) -> dict[str, Any]:
    return {
        "policy": plan.policy,
        "dryRun": plan.dry_run,
        "actions": [
            {
                "id": action.workspace.id,
                "name": action.workspace.name,
                "path": action.workspace.path,
                "reason": action.reason.code,
                "message": action.reason.message,
                "onDirty": action.on_dirty,
            }
            for action in plan.actions
        ],
        "warnings": [{"code": w.code, "message": w.message} for w in plan.warnings],
        "removed": list(plan.removed),
    }


def render_plan(plan: CleanupPlan, console: Console, fmt: OutputFormat) -> None:
    if fmt is OutputFormat.JSON:
        console.print_json(data=plan_to_dict(plan))
        return
    if fmt is OutputFormat.PORCELAIN:
        for action in plan.actions:
            line = "\t".join([action.workspace.id, action.workspace.name, action.reason.code])
            _raw(console, line)
        return
    if not plan.actions:
        console.print(f"Nothing to clean up (policy: {escape(plan.policy)}).")
    else:
        title = "Cleanup plan (dry run)" if plan.dry_run else "Cleanup"
        table = Table(title=f"{title} · policy {escape(plan.policy)}", show_header=True, header_style="bold")
        table.add_column("Name", no_wrap=True)
        table.add_column("Reason")
        table.add_column("Path")
        for action in plan.actions:
            table.add_row(escape(action.workspace.name), escape(action.reason.message), escape(action.workspace.path))
        console.print(table)
    for warning in plan.warnings:
        console.print(f"[yellow]⚠[/yellow] {escape(warning.message)}")
    if not plan.dry_run:
        console.print(f"[green]Removed {len(plan.removed)} workspace(s)[/green]")


def report_to_dict(report: DoctorReport) -> dict[str, Any]:
    return {
        "broken": [ws.to_dict() for ws in report.broken],
        "untracked": [ws.to_dict() for ws in report.untracked],
        "repairs": [
            {"workspaceId": r.workspace_id, "issue": r.issue, "fix": r.fix, "applied": r.applied}
            for r in report.repairs
        ],
        "warnings": [{"code": w.code, "message": w.message} for w in report.warnings],
    }


def render_report(report: DoctorReport, console: Console, fmt: OutputFormat) -> None:
    if fmt is OutputFormat.JSON:
        console.print_json(data=report_to_dict(report))
        return
    if fmt is OutputFormat.PORCELAIN:
        for r in report.repairs:
            state = "applied" if r.applied else "pending"
            _raw(console, "\t".join([r.workspace_id or "-", state, r.issue]))
        return
    if not (report.repairs or report.warnings):
        console.print("[green]✓[/green] No problems found.")
        return
    for r in report.repairs:
        mark = "[green]✓[/green]" if r.applied else "[yellow]•[/yellow]"
        console.print(f"{mark} {escape(r.issue)} → {escape(r.fix)}")
    for warning in report.warnings:
        console.print(f"[yellow]⚠[/yellow] {escape(warning.message)}")


def render_error(err: WorkspaceError, console: Console, fmt: OutputFormat) -> None:
    if fmt is OutputFormat.JSON:
        console.print_json(data={"error": err.to_dict()})
        return
    console.print(f"[red]✗ Error:[/red] {escape(err.message)}", highlight=False)
    for key, value in err.details.items():
        console.print(f"  [dim]{key}:[/dim] {escape(str(value))}", highlight=False)
    if err.cause is not None:
        console.print(f"  [dim]cause:[/dim] {escape(str(err.cause))}", highlight=False)
    for hint in err.hints:
        line = f"[yellow]hint:[/yellow] {escape(hint.message)}"
        if hint.command:
            line += f"\n  $ {escape(hint.command)}"
        console.print(line, highlight=False)


__all__ = [
    "OutputFormat",
    "render_workspaces",
    "render_workspace",
    "render_plan",
    "render_report",
    "render_error",
    "porcelain_line",
    "plan_to_dict",
    "report_to_dict",
]
