"""Typer CLI entrypoint for yagwt."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console

from . import __version__
from .engine import WorkspaceManager
from .exceptions import ErrorCode, WorkspaceError
from .filters import parse_duration
from .interactive import confirm, prompt_target, text_input
from .models import CleanupOptions, CreateOptions, DoctorOptions, ListOptions, OnDirty, RemoveOptions
from .render import (
    OutputFormat,
    render_error,
    render_plan,
    render_report,
    render_workspace,
    render_workspaces,
)

log = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_INVALID_USAGE = 2
EXIT_SAFETY_REFUSAL = 3
EXIT_PARTIAL_SUCCESS = 4
EXIT_NOT_FOUND = 5

_EXIT_CODES = {
    ErrorCode.NOT_FOUND: EXIT_NOT_FOUND,
    ErrorCode.AMBIGUOUS: EXIT_INVALID_USAGE,
    ErrorCode.CONFIG: EXIT_INVALID_USAGE,
    ErrorCode.DIRTY: EXIT_SAFETY_REFUSAL,
    ErrorCode.LOCKED: EXIT_SAFETY_REFUSAL,
    ErrorCode.POLICY: EXIT_SAFETY_REFUSAL,
}

app = typer.Typer(
    help="Yet another git worktree manager: workspaces with metadata, selectors and cleanup policies.",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@dataclass(slots=True)
class AppState:
    console: Console
    err_console: Console
    fmt: OutputFormat = OutputFormat.HUMAN
    repo: Path | None = None
    config_path: Path | None = None
    quiet: bool = False
    assume_yes: bool = False
    verbose: bool = False
    _manager: WorkspaceManager | None = field(default=None, repr=False)

    @property
    def machine(self) -> bool:
        return self.fmt is not OutputFormat.HUMAN

    def manager(self) -> WorkspaceManager:
        if self._manager is None:
            self._manager = WorkspaceManager.open(self.repo or Path(os.getcwd()), self.config_path)
        return self._manager

    def success(self, message: str) -> None:
        if not self.quiet and not self.machine:
            self.console.print(f"[green]✓[/green] {message}")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@app.callback()
def main(
    ctx: typer.Context,
    repo: Optional[Path] = typer.Option(
        None,
        "--repo",
        "-r",
        help="Repository to operate on (defaults to the current directory).",
        dir_okay=True,
        file_okay=False,
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a config.toml to use."),
    json_: bool = typer.Option(False, "--json", help="Machine-readable JSON output."),
    porcelain: bool = typer.Option(False, "--porcelain", help="Stable tab-separated output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to confirmation prompts."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    configure_logging(verbose)
    fmt = OutputFormat.HUMAN
    if json_:
        fmt = OutputFormat.JSON
    elif porcelain:
        fmt = OutputFormat.PORCELAIN
    ctx.obj = AppState(
        console=Console(),
        err_console=Console(stderr=True),
        fmt=fmt,
        repo=repo,
        config_path=config,
        quiet=quiet,
        assume_yes=yes,
        verbose=verbose,
    )


def _require_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if not isinstance(state, AppState):  # pragma: no cover
        raise typer.Exit(EXIT_FAILURE)
    return state


@contextmanager
def _errors(state: AppState) -> Iterator[None]:
    try:
        yield
    except WorkspaceError as exc:
        log.debug("Command failed", exc_info=True)
        # JSON errors stay on stdout so scripts can parse a single stream
        target = state.console if state.fmt is OutputFormat.JSON else state.err_console
        render_error(exc, target, state.fmt)
        raise typer.Exit(_EXIT_CODES.get(exc.code, EXIT_FAILURE)) from exc


@app.command()
def version(ctx: typer.Context) -> None:
    """Show the yagwt version."""
    state = _require_state(ctx)
    if state.fmt is OutputFormat.JSON:
        state.console.print_json(data={"version": __version__})
    else:
        typer.echo(f"yagwt {__version__}")


@app.command()
def ls(
    ctx: typer.Context,
    filter_: str = typer.Option("", "--filter", "-f", help="Filter expression, e.g. 'flag:pinned,status:dirty'."),
    all_: bool = typer.Option(False, "--all", "-a", help="Include the primary workspace."),
) -> None:
    """List workspaces."""
    state = _require_state(ctx)
    with _errors(state):
        workspaces = state.manager().list(ListOptions(filter=filter_, include_all=all_))
    render_workspaces(workspaces, state.console, state.fmt)


@app.command()
def show(ctx: typer.Context, selector: str = typer.Argument(..., help="Workspace selector.")) -> None:
    """Show details for one workspace."""
    state = _require_state(ctx)
    with _errors(state):
        ws = state.manager().get(selector)
    render_workspace(ws, state.console, state.fmt)


@app.command()
def path(ctx: typer.Context, selector: str = typer.Argument(..., help="Workspace selector.")) -> None:
    """Print a workspace's path, e.g. `cd $(yagwt path auth)`."""
    state = _require_state(ctx)
    with _errors(state):
        ws = state.manager().touch(selector)
    typer.echo(ws.path)


@app.command()
def resolve(ctx: typer.Context, selector: str = typer.Argument(..., help="Workspace selector.")) -> None:
    """Show every workspace a selector matches."""
    state = _require_state(ctx)
    with _errors(state):
        matches = state.manager().resolve(selector)
    render_workspaces(matches, state.console, state.fmt)


@app.command()
def new(
    ctx: typer.Context,
    target: Optional[str] = typer.Argument(None, help="Branch or commit to check out."),
    name: str = typer.Option("", "--name", "-n", help="Workspace name (defaults to one derived from the target)."),
    dir_: str = typer.Option("", "--dir", "-d", help="Directory for the worktree."),
    base: str = typer.Option("", "--base", "-b", help="Start point when creating a new branch."),
    new_branch: bool = typer.Option(False, "--new-branch", help="Create TARGET as a new branch."),
    detach: bool = typer.Option(False, "--detach", help="Check out a detached HEAD."),
    ephemeral: bool = typer.Option(False, "--ephemeral", help="Mark as ephemeral (eligible for cleanup)."),
    ttl: str = typer.Option("", "--ttl", help="Time-to-live for ephemeral workspaces, e.g. 7d or 24h."),
    pin: bool = typer.Option(False, "--pin", help="Pin the workspace so it is never removed."),
    no_checkout: bool = typer.Option(False, "--no-checkout", help="Do not check out files."),
) -> None:
    """Create a workspace. Without TARGET, prompts for a branch."""
    state = _require_state(ctx)
    with _errors(state):
        manager = state.manager()
        if target is None and not detach:
            in_use = [ws.branch for ws in manager.list() if ws.branch]
            target, new_branch = prompt_target(manager.repo.local_branches(), in_use)
            if new_branch and not base:
                base = text_input("Start point (branch, tag, or commit)", default="HEAD")
            if not name:
                name = text_input("Workspace name", default=target.replace("/", "-"))
        opts = CreateOptions(
            target=target or "",
            name=name,
            dir=dir_,
            base=base,
            new_branch=new_branch,
            detached=detach,
            ephemeral=ephemeral or bool(ttl),
            ttl=parse_duration(ttl) if ttl else None,
            pin=pin,
            checkout=not no_checkout,
        )
        ws = manager.create(opts)
    render_workspace(ws, state.console, state.fmt)
    state.success("Workspace created")


@app.command()
def rm(
    ctx: typer.Context,
    selector: str = typer.Argument(..., help="Workspace selector."),
    on_dirty: str = typer.Option("", "--on-dirty", help="fail, stash, patch, wip-commit or force."),
    patch_dir: str = typer.Option("", "--patch-dir", help="Directory for patches (with --on-dirty=patch)."),
    wip_message: str = typer.Option("", "--wip-message", help="Commit message (with --on-dirty=wip-commit)."),
    delete_branch: bool = typer.Option(False, "--delete-branch", help="Also delete the branch."),
    force: bool = typer.Option(False, "--force", "-f", help="Shortcut for --on-dirty=force when no strategy is given."),
) -> None:
    """Remove a workspace and its worktree."""
    state = _require_state(ctx)
    opts = RemoveOptions(
        on_dirty=on_dirty or (OnDirty.FORCE.value if force else ""),
        patch_dir=patch_dir,
        wip_message=wip_message,
        delete_branch=delete_branch,
    )
    with _errors(state):
        state.manager().remove(selector, opts)
    state.success(f"Removed workspace {selector}")


@app.command()
def rename(
    ctx: typer.Context,
    selector: str = typer.Argument(..., help="Workspace selector."),
    new_name: str = typer.Argument(..., help="New workspace name."),
) -> None:
    """Rename a workspace."""
    state = _require_state(ctx)
    with _errors(state):
        state.manager().rename(selector, new_name)
    state.success(f"Renamed workspace to {new_name}")


def _flag_command(action: str, done: str):
    def command(ctx: typer.Context, selector: str = typer.Argument(..., help="Workspace selector.")) -> None:
        state = _require_state(ctx)
        with _errors(state):
            getattr(state.manager(), action)(selector)
        state.success(f"{done} {selector}")

    command.__name__ = action
    command.__doc__ = f"{action.capitalize()} a workspace."
    return command


app.command(name="pin")(_flag_command("pin", "Pinned"))
app.command(name="unpin")(_flag_command("unpin", "Unpinned"))
app.command(name="lock")(_flag_command("lock", "Locked"))
app.command(name="unlock")(_flag_command("unlock", "Unlocked"))


@app.command()
def clean(
    ctx: typer.Context,
    policy: str = typer.Option("default", "--policy", help="default, conservative or aggressive."),
    apply: bool = typer.Option(False, "--apply", help="Execute the plan instead of showing it."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show the plan (default)."),
    on_dirty: str = typer.Option("", "--on-dirty", help="Strategy for dirty workspaces."),
    max_: int = typer.Option(0, "--max", min=0, help="Maximum workspaces to remove (0 = unlimited)."),
) -> None:
    """Remove workspaces selected by a cleanup policy."""
    state = _require_state(ctx)
    execute = apply and not dry_run
    with _errors(state):
        manager = state.manager()
        plan = manager.cleanup(CleanupOptions(policy=policy, dry_run=True, on_dirty=on_dirty, max=max_))
        if execute and plan.actions:
            if not (state.assume_yes or state.machine):
                render_plan(plan, state.console, state.fmt)
                if not confirm(f"Remove {len(plan.actions)} workspace(s)?"):
                    raise typer.Exit(EXIT_FAILURE)
            plan = manager.cleanup(CleanupOptions(policy=policy, dry_run=False, on_dirty=on_dirty, max=max_))
    render_plan(plan, state.console, state.fmt)
    if any(w.code == "removal_failed" for w in plan.warnings):
        raise typer.Exit(EXIT_PARTIAL_SUCCESS)


@app.command()
def doctor(
    ctx: typer.Context,
    forget_missing: bool = typer.Option(False, "--forget-missing", help="Forget metadata for missing worktrees."),
    apply: bool = typer.Option(False, "--apply", help="Apply repairs such as rebuilding the index."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report problems (default)."),
) -> None:
    """Report and repair inconsistencies between metadata and git."""
    state = _require_state(ctx)
    if forget_missing and dry_run:
        state.err_console.print("[yellow]--dry-run given; nothing will be forgotten[/yellow]")
    with _errors(state):
        report = state.manager().doctor(
            DoctorOptions(dry_run=dry_run or not (apply or forget_missing), forget_missing=forget_missing)
        )
    render_report(report, state.console, state.fmt)
