import logging
import os
import shutil
import sys

import click

from oak.config import detect_repo_root, load_config
from oak.constants import (
    DATA_DIR,
    DEBUG_LOG_NAME,
    EXIT_ALREADY_RUNNING,
    EXIT_CRASHED,
    EXIT_NO_REPO,
    EXIT_NOT_IN_TMUX,
    EXIT_OK,
    EXIT_RESTART,
)
from oak.services import tmux
from oak.services.ipc import check_existing_instance, send_reload, send_restart
from oak.services.projects import get_project, remove_project
from oak.services.reconcile import sync_all
from oak.services.store import StateStore, projects_in_display_order

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    root = logging.getLogger("oak")
    if debug:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(DATA_DIR / DEBUG_LOG_NAME)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)
    else:
        root.setLevel(logging.WARNING)


def _recover_from_crash() -> int:
    """Offer a reload after a crash. Reloading means exiting with the restart code."""
    click.echo("\noak crashed. Press 'r' to reload, any other key to exit.", err=True)
    try:
        key = click.getchar()
    except (EOFError, KeyboardInterrupt, OSError):
        return EXIT_CRASHED
    return EXIT_RESTART if key.lower() == "r" else EXIT_CRASHED


def _check_prerequisites() -> None:
    """Verify tmux is installed and we are running inside it, exit with a helpful message if not."""
    if not shutil.which("tmux"):
        click.echo("Missing required tool: tmux. Install via: brew install tmux (macOS) or apt install tmux (Linux)", err=True)
        sys.exit(EXIT_NOT_IN_TMUX)
    if not tmux.in_tmux():
        click.echo("oak must be started from inside a tmux session.", err=True)
        sys.exit(EXIT_NOT_IN_TMUX)


@click.group(invoke_without_command=True)
@click.option("--debug", is_flag=True, help=f"Write a debug log to {DATA_DIR / DEBUG_LOG_NAME}")
@click.option("--check-only", is_flag=True, help="Run the startup checks and exit without launching")
@click.pass_context
def cli(ctx: click.Context, debug: bool, check_only: bool) -> None:
    """Oak: git worktrees as tmux panes."""
    _configure_logging(debug)
    if ctx.invoked_subcommand is not None:
        return

    _check_prerequisites()
    cwd = os.getcwd()
    status = check_existing_instance()
    if status == "connected":
        if send_reload(cwd):
            click.echo("oak is already running; sent it this directory.")
        else:
            click.echo("oak is already running but did not accept the reload.", err=True)
        sys.exit(EXIT_ALREADY_RUNNING)

    try:
        root = detect_repo_root(cwd)
    except RuntimeError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_NO_REPO)

    if check_only:
        click.echo(f"ok: {root}")
        sys.exit(EXIT_OK)

    # Lazy import: OakApp pulls in Textual, which is slow to load.
    # CLI-only commands skip this cost.
    from oak.app import OakApp

    try:
        app = OakApp(root)
        app.run()
    except Exception:
        logger.exception("oak crashed")
        sys.exit(_recover_from_crash())
    if app.crashed:
        sys.exit(_recover_from_crash())
    sys.exit(app.return_code or EXIT_OK)


@cli.command()
def restart() -> None:
    """Ask the running instance to exit with the restart code."""
    if not send_restart():
        click.echo("No running oak instance.", err=True)
        raise SystemExit(1)
    click.echo("Restart requested.")


@cli.command()
@click.argument("directory", required=False, type=click.Path(exists=True, file_okay=False, resolve_path=True))
def reload(directory: str | None) -> None:
    """Point the running instance at DIRECTORY (default: current directory)."""
    if not send_reload(directory or os.getcwd()):
        click.echo("No running oak instance.", err=True)
        raise SystemExit(1)
    click.echo("Reload sent.")


@cli.command()
def sync() -> None:
    """Run one reconciliation pass over every project and save the result."""
    store = StateStore()
    state = store.init()
    changed = sync_all(state, tmux.control_pane_id() if tmux.in_tmux() else None)
    if changed:
        store.save()
    panes = sum(1 for _ in state.iter_panes())
    click.echo(f"{'Updated' if changed else 'No changes'}: {len(state.projects)} project(s), {panes} pane(s) tracked.")


@cli.command("list")
def list_cmd() -> None:
    """List projects, worktrees and panes in display order."""
    state = StateStore().init()
    if not state.projects:
        click.echo("No projects.")
        return

    config = load_config()
    for project in projects_in_display_order(state, config.project_order):
        beads = " [beads]" if project.beads.enabled else ""
        click.echo(f"\n{project.name}{beads}")
        click.echo(f"  path: {project.path}")
        for wt in project.worktrees.values():
            click.echo(f"  {wt.branch}  {wt.path}")
            if not wt.panes:
                click.echo("    (no panes)")
            for pane in wt.panes:
                where = "background" if pane.is_background else "visible"
                click.echo(f"    {pane.pane_id} [{where}] {pane.current_command} {pane.current_path}")


@cli.command()
@click.argument("path")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def forget(path: str, yes: bool) -> None:
    """Remove a project from the recents list. Its panes and files are untouched."""
    store = StateStore()
    state = store.init()
    project = get_project(state, os.path.abspath(path))
    if project is None:
        click.echo(f"Project '{path}' not found.", err=True)
        raise SystemExit(1)
    if not yes and not click.confirm(f"Remove '{project.name}' from recents?"):
        click.echo("Aborted.", err=True)
        raise SystemExit(1)
    remove_project(state, project.path)
    store.save()
    click.echo(f"Removed {project.name}.")
