import asyncio
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Header

from oak.config import OakConfig, load_config
from oak.constants import EXIT_RESTART, SYNC_INTERVAL_S
from oak.models import ProjectState
from oak.services import tmux
from oak.services.ipc import InstanceServer, IpcMessage
from oak.services.panes import PaneTransitions, TransitionResult
from oak.services.projects import add_or_update_project, find_background_pane, remove_project
from oak.services.reconcile import Reconciler, sync_project
from oak.services.store import StateStore, projects_in_display_order
from oak.services.width import WidthPolicy
from oak.screens import confirm_close_pane, confirm_remove_project
from oak.widgets.project_list import ProjectList, Row, WorktreeSelected

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OakApp(App):
    """Oak: worktree panes for tmux."""

    TITLE = "Oak"

    BINDINGS = [
        Binding("n", "new_pane", "New Pane"),
        Binding("m", "toggle_multi_view", "Multi-view"),
        Binding("i", "isolate", "Isolate"),
        Binding("tab", "cycle_focus", "Cycle", priority=True),
        Binding("x", "close_pane", "Close Pane"),
        Binding("d", "remove_project", "Remove Project"),
        Binding("r", "reload", "Reload"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(
        self,
        root: Path | str,
        store: StateStore | None = None,
        config: OakConfig | None = None,
        control_pane_id: str | None = None,
        start_ipc: bool = True,
    ) -> None:
        super().__init__()
        self._root = str(root)
        self._store = store or StateStore()
        self._config = config or load_config()
        self._control_pane_id = control_pane_id or tmux.control_pane_id()
        self._width = WidthPolicy(self._store, self._control_pane_id)
        # One lock for every thread that touches the state: passes, transitions, app edits
        self._state_lock = threading.Lock()
        self._transitions = PaneTransitions(
            self._store, self._control_pane_id, self._width, self._config, lock=self._state_lock
        )
        self._reconciler = Reconciler(self._control_pane_id, lock=self._state_lock)
        self.crashed = False
        self._start_ipc = start_ipc
        self._ipc: InstanceServer | None = None

        state = self._store.init()
        project = add_or_update_project(state, self._root)
        self._root = project.path
        self._reconciler.sync(state, project.path)
        self._store.save()

    def compose(self) -> ComposeResult:
        yield Header()
        yield ProjectList()
        yield Footer()

    def on_mount(self) -> None:
        if self._start_ipc:
            self._ipc = InstanceServer(self._on_ipc_command)
            try:
                self._ipc.start()
            except OSError:
                logger.warning("Could not start IPC server", exc_info=True)
                self._ipc = None
        self._refresh_list()
        self.run_worker(self._init_width, exclusive=False)
        self.set_interval(SYNC_INTERVAL_S, self._periodic_sync)

    def on_unmount(self) -> None:
        if self._ipc is not None:
            self._ipc.close()
            self._ipc = None

    async def _init_width(self) -> None:
        size = await asyncio.to_thread(tmux.window_size, self._control_pane_id) if self._control_pane_id else None
        if size is None:
            return
        await asyncio.to_thread(self._locked, self._width.ensure, size[0])
        await asyncio.to_thread(self._transitions.apply_layout)

    # -- reconciliation -------------------------------------------------------

    def _periodic_sync(self) -> None:
        """Kick off a background reconciliation pass so tmux calls never block the UI."""
        if self._transitions.busy:
            return
        self.run_worker(self._do_sync, exclusive=True, group="sync", name="periodic-sync")

    async def _do_sync(self) -> None:
        await asyncio.to_thread(self._reconciler.sync_all, self._store.get(), self._store.save)
        await asyncio.to_thread(self._transitions.observe_width)
        self._refresh_list()

    def _refresh_list(self) -> None:
        # A thread holding the lock is mid-change and refreshes when it finishes
        if not self._state_lock.acquire(blocking=False):
            return
        try:
            projects = projects_in_display_order(self._store.get(), self._config.project_order)
            self.query_one(ProjectList).show_projects(projects)
        except Exception:
            logger.debug("Project list not mounted yet", exc_info=True)
        finally:
            self._state_lock.release()

    # -- IPC ------------------------------------------------------------------

    def _on_ipc_command(self, message: IpcMessage) -> None:
        # Called on the listener thread
        self.call_from_thread(self._handle_ipc, message)

    def _handle_ipc(self, message: IpcMessage) -> None:
        if message.command == "restart":
            logger.info("Restart requested over IPC")
            self.exit(return_code=EXIT_RESTART)
            return
        if message.dir:
            self.reroot(message.dir)

    def reroot(self, directory: str) -> None:
        """Make `directory`'s project the current one, registering it if new."""

        def apply() -> ProjectState:
            state = self._store.get()
            project = add_or_update_project(state, directory)
            sync_project(state, project.path, self._control_pane_id)
            self._store.save()
            return project

        def done(project: ProjectState) -> None:
            self._root = project.path
            self.notify(f"Switched to {project.name}")

        self._run_locked(apply, done)

    # -- state edits ----------------------------------------------------------

    def _locked(self, operation: Callable[..., T], *args) -> T:
        with self._state_lock:
            return operation(*args)

    def _run_locked(self, operation: Callable[[], T], on_done: Callable[[T], None] | None = None) -> None:
        """Run a state edit off the event loop, waiting for any pass or transition to finish first."""

        async def _run() -> None:
            result = await asyncio.to_thread(self._locked, operation)
            self._refresh_list()
            if on_done is not None:
                on_done(result)

        self.run_worker(_run, exclusive=False, group="state")

    # -- transitions ----------------------------------------------------------

    def _run_transition(self, operation: Callable[..., TransitionResult], *args) -> None:
        async def _run() -> None:
            result = await asyncio.to_thread(operation, *args)
            if not result.ok:
                self.notify(result.message or "Operation failed", severity="warning")
            self._refresh_list()

        self.run_worker(_run, exclusive=False, group="panes")

    def _selected(self) -> Row | None:
        return self.query_one(ProjectList).selected

    def on_worktree_selected(self, event: WorktreeSelected) -> None:
        row = event.row
        if row.kind == "pane" and row.pane_id:
            if row.is_background:
                self._run_transition(self._transitions.isolate, row.pane_id)
            else:
                tmux.select_pane(row.pane_id)
            return
        if row.worktree_path:
            self._run_transition(self._transitions.switch_to_worktree, row.worktree_path)

    def action_new_pane(self) -> None:
        row = self._selected()
        if row is None or not row.worktree_path:
            self.notify("Select a worktree first", severity="warning")
            return
        self._run_transition(self._transitions.create_for_worktree, row.worktree_path)

    def action_toggle_multi_view(self) -> None:
        row = self._selected()
        if row is None or not row.worktree_path:
            self.notify("Select a pane first", severity="warning")
            return
        if row.kind == "pane" and row.pane_id:
            self._run_transition(self._transitions.toggle_multi_view, row.pane_id, row.is_background)
            return
        pane = find_background_pane(self._store.get(), row.worktree_path)
        if pane is None:
            self.notify("No background pane for this worktree", severity="warning")
            return
        self._run_transition(self._transitions.toggle_multi_view, pane.pane_id, True)

    def action_isolate(self) -> None:
        row = self._selected()
        if row is None or row.kind != "pane" or not row.pane_id:
            self.notify("Select a pane first", severity="warning")
            return
        self._run_transition(self._transitions.isolate, row.pane_id)

    def action_cycle_focus(self) -> None:
        self._run_transition(self._transitions.cycle_focus)

    def action_close_pane(self) -> None:
        row = self._selected()
        if row is None or row.kind != "pane" or not row.pane_id:
            self.notify("Select a pane first", severity="warning")
            return
        pane_id = row.pane_id

        def handle_confirm(confirmed: bool) -> None:
            if confirmed:
                self._run_transition(self._transitions.close_pane, pane_id)

        name = Path(row.worktree_path).name if row.worktree_path else "?"
        self.push_screen(confirm_close_pane(pane_id, name), callback=handle_confirm)

    def action_remove_project(self) -> None:
        row = self._selected()
        if row is None:
            return
        project = self._store.get().projects.get(row.project_path)
        if project is None:
            return

        def handle_confirm(confirmed: bool) -> None:
            if not confirmed:
                return

            def apply() -> None:
                remove_project(self._store.get(), project.path)
                self._store.save()

            self._run_locked(apply, lambda _: self.notify(f"Removed {project.name} from recents"))

        self.push_screen(confirm_remove_project(project.name), callback=handle_confirm)

    def action_reload(self) -> None:
        self._config = load_config()
        self._transitions.config = self._config

        def done(_) -> None:
            self._periodic_sync()
            self.notify("Reloaded")

        self._run_locked(self._store.reload, done)

    def _handle_exception(self, error: Exception) -> None:
        # The CLI offers a reload once the app has shut down
        self.crashed = True
        logger.error("Unhandled error in app", exc_info=error)
        super()._handle_exception(error)
