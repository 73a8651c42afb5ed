"""Moving worktree panes between the workspace and the background session.

The workspace is every pane of the control pane's window except the control
pane itself. Panes that are not on screen live in the detached `oak-bg`
session, one window each, so their shells keep running.

All structural operations take one lock, so a second request waits for the
first to finish instead of interleaving tmux commands with it. The host app
passes the same lock to the reconciler so a pass never runs mid-move.
After each move the adapter is polled until tmux reports the new position.
"""

import logging
import threading
from dataclasses import dataclass, field

from oak.config import OakConfig, commands_for_worktree, load_config
from oak.models import PaneInfo, RootState
from oak.services import layout, tmux
from oak.services.projects import (
    find_background_pane,
    find_worktree_containing_path,
    mark_pane_foreground,
    record_relocated_pane,
    remove_pane_from_tracking,
)
from oak.services.reconcile import track_pane
from oak.services.store import StateStore
from oak.services.width import WidthPolicy

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    ok: bool
    pane_id: str | None = None
    backgrounded: list[str] = field(default_factory=list)
    message: str = ""


class PaneTransitions:
    def __init__(
        self,
        store: StateStore,
        control_pane_id: str | None,
        width_policy: WidthPolicy | None = None,
        config: OakConfig | None = None,
        lock: "threading.Lock | None" = None,
    ) -> None:
        self._store = store
        self.control_pane_id = control_pane_id
        self.width = width_policy or WidthPolicy(store, control_pane_id)
        self._config = config
        self._lock = lock or threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def state(self) -> RootState:
        return self._store.get()

    @property
    def config(self) -> OakConfig:
        if self._config is None:
            self._config = load_config()
        return self._config

    @config.setter
    def config(self, value: OakConfig) -> None:
        self._config = value

    def foreground_panes(self) -> list[PaneInfo]:
        """Workspace panes currently on screen, control pane excluded."""
        if not self.control_pane_id:
            return []
        return [p for p in tmux.list_window_panes(self.control_pane_id) if p.pane_id != self.control_pane_id]

    # -- public operations ----------------------------------------------------

    def create_for_worktree(self, path: str) -> TransitionResult:
        """Open a fresh pane at `path` and send everything else on screen to the background."""
        with self._lock:
            return self._create(path)

    def switch_to_worktree(self, path: str) -> TransitionResult:
        """Show `path` in the primary slot, reusing its background pane when there is one."""
        with self._lock:
            foreground = self.foreground_panes()
            primary = layout.primary_pane(foreground)
            if primary is not None and primary.current_path == path:
                tmux.select_pane(primary.pane_id)
                return TransitionResult(ok=True, pane_id=primary.pane_id, message="Already showing")

            candidate = find_background_pane(self.state, path)
            if candidate is None or not tmux.pane_exists(candidate.pane_id):
                return self._create(path)

            info = self._bring_forward(candidate.pane_id, size=primary.width if primary else None)
            if info is None:
                logger.info("Background pane could not be restored, opening a new one", extra={"path": path})
                return self._create(path)

            backgrounded = []
            if primary is not None and self._send_to_background(primary):
                backgrounded.append(primary.pane_id)
            self._finish()
            tmux.select_pane(info.pane_id)
            return TransitionResult(ok=True, pane_id=info.pane_id, backgrounded=backgrounded)

    def toggle_multi_view(self, pane_id: str, currently_background: bool) -> TransitionResult:
        """Add a background pane to the workspace, or send a visible one away."""
        with self._lock:
            if currently_background:
                info = self._bring_forward(pane_id)
                if info is None:
                    return TransitionResult(ok=False, pane_id=pane_id, message="Could not bring pane forward")
                self._finish()
                return TransitionResult(ok=True, pane_id=pane_id)

            foreground = self.foreground_panes()
            target = next((p for p in foreground if p.pane_id == pane_id), None)
            if target is None:
                return TransitionResult(ok=False, pane_id=pane_id, message="Pane is not in the workspace")
            if len(foreground) <= 1:
                return TransitionResult(ok=False, pane_id=pane_id, message="Can't hide the last visible pane")
            if not self._send_to_background(target):
                return TransitionResult(ok=False, pane_id=pane_id, message="Could not move pane to background")
            self._finish()
            return TransitionResult(ok=True, pane_id=pane_id, backgrounded=[pane_id])

    def isolate(self, pane_id: str) -> TransitionResult:
        """Leave `pane_id` as the only pane on screen."""
        with self._lock:
            foreground = self.foreground_panes()
            in_workspace = any(p.pane_id == pane_id for p in foreground)
            if not in_workspace and not tmux.pane_exists(pane_id):
                return TransitionResult(ok=False, pane_id=pane_id, message="Pane no longer exists")

            backgrounded = []
            for pane in foreground:
                if pane.pane_id != pane_id and self._send_to_background(pane):
                    backgrounded.append(pane.pane_id)
            if not in_workspace and self._bring_forward(pane_id) is None:
                self._finish()
                return TransitionResult(
                    ok=False, pane_id=pane_id, backgrounded=backgrounded, message="Could not bring pane forward"
                )
            self._finish()
            tmux.select_pane(pane_id)
            return TransitionResult(ok=True, pane_id=pane_id, backgrounded=backgrounded)

    def cycle_focus(self) -> TransitionResult:
        """Focus the next workspace pane in reading order, wrapping around."""
        with self._lock:
            panes = layout.reading_order(self.foreground_panes())
            if len(panes) < 2:
                return TransitionResult(ok=True, message="Nothing to cycle")
            current = next((i for i, p in enumerate(panes) if p.active), -1)
            target = panes[(current + 1) % len(panes)]
            if not tmux.select_pane(target.pane_id):
                return TransitionResult(ok=False, pane_id=target.pane_id, message="Could not select pane")
            return TransitionResult(ok=True, pane_id=target.pane_id)

    def close_pane(self, pane_id: str) -> TransitionResult:
        """Kill a worktree pane and forget it."""
        if pane_id == self.control_pane_id:
            return TransitionResult(ok=False, pane_id=pane_id, message="Refusing to close the control pane")
        with self._lock:
            was_visible = any(p.pane_id == pane_id for p in self.foreground_panes())
            if not tmux.kill_pane(pane_id) and tmux.pane_exists(pane_id):
                return TransitionResult(ok=False, pane_id=pane_id, message="Could not close pane")
            tmux.wait_until(lambda: not tmux.pane_exists(pane_id))
            remove_pane_from_tracking(self.state, pane_id)
            if was_visible:
                self._apply_layout()
                self.width.enforce()
            self._store.save()
            return TransitionResult(ok=True, pane_id=pane_id)

    def apply_layout(self) -> None:
        with self._lock:
            self._apply_layout()
            self.width.enforce()

    def observe_width(self) -> bool:
        """Record a manual resize of the control pane without racing a structural operation."""
        with self._lock:
            return self.width.observe()

    # -- steps (caller holds the lock) ------------------------------------------

    def _create(self, path: str) -> TransitionResult:
        if not self.control_pane_id:
            return TransitionResult(ok=False, message="Not running inside tmux")

        # Captured before anything moves: their cwd decides where they are re-filed
        previous = self.foreground_panes()
        primary = layout.primary_pane(previous)
        target = primary.pane_id if primary else self.control_pane_id

        info = self._split_new(target, path)
        if info is None:
            return TransitionResult(ok=False, message=f"Could not open a pane at {path}")

        backgrounded = []
        for pane in previous:
            if self._send_to_background(pane):
                backgrounded.append(pane.pane_id)

        self._finish()
        tmux.select_pane(info.pane_id)
        logger.info(
            "Opened pane for worktree", extra={"path": path, "pane": info.pane_id, "backgrounded": backgrounded}
        )
        return TransitionResult(ok=True, pane_id=info.pane_id, backgrounded=backgrounded)

    def _split_new(self, target: str, path: str) -> PaneInfo | None:
        new_id = tmux.split_window(target, path, before=True)
        if new_id is None:
            return None
        holder: dict[str, PaneInfo] = {}

        def appeared() -> bool:
            info = tmux.get_pane(new_id)
            if info is None:
                return False
            holder["info"] = info
            return True

        if not tmux.wait_until(appeared):
            logger.warning("New pane did not appear", extra={"pane": new_id})
            return None
        info = holder["info"]
        track_pane(self.state, info)
        self._run_startup_commands(info.pane_id, path)
        return info

    def _run_startup_commands(self, pane_id: str, path: str) -> None:
        found = find_worktree_containing_path(self.state, path)
        project_path = found[0].path if found else path
        worktree_path = found[1].path if found else path
        for command in commands_for_worktree(self.config, worktree_path, project_path):
            tmux.send_command(pane_id, command)

    def _send_to_background(self, pane: PaneInfo) -> bool:
        if not tmux.ensure_background_session():
            return False
        captured_path = pane.current_path
        if not tmux.break_pane(pane.pane_id):
            logger.warning("break-pane failed", extra={"pane": pane.pane_id})
            return False

        holder: dict[str, PaneInfo] = {}

        def in_background() -> bool:
            info = tmux.get_pane(pane.pane_id)
            if info is None or not info.is_background:
                return False
            holder["info"] = info
            return True

        if not tmux.wait_until(in_background):
            # The id did not survive the move
            logger.warning("Pane missing after break-pane, dropping record", extra={"pane": pane.pane_id})
            remove_pane_from_tracking(self.state, pane.pane_id)
            return False
        moved = holder["info"]
        record_relocated_pane(
            self.state,
            pane.pane_id,
            captured_path,
            moved.window_id,
            moved.session_name,
            moved.current_command,
            moved.title,
        )
        return True

    def _bring_forward(self, pane_id: str, size: int | None = None) -> PaneInfo | None:
        control = tmux.get_pane(self.control_pane_id) if self.control_pane_id else None
        if control is None:
            return None
        if not tmux.join_pane(pane_id, self.control_pane_id, before=True, size=size):
            logger.warning("join-pane failed", extra={"pane": pane_id})
            return None

        holder: dict[str, PaneInfo] = {}

        def joined() -> bool:
            info = tmux.get_pane(pane_id)
            if info is None or info.window_id != control.window_id:
                return False
            holder["info"] = info
            return True

        if not tmux.wait_until(joined):
            logger.warning("Pane did not reach the workspace", extra={"pane": pane_id})
            return None
        info = holder["info"]
        if not track_pane(self.state, info):
            mark_pane_foreground(self.state, pane_id, info.session_name)
        return info

    def _finish(self) -> None:
        self._apply_layout()
        self.width.enforce()
        self._store.save()

    def _apply_layout(self) -> None:
        """Arrange the workspace panes master-stack, leaving the control pane alone."""
        self.width.enforce()
        panes = layout.placement_order(self.foreground_panes())
        n = len(panes)
        if n < 2:
            return

        if n == 2:
            if layout.needs_horizontal_fix(panes):
                tmux.join_pane(panes[1].pane_id, panes[0].pane_id, before=False)
        else:
            master, stack = panes[0], panes[1:]
            tmux.join_pane(stack[0].pane_id, master.pane_id, before=False)
            for above, below in zip(stack, stack[1:]):
                tmux.join_pane(below.pane_id, above.pane_id, before=False, vertical=True)

        panes = layout.placement_order(self.foreground_panes())
        width, height = layout.workspace_size(panes)
        regions = layout.layout(len(panes), width, height)
        for pane, region in zip(panes, regions):
            if region.role is layout.Role.MASTER:
                tmux.resize_pane(pane.pane_id, width=region.width)
            else:
                tmux.resize_pane(pane.pane_id, height=region.height)
        logger.debug("Applied layout", extra={"panes": len(panes), "width": width, "height": height})
