"""Reconciliation of tracked panes against live tmux state.

A pass reads the panes of the control pane's window and of the background
session, works out which tracked worktree each one belongs to, and repairs
the pane lists to match. Passes are idempotent: with nothing moving in tmux,
a second pass reports no change.
"""

import logging
import threading
from collections.abc import Callable

from oak.models import PaneInfo, PaneState, ProjectState, RootState
from oak.services import tmux
from oak.services.git import get_main_repo_path
from oak.services.projects import find_worktree_for_path, is_under, refresh_worktrees

logger = logging.getLogger(__name__)


def _candidate_panes(control_pane_id: str | None) -> list[PaneInfo]:
    current = tmux.list_window_panes(control_pane_id)
    background = tmux.list_background_panes()
    seen: set[str] = set()
    panes = []
    for pane in current + background:
        if pane.pane_id == control_pane_id or pane.pane_id in seen:
            continue
        seen.add(pane.pane_id)
        panes.append(pane)
    return panes


def _drop_pane(project: ProjectState, pane_id: str) -> bool:
    removed = False
    for wt in project.worktrees.values():
        before = len(wt.panes)
        wt.panes = [p for p in wt.panes if p.pane_id != pane_id]
        removed = removed or len(wt.panes) != before
    return removed


def _purge_stale(project: ProjectState, live_ids: set[str]) -> bool:
    changed = False
    for wt in project.worktrees.values():
        valid = [p for p in wt.panes if p.pane_id in live_ids]
        if len(valid) != len(wt.panes):
            for p in wt.panes:
                if p.pane_id not in live_ids:
                    logger.debug("Removing stale pane", extra={"pane": p.pane_id, "worktree": wt.path})
            wt.panes = valid
            changed = True
    return changed


def _owning_worktree(project: ProjectState, path: str) -> str | None:
    wt_path = find_worktree_for_path(project.worktrees, path)
    if wt_path is not None:
        return wt_path
    if project.path in project.worktrees and is_under(path, project.path):
        return project.path
    return None


def _update_pane(pane: PaneState, info: PaneInfo) -> bool:
    updates = {
        "current_path": info.current_path,
        "session_name": info.session_name,
        "window_id": info.window_id,
        "current_command": info.current_command,
        "pane_title": info.title,
        "is_background": info.is_background,
    }
    changed = False
    for field, value in updates.items():
        if getattr(pane, field) != value:
            setattr(pane, field, value)
            changed = True
    return changed


def file_pane(state: RootState, project: ProjectState, info: PaneInfo) -> bool:
    """Record a live pane under its owning worktree of `project`. Returns True if anything changed."""
    wt_path = _owning_worktree(project, info.current_path)
    if wt_path is None:
        return False
    wt = project.worktrees[wt_path]

    existing = wt.get_pane(info.pane_id)
    if existing is not None:
        return _update_pane(existing, info)

    # New to this worktree: drop any record of it elsewhere so a pane id
    # lives in exactly one worktree
    for _, other_wt, _ in list(state.iter_panes()):
        if other_wt is not wt and other_wt.get_pane(info.pane_id) is not None:
            other_wt.panes = [p for p in other_wt.panes if p.pane_id != info.pane_id]
    wt.panes.append(
        PaneState(
            pane_id=info.pane_id,
            window_id=info.window_id,
            session_name=info.session_name,
            current_path=info.current_path,
            current_command=info.current_command,
            pane_title=info.title,
            is_background=info.is_background,
        )
    )
    logger.debug("Tracking pane", extra={"pane": info.pane_id, "worktree": wt_path})
    return True


def track_pane(state: RootState, info: PaneInfo) -> bool:
    """File a single live pane under whichever tracked project it belongs to."""
    project = state.projects.get(get_main_repo_path(info.current_path) or "")
    if project is None:
        return False
    return file_pane(state, project, info)


def sync_project(state: RootState, project_path: str, control_pane_id: str | None = None) -> bool:
    """Repair one project's pane records from live tmux state. Returns True if anything changed."""
    project = state.projects.get(project_path)
    if project is None:
        logger.debug("sync_project: unknown project", extra={"project": project_path})
        return False

    changed = refresh_worktrees(project)
    candidates = _candidate_panes(control_pane_id)

    # The control pane is never tracked, even if it ended up in the background
    if control_pane_id and _drop_pane(project, control_pane_id):
        changed = True

    live_ids = tmux.list_all_pane_ids()
    if live_ids is None:
        logger.debug("tmux unreachable, skipping stale pane removal")
    elif _purge_stale(project, live_ids):
        changed = True

    for info in candidates:
        if get_main_repo_path(info.current_path) != project.path:
            continue
        if file_pane(state, project, info):
            changed = True

    return changed


def sync_all(state: RootState, control_pane_id: str | None = None) -> bool:
    changed = False
    for project_path in list(state.projects):
        if sync_project(state, project_path, control_pane_id):
            changed = True
    return changed


class Reconciler:
    """Runs reconciliation passes, never two at once.

    A pass requested while the lock is held, by another pass or by anything
    else sharing it, is skipped and reports no change. `save` is called under
    the lock when the pass changed something.
    """

    def __init__(self, control_pane_id: str | None = None, lock: "threading.Lock | None" = None) -> None:
        self.control_pane_id = control_pane_id
        self.lock = lock or threading.Lock()

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def sync(self, state: RootState, project_path: str, save: Callable[[], None] | None = None) -> bool:
        return self._locked_pass(lambda: sync_project(state, project_path, self.control_pane_id), save)

    def sync_all(self, state: RootState, save: Callable[[], None] | None = None) -> bool:
        return self._locked_pass(lambda: sync_all(state, self.control_pane_id), save)

    def _locked_pass(self, run: Callable[[], bool], save: Callable[[], None] | None) -> bool:
        if not self.lock.acquire(blocking=False):
            logger.debug("State is busy, skipping reconciliation pass")
            return False
        try:
            changed = run()
            if changed and save is not None:
                save()
            return changed
        finally:
            self.lock.release()
