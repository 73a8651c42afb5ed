"""Project registry operations on a RootState.

Projects are keyed by their main repository path; any worktree path given
here is resolved to that main path first. None of these functions persist.
"""

import logging
from pathlib import Path

from oak.constants import BACKGROUND_SESSION
from oak.models import BeadsConfig, PaneState, ProjectState, RootState, WorktreeState, now_ms
from oak.services.git import find_beads_dir, get_main_repo_path, list_worktrees

logger = logging.getLogger(__name__)


def is_under(path: str, root: str) -> bool:
    """True if `path` is `root` or lies inside it."""
    if path == root:
        return True
    return path.startswith(root.rstrip("/") + "/")


def find_worktree_for_path(worktrees: dict[str, WorktreeState], path: str) -> str | None:
    """Exact worktree match, else the deepest tracked worktree containing `path`."""
    if path in worktrees:
        return path
    candidates = [wt_path for wt_path in worktrees if is_under(path, wt_path)]
    if not candidates:
        return None
    return max(candidates, key=len)


def refresh_worktrees(project: ProjectState) -> bool:
    """Make the project's worktree keys equal the live `git worktree list`. Returns True if changed."""
    git_worktrees = list_worktrees(project.path)
    if not git_worktrees:
        # git unavailable or repo gone: keep what we have rather than wiping panes
        return False

    changed = False
    for gwt in git_worktrees:
        existing = project.worktrees.get(gwt.path)
        if existing is None:
            project.worktrees[gwt.path] = WorktreeState(path=gwt.path, branch=gwt.branch)
            logger.debug("Added worktree", extra={"path": gwt.path, "branch": gwt.branch})
            changed = True
        elif existing.branch != gwt.branch:
            existing.branch = gwt.branch
            changed = True

    live = {gwt.path for gwt in git_worktrees}
    for wt_path in list(project.worktrees):
        if wt_path not in live:
            logger.debug("Removing deleted worktree", extra={"path": wt_path})
            del project.worktrees[wt_path]
            changed = True
    return changed


def add_or_update_project(state: RootState, path: str) -> ProjectState:
    """Register a visited directory's project (or touch it) and refresh its worktrees."""
    main_path = get_main_repo_path(path) or path
    project = state.projects.get(main_path)
    if project is None:
        beads_path = find_beads_dir(main_path)
        project = ProjectState(
            path=main_path,
            name=Path(main_path).name,
            beads=BeadsConfig(enabled=beads_path is not None, path=beads_path),
        )
        state.projects[main_path] = project
        logger.info("Tracking new project", extra={"path": main_path})
    else:
        project.last_accessed = now_ms()
    refresh_worktrees(project)
    return project


def remove_project(state: RootState, project_path: str) -> bool:
    if project_path in state.projects:
        del state.projects[project_path]
        logger.info("Removed project", extra={"path": project_path})
        return True
    return False


def get_project(state: RootState, path: str) -> ProjectState | None:
    if path in state.projects:
        return state.projects[path]
    main_path = get_main_repo_path(path)
    if main_path:
        return state.projects.get(main_path)
    return None


def find_project_containing_path(state: RootState, path: str) -> ProjectState | None:
    if path in state.projects:
        return state.projects[path]
    for project in state.projects.values():
        if find_worktree_for_path(project.worktrees, path) is not None:
            return project
    return get_project(state, path)


def find_worktree_containing_path(state: RootState, path: str) -> tuple[ProjectState, WorktreeState] | None:
    """Deepest tracked worktree containing `path`, across all projects."""
    best: tuple[ProjectState, WorktreeState] | None = None
    for project in state.projects.values():
        wt_path = find_worktree_for_path(project.worktrees, path)
        if wt_path is None:
            continue
        if best is None or len(wt_path) > len(best[1].path):
            best = project, project.worktrees[wt_path]
    return best


def _panes_for_worktree(state: RootState, worktree_path: str) -> list[PaneState]:
    found = find_worktree_containing_path(state, worktree_path)
    if found is None:
        return []
    return found[1].panes


def worktree_has_panes(state: RootState, worktree_path: str) -> bool:
    return bool(_panes_for_worktree(state, worktree_path))


def worktree_has_background_panes(state: RootState, worktree_path: str) -> bool:
    return any(p.is_background for p in _panes_for_worktree(state, worktree_path))


def get_worktree_foreground_pane(state: RootState, worktree_path: str) -> PaneState | None:
    return next((p for p in _panes_for_worktree(state, worktree_path) if not p.is_background), None)


def find_background_pane(state: RootState, worktree_path: str) -> PaneState | None:
    """A background pane for the worktree: exact cwd match first, then any pane in a subdirectory.

    Among several subdirectory matches the first in stored order wins.
    """
    background = [p for _, _, p in state.iter_panes() if p.is_background]
    for pane in background:
        if pane.current_path == worktree_path:
            return pane
    for pane in background:
        if is_under(pane.current_path, worktree_path):
            return pane
    return None


def worktrees_with_background_panes(state: RootState) -> tuple[set[str], set[str]]:
    """(project paths, worktree paths) that hold at least one background pane."""
    projects: set[str] = set()
    worktrees: set[str] = set()
    for project, wt, pane in state.iter_panes():
        if pane.is_background:
            projects.add(project.path)
            worktrees.add(wt.path)
    return projects, worktrees


def mark_pane_background(state: RootState, pane_id: str, current_path: str) -> bool:
    found = state.find_pane(pane_id)
    if found is None:
        logger.debug("Pane not tracked yet, next sync will pick it up", extra={"pane": pane_id})
        return False
    _, pane = found
    pane.is_background = True
    pane.current_path = current_path
    pane.session_name = BACKGROUND_SESSION
    return True


def mark_pane_foreground(state: RootState, pane_id: str, session_name: str) -> bool:
    found = state.find_pane(pane_id)
    if found is None:
        return False
    _, pane = found
    pane.is_background = False
    pane.session_name = session_name
    return True


def remove_pane_from_tracking(state: RootState, pane_id: str) -> bool:
    changed = False
    for project in state.projects.values():
        for wt in project.worktrees.values():
            before = len(wt.panes)
            wt.panes = [p for p in wt.panes if p.pane_id != pane_id]
            changed = changed or len(wt.panes) != before
    return changed


def record_relocated_pane(
    state: RootState,
    pane_id: str,
    captured_path: str,
    window_id: str,
    session_name: str,
    current_command: str = "",
    pane_title: str | None = None,
) -> bool:
    """Replace the record of a pane that a transition moved.

    The old record is dropped wherever it was and a new one is filed under the
    worktree owning the cwd captured before the move. Returns False when that
    cwd is not in any tracked worktree (the reconciler will file it later).
    """
    remove_pane_from_tracking(state, pane_id)
    found = find_worktree_containing_path(state, captured_path)
    if found is None:
        return False
    _, wt = found
    wt.panes.append(
        PaneState(
            pane_id=pane_id,
            window_id=window_id,
            session_name=session_name,
            current_path=captured_path,
            current_command=current_command,
            pane_title=pane_title,
            is_background=session_name == BACKGROUND_SESSION,
        )
    )
    return True
