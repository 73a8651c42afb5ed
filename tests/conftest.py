from dataclasses import dataclass, field
from pathlib import Path

import pytest

import oak.services.git as _git_mod
import oak.services.tmux as _tmux_mod
from oak.constants import BACKGROUND_SESSION
from oak.models import PaneInfo
from oak.services.git import GitWorktree
from oak.services.store import StateStore

CONTROL_PANE = "%0"
WINDOW_WIDTH = 200
WINDOW_HEIGHT = 50


@pytest.fixture(autouse=True)
def _reset_module_caches():
    """Reset tmux server handle and git cache between tests."""
    _tmux_mod._server = None
    _git_mod.invalidate_git_cache()
    yield
    _tmux_mod._server = None
    _git_mod.invalidate_git_cache()


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "oak-state"
    path.mkdir()
    return path


@pytest.fixture()
def store(state_dir: Path) -> StateStore:
    return StateStore(state_dir)


@dataclass
class _FakePane:
    pane_id: str
    window_id: str
    session_name: str
    current_path: str
    current_command: str = "zsh"
    title: str | None = None


@dataclass
class _FakeWindow:
    window_id: str
    session_name: str
    columns: list[list[str]] = field(default_factory=list)


class FakeTmux:
    """In-memory multiplexer behind the adapter functions of `oak.services.tmux`.

    Windows are a row of columns, each column a stack of panes; geometry is
    recomputed from that structure on every query. The control pane sits in
    the last column of window @1 of session "main".
    """

    def __init__(self) -> None:
        self.panes: dict[str, _FakePane] = {}
        self.windows: dict[str, _FakeWindow] = {}
        self.widths: dict[str, int] = {}
        self.active: str | None = CONTROL_PANE
        self.sent: list[tuple[str, str]] = []
        self.calls: list[tuple] = []
        self.resizes: list[tuple[str, int | None, int | None]] = []
        self.reachable = True
        self._next_pane = 1
        self._next_window = 2
        self.windows["@1"] = _FakeWindow("@1", "main", [[CONTROL_PANE]])
        self.panes[CONTROL_PANE] = _FakePane(CONTROL_PANE, "@1", "main", "/home/user", "oak")

    # -- helpers for tests --------------------------------------------------

    def add_pane(self, path: str, background: bool = False, command: str = "zsh") -> str:
        """Create a pane directly: left of the control pane, or in its own background window."""
        pane_id = self._new_pane_id()
        if background:
            window = self._new_window(BACKGROUND_SESSION)
            window.columns.append([pane_id])
        else:
            window = self.windows["@1"]
            window.columns.insert(len(window.columns) - 1, [pane_id])
        self.panes[pane_id] = _FakePane(pane_id, window.window_id, window.session_name, path, command)
        return pane_id

    def cd(self, pane_id: str, path: str) -> None:
        self.panes[pane_id].current_path = path

    def remove(self, pane_id: str) -> None:
        self._detach(pane_id)
        del self.panes[pane_id]

    def foreground_ids(self) -> list[str]:
        return [p.pane_id for p in self.list_window_panes(CONTROL_PANE) if p.pane_id != CONTROL_PANE]

    def background_ids(self) -> list[str]:
        return [p.pane_id for p in self.list_background_panes()]

    # -- structure ----------------------------------------------------------

    def _new_pane_id(self) -> str:
        pane_id = f"%{self._next_pane}"
        self._next_pane += 1
        return pane_id

    def _new_window(self, session_name: str) -> _FakeWindow:
        window = _FakeWindow(f"@{self._next_window}", session_name)
        self._next_window += 1
        self.windows[window.window_id] = window
        return window

    def _locate(self, pane_id: str) -> tuple[_FakeWindow, int, int] | None:
        for window in self.windows.values():
            for ci, column in enumerate(window.columns):
                if pane_id in column:
                    return window, ci, column.index(pane_id)
        return None

    def _detach(self, pane_id: str) -> None:
        found = self._locate(pane_id)
        if found is None:
            return
        window, ci, ri = found
        window.columns[ci].pop(ri)
        if not window.columns[ci]:
            window.columns.pop(ci)
        if not window.columns and window.window_id != "@1":
            del self.windows[window.window_id]

    def _geometry(self, window: _FakeWindow) -> dict[str, tuple[int, int, int, int]]:
        geometry = {}
        ncols = len(window.columns)
        if ncols == 0:
            return geometry
        fixed = {
            ci: self.widths[column[0]]
            for ci, column in enumerate(window.columns)
            if len(column) == 1 and column[0] == CONTROL_PANE and CONTROL_PANE in self.widths
        }
        free = WINDOW_WIDTH - sum(fixed.values()) - (ncols - 1)
        share = free // max(1, ncols - len(fixed))
        left = 0
        for ci, column in enumerate(window.columns):
            width = fixed.get(ci, share)
            # Rows left over after an even split go to the bottom pane, as in tmux
            avail = WINDOW_HEIGHT - (len(column) - 1)
            height, extra = divmod(avail, len(column))
            top = 0
            for ri, pane_id in enumerate(column):
                pane_height = height + (extra if ri == len(column) - 1 else 0)
                geometry[pane_id] = (left, top, width, pane_height)
                top += pane_height + 1
            left += width + 1
        return geometry

    def _info(self, pane_id: str) -> PaneInfo | None:
        pane = self.panes.get(pane_id)
        found = self._locate(pane_id)
        if pane is None or found is None:
            return None
        window = found[0]
        left, top, width, height = self._geometry(window)[pane_id]
        return PaneInfo(
            pane_id=pane_id,
            window_id=window.window_id,
            session_name=window.session_name,
            current_path=pane.current_path,
            current_command=pane.current_command,
            title=pane.title,
            left=left,
            top=top,
            width=width,
            height=height,
            active=self.active == pane_id,
        )

    # -- adapter surface ----------------------------------------------------

    def control_pane_id(self) -> str:
        return CONTROL_PANE

    def in_tmux(self) -> bool:
        return True

    def list_window_panes(self, target=None) -> list[PaneInfo]:
        found = self._locate(target or CONTROL_PANE)
        if found is None:
            return []
        window = found[0]
        return [self._info(pid) for column in window.columns for pid in column]

    def list_session_panes(self, session_name: str) -> list[PaneInfo]:
        return [
            self._info(pid)
            for window in self.windows.values()
            if window.session_name == session_name
            for column in window.columns
            for pid in column
        ]

    def list_background_panes(self) -> list[PaneInfo]:
        return self.list_session_panes(BACKGROUND_SESSION)

    def list_all_pane_ids(self) -> set[str] | None:
        if not self.reachable:
            return None
        return set(self.panes)

    def pane_exists(self, pane_id: str) -> bool:
        return pane_id in self.panes

    def get_pane(self, pane_id: str) -> PaneInfo | None:
        return self._info(pane_id)

    def pane_width(self, pane_id: str) -> int | None:
        info = self._info(pane_id)
        return info.width if info else None

    def window_size(self, pane_id: str) -> tuple[int, int] | None:
        return (WINDOW_WIDTH, WINDOW_HEIGHT) if pane_id in self.panes else None

    def has_session(self, session_name: str) -> bool:
        return any(w.session_name == session_name for w in self.windows.values())

    def ensure_background_session(self) -> bool:
        return True

    def split_window(self, target, start_directory, before=False, size=None) -> str | None:
        self.calls.append(("split", target, start_directory))
        found = self._locate(target)
        if found is None:
            return None
        window, ci, _ = found
        pane_id = self._new_pane_id()
        window.columns.insert(ci if before else ci + 1, [pane_id])
        self.panes[pane_id] = _FakePane(pane_id, window.window_id, window.session_name, start_directory)
        return pane_id

    def join_pane(self, source, target, before=True, size=None, vertical=False) -> bool:
        self.calls.append(("join", source, target, vertical))
        if source not in self.panes or self._locate(target) is None or source == target:
            return False
        self._detach(source)
        window, ci, ri = self._locate(target)
        if vertical:
            window.columns[ci].insert(ri if before else ri + 1, source)
        else:
            window.columns.insert(ci if before else ci + 1, [source])
        return True

    def break_pane(self, pane_id, session_name=BACKGROUND_SESSION) -> bool:
        self.calls.append(("break", pane_id))
        if pane_id not in self.panes:
            return False
        self._detach(pane_id)
        window = self._new_window(session_name)
        window.columns.append([pane_id])
        return True

    def resize_pane(self, pane_id, width=None, height=None) -> bool:
        if pane_id not in self.panes:
            return False
        self.resizes.append((pane_id, width, height))
        if width is not None and pane_id == CONTROL_PANE:
            self.widths[pane_id] = width
        return True

    def select_pane(self, pane_id) -> bool:
        if pane_id not in self.panes:
            return False
        self.active = pane_id
        return True

    def kill_pane(self, pane_id) -> bool:
        if pane_id not in self.panes:
            return False
        self.remove(pane_id)
        return True

    def send_command(self, pane_id, command) -> bool:
        self.sent.append((pane_id, command))
        return pane_id in self.panes


_ADAPTER_FUNCTIONS = (
    "control_pane_id",
    "in_tmux",
    "list_window_panes",
    "list_session_panes",
    "list_background_panes",
    "list_all_pane_ids",
    "pane_exists",
    "get_pane",
    "pane_width",
    "window_size",
    "has_session",
    "ensure_background_session",
    "split_window",
    "join_pane",
    "break_pane",
    "resize_pane",
    "select_pane",
    "kill_pane",
    "send_command",
)


@pytest.fixture()
def fake_tmux(monkeypatch) -> FakeTmux:
    fake = FakeTmux()
    for name in _ADAPTER_FUNCTIONS:
        monkeypatch.setattr(_tmux_mod, name, getattr(fake, name))
    return fake


class FakeGit:
    """Repositories keyed by main checkout path, each with its worktrees."""

    def __init__(self) -> None:
        self.repos: dict[str, list[GitWorktree]] = {}
        self.available = True

    def add_repo(self, main_path: str, branch: str = "main") -> None:
        self.repos[main_path] = [GitWorktree(path=main_path, branch=branch)]

    def add_worktree(self, main_path: str, path: str, branch: str) -> None:
        self.repos[main_path].append(GitWorktree(path=path, branch=branch))

    def remove_worktree(self, main_path: str, path: str) -> None:
        self.repos[main_path] = [wt for wt in self.repos[main_path] if wt.path != path]

    def get_main_repo_path(self, path: str) -> str | None:
        best, best_len = None, -1
        for main_path, worktrees in self.repos.items():
            for wt in worktrees:
                if (path == wt.path or path.startswith(wt.path + "/")) and len(wt.path) > best_len:
                    best, best_len = main_path, len(wt.path)
        return best

    def list_worktrees(self, repo_path: str) -> list[GitWorktree]:
        if not self.available:
            return []
        return list(self.repos.get(repo_path, []))

    def find_beads_dir(self, project_path: str) -> str | None:
        return None


@pytest.fixture()
def fake_git(monkeypatch) -> FakeGit:
    fake = FakeGit()
    monkeypatch.setattr("oak.services.projects.get_main_repo_path", fake.get_main_repo_path)
    monkeypatch.setattr("oak.services.projects.list_worktrees", fake.list_worktrees)
    monkeypatch.setattr("oak.services.projects.find_beads_dir", fake.find_beads_dir)
    monkeypatch.setattr("oak.services.reconcile.get_main_repo_path", fake.get_main_repo_path)
    return fake
