import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path

import git as gitpython

logger = logging.getLogger(__name__)

_GIT_ERRORS = (
    gitpython.GitCommandError,
    gitpython.InvalidGitRepositoryError,
    gitpython.NoSuchPathError,
    OSError,
)

# TTL cache for main-repo resolution (path -> (timestamp, value)).
# The reconciler resolves every live pane on every tick.
_GIT_CACHE_TTL = 5.0  # seconds
_cache_lock = threading.Lock()
_main_repo_cache: dict[str, tuple[float, str | None]] = {}

IGNORED_DIRS = {
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    ".cache",
    "coverage",
    "__pycache__",
    ".venv",
    "venv",
    ".turbo",
    ".bun",
}
_BEADS_MAX_DEPTH = 3


@dataclass(frozen=True)
class GitWorktree:
    path: str
    branch: str
    commit: str = "unknown"
    prunable: bool = False


def get_git_root(path: str) -> str | None:
    """Top level of the working tree containing `path` (a linked worktree resolves to itself)."""
    try:
        repo = gitpython.Repo(path, search_parent_directories=True)
        return repo.working_tree_dir
    except _GIT_ERRORS:
        return None


def _worktree_porcelain(path: str) -> str | None:
    try:
        repo = gitpython.Repo(path, search_parent_directories=True)
        return repo.git.worktree("list", "--porcelain")
    except _GIT_ERRORS:
        logger.debug("git worktree list failed", extra={"path": path})
        return None


def get_main_repo_path(path: str) -> str | None:
    """Main checkout of the repository containing `path`. Cached with TTL."""
    now = time.monotonic()
    with _cache_lock:
        cached = _main_repo_cache.get(path)
        if cached and (now - cached[0]) < _GIT_CACHE_TTL:
            return cached[1]

    value: str | None = None
    output = _worktree_porcelain(path)
    if output is not None:
        for line in output.splitlines():
            if line.startswith("worktree "):
                value = line[len("worktree "):]
                break
        if value is None:
            value = get_git_root(path)
    with _cache_lock:
        for key in [k for k, (ts, _) in _main_repo_cache.items() if now - ts >= _GIT_CACHE_TTL]:
            del _main_repo_cache[key]
        _main_repo_cache[path] = (now, value)
    return value


def parse_worktree_list(output: str) -> list[GitWorktree]:
    """Parse `git worktree list --porcelain` output."""
    worktrees: list[GitWorktree] = []
    current: dict = {}

    def _flush() -> None:
        if current.get("path"):
            worktrees.append(
                GitWorktree(
                    path=current["path"],
                    branch=current.get("branch") or "detached",
                    commit=current.get("commit") or "unknown",
                    prunable=current.get("prunable", False),
                )
            )

    for line in output.splitlines():
        if line.startswith("worktree "):
            _flush()
            current = {"path": line[len("worktree "):]}
        elif line.startswith("branch "):
            current["branch"] = line[len("branch "):].removeprefix("refs/heads/")
        elif line.startswith("HEAD "):
            current["commit"] = line[len("HEAD "):][:7]
        elif line.startswith("prunable"):
            current["prunable"] = True
        elif line == "":
            _flush()
            current = {}

    # Handle last entry if output doesn't end with blank line
    _flush()
    return worktrees


def list_worktrees(repo_path: str) -> list[GitWorktree]:
    output = _worktree_porcelain(repo_path)
    if output is None:
        return []
    return parse_worktree_list(output)


def find_beads_dir(project_path: str) -> str | None:
    """Relative path of the nearest `.beads` directory, "." for the root, None if absent."""
    root = Path(project_path)
    if (root / ".beads").exists():
        return "."

    queue: deque[tuple[Path, int]] = deque([(root, 0)])
    visited: set[Path] = set()
    while queue:
        current, depth = queue.popleft()
        if depth > _BEADS_MAX_DEPTH or current in visited:
            continue
        visited.add(current)
        try:
            entries = sorted(current.iterdir())
        except OSError:
            continue
        for entry in entries:
            if entry.name in IGNORED_DIRS:
                continue
            try:
                if not entry.is_dir():
                    continue
            except OSError:
                continue
            if (entry / ".beads").exists():
                return str(entry.relative_to(root))
            queue.append((entry, depth + 1))
    return None


def invalidate_git_cache(path: str | None = None) -> None:
    with _cache_lock:
        if path is None:
            _main_repo_cache.clear()
        else:
            _main_repo_cache.pop(path, None)
