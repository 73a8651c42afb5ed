from unittest.mock import MagicMock

import git as gitpython
import pytest

from oak.services import git as git_mod
from oak.services.git import (
    GitWorktree,
    find_beads_dir,
    get_git_root,
    get_main_repo_path,
    invalidate_git_cache,
    list_worktrees,
    parse_worktree_list,
)

PORCELAIN = """worktree /src/app
HEAD 1234567890abcdef
branch refs/heads/main

worktree /src/app-feat
HEAD abcdef1234567890
branch refs/heads/feature/login

worktree /src/app-old
HEAD 0000000aaaaaaa
detached
prunable gitdir file points to non-existent location
"""


def _repo_with_porcelain(output: str) -> MagicMock:
    mock_repo = MagicMock()
    mock_repo.git.worktree.return_value = output
    mock_repo.working_tree_dir = "/src/app-feat"
    return mock_repo


class TestParseWorktreeList:
    def test_parses_entries(self):
        assert parse_worktree_list(PORCELAIN) == [
            GitWorktree(path="/src/app", branch="main", commit="1234567"),
            GitWorktree(path="/src/app-feat", branch="feature/login", commit="abcdef1"),
            GitWorktree(path="/src/app-old", branch="detached", commit="0000000", prunable=True),
        ]

    def test_without_trailing_blank_line(self):
        output = "worktree /src/app\nHEAD 1234567890\nbranch refs/heads/main"
        assert parse_worktree_list(output) == [GitWorktree(path="/src/app", branch="main", commit="1234567")]

    def test_empty(self):
        assert parse_worktree_list("") == []


class TestListWorktrees:
    def test_success(self, monkeypatch):
        mock_repo = _repo_with_porcelain(PORCELAIN)
        monkeypatch.setattr(gitpython, "Repo", lambda *a, **kw: mock_repo)
        assert [wt.path for wt in list_worktrees("/src/app")] == ["/src/app", "/src/app-feat", "/src/app-old"]
        mock_repo.git.worktree.assert_called_once_with("list", "--porcelain")

    def test_failure_returns_empty(self, monkeypatch):
        monkeypatch.setattr(gitpython, "Repo", MagicMock(side_effect=gitpython.NoSuchPathError("/gone")))
        assert list_worktrees("/gone") == []


class TestMainRepoPath:
    def test_first_worktree_is_main(self, monkeypatch):
        monkeypatch.setattr(gitpython, "Repo", lambda *a, **kw: _repo_with_porcelain(PORCELAIN))
        assert get_main_repo_path("/src/app-feat/lib") == "/src/app"

    def test_not_a_repo(self, monkeypatch):
        monkeypatch.setattr(
            gitpython, "Repo", MagicMock(side_effect=gitpython.InvalidGitRepositoryError("nope"))
        )
        assert get_main_repo_path("/tmp") is None

    def test_uses_cache_until_invalidated(self, monkeypatch):
        call_count = 0

        def counting_repo(*a, **kw):
            nonlocal call_count
            call_count += 1
            return _repo_with_porcelain(PORCELAIN)

        monkeypatch.setattr(gitpython, "Repo", counting_repo)

        get_main_repo_path("/src/app-feat")
        get_main_repo_path("/src/app-feat")
        assert call_count == 1

        invalidate_git_cache("/src/app-feat")
        get_main_repo_path("/src/app-feat")
        assert call_count == 2

    def test_cache_expires(self, monkeypatch):
        call_count = 0

        def counting_repo(*a, **kw):
            nonlocal call_count
            call_count += 1
            return _repo_with_porcelain(PORCELAIN)

        monkeypatch.setattr(gitpython, "Repo", counting_repo)
        get_main_repo_path("/src/app")

        ts, val = git_mod._main_repo_cache["/src/app"]
        git_mod._main_repo_cache["/src/app"] = (ts - git_mod._GIT_CACHE_TTL - 1, val)

        get_main_repo_path("/src/app")
        assert call_count == 2

    def test_expired_entries_are_evicted(self, monkeypatch):
        monkeypatch.setattr(gitpython, "Repo", lambda *a, **kw: _repo_with_porcelain(PORCELAIN))
        get_main_repo_path("/src/app/lib")

        ts, val = git_mod._main_repo_cache["/src/app/lib"]
        git_mod._main_repo_cache["/src/app/lib"] = (ts - git_mod._GIT_CACHE_TTL - 1, val)

        get_main_repo_path("/src/app-feat")
        assert list(git_mod._main_repo_cache) == ["/src/app-feat"]


def test_get_git_root(monkeypatch):
    monkeypatch.setattr(gitpython, "Repo", lambda *a, **kw: _repo_with_porcelain(""))
    assert get_git_root("/src/app-feat/lib") == "/src/app-feat"


class TestFindBeadsDir:
    def test_at_root(self, tmp_path):
        (tmp_path / ".beads").mkdir()
        assert find_beads_dir(str(tmp_path)) == "."

    def test_nested(self, tmp_path):
        (tmp_path / "tools" / "tracker" / ".beads").mkdir(parents=True)
        assert find_beads_dir(str(tmp_path)) == "tools/tracker"

    def test_ignored_dirs_are_skipped(self, tmp_path):
        (tmp_path / "node_modules" / "pkg" / ".beads").mkdir(parents=True)
        assert find_beads_dir(str(tmp_path)) is None

    @pytest.mark.parametrize("depth,found", [(3, True), (5, False)])
    def test_depth_limit(self, tmp_path, depth, found):
        nested = tmp_path.joinpath(*[f"d{i}" for i in range(depth)])
        (nested / ".beads").mkdir(parents=True)
        assert (find_beads_dir(str(tmp_path)) is not None) is found
