"""User configuration.

Reads `~/.config/oak-tui/config.toml`. The file is edited by hand and only
ever read here. The order of its `[projects."<path>"]` tables is the display
order of projects; each level can list shell commands to type into a pane
freshly opened for a worktree:

    [global]
    commands = ["source .venv/bin/activate"]

    [projects."/src/app"]
    commands = ["nvm use"]

    [projects."/src/app".worktrees."/src/app-feat"]
    commands = ["make dev"]
"""

import logging
import tomllib
from pathlib import Path

import git as gitpython
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from oak.constants import CONFIG_FILE_NAME, STATE_DIR

logger = logging.getLogger(__name__)


class WorktreeConfig(BaseModel):
    commands: list[str] = []


class ProjectConfig(BaseModel):
    commands: list[str] = []
    worktrees: dict[str, WorktreeConfig] = {}


class GlobalConfig(BaseModel):
    commands: list[str] = []


class OakConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    projects: dict[str, ProjectConfig] = {}

    @property
    def project_order(self) -> list[str]:
        # tomllib keeps table order
        return list(self.projects)


def config_path() -> Path:
    return STATE_DIR / CONFIG_FILE_NAME


def load_toml(path: Path) -> OakConfig:
    if not path.exists():
        return OakConfig()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return OakConfig.model_validate(data)
    except (tomllib.TOMLDecodeError, ValidationError, OSError):
        logger.warning("Ignoring unreadable config file", extra={"path": str(path)}, exc_info=True)
        return OakConfig()


def load_config(path: Path | None = None) -> OakConfig:
    return load_toml(path or config_path())


def commands_for_worktree(config: OakConfig, worktree_path: str, project_path: str) -> list[str]:
    """Startup commands for a new pane. Worktree beats project beats global."""
    project = config.projects.get(project_path)
    if project is not None:
        worktree = project.worktrees.get(worktree_path)
        if worktree is not None and worktree.commands:
            return list(worktree.commands)
        if project.commands:
            return list(project.commands)
    return list(config.global_.commands)


def detect_repo_root(cwd: Path | str | None = None) -> Path:
    try:
        repo = gitpython.Repo(cwd or ".", search_parent_directories=True)
        return Path(repo.working_dir)
    except (gitpython.InvalidGitRepositoryError, gitpython.NoSuchPathError):
        raise RuntimeError("Not inside a git repository")
