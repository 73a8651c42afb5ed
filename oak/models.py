import time

from pydantic import BaseModel, ConfigDict, Field, model_validator

from oak.constants import BACKGROUND_SESSION, STATE_VERSION


def now_ms() -> int:
    return int(time.time() * 1000)


class _Document(BaseModel):
    # Persisted documents use camelCase keys; strict so a wrongly typed field
    # invalidates the document instead of being coerced.
    model_config = ConfigDict(extra="ignore", populate_by_name=True, strict=True)


class PaneState(_Document):
    pane_id: str = Field(alias="paneId")
    window_id: str = Field(alias="windowId")
    session_name: str = Field(alias="sessionName")
    current_path: str = Field(alias="currentPath")
    current_command: str = Field(default="", alias="currentCommand")
    pane_title: str | None = Field(default=None, alias="paneTitle")
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    is_background: bool = Field(default=False, alias="isBackground")


class WorktreeState(_Document):
    path: str
    branch: str
    panes: list[PaneState] = Field(default_factory=list)

    def get_pane(self, pane_id: str) -> PaneState | None:
        for pane in self.panes:
            if pane.pane_id == pane_id:
                return pane
        return None


class BeadsConfig(_Document):
    enabled: bool = False
    path: str | None = None


class ProjectState(_Document):
    path: str
    name: str
    last_accessed: int = Field(default_factory=now_ms, alias="lastAccessed")
    beads: BeadsConfig = Field(default_factory=BeadsConfig)
    worktrees: dict[str, WorktreeState] = Field(default_factory=dict)


class RootState(_Document):
    version: int = STATE_VERSION
    projects: dict[str, ProjectState] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _keys_match_paths(self) -> "RootState":
        for key, project in self.projects.items():
            if key != project.path:
                raise ValueError(f"project key {key!r} does not match its path {project.path!r}")
        return self

    def iter_panes(self):
        """Yield (project, worktree, pane) for every tracked pane."""
        for project in self.projects.values():
            for wt in project.worktrees.values():
                for pane in wt.panes:
                    yield project, wt, pane

    def find_pane(self, pane_id: str) -> tuple[WorktreeState, PaneState] | None:
        for _, wt, pane in self.iter_panes():
            if pane.pane_id == pane_id:
                return wt, pane
        return None


class Settings(_Document):
    oak_width: int | None = Field(default=None, alias="oakWidth")


class PaneInfo(BaseModel):
    """A live pane as reported by tmux."""

    pane_id: str
    window_id: str = ""
    session_name: str = ""
    current_path: str = ""
    current_command: str = ""
    title: str | None = None
    left: int = 0
    top: int = 0
    width: int = 0
    height: int = 0
    active: bool = False

    @property
    def is_background(self) -> bool:
        return self.session_name == BACKGROUND_SESSION
