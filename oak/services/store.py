import fcntl
import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from oak.constants import SETTINGS_FILE_NAME, STATE_DIR, STATE_FILE_NAME
from oak.models import ProjectState, RootState, Settings

logger = logging.getLogger(__name__)


def _read_document(path: Path) -> bytes:
    lock_file = path.with_suffix(".lock")
    with open(lock_file, "a") as lf:
        fcntl.flock(lf, fcntl.LOCK_SH)
        try:
            return path.read_bytes()
        finally:
            fcntl.flock(lf, fcntl.LOCK_UN)


def _write_document(path: Path, model: BaseModel) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_file = path.with_suffix(".lock")
    tmp = path.with_suffix(".tmp")
    with open(lock_file, "a") as lf:
        fcntl.flock(lf, fcntl.LOCK_EX)
        try:
            tmp.write_text(model.model_dump_json(indent=2, by_alias=True, exclude_none=True))
            tmp.rename(path)
        finally:
            fcntl.flock(lf, fcntl.LOCK_UN)


class StateStore:
    """Owns the persisted projects document and the orchestrator settings.

    Nothing is saved implicitly: callers mutate the state returned by
    `get()` and call `save()` when the change has to survive a restart.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir or STATE_DIR
        self._state: RootState | None = None

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    @property
    def settings_file(self) -> Path:
        return self.state_dir / SETTINGS_FILE_NAME

    def load(self) -> RootState:
        """Read the document from disk. Never raises; anything invalid yields an empty state."""
        if not self.state_file.exists():
            logger.debug("No projects state file found, starting empty")
            return RootState()
        try:
            raw = _read_document(self.state_file)
        except OSError:
            logger.warning("Failed to read projects state", extra={"path": str(self.state_file)}, exc_info=True)
            return RootState()
        try:
            state = RootState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Invalid projects state, starting empty",
                extra={"path": str(self.state_file), "errors": e.errors(include_url=False)},
            )
            return RootState()
        except UnicodeDecodeError:
            logger.warning("Projects state is not valid UTF-8, starting empty", extra={"path": str(self.state_file)})
            return RootState()
        logger.debug("Loaded projects state", extra={"projects": len(state.projects)})
        return state

    def init(self) -> RootState:
        self._state = self.load()
        return self._state

    def get(self) -> RootState:
        if self._state is None:
            self._state = self.load()
        return self._state

    def reload(self) -> RootState:
        return self.init()

    def save(self, state: RootState | None = None) -> None:
        if state is not None:
            self._state = state
        if self._state is None:
            return
        _write_document(self.state_file, self._state)
        logger.debug("Saved projects state", extra={"projects": len(self._state.projects)})

    def load_settings(self) -> Settings:
        if not self.settings_file.exists():
            return Settings()
        try:
            return Settings.model_validate_json(_read_document(self.settings_file))
        except (OSError, ValidationError, UnicodeDecodeError):
            logger.warning("Ignoring unreadable settings", extra={"path": str(self.settings_file)})
            return Settings()

    def save_settings(self, settings: Settings) -> None:
        _write_document(self.settings_file, settings)


def projects_in_display_order(state: RootState, configured_order: list[str]) -> list[ProjectState]:
    """Projects listed in the user config first, in file order; the rest most recent first."""
    result: list[ProjectState] = []
    seen: set[str] = set()
    for path in configured_order:
        project = state.projects.get(path)
        if project is not None and path not in seen:
            result.append(project)
            seen.add(path)
    remaining = sorted(
        (p for p in state.projects.values() if p.path not in seen),
        key=lambda p: p.last_accessed,
        reverse=True,
    )
    return result + remaining
