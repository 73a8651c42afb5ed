"""Width of the control pane (the column oak itself runs in)."""

import logging
import math

from oak.constants import MIN_WIDTH
from oak.models import Settings
from oak.services import tmux
from oak.services.store import StateStore

logger = logging.getLogger(__name__)


def width_bounds(window_width: int) -> tuple[int, int]:
    """Allowed (min, max) control width: 20-40% of the window, never below MIN_WIDTH."""
    return max(MIN_WIDTH, math.floor(0.2 * window_width)), math.floor(0.4 * window_width)


def clamp_width(width: int, window_width: int) -> int:
    # On narrow windows the band is empty and the floor wins
    low, high = width_bounds(window_width)
    return max(low, min(width, high))


def default_width(window_width: int) -> int:
    quarter = math.floor(0.25 * window_width + 0.5)
    return clamp_width(quarter, window_width)


class WidthPolicy:
    """Keeps the control pane at the user's preferred width.

    Manual resizes seen on a tick are written back as-is. The 20-40% band is
    only applied by `enforce()`, right after oak's own structural changes.
    """

    def __init__(self, store: StateStore, control_pane_id: str | None) -> None:
        self._store = store
        self._control_pane_id = control_pane_id
        self._settings: Settings | None = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = self._store.load_settings()
        return self._settings

    def _persist(self, width: int) -> None:
        self.settings.oak_width = width
        self._store.save_settings(self.settings)

    def ensure(self, window_width: int) -> int:
        """Persisted width, computing and saving the default on first use."""
        if self.settings.oak_width is None:
            self._persist(default_width(window_width))
            logger.debug("Initialised control width", extra={"width": self.settings.oak_width})
        return self.settings.oak_width

    def observe(self, live_width: int | None = None) -> bool:
        """Write back a manual resize of the control pane. Returns True if one was saved."""
        if not self._control_pane_id:
            return False
        live = live_width if live_width is not None else tmux.pane_width(self._control_pane_id)
        if not live or live == self.settings.oak_width:
            return False
        logger.debug("Control pane resized by user", extra={"old": self.settings.oak_width, "new": live})
        self._persist(live)
        return True

    def enforce(self) -> int | None:
        """Resize the control pane back to its clamped preferred width."""
        if not self._control_pane_id:
            return None
        size = tmux.window_size(self._control_pane_id)
        if size is None:
            return None
        window_width, _ = size
        target = clamp_width(self.ensure(window_width), window_width)
        if target != self.settings.oak_width:
            self._persist(target)
        tmux.resize_pane(self._control_pane_id, width=target)
        return target
