"""tmux query and mutation adapter.

Every call goes through libtmux with an argument list, never a shell string.
Failures (tmux missing, no server, unknown target, non-zero exit) are logged
at debug level and turned into empty / False / None results so callers
polling from the UI loop never see an exception.
"""

import logging
import os
import time
from collections.abc import Callable

import libtmux

from oak.constants import BACKGROUND_SESSION, BACKGROUND_SESSION_SIZE, SETTLE_POLL_S, SETTLE_TIMEOUT_S
from oak.models import PaneInfo

logger = logging.getLogger(__name__)

_server: libtmux.Server | None = None

_FIELDS = (
    "pane_id",
    "window_id",
    "session_name",
    "pane_left",
    "pane_top",
    "pane_width",
    "pane_height",
    "pane_current_command",
    "pane_active",
    "pane_current_path",
    "pane_title",
)
PANE_FORMAT = "\t".join(f"#{{{name}}}" for name in _FIELDS)


def _get_server() -> libtmux.Server:
    global _server
    if _server is None:
        _server = libtmux.Server()
    return _server


def _run(*args: str) -> list[str] | None:
    """Run a tmux command. Returns stdout lines, or None on any failure."""
    try:
        result = _get_server().cmd(*args)
    except Exception:
        logger.debug("tmux command raised", extra={"args": args}, exc_info=True)
        return None
    if result.stderr or getattr(result, "returncode", 0):
        logger.debug("tmux command failed", extra={"args": args, "stderr": result.stderr})
        return None
    return result.stdout


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_pane_line(line: str) -> PaneInfo | None:
    parts = line.split("\t")
    if len(parts) != len(_FIELDS) or not parts[0]:
        return None
    pane_id, window_id, session, left, top, width, height, command, active, path, title = parts
    return PaneInfo(
        pane_id=pane_id,
        window_id=window_id,
        session_name=session,
        left=_to_int(left),
        top=_to_int(top),
        width=_to_int(width),
        height=_to_int(height),
        current_command=command,
        active=active == "1",
        current_path=path,
        title=title or None,
    )


def _parse_panes(lines: list[str] | None) -> list[PaneInfo]:
    panes = []
    for line in lines or []:
        pane = parse_pane_line(line)
        if pane is not None:
            panes.append(pane)
    return panes


# -- queries ----------------------------------------------------------------


def control_pane_id() -> str | None:
    """Pane id of the process running this code (the control pane)."""
    pane_id = os.environ.get("TMUX_PANE")
    if pane_id:
        return pane_id
    lines = _run("display-message", "-p", "#{pane_id}")
    return lines[0].strip() if lines else None


def in_tmux() -> bool:
    return bool(os.environ.get("TMUX"))


def list_window_panes(target: str | None = None) -> list[PaneInfo]:
    """Panes of the window containing `target` (the current window when None)."""
    args = ["list-panes", "-F", PANE_FORMAT]
    if target:
        args[1:1] = ["-t", target]
    return _parse_panes(_run(*args))


def list_session_panes(session_name: str) -> list[PaneInfo]:
    """All panes across every window of a session. Empty if the session is gone."""
    if not has_session(session_name):
        return []
    return _parse_panes(_run("list-panes", "-s", "-t", session_name, "-F", PANE_FORMAT))


def list_background_panes() -> list[PaneInfo]:
    return list_session_panes(BACKGROUND_SESSION)


def list_all_pane_ids() -> set[str] | None:
    """Ids of every live pane on the server, or None when tmux could not be queried."""
    lines = _run("list-panes", "-a", "-F", "#{pane_id}")
    if lines is None:
        return None
    return {line.strip() for line in lines if line.strip()}


def pane_exists(pane_id: str) -> bool:
    return pane_id in (list_all_pane_ids() or set())


def get_pane(pane_id: str) -> PaneInfo | None:
    lines = _run("display-message", "-p", "-t", pane_id, PANE_FORMAT)
    if not lines:
        return None
    return parse_pane_line(lines[0])


def pane_width(pane_id: str) -> int | None:
    pane = get_pane(pane_id)
    return pane.width if pane else None


def window_size(pane_id: str) -> tuple[int, int] | None:
    """(width, height) of the window containing the pane."""
    lines = _run("display-message", "-p", "-t", pane_id, "#{window_width}\t#{window_height}")
    if not lines:
        return None
    parts = lines[0].split("\t")
    if len(parts) != 2:
        return None
    return _to_int(parts[0]), _to_int(parts[1])


def has_session(session_name: str) -> bool:
    return _run("has-session", "-t", session_name) is not None


# -- mutations --------------------------------------------------------------


def ensure_background_session() -> bool:
    if has_session(BACKGROUND_SESSION):
        return True
    width, height = BACKGROUND_SESSION_SIZE
    created = _run("new-session", "-d", "-s", BACKGROUND_SESSION, "-x", str(width), "-y", str(height))
    if created is None:
        logger.warning("Failed to create background session", extra={"session": BACKGROUND_SESSION})
        return False
    return True


def split_window(target: str, start_directory: str, before: bool = False, size: int | None = None) -> str | None:
    """Split `target` horizontally, returning the new pane id."""
    args = ["split-window", "-h"]
    if before:
        args.append("-b")
    if size:
        args += ["-l", str(size)]
    args += ["-t", target, "-c", start_directory, "-P", "-F", "#{pane_id}"]
    lines = _run(*args)
    if not lines:
        return None
    return lines[0].strip() or None


def join_pane(
    source: str, target: str, before: bool = True, size: int | None = None, vertical: bool = False,
) -> bool:
    """Join `source` next to `target`: side by side, or below/above when `vertical`."""
    args = ["join-pane", "-v" if vertical else "-h"]
    if before:
        args.append("-b")
    if size:
        args += ["-l", str(size)]
    args += ["-s", source, "-t", target]
    return _run(*args) is not None


def break_pane(pane_id: str, session_name: str = BACKGROUND_SESSION) -> bool:
    """Move a pane into a new detached window of `session_name`."""
    return _run("break-pane", "-d", "-s", pane_id, "-t", f"{session_name}:") is not None


def resize_pane(pane_id: str, width: int | None = None, height: int | None = None) -> bool:
    args = ["resize-pane", "-t", pane_id]
    if width is not None:
        args += ["-x", str(width)]
    if height is not None:
        args += ["-y", str(height)]
    return _run(*args) is not None


def select_pane(pane_id: str) -> bool:
    return _run("select-pane", "-t", pane_id) is not None


def kill_pane(pane_id: str) -> bool:
    return _run("kill-pane", "-t", pane_id) is not None


def send_command(pane_id: str, command: str) -> bool:
    """Type `command` literally into a pane and press Enter."""
    if _run("send-keys", "-t", pane_id, "-l", command) is None:
        return False
    return _run("send-keys", "-t", pane_id, "Enter") is not None


def wait_until(
    predicate: Callable[[], bool],
    timeout: float = SETTLE_TIMEOUT_S,
    interval: float = SETTLE_POLL_S,
) -> bool:
    """Poll until `predicate` holds or `timeout` expires. Returns the last outcome."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            if predicate():
                return True
        except Exception:
            logger.debug("Settle predicate raised", exc_info=True)
        if time.monotonic() >= deadline:
            logger.debug("Timed out waiting for tmux to settle", extra={"timeout": timeout})
            return False
        time.sleep(interval)
