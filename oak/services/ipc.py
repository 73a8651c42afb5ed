"""Single-instance guard over a unix socket.

The running instance listens on `DATA_DIR/tui.sock`. A second launch checks
the socket: if someone answers it forwards its directory as a `reload`
command and exits, otherwise the dead socket file is removed and the new
process takes over. Messages are one JSON object per line (or per
connection, terminated by EOF): `{"command": "reload", "dir": "..."}` or
`{"command": "restart"}`.
"""

import atexit
import json
import logging
import signal
import socket
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ValidationError

from oak.constants import DATA_DIR, PROBE_TIMEOUT_S, SEND_TIMEOUT_S, SOCKET_FILE_NAME

logger = logging.getLogger(__name__)

InstanceStatus = Literal["none", "connected", "stale"]

_MAX_MESSAGE_BYTES = 64 * 1024


class IpcMessage(BaseModel):
    command: Literal["reload", "restart"]
    dir: str | None = None


def socket_path() -> Path:
    return DATA_DIR / SOCKET_FILE_NAME


def _remove_socket(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.debug("Could not remove socket file", extra={"path": str(path)}, exc_info=True)


def check_existing_instance(path: Path | None = None, timeout: float = PROBE_TIMEOUT_S) -> InstanceStatus:
    """Probe for a running instance, cleaning up a socket file nobody answers on."""
    path = path or socket_path()
    if not path.exists():
        logger.debug("No socket file, no existing instance")
        return "none"
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(timeout)
            s.connect(str(path))
    except OSError as e:
        logger.debug("No instance responding, removing stale socket", extra={"error": str(e)})
        _remove_socket(path)
        return "stale"
    logger.debug("Connected to existing instance")
    return "connected"


def _send(message: IpcMessage, path: Path | None, timeout: float) -> bool:
    path = path or socket_path()
    payload = (message.model_dump_json(exclude_none=True) + "\n").encode("utf-8")
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(timeout)
            s.connect(str(path))
            s.sendall(payload)
    except OSError as e:
        logger.debug("Failed to send command", extra={"command": message.command, "error": str(e)})
        return False
    return True


def send_reload(directory: str, path: Path | None = None, timeout: float = SEND_TIMEOUT_S) -> bool:
    return _send(IpcMessage(command="reload", dir=directory), path, timeout)


def send_restart(path: Path | None = None, timeout: float = SEND_TIMEOUT_S) -> bool:
    return _send(IpcMessage(command="restart"), path, timeout)


def _recv_all(conn: socket.socket) -> bytes:
    buf = b""
    while len(buf) <= _MAX_MESSAGE_BYTES:
        try:
            chunk = conn.recv(4096)
        except socket.timeout:
            break
        if not chunk:
            break
        buf += chunk
    return buf


def parse_messages(raw: bytes) -> list[IpcMessage]:
    """Decode every valid message in a connection's payload; invalid lines are logged and skipped.

    The payload is either one JSON object, possibly spread over several
    lines, or newline-delimited objects.
    """
    text = raw.decode("utf-8", errors="replace")
    try:
        whole = json.loads(text)
    except json.JSONDecodeError:
        whole = None
    if whole is not None:
        try:
            return [IpcMessage.model_validate(whole)]
        except ValidationError as e:
            logger.debug("Ignoring invalid IPC message", extra={"line": text[:200], "error": str(e)})
            return []

    messages = []
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            messages.append(IpcMessage.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.debug("Ignoring invalid IPC message", extra={"line": line[:200], "error": str(e)})
    return messages


class InstanceServer:
    """Listens for commands from later launches on a daemon thread.

    `on_command` is called from the listener thread; the host app hops back
    onto its own loop from there.
    """

    def __init__(self, on_command: Callable[[IpcMessage], None], path: Path | None = None) -> None:
        self.path = path or socket_path()
        self._on_command = on_command
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._previous_sigint = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            _remove_socket(self.path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.bind(str(self.path))
        sock.listen(8)
        sock.settimeout(1.0)  # wake up to check the stop flag
        self._sock = sock
        self._stop.clear()
        self._thread = threading.Thread(target=self._serve, name="oak-ipc", daemon=True)
        self._thread.start()
        atexit.register(self.close)
        self._install_sigint_cleanup()
        logger.debug("IPC server listening", extra={"path": str(self.path)})

    def _install_sigint_cleanup(self) -> None:
        # signal handlers can only be installed from the main thread
        if threading.current_thread() is not threading.main_thread():
            return
        self._previous_sigint = signal.getsignal(signal.SIGINT)

        def handler(signum, frame):
            _remove_socket(self.path)
            previous = self._previous_sigint
            if callable(previous):
                previous(signum, frame)
            else:
                raise KeyboardInterrupt

        signal.signal(signal.SIGINT, handler)

    def _serve(self) -> None:
        while not self._stop.is_set():
            sock = self._sock
            if sock is None:
                break
            try:
                conn, _ = sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self._stop.is_set():
                    logger.debug("IPC accept failed", exc_info=True)
                break
            with conn:
                conn.settimeout(SEND_TIMEOUT_S)
                raw = _recv_all(conn)
            for message in parse_messages(raw):
                self._dispatch(message)

    def _dispatch(self, message: IpcMessage) -> None:
        if message.command == "reload" and not message.dir:
            logger.debug("Ignoring reload without a directory")
            return
        logger.debug("IPC command received", extra={"command": message.command, "dir": message.dir})
        try:
            self._on_command(message)
        except Exception:
            logger.exception("IPC command handler failed")

    def close(self) -> None:
        self._stop.set()
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                logger.debug("Error closing IPC socket", exc_info=True)
            self._sock = None
            _remove_socket(self.path)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        if self._previous_sigint is not None and threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._previous_sigint)
            self._previous_sigint = None
        atexit.unregister(self.close)
