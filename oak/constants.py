from pathlib import Path

STATE_DIR = Path.home() / ".config" / "oak-tui"
DATA_DIR = Path.home() / ".local" / "share" / "oak-tui"

STATE_FILE_NAME = "projects.json"
SETTINGS_FILE_NAME = "settings.json"
CONFIG_FILE_NAME = "config.toml"
SOCKET_FILE_NAME = "tui.sock"
DEBUG_LOG_NAME = "debug.log"

STATE_VERSION = 1

BACKGROUND_SESSION = "oak-bg"
BACKGROUND_SESSION_SIZE = (80, 24)

# Control pane width floor, in columns
MIN_WIDTH = 42

SYNC_INTERVAL_S = 2.0

# Upper bounds on UI stalls caused by IPC
PROBE_TIMEOUT_S = 0.5
SEND_TIMEOUT_S = 1.0

SETTLE_TIMEOUT_S = 1.0
SETTLE_POLL_S = 0.02

EXIT_OK = 0
EXIT_NOT_IN_TMUX = 1
EXIT_CRASHED = 1
EXIT_NO_REPO = 2
EXIT_RESTART = 42
EXIT_ALREADY_RUNNING = 100
