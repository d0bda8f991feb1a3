"""Constants for the live-reload runner."""

# Editor used when $VISUAL is unset
DEFAULT_EDITOR = "code"

# Watch utility: blocks until one of the paths on stdin changes, then exits.
#   -n  no TTY interaction (the display owns the terminal)
#   -p  postpone the first run until a change
#   -z  exit once the utility has run
DEFAULT_WATCH_COMMAND = ["entr", "-npz", "true"]

# Added in directory mode so that a new file also ends the wait
WATCH_DIRECTORY_FLAG = "-d"

# entr exit status when -d saw a file added to a watched directory
WATCH_EXIT_NEW_FILE = 2

DEFAULT_STALENESS_S = 2.0
DEFAULT_KILL_GRACE_S = 0.5
DEFAULT_WATCH_RETRY_DELAY_S = 1.0
DEFAULT_SHUTDOWN_TIMEOUT_S = 5.0

DEFAULT_IGNORE_PATTERNS = [".git", "__pycache__", "node_modules", ".venv"]

CONFIG_FILENAME = "liverun.yaml"
TEMP_FILE_PREFIX = "liverun"

# Bytes read per pipe chunk when pumping child output
PIPE_CHUNK_SIZE = 4096

# Per-pane output retained by the display
MAX_REGION_BYTES = 256 * 1024

HEADER_TEXT = "liverun"
STDOUT_TEXT = "Waiting for program execution...\n"
STDERR_TEXT = ""
KEYS_TEXT = "k: kill  q: quit"
