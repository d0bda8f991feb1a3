"""Configuration loading and startup validation for liverun.

Settings are layered, lowest precedence first:
    1. built-in defaults (liverun.constants)
    2. a YAML config file (liverun.yaml in the working directory, or --config)
    3. environment variables (a .env file is loaded first)
    4. command-line options
"""

import os
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from liverun.constants import (
    CONFIG_FILENAME,
    DEFAULT_EDITOR,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULT_KILL_GRACE_S,
    DEFAULT_SHUTDOWN_TIMEOUT_S,
    DEFAULT_STALENESS_S,
    DEFAULT_WATCH_COMMAND,
    DEFAULT_WATCH_RETRY_DELAY_S,
)


@dataclass
class Config:
    """Resolved runner configuration."""

    interpreter: str
    directory: Path
    editor: List[str]
    watch_command: List[str] = field(default_factory=lambda: list(DEFAULT_WATCH_COMMAND))
    staleness_threshold_s: float = DEFAULT_STALENESS_S
    kill_grace_s: float = DEFAULT_KILL_GRACE_S
    watch_retry_delay_s: float = DEFAULT_WATCH_RETRY_DELAY_S
    shutdown_timeout_s: float = DEFAULT_SHUTDOWN_TIMEOUT_S
    ignore_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    log_file: Optional[str] = None
    debug: bool = False
    use_tui: bool = True


class ConfigError(Exception):
    """Raised when configuration is invalid or a required command is missing."""
    pass


# Keys accepted in the YAML config file
FILE_KEYS = {
    "editor",
    "watch_command",
    "staleness_threshold_s",
    "kill_grace_s",
    "watch_retry_delay_s",
    "shutdown_timeout_s",
    "ignore_patterns",
    "log_file",
    "debug",
}

# Environment variable -> setting
ENV_KEYS = {
    "LIVERUN_WATCH_COMMAND": "watch_command",
    "LIVERUN_STALENESS_S": "staleness_threshold_s",
    "LIVERUN_KILL_GRACE_S": "kill_grace_s",
    "LIVERUN_LOG_FILE": "log_file",
    "LIVERUN_DEBUG": "debug",
}

SECONDS_KEYS = ("staleness_threshold_s", "kill_grace_s", "watch_retry_delay_s", "shutdown_timeout_s")


def command_exists(cmd: str) -> bool:
    """Check whether a command is on the search path."""
    return shutil.which(cmd) is not None


def get_editor(fallback: Optional[str] = None) -> List[str]:
    """
    Get the user's preferred visual editor as an argv prefix.

    $VISUAL wins, then the config file's editor, then DEFAULT_EDITOR.

    Raises:
        ConfigError: If the editor command is not in PATH.
    """
    visual = os.environ.get("VISUAL", "").strip()
    raw = visual or fallback or DEFAULT_EDITOR
    editor = shlex.split(raw)

    if not editor or not command_exists(editor[0]):
        name = editor[0] if editor else raw
        raise ConfigError(
            f"the command '{name}' is not in PATH; is it installed and available as a command?"
        )

    return editor


def validate_interpreter(interpreter: str) -> None:
    """Check the requested interpreter is in PATH."""
    if not interpreter or not command_exists(interpreter):
        raise ConfigError(f"interpreter {interpreter!r} is not in PATH")


def resolve_directory(directory: Optional[str]) -> Path:
    """Resolve the directory to monitor, defaulting to the working directory."""
    path = Path(directory).expanduser() if directory else Path.cwd()
    path = path.resolve()

    if not path.is_dir():
        raise ConfigError(f"{path} was not a directory.")

    return path


def load_config_file(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load settings from a YAML config file.

    Args:
        config_file: Explicit path. If None, liverun.yaml in the working
                     directory is used when present.

    Returns:
        Dict of settings (empty if no file was found).

    Raises:
        ConfigError: If an explicit file is missing, the YAML is invalid,
                     or it contains unknown keys.
    """
    if config_file is None:
        config_file = Path.cwd() / CONFIG_FILENAME
        if not config_file.exists():
            return {}
    elif not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")

    try:
        data = yaml.safe_load(config_file.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping of settings")

    unknown = sorted(set(data) - FILE_KEYS)
    if unknown:
        raise ConfigError(f"Unknown keys in {config_file}: {', '.join(unknown)}")

    return data


def _parse_seconds(name: str, value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number of seconds, got {value!r}")
    if seconds < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return seconds


def _parse_command(name: str, value: Any) -> List[str]:
    if isinstance(value, str):
        command = shlex.split(value)
    elif isinstance(value, (list, tuple)):
        command = [str(part) for part in value]
    else:
        raise ConfigError(f"{name} must be a string or a list, got {value!r}")
    if not command:
        raise ConfigError(f"{name} must not be empty")
    return command


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config(
    interpreter: str,
    directory: Optional[str] = None,
    config_file: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    use_tui: bool = True,
) -> Config:
    """
    Build and validate the runner configuration.

    Args:
        interpreter: Interpreter command (e.g. python3, node)
        directory: Directory to monitor (default: working directory)
        config_file: Optional explicit YAML config file
        overrides: Command-line settings; None values are ignored
        use_tui: Whether the curses display should be used

    Returns:
        Config with every command validated.

    Raises:
        ConfigError: On any invalid setting or missing command.
    """
    load_dotenv(find_dotenv(usecwd=True))

    settings: Dict[str, Any] = dict(load_config_file(config_file))

    for env_name, key in ENV_KEYS.items():
        value = os.environ.get(env_name)
        if value:
            settings[key] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            settings[key] = value

    validate_interpreter(interpreter)
    resolved_dir = resolve_directory(directory)
    editor = get_editor(settings.get("editor"))

    watch_command = _parse_command(
        "watch_command", settings.get("watch_command", DEFAULT_WATCH_COMMAND)
    )
    if not command_exists(watch_command[0]):
        raise ConfigError(
            f"watch utility '{watch_command[0]}' is not in PATH; is it installed?"
        )

    ignore_patterns = settings.get("ignore_patterns", DEFAULT_IGNORE_PATTERNS)
    if not isinstance(ignore_patterns, list):
        raise ConfigError(f"ignore_patterns must be a list, got {ignore_patterns!r}")

    seconds = {
        key: _parse_seconds(key, settings[key]) for key in SECONDS_KEYS if key in settings
    }

    return Config(
        interpreter=interpreter,
        directory=resolved_dir,
        editor=editor,
        watch_command=watch_command,
        ignore_patterns=[str(p) for p in ignore_patterns],
        log_file=settings.get("log_file") or None,
        debug=_parse_flag(settings.get("debug", False)),
        use_tui=use_tui,
        **seconds,
    )
