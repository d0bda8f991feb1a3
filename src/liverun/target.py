"""Resolve the file the interpreter runs against.

Either an existing user-supplied file, or a temporary file seeded with a
shebang for the selected interpreter. Only temporary files are ever removed.
"""

import fnmatch
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterable, List, Optional

from liverun.config import ConfigError
from liverun.constants import TEMP_FILE_PREFIX

LOGGER = logging.getLogger(__name__)


@dataclass
class TargetFile:
    path: Path
    is_temporary: bool
    handle: Optional[IO] = None

    def remove(self) -> bool:
        """
        Close the handle and delete the file if it is temporary.

        Returns:
            True if a file was deleted by this call.
        """
        if self.handle is not None:
            self.handle.close()
            self.handle = None

        if not self.is_temporary:
            return False

        try:
            self.path.unlink()
        except FileNotFoundError:
            return False

        LOGGER.debug("Removed temporary file %s", self.path)
        return True


def shebang_for(interpreter: str) -> str:
    return f"#!/usr/bin/env {interpreter}\n"


def resolve_target(file: Optional[str], interpreter: str) -> TargetFile:
    """
    Create and open the target file.

    Args:
        file: User-supplied file, or None/empty for a temporary file
        interpreter: Interpreter named in the temporary file's shebang

    Raises:
        ConfigError: If a user-supplied file does not exist.
    """
    if not file:
        handle = tempfile.NamedTemporaryFile(
            mode="w",
            prefix=TEMP_FILE_PREFIX,
            dir=tempfile.gettempdir(),
            delete=False,
        )
        handle.write(shebang_for(interpreter))
        handle.flush()
        LOGGER.debug("Created temporary file %s", handle.name)
        return TargetFile(path=Path(handle.name), is_temporary=True, handle=handle)

    path = Path(file).expanduser().resolve()
    if not path.is_file():
        raise ConfigError(f"file not found: {file}")

    return TargetFile(path=path, is_temporary=False, handle=path.open("r"))


def is_ignored(path: Path, patterns: Iterable[str]) -> bool:
    """True if any component of path matches one of the glob patterns."""
    patterns = list(patterns)
    return any(
        fnmatch.fnmatch(part, pattern) for part in path.parts for pattern in patterns
    )


def list_directory(directory: Path, ignore_patterns: Iterable[str] = ()) -> List[Path]:
    """
    List all files under a directory, recursively.

    Ignored directories are pruned rather than descended into.
    """
    if not directory.is_dir():
        raise ConfigError(f"{directory} was not a directory.")

    patterns = list(ignore_patterns)
    files = []

    for root, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(
            d for d in dirnames if not is_ignored(Path(d), patterns)
        )
        for name in sorted(filenames):
            path = Path(root) / name
            if not is_ignored(path.relative_to(directory), patterns):
                files.append(path)

    return files
