"""Launch the user's visual editor on the target file."""

import logging
import subprocess
from pathlib import Path
from typing import List

LOGGER = logging.getLogger(__name__)


def launch_editor(editor: List[str], path: Path) -> subprocess.Popen:
    """
    Start the editor with the target path appended to its argv.

    The editor's output is discarded since the display owns the terminal.
    The handle is kept only so shutdown can terminate it.
    """
    cmd = [*editor, str(path)]
    LOGGER.info("Opening %s", " ".join(cmd))
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
