"""Open a task worktree in the configured editor or a subshell."""

import logging
import os
import shutil
import subprocess
from pathlib import Path

from hive.core.errors import HiveError, NotFoundError

logger = logging.getLogger(__name__)


class EditorError(HiveError):
    """Raised when the configured editor cannot be started."""


def editor_command(editor: str, path: str | Path) -> list[str]:
    """The argv that opens path in editor. 'terminal' starts a shell in path."""
    if editor == "terminal":
        return [os.environ.get("SHELL") or "bash"]
    if editor == "claude":
        return ["claude", "-p", str(path)]
    return [editor, str(path)]


def open_in_editor(path: str | Path, editor: str) -> None:
    path = Path(path)
    if not path.is_dir():
        raise NotFoundError(f"Worktree path does not exist: {path}")

    argv = editor_command(editor, path)
    if shutil.which(argv[0]) is None:
        raise EditorError(f'Editor "{editor}" is not available. Make sure {argv[0]} is on your PATH.')

    logger.debug("Opening %s with %s", path, argv)
    if editor == "terminal":
        # interactive: hand the terminal over until the shell exits
        subprocess.run(argv, cwd=path, check=False)
    else:
        subprocess.Popen(argv, cwd=path, stdin=subprocess.DEVNULL, start_new_session=True)
