"""Reading the files named on the command line, '-' or nothing meaning stdin."""

import logging
import sys
from pathlib import Path
from typing import BinaryIO, Optional

from .errors import InputUnavailableError

logger = logging.getLogger(__name__)


def read_input(name: Optional[str], stdin: Optional[BinaryIO] = None) -> bytes:
    """
    Read a whole file or standard input.

    Args:
        name: Path, '-' or None/empty for standard input
        stdin: Binary stream used instead of sys.stdin

    Raises:
        InputUnavailableError: the file can not be read, or stdin is a terminal
    """
    if name and name.strip() and name != "-":
        try:
            return Path(name).read_bytes()
        except OSError as e:
            raise InputUnavailableError(f"Could not read {name}: {e.strerror or e}") from e

    if stdin is None:
        if sys.stdin is None or sys.stdin.isatty():
            raise InputUnavailableError("StdIn has not been redirected.")
        stdin = sys.stdin.buffer

    data = stdin.read()
    logger.debug(f"Read {len(data)} bytes from stdin")
    return data
