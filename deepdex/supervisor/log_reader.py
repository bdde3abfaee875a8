"""Tail and follow helpers for per-process log files."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Iterator

TAIL_BLOCK_BYTES = 8192


def tail_lines(path: Path, count: int) -> list[str]:
    """Return the last count lines of path without reading the whole file."""
    if count <= 0:
        return []
    with open(path, "rb") as handle:
        handle.seek(0, os.SEEK_END)
        end = handle.tell()
        data = b""
        position = end
        while position > 0 and data.count(b"\n") <= count:
            step = min(TAIL_BLOCK_BYTES, position)
            position -= step
            handle.seek(position, os.SEEK_SET)
            data = handle.read(step) + data
    text = data.decode("utf-8", errors="replace").rstrip("\n")
    if not text:
        return []
    return text.split("\n")[-count:]


def follow(
    path: Path,
    *,
    poll_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] = lambda: False,
) -> Iterator[str]:
    """Yield lines appended to path after the call, until interrupted.

    Starts at the current end of file. A shrinking file is treated as
    truncation and reading restarts from its beginning.
    """
    with open(path, "rb") as handle:
        handle.seek(0, os.SEEK_END)
        position = handle.tell()
        pending = b""
        while not should_stop():
            try:
                size = os.stat(path).st_size
            except FileNotFoundError:
                size = position
            if size < position:
                handle.seek(0, os.SEEK_SET)
                position = 0
                pending = b""
            chunk = handle.read()
            if chunk:
                position = handle.tell()
                pending += chunk
                *complete, pending = pending.split(b"\n")
                for line in complete:
                    yield line.decode("utf-8", errors="replace")
                continue
            sleep(poll_seconds)
