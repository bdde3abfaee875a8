"""Liveness probes, process handles and stale record collection."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
from typing import Callable, Protocol

from .errors import SignalDeliveryError
from .models import ProcessRecord, ProcessStore
from .process_store import ProcessRecordStore

logger = logging.getLogger("deepdex.supervisor.liveness")

GRACEFUL_SIGNAL = signal.SIGTERM
FORCE_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


def _reap_if_own_child(pid: int) -> bool:
    """Return True when pid was an exited child of this process and got reaped."""
    try:
        reaped_pid, _ = os.waitpid(pid, os.WNOHANG)
    except OSError:
        # ChildProcessError: pid belongs to another invocation.
        return False
    return reaped_pid == pid


def pid_is_alive(pid: int) -> bool:
    """Probe pid with a null signal; any failure counts as not alive."""
    if not isinstance(pid, int) or pid <= 0:
        return False
    if sys.platform == "win32":
        import ctypes

        kernel32 = ctypes.windll.kernel32
        SYNCHRONIZE = 0x00100000
        process = kernel32.OpenProcess(SYNCHRONIZE, 0, pid)
        if process == 0:
            return False
        kernel32.CloseHandle(process)
        return True
    # Exited children of this invocation stay zombies until reaped.
    if _reap_if_own_child(pid):
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


class Handle(Protocol):
    pid: int

    def is_alive(self) -> bool: ...

    def terminate(self, sig: int = GRACEFUL_SIGNAL) -> None: ...


class ProcessHandle:
    """Opaque OS process reference addressed only by pid."""

    def __init__(self, pid: int) -> None:
        self.pid = pid

    def is_alive(self) -> bool:
        return pid_is_alive(self.pid)

    def terminate(self, sig: int = GRACEFUL_SIGNAL) -> None:
        signal_name = signal.Signals(sig).name
        try:
            os.kill(self.pid, sig)
        except OSError as exc:
            raise SignalDeliveryError(
                f"Could not send {signal_name} to PID {self.pid}: {exc}",
                pid=self.pid,
                signal_name=signal_name,
            ) from exc

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid})"


class SpawnedHandle(ProcessHandle):
    """Handle for a child started by this invocation; polls the Popen object."""

    def __init__(self, process: subprocess.Popen) -> None:
        super().__init__(process.pid)
        self.process = process

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def exit_code(self) -> int | None:
        return self.process.poll()


HandleFactory = Callable[[int], Handle]


class StaleEntryCollector:
    """Prune records whose pid is no longer alive."""

    def __init__(self, store: ProcessRecordStore, handle_factory: HandleFactory = ProcessHandle) -> None:
        self.store = store
        self.handle_factory = handle_factory

    def partition(self, current: ProcessStore) -> tuple[list[ProcessRecord], list[ProcessRecord]]:
        alive: list[ProcessRecord] = []
        dead: list[ProcessRecord] = []
        for record in current.processes:
            if self.handle_factory(record.pid).is_alive():
                alive.append(record)
            else:
                dead.append(record)
        return alive, dead

    def cleanup(self, current: ProcessStore) -> tuple[ProcessStore, list[ProcessRecord]]:
        """Return the pruned store plus the records that were dropped.

        The store is only re-saved when something was dropped.
        """
        alive, dead = self.partition(current)
        if not dead:
            return current, []
        for record in dead:
            logger.info("Pruning stale process %s (PID %s)", record.name, record.pid)
        pruned = ProcessStore(version=current.version, processes=alive)
        self.store.save(pruned)
        return pruned, dead
