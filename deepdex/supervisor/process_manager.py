"""PM2-style supervisor for named, detached strategy worker processes.

Every operation runs inside one short-lived CLI invocation. State crosses
invocations only through the process store file and the OS process table.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import typer

from deepdex.config import ensure_directories, load_settings, pm_log_dir
from deepdex.services.wallet import WalletService, child_environment, password_from_env

from .errors import (
    ConfigError,
    DuplicateNameError,
    ImmediateCrashError,
    NotFoundError,
    SignalDeliveryError,
    ValidationError,
    WalletError,
)
from .formatting import format_duration, render_table
from .liveness import (
    FORCE_SIGNAL,
    GRACEFUL_SIGNAL,
    Handle,
    HandleFactory,
    ProcessHandle,
    StaleEntryCollector,
)
from .log_reader import follow as follow_log
from .log_reader import tail_lines
from .models import (
    ProcessRecord,
    ProcessStatus,
    ProcessStore,
    now_ms,
    validate_process_name,
    validate_strategy,
)
from .process_store import ProcessRecordStore
from .spawner import ProcessSpawner, WorkerRequest

logger = logging.getLogger("deepdex.supervisor.process_manager")

CRASH_LOG_TAIL_LINES = 5


@dataclass(frozen=True)
class StartRequest:
    name: str | None
    strategy: str | None
    config_path: str | None = None
    account: str | None = None
    password: str | None = None
    yes: bool = False
    non_interactive: bool = False


def _prompt_password(message: str) -> str:
    return typer.prompt(message, hide_input=True)


def load_strategy_config(config_path: str | None) -> dict[str, Any]:
    """Parse a strategy config file; missing or invalid files are fatal."""
    if not config_path:
        return {}
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Invalid config file: {config_path}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid config file: {config_path} (expected a JSON object)")
    return raw


def inner_config(raw: dict[str, Any]) -> dict[str, Any]:
    nested = raw.get("config")
    if isinstance(nested, dict):
        return nested
    return raw


class Supervisor:
    """Implements ps/start/stop/restart/logs/kill/stop-all."""

    def __init__(
        self,
        *,
        store: ProcessRecordStore | None = None,
        wallet: WalletService | None = None,
        spawner: ProcessSpawner | None = None,
        handle_factory: HandleFactory = ProcessHandle,
        settings: dict[str, Any] | None = None,
        log_dir: Path | None = None,
        echo: Callable[[str], None] = typer.echo,
        confirm: Callable[..., bool] = typer.confirm,
        prompt_password: Callable[[str], str] = _prompt_password,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store or ProcessRecordStore()
        self.wallet = wallet or WalletService()
        self.spawner = spawner or ProcessSpawner()
        self.handle_factory = handle_factory
        self.settings = settings or load_settings()
        self.log_dir = log_dir or pm_log_dir()
        self.collector = StaleEntryCollector(self.store, handle_factory)
        self.echo = echo
        self.confirm = confirm
        self.prompt_password = prompt_password
        self.sleep = sleep
        self.clock = clock

    def _pm_setting(self, key: str) -> float:
        return self.settings["pm"][key]

    def log_path(self, name: str) -> Path:
        return self.log_dir / f"{name}.log"

    def reconcile(self) -> tuple[ProcessStore, list[ProcessRecord]]:
        """Load the store and prune records whose process is gone."""
        return self.collector.cleanup(self.store.load())

    def _send_signal(self, handle: Handle, sig: int, record: ProcessRecord) -> bool:
        try:
            handle.terminate(sig)
        except SignalDeliveryError as exc:
            logger.warning("Signal delivery failed for %s: %s", record.name, exc)
            return False
        return True

    # ps

    def statuses(self) -> list[ProcessStatus]:
        store, _ = self.reconcile()
        at = self.clock()
        return [
            ProcessStatus.from_record(record, self.handle_factory(record.pid).is_alive(), at)
            for record in store.processes
        ]

    def ps(self, json_output: bool = False) -> list[ProcessStatus]:
        statuses = self.statuses()
        if json_output:
            self.echo(json.dumps([s.to_json() for s in statuses], indent=2))
            return statuses
        count = len(statuses)
        self.echo(f"PROCESS MANAGER ({count} process{'es' if count != 1 else ''} registered)")
        if not statuses:
            self.echo("  No processes running.")
            self.echo("  Start one with: deepdex pm start <name> <strategy> --config <path>")
            return statuses
        rows = []
        for status in statuses:
            record = status.record
            rows.append(
                [
                    record.name,
                    record.strategy,
                    str(record.pid),
                    record.wallet or "-",
                    record.account,
                    "running" if status.running else "stopped",
                    format_duration(status.uptime) if status.running else "-",
                ]
            )
        for line in render_table(
            ["Name", "Strategy", "PID", "Wallet", "Account", "Status", "Uptime"], rows
        ):
            self.echo(line)
        return statuses

    # start

    def _resolve_password(self, request: StartRequest) -> str:
        """Verify the wallet password and return it for the child environment."""
        if not self.wallet.exists():
            raise WalletError("No wallet found. Run 'deepdex wallet init' first.")
        password = request.password or password_from_env()
        if not password:
            if request.non_interactive:
                raise WalletError(
                    "Wallet password required for background process. "
                    "Pass --password or set DEEPDEX_WALLET_PASSWORD."
                )
            if self.wallet.is_unlocked():
                self.echo("Wallet is unlocked, but the background process needs the password.")
            password = self.prompt_password("Wallet password for background process")
        try:
            self.wallet.unlock(password)
        except ValueError as exc:
            raise WalletError(str(exc)) from exc
        return password

    def start(self, request: StartRequest) -> ProcessRecord | None:
        """Spawn a named worker; returns None when the operator declines."""
        name = validate_process_name(request.name)
        strategy = validate_strategy(request.strategy)

        store, _ = self.reconcile()
        if store.find(name) is not None:
            raise DuplicateNameError(f"Process '{name}' already exists. Choose a different name.")

        raw_config = load_strategy_config(request.config_path)
        config_path = str(Path(request.config_path).resolve()) if request.config_path else None
        account = (
            (request.account or "").strip()
            or str(raw_config.get("account") or "").strip()
            or self.settings["default_account"]
        )

        password = self._resolve_password(request)

        self.echo("STARTING PROCESS")
        self.echo(f"  name: {name}")
        self.echo(f"  strategy: {strategy}")
        self.echo(f"  account: {account}")
        self.echo(f"  config: {config_path or 'default'}")

        if not request.yes:
            if request.non_interactive:
                raise ValidationError("Confirmation required; pass --yes to start non-interactively.")
            self.echo("WARNING: The bot will execute real trades with your funds.")
            if not self.confirm("Start the process?", default=True):
                self.echo("Cancelled.")
                return None

        ensure_directories()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_path(name)

        worker_request = WorkerRequest(
            name=name,
            strategy=strategy,
            account=account,
            config_path=config_path,
        )
        handle = self.spawner.spawn(worker_request, log_file, extra_env=child_environment(password))

        record = ProcessRecord(
            name=name,
            pid=handle.pid,
            strategy=strategy,
            account=account,
            wallet=self.wallet.active_wallet_name() or "unknown",
            config=inner_config(raw_config),
            started_at=self.clock(),
            log_file=str(log_file),
            config_path=config_path,
        )
        self.store.save(store.with_record(record))

        self.sleep(self._pm_setting("start_grace_seconds"))

        if not handle.is_alive():
            tail = self._crash_tail(log_file)
            exit_code = handle.exit_code()
            suffix = f" (exit code {exit_code})" if exit_code is not None else ""
            self.echo(f"Process '{name}' exited immediately after starting{suffix}.")
            self.echo(f"  Check logs for details: {log_file}")
            if tail:
                self.echo("  Last log lines:")
                for line in tail:
                    self.echo(f"    {line}")
            self.store.save(self.store.load().without(name))
            raise ImmediateCrashError(
                f"Process '{name}' exited immediately after starting.",
                log_file=str(log_file),
                log_tail=tail,
                exit_code=exit_code,
            )

        self.echo(f"Process '{name}' started! (PID: {handle.pid})")
        self.echo(f"  logs: {log_file}")
        self.echo("  Use 'deepdex pm ps' to view all processes.")
        self.echo(f"  Use 'deepdex pm stop {name}' to stop.")
        return record

    def _crash_tail(self, log_file: Path) -> list[str]:
        try:
            return tail_lines(log_file, CRASH_LOG_TAIL_LINES)
        except OSError as exc:
            logger.warning("Could not read log tail from %s: %s", log_file, exc)
            return []

    # stop / restart / kill / stop-all

    def stop(self, name: str | None, *, yes: bool = False) -> bool:
        """Gracefully stop name; absent records count as already stopped."""
        validate_process_name(name)
        store, pruned = self.reconcile()
        record = store.find(name)
        if record is None:
            if any(p.name == name for p in pruned):
                self.echo(f"Process '{name}' had already exited. Removed from list.")
            else:
                self.echo(f"Process '{name}' is already stopped.")
            return True

        handle = self.handle_factory(record.pid)
        if not handle.is_alive():
            self.store.save(store.without(name))
            self.echo(f"Process '{name}' was already stopped. Removed from list.")
            return True

        self.echo("STOPPING PROCESS")
        self.echo(f"  name: {name}")
        self.echo(f"  pid: {record.pid}")
        self.echo(f"  strategy: {record.strategy}")
        self.echo(f"  uptime: {format_duration(self.clock() - record.started_at)}")
        if not yes and not self.confirm("Stop this process?", default=True):
            self.echo("Cancelled.")
            return False

        self._send_signal(handle, GRACEFUL_SIGNAL, record)
        self.sleep(self._pm_setting("stop_grace_seconds"))
        if handle.is_alive():
            self.echo("Process still running, sending SIGKILL...")
            self._send_signal(handle, FORCE_SIGNAL, record)

        self.store.save(store.without(name))
        self.echo(f"Process '{name}' stopped.")
        return True

    def restart(
        self,
        name: str | None,
        *,
        password: str | None = None,
        non_interactive: bool = False,
    ) -> ProcessRecord | None:
        validate_process_name(name)
        # Read before cleanup so a crashed process can still be restarted.
        record = self.store.load().find(name)
        if record is None:
            raise NotFoundError(f"Process '{name}' not found.")

        self.echo(f"Restarting process '{name}'...")
        self.stop(name, yes=True)
        self.sleep(self._pm_setting("restart_delay_seconds"))

        config_path = record.config_path
        if config_path and not Path(config_path).is_file():
            logger.warning("Config %s for %s is gone; restarting without it", config_path, name)
            self.echo(f"WARNING: config file {config_path} no longer exists; restarting without it.")
            config_path = None

        restarted = self.start(
            StartRequest(
                name=name,
                strategy=record.strategy,
                config_path=config_path,
                account=record.account,
                password=password,
                yes=True,
                non_interactive=non_interactive,
            )
        )
        self.echo(f"Process '{name}' restarted.")
        return restarted

    def kill(self, name: str | None, *, yes: bool = True) -> bool:
        """Force kill name without grace period; the record is removed regardless."""
        validate_process_name(name)
        store, pruned = self.reconcile()
        record = store.find(name)
        if record is None:
            if any(p.name == name for p in pruned):
                self.echo(f"Process '{name}' had already exited. Removed from list.")
                return True
            raise NotFoundError(f"Process '{name}' not found.")

        self.echo(f"Force killing process '{name}' (PID: {record.pid})...")
        if not yes and not self.confirm("Kill this process?", default=True):
            self.echo("Cancelled.")
            return False

        handle = self.handle_factory(record.pid)
        if handle.is_alive():
            if not self._send_signal(handle, FORCE_SIGNAL, record):
                self.echo(f"WARNING: could not signal PID {record.pid}; removing record anyway.")

        self.store.save(store.without(name))
        self.echo(f"Process '{name}' killed.")
        return True

    def stop_all(self, *, yes: bool = False) -> int:
        """Send SIGTERM to every record and clear the store; returns signals sent."""
        store, _ = self.reconcile()
        if not store.processes:
            self.echo("No processes running.")
            return 0

        count = len(store.processes)
        self.echo("STOPPING ALL PROCESSES")
        self.echo(f"  {count} process{'es' if count != 1 else ''} will be stopped")
        if not yes and not self.confirm("Stop all processes?", default=False):
            self.echo("Cancelled.")
            return 0

        stopped = 0
        for record in store.processes:
            handle = self.handle_factory(record.pid)
            if not handle.is_alive():
                continue
            if self._send_signal(handle, GRACEFUL_SIGNAL, record):
                stopped += 1
                self.echo(f"  - stopped '{record.name}' (PID: {record.pid})")
            else:
                self.echo(f"  - failed to stop '{record.name}' (PID: {record.pid})")

        self.store.save(ProcessStore(version=store.version, processes=[]))
        self.echo("All processes stopped.")
        return stopped

    # logs

    def logs(
        self,
        name: str | None,
        *,
        lines: int | None = None,
        follow: bool = False,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[str]:
        """Print the last lines of a process log, optionally following appends."""
        validate_process_name(name)
        count = int(lines if lines is not None else self._pm_setting("default_log_lines"))
        if count < 1:
            raise ValidationError("--lines must be at least 1")

        log_file = self.log_path(name)
        if not log_file.exists():
            if self.store.load().find(name) is None:
                raise NotFoundError(f"Process '{name}' not found and has no logs.")
            self.echo(f"No logs yet for process '{name}'.")
            self.echo(f"  Expected log file: {log_file}")
            return []

        self.echo(f"LOGS ({name})")
        self.echo(f"  file: {log_file}")
        last = tail_lines(log_file, count)
        for line in last:
            self.echo(f"  {line}")

        if follow:
            self.echo("Watching for new logs... (Ctrl+C to stop)")
            for line in follow_log(
                log_file,
                poll_seconds=self._pm_setting("follow_poll_seconds"),
                sleep=self.sleep,
                should_stop=should_stop or (lambda: False),
            ):
                self.echo(line)
        return last
