import json
import logging
from typing import Optional

import typer

from deepdex.config import ensure_directories
from deepdex.services.wallet import WalletService
from deepdex.supervisor.errors import ProcessManagerError
from deepdex.supervisor.process_manager import StartRequest, Supervisor

app = typer.Typer(help="DeepDex command line interface.")
pm_app = typer.Typer(help="Manage background strategy processes.")
wallet_app = typer.Typer(help="Wallet credentials used by background processes.")
app.add_typer(pm_app, name="pm")
app.add_typer(wallet_app, name="wallet")

logger = logging.getLogger("deepdex.cli")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log supervisor activity"),
):
    """DeepDex command line interface."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def _build_supervisor() -> Supervisor:
    return Supervisor()


def _fail(exc: ProcessManagerError) -> None:
    logger.info("Command failed: %s", exc)
    typer.echo(f"ERROR [{exc.error_code}]: {exc}", err=True)
    raise typer.Exit(code=1)


@pm_app.command("ps")
def ps(
    json_output: bool = typer.Option(False, "--json", help="Print process list as JSON"),
):
    """List supervised processes with live status."""
    try:
        _build_supervisor().ps(json_output=json_output)
    except ProcessManagerError as exc:
        _fail(exc)


@pm_app.command("start")
def start(
    name: Optional[str] = typer.Argument(None, help="Unique process name ([A-Za-z0-9_-], max 32)"),
    strategy: Optional[str] = typer.Argument(None, help="Strategy to run"),
    config: Optional[str] = typer.Option(None, "--config", help="Strategy config JSON path"),
    account: Optional[str] = typer.Option(None, "--account", help="Trading subaccount"),
    password: Optional[str] = typer.Option(None, "--password", help="Wallet password for the worker"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    non_interactive: bool = typer.Option(False, "--non-interactive", help="Never prompt"),
):
    """Start a named strategy process in the background."""
    request = StartRequest(
        name=name,
        strategy=strategy,
        config_path=config,
        account=account,
        password=password,
        yes=yes,
        non_interactive=non_interactive,
    )
    try:
        _build_supervisor().start(request)
    except ProcessManagerError as exc:
        _fail(exc)


@pm_app.command("stop")
def stop(
    name: Optional[str] = typer.Argument(None, help="Process name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Gracefully stop a process (SIGTERM, then SIGKILL)."""
    try:
        _build_supervisor().stop(name, yes=yes)
    except ProcessManagerError as exc:
        _fail(exc)


@pm_app.command("restart")
def restart(
    name: Optional[str] = typer.Argument(None, help="Process name"),
    password: Optional[str] = typer.Option(None, "--password", help="Wallet password for the worker"),
    non_interactive: bool = typer.Option(False, "--non-interactive", help="Never prompt"),
):
    """Stop and start a process with its recorded strategy, account and config."""
    try:
        _build_supervisor().restart(name, password=password, non_interactive=non_interactive)
    except ProcessManagerError as exc:
        _fail(exc)


@pm_app.command("logs")
def logs(
    name: Optional[str] = typer.Argument(None, help="Process name"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Keep printing new lines"),
    lines: Optional[int] = typer.Option(None, "--lines", "-n", help="Number of lines (default 50)"),
):
    """Show the tail of a process log."""
    try:
        _build_supervisor().logs(name, lines=lines, follow=follow)
    except ProcessManagerError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        typer.echo("")


@pm_app.command("kill")
def kill(
    name: Optional[str] = typer.Argument(None, help="Process name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Force kill a process (SIGKILL) and remove it from the list."""
    try:
        _build_supervisor().kill(name, yes=yes)
    except ProcessManagerError as exc:
        _fail(exc)


@pm_app.command("stop-all")
def stop_all(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Stop every supervised process and clear the list."""
    try:
        _build_supervisor().stop_all(yes=yes)
    except ProcessManagerError as exc:
        _fail(exc)


@wallet_app.command("init")
def wallet_init(
    name: str = typer.Option("default", "--name"),
    password: Optional[str] = typer.Option(
        None, "--password", help="Wallet password (prompted when omitted)"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing wallet"),
):
    """Create wallet credentials used to unlock background processes."""
    wallet = WalletService()
    if wallet.exists() and not force:
        typer.echo("WALLET INIT: FAIL")
        typer.echo("  message: wallet already exists (use --force to overwrite)")
        raise typer.Exit(code=1)
    if password is None:
        password = typer.prompt("Wallet password", hide_input=True, confirmation_prompt=True)
    ensure_directories()
    try:
        created = wallet.create(password, name=name)
    except ValueError as exc:
        typer.echo("WALLET INIT: FAIL")
        typer.echo(f"  message: {exc}")
        raise typer.Exit(code=1)
    typer.echo("WALLET INIT: OK")
    typer.echo(f"  name: {created['name']}")
    typer.echo(f"  path: {created['path']}")


@wallet_app.command("status")
def wallet_status(
    json_output: bool = typer.Option(False, "--json"),
):
    """Show whether wallet credentials are configured."""
    status = WalletService().status()
    if json_output:
        typer.echo(json.dumps(status, indent=2))
        return
    typer.echo("WALLET STATUS")
    typer.echo(f"  configured: {str(status['exists']).lower()}")
    typer.echo(f"  name: {status['name'] or '-'}")
    typer.echo(f"  path: {status['path']}")


if __name__ == "__main__":
    app()
