"""Worker entry point launched by `deepdex pm start` for one strategy instance.

Contract: ``python -m deepdex.bot.worker --strategy S --account A
[--config C] --yes``. The wallet password arrives through
DEEPDEX_WALLET_PASSWORD; the worker never prompts.
"""

import asyncio
import logging
from typing import Optional

import typer

from deepdex.services.wallet import WalletService, password_from_env
from deepdex.strategies import STRATEGIES, StrategyContext, resolve_runner
from deepdex.supervisor.errors import ConfigError
from deepdex.supervisor.process_manager import inner_config, load_strategy_config

from .runtime import Runtime

logger = logging.getLogger("deepdex.bot.worker")

app = typer.Typer()


def _fail(message: str) -> None:
    logger.error(message)
    raise typer.Exit(code=1)


@app.command()
def main(
    strategy: str = typer.Option(..., "--strategy", help="Strategy identifier to run"),
    account: str = typer.Option(..., "--account", help="Trading subaccount"),
    config: Optional[str] = typer.Option(None, "--config", help="Strategy config JSON path"),
    yes: bool = typer.Option(False, "--yes", help="Required: run without prompts"),
):
    """
    Run a strategy non-interactively until terminated.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    if not yes:
        _fail("Worker runs non-interactively; pass --yes.")
    if strategy not in STRATEGIES:
        _fail(f"Unknown strategy: {strategy}. Available: {', '.join(STRATEGIES)}")

    wallet = WalletService()
    password = password_from_env()
    if not password:
        _fail("No wallet password forwarded to worker.")
    try:
        wallet.unlock(password)
    except ValueError as exc:
        _fail(f"Wallet unlock failed: {exc}")

    try:
        raw_config = load_strategy_config(config)
    except ConfigError as exc:
        _fail(str(exc))

    runner = resolve_runner(strategy)
    if runner is None:
        _fail(f"No runner registered for strategy '{strategy}'.")

    context = StrategyContext(
        strategy=strategy,
        account=account,
        config=inner_config(raw_config),
    )
    asyncio.run(Runtime(runner, context).start())


if __name__ == "__main__":
    app()
