"""Known strategy identifiers and runner lookup for the worker entry point."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from typing import Any, Awaitable, Callable

logger = logging.getLogger("deepdex.strategies")

STRATEGIES: tuple[str, ...] = ("grid", "mm", "arbitrage", "simple", "momentum")
RUNNER_ENTRY_POINT_GROUP = "deepdex.strategies"


@dataclass
class StrategyContext:
    """Inputs handed to a strategy runner inside a supervised worker."""

    strategy: str
    account: str
    config: dict[str, Any]
    shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)


StrategyRunner = Callable[[StrategyContext], Awaitable[None]]

_registered: dict[str, StrategyRunner] = {}


async def idle_runner(context: StrategyContext) -> None:
    """Keep the worker alive until shutdown; used when no trading runner is installed."""
    logger.info(
        "Strategy %s running for account %s with no trading runner installed; idling",
        context.strategy,
        context.account,
    )
    await context.shutdown_event.wait()
    logger.info("Strategy %s received shutdown", context.strategy)


def register_runner(strategy: str, runner: StrategyRunner) -> None:
    if strategy not in STRATEGIES:
        raise ValueError(f"unknown strategy: {strategy}")
    _registered[strategy] = runner


def unregister_runner(strategy: str) -> None:
    _registered.pop(strategy, None)


def resolve_runner(strategy: str) -> StrategyRunner | None:
    """Return the runner for strategy.

    Programmatic registrations win over entry points. Known strategies with
    neither fall back to idle_runner; unknown ones return None.
    """
    if strategy in _registered:
        return _registered[strategy]
    for entry_point in entry_points(group=RUNNER_ENTRY_POINT_GROUP):
        if entry_point.name != strategy:
            continue
        logger.info("Loading strategy runner %s from %s", strategy, entry_point.value)
        return entry_point.load()
    if strategy in STRATEGIES:
        logger.warning("No runner installed for strategy %s; using idle runner", strategy)
        return idle_runner
    return None
