import asyncio
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import typer

from deepdex.bot.runtime import Runtime
from deepdex.bot.worker import main as worker_main
from deepdex.services.wallet import WalletService
from deepdex.strategies import (
    StrategyContext,
    idle_runner,
    register_runner,
    resolve_runner,
    unregister_runner,
)


class RuntimeTests(unittest.TestCase):
    def test_stop_sets_shutdown_and_runner_finishes(self) -> None:
        seen: list[str] = []

        async def _runner(context: StrategyContext) -> None:
            seen.append("started")
            await context.shutdown_event.wait()
            seen.append("drained")

        async def _scenario() -> None:
            runtime = Runtime(_runner, StrategyContext(strategy="grid", account="main", config={}))
            task = asyncio.create_task(runtime.start())
            await asyncio.sleep(0.01)
            self.assertTrue(runtime.running)
            runtime.stop()
            await asyncio.wait_for(task, timeout=5)
            self.assertFalse(runtime.running)

        asyncio.run(_scenario())
        self.assertEqual(seen, ["started", "drained"])

    def test_runner_exception_propagates(self) -> None:
        async def _runner(context: StrategyContext) -> None:
            raise RuntimeError("exchange unreachable")

        runtime = Runtime(_runner, StrategyContext(strategy="mm", account="main", config={}))
        with self.assertRaises(RuntimeError):
            asyncio.run(runtime.start())


class RunnerResolutionTests(unittest.TestCase):
    def test_known_strategy_without_runner_uses_idle_runner(self) -> None:
        with mock.patch("deepdex.strategies.entry_points", return_value=[]):
            self.assertIs(resolve_runner("momentum"), idle_runner)
            self.assertIsNone(resolve_runner("martingale"))

    def test_registered_runner_wins(self) -> None:
        async def _runner(context: StrategyContext) -> None:
            return None

        register_runner("arbitrage", _runner)
        self.addCleanup(unregister_runner, "arbitrage")
        self.assertIs(resolve_runner("arbitrage"), _runner)

    def test_idle_runner_returns_on_shutdown(self) -> None:
        async def _scenario() -> None:
            context = StrategyContext(strategy="grid", account="main", config={})
            task = asyncio.create_task(idle_runner(context))
            await asyncio.sleep(0.01)
            self.assertFalse(task.done())
            context.shutdown_event.set()
            await asyncio.wait_for(task, timeout=5)

        asyncio.run(_scenario())


class WorkerEntryPointTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.home = Path(self._tmp.name)
        env_patch = mock.patch.dict(
            os.environ,
            {"DEEPDEX_HOME": str(self.home), "DEEPDEX_WALLET_PASSWORD": "correct-horse"},
        )
        env_patch.start()
        self.addCleanup(env_patch.stop)
        WalletService().create("correct-horse", name="desk")
        self.addCleanup(unregister_runner, "simple")

    def test_worker_runs_registered_runner_with_inner_config(self) -> None:
        received: list[StrategyContext] = []

        async def _runner(context: StrategyContext) -> None:
            received.append(context)

        register_runner("simple", _runner)
        config_file = self.home / "simple.json"
        config_file.write_text(
            json.dumps({"strategy": "simple", "config": {"size": 2}}), encoding="utf-8"
        )
        worker_main(strategy="simple", account="sub1", config=str(config_file), yes=True)
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].account, "sub1")
        self.assertEqual(received[0].config, {"size": 2})

    def test_worker_requires_yes(self) -> None:
        with self.assertRaises(typer.Exit) as cm:
            worker_main(strategy="simple", account="main", config=None, yes=False)
        self.assertEqual(cm.exception.exit_code, 1)

    def test_worker_without_password_exits(self) -> None:
        with mock.patch.dict(os.environ, {"DEEPDEX_WALLET_PASSWORD": ""}):
            with self.assertRaises(typer.Exit) as cm:
                worker_main(strategy="simple", account="main", config=None, yes=True)
        self.assertEqual(cm.exception.exit_code, 1)

    def test_worker_wrong_password_exits(self) -> None:
        with mock.patch.dict(os.environ, {"DEEPDEX_WALLET_PASSWORD": "battery-staple"}):
            with self.assertRaises(typer.Exit):
                worker_main(strategy="simple", account="main", config=None, yes=True)

    def test_worker_without_runner_exits(self) -> None:
        with mock.patch("deepdex.bot.worker.resolve_runner", return_value=None):
            with self.assertRaises(typer.Exit) as cm:
                worker_main(strategy="grid", account="main", config=None, yes=True)
        self.assertEqual(cm.exception.exit_code, 1)


if __name__ == "__main__":
    unittest.main()
