"""Tests for pm CLI wiring, exit codes and JSON output."""

import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

import typer
from typer.testing import CliRunner

from deepdex.cli import app, kill, logs, ps, start, stop
from deepdex.supervisor.errors import DuplicateNameError, NotFoundError

REPO_ROOT = Path(__file__).resolve().parents[1]


class PmCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.home = Path(self._tmp.name)
        env_patch = mock.patch.dict(os.environ, {"DEEPDEX_HOME": str(self.home)})
        env_patch.start()
        self.addCleanup(env_patch.stop)

    def test_ps_json_on_corrupt_store_prints_empty_list(self) -> None:
        (self.home / "processes.json").write_text("{\"version\": 1, \"proc", encoding="utf-8")
        output = io.StringIO()
        with redirect_stdout(output):
            ps(json_output=True)
        self.assertEqual(json.loads(output.getvalue()), [])

    def test_start_validation_failure_exits_nonzero(self) -> None:
        with self.assertRaises(typer.Exit) as cm:
            with redirect_stdout(io.StringIO()):
                start(
                    name="bad name!",
                    strategy="grid",
                    config=None,
                    account=None,
                    password=None,
                    yes=True,
                    non_interactive=True,
                )
        self.assertEqual(cm.exception.exit_code, 1)
        self.assertFalse((self.home / "processes.json").exists())

    def test_duplicate_name_error_maps_to_exit_one(self) -> None:
        supervisor = mock.Mock()
        supervisor.start.side_effect = DuplicateNameError("Process 'dup' already exists.")
        with mock.patch("deepdex.cli._build_supervisor", return_value=supervisor):
            with self.assertRaises(typer.Exit) as cm:
                start(
                    name="dup",
                    strategy="simple",
                    config=None,
                    account=None,
                    password=None,
                    yes=True,
                    non_interactive=False,
                )
        self.assertEqual(cm.exception.exit_code, 1)
        request = supervisor.start.call_args.args[0]
        self.assertEqual(request.name, "dup")
        self.assertTrue(request.yes)

    def test_stop_unknown_name_succeeds(self) -> None:
        output = io.StringIO()
        with redirect_stdout(output):
            stop(name="ghost", yes=True)
        self.assertIn("already stopped", output.getvalue())

    def test_kill_unknown_name_exits_nonzero(self) -> None:
        with self.assertRaises(typer.Exit) as cm:
            kill(name="ghost", yes=True)
        self.assertEqual(cm.exception.exit_code, 1)

    def test_logs_interrupt_exits_cleanly(self) -> None:
        supervisor = mock.Mock()
        supervisor.logs.side_effect = KeyboardInterrupt()
        with mock.patch("deepdex.cli._build_supervisor", return_value=supervisor):
            with redirect_stdout(io.StringIO()):
                logs(name="bot", follow=True, lines=None)
        supervisor.logs.assert_called_once_with("bot", lines=None, follow=True)

    def test_logs_unknown_name_exits_nonzero(self) -> None:
        supervisor = mock.Mock()
        supervisor.logs.side_effect = NotFoundError("Process 'ghost' not found and has no logs.")
        with mock.patch("deepdex.cli._build_supervisor", return_value=supervisor):
            with self.assertRaises(typer.Exit):
                logs(name="ghost", follow=False, lines=None)

    def test_command_grammar_parses_flags(self) -> None:
        supervisor = mock.Mock()
        runner = CliRunner()
        with mock.patch("deepdex.cli._build_supervisor", return_value=supervisor):
            result = runner.invoke(app, ["pm", "logs", "bot", "-f", "-n", "20"])
            self.assertEqual(result.exit_code, 0)
            supervisor.logs.assert_called_once_with("bot", lines=20, follow=True)

            result = runner.invoke(
                app,
                ["pm", "start", "eth-grid", "grid", "--config", "grid.json", "--account", "sub1", "--yes"],
            )
            self.assertEqual(result.exit_code, 0)
            request = supervisor.start.call_args.args[0]
            self.assertEqual(request.config_path, "grid.json")
            self.assertEqual(request.account, "sub1")

            result = runner.invoke(app, ["pm", "stop-all", "--yes"])
            self.assertEqual(result.exit_code, 0)
            supervisor.stop_all.assert_called_once_with(yes=True)

            result = runner.invoke(app, ["pm", "ps", "--json"])
            self.assertEqual(result.exit_code, 0)
            supervisor.ps.assert_called_once_with(json_output=True)

    def test_missing_positionals_exit_one(self) -> None:
        runner = CliRunner()
        for argv in (
            ["pm", "start", "eth-grid"],
            ["pm", "start"],
            ["pm", "stop"],
            ["pm", "restart"],
            ["pm", "logs"],
            ["pm", "kill", "--yes"],
        ):
            result = runner.invoke(app, argv)
            self.assertEqual(result.exit_code, 1, argv)
        self.assertFalse((self.home / "processes.json").exists())

    def test_missing_strategy_reports_validation_error(self) -> None:
        with self.assertRaises(typer.Exit) as cm:
            start(
                name="eth-grid",
                strategy=None,
                config=None,
                account=None,
                password=None,
                yes=True,
                non_interactive=True,
            )
        self.assertEqual(cm.exception.exit_code, 1)

    def test_module_entry_point_runs_cli(self) -> None:
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH", "")]))
        result = subprocess.run(
            [sys.executable, "-m", "deepdex", "pm", "--help"],
            cwd=str(REPO_ROOT),
            env=env,
            capture_output=True,
            text=True,
            timeout=60,
        )
        self.assertEqual(result.returncode, 0, result.stderr)
        self.assertIn("stop-all", result.stdout)

    def test_wallet_init_then_status(self) -> None:
        runner = CliRunner()
        result = runner.invoke(app, ["wallet", "init", "--name", "desk", "--password", "correct-horse"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("WALLET INIT: OK", result.stdout)
        result = runner.invoke(app, ["wallet", "status", "--json"])
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(json.loads(result.stdout)["name"], "desk")


if __name__ == "__main__":
    unittest.main()
