"""Tests for log tail and follow helpers."""

import tempfile
import unittest
from pathlib import Path

from deepdex.supervisor.log_reader import follow, tail_lines


class TailLinesTests(unittest.TestCase):
    def test_tail_returns_last_lines(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bot.log"
            path.write_text("".join(f"line {i}\n" for i in range(5000)), encoding="utf-8")
            self.assertEqual(tail_lines(path, 2), ["line 4998", "line 4999"])
            self.assertEqual(len(tail_lines(path, 50)), 50)

    def test_tail_short_and_empty_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bot.log"
            path.write_text("", encoding="utf-8")
            self.assertEqual(tail_lines(path, 10), [])
            path.write_text("only\n", encoding="utf-8")
            self.assertEqual(tail_lines(path, 10), ["only"])
            path.write_text("no newline at end", encoding="utf-8")
            self.assertEqual(tail_lines(path, 1), ["no newline at end"])


class FollowTests(unittest.TestCase):
    def test_follow_yields_appended_lines_only(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bot.log"
            path.write_text("old\n", encoding="utf-8")
            appends = iter(["new 1\nnew", " 2\n", ""])
            polls: list[float] = []

            def _sleep(seconds: float) -> None:
                polls.append(seconds)
                chunk = next(appends, "")
                with open(path, "a", encoding="utf-8") as handle:
                    handle.write(chunk)

            stream = follow(path, poll_seconds=0.25, sleep=_sleep, should_stop=lambda: len(polls) > 4)
            self.assertEqual(list(stream), ["new 1", "new 2"])
            self.assertEqual(polls[0], 0.25)

    def test_follow_recovers_from_truncation(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bot.log"
            path.write_text("a long line before rotation\n", encoding="utf-8")
            steps = iter(["truncate", "after\n"])
            polls: list[int] = []

            def _sleep(seconds: float) -> None:
                polls.append(1)
                step = next(steps, "")
                if step == "truncate":
                    path.write_text("", encoding="utf-8")
                elif step:
                    with open(path, "a", encoding="utf-8") as handle:
                        handle.write(step)

            stream = follow(path, sleep=_sleep, should_stop=lambda: len(polls) > 4)
            self.assertEqual(list(stream), ["after"])


if __name__ == "__main__":
    unittest.main()
