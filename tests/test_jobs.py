"""
tests/test_jobs.py — Skip-if-running job runner
================================================
"""

from __future__ import annotations

import asyncio

from conftest import run_async

from pulse.services.jobs import JobRunner


class TestJobRunner:
    def test_sync_job_runs_on_worker_thread(self):
        import threading

        main_thread = threading.get_ident()
        runner = JobRunner()

        result = run_async(runner.run("sync", lambda x: (x * 2, threading.get_ident()), 21))

        value, thread_id = result
        assert value == 42
        assert thread_id != main_thread
        assert runner.runs["sync"] == 1
        assert runner.last_result["sync"] == result

    def test_overlapping_tick_is_skipped(self):
        runner = JobRunner()
        calls = 0

        async def slow_job():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return "done"

        async def _inner():
            first = asyncio.ensure_future(runner.run("drain", slow_job))
            await asyncio.sleep(0)  # let the first run claim the slot
            assert runner.is_running("drain")
            second = await runner.run("drain", slow_job)
            return await first, second

        first, second = run_async(_inner())

        assert first == "done"
        assert second is None
        assert calls == 1
        assert runner.skipped["drain"] == 1
        assert not runner.is_running("drain")

    def test_different_jobs_do_not_block_each_other(self):
        runner = JobRunner()

        async def job(name):
            await asyncio.sleep(0.01)
            return name

        async def _inner():
            return await asyncio.gather(runner.run("a", job, "a"), runner.run("b", job, "b"))

        assert run_async(_inner()) == ["a", "b"]
        assert runner.skipped == {}

    def test_failure_is_logged_and_slot_released(self):
        runner = JobRunner()

        def broken():
            raise RuntimeError("boom")

        assert run_async(runner.run("broken", broken)) is None
        assert runner.failures["broken"] == 1
        assert not runner.is_running("broken")
        assert run_async(runner.run("broken", lambda: "ok")) == "ok"

    def test_snapshot(self):
        runner = JobRunner()
        run_async(runner.run("sync_counters", lambda: None))

        assert runner.snapshot() == {
            "sync_counters": {"runs": 1, "skipped": 0, "failures": 0, "running": 0},
        }
