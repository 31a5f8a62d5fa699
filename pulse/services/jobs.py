"""
pulse.services.jobs — Skip-if-running job runner
=================================================

``discord.ext.tasks`` loops fire on a fixed cadence whether or not the
previous run has finished.  :class:`JobRunner` gives each named job a
single in-flight slot: a tick that arrives while the same job is still
running is skipped (logged and counted), never overlapped.

Synchronous callables are shipped to a worker thread through ``run_db``;
coroutine functions are awaited directly.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections import Counter
from collections.abc import Callable
from typing import Any

from pulse.database.engine import run_db

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs named jobs with an overlap policy of *skip*."""

    def __init__(self) -> None:
        self._running: set[str] = set()
        self.runs: Counter[str] = Counter()
        self.skipped: Counter[str] = Counter()
        self.failures: Counter[str] = Counter()
        self.last_result: dict[str, Any] = {}

    def is_running(self, name: str) -> bool:
        return name in self._running

    async def run(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run *func* as job *name*; return its result, or None if skipped/failed."""
        if self.is_running(name):
            self.skipped[name] += 1
            logger.warning(
                "Job %s still running — skipping this tick (%d skipped so far)",
                name, self.skipped[name],
                extra={"task": name},
            )
            return None

        self._running.add(name)
        started = time.monotonic()
        try:
            if inspect.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = await run_db(func, *args, **kwargs)
            self.runs[name] += 1
            self.last_result[name] = result
            logger.debug("Job %s finished in %.2fs", name, time.monotonic() - started)
            return result
        except Exception:
            self.failures[name] += 1
            logger.exception("Job %s failed", name, extra={"task": name})
            return None
        finally:
            self._running.discard(name)

    def snapshot(self) -> dict[str, dict[str, int]]:
        names = set(self.runs) | set(self.skipped) | set(self.failures) | self._running
        return {
            name: {
                "runs": self.runs[name],
                "skipped": self.skipped[name],
                "failures": self.failures[name],
                "running": int(name in self._running),
            }
            for name in sorted(names)
        }
