"""
Background Tasks

Fire-and-forget work (archival, forwarding) that must neither block nor fail
the reply path. Tasks run on a small thread pool and are drained before the
Lambda returns, because a frozen execution environment would otherwise drop
them.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import structlog

log = structlog.get_logger()


class BackgroundTasks:
    """Runs named callables in the background and logs their failures."""

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="autoreply-bg",
        )
        self._futures: list[tuple[str, Future]] = []

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule fn(*args, **kwargs); never raises for task failures."""
        self._futures.append((name, self._executor.submit(fn, *args, **kwargs)))
        log.debug("background_task_submitted", task=name)

    def drain(self) -> dict[str, bool]:
        """
        Wait for every submitted task.

        Returns:
            Mapping of task name to success flag
        """
        results: dict[str, bool] = {}
        for name, future in self._futures:
            try:
                future.result()
                results[name] = True
            except Exception as e:
                # Fire-and-forget: failures are logged, never surfaced
                log.error(
                    "background_task_failed",
                    task=name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                results[name] = False
        self._futures.clear()
        self._executor.shutdown(wait=True)
        return results

    def __enter__(self) -> "BackgroundTasks":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.drain()
