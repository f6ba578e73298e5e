from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

"""Per-job worker.

Each job runs on its own single-thread executor: batches of one job are
strictly sequential, while independent jobs proceed on independent workers.
The only object they share is the (read-only) DialectCatalog.
"""

__all__ = [
    "JobWorker",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobWorker:
    """Runs exactly one job on a dedicated thread and hands back a Future."""

    def __init__(self, name: str = "xlport-job") -> None:
        self.name = name
        self._executor: ThreadPoolExecutor | None = None

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        if self._executor is not None:
            raise RuntimeError(f"worker {self.name} already has a job")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=self.name)
        logger.debug("worker %s started", self.name)
        future = self._executor.submit(fn, *args, **kwargs)
        # 完了後にスレッドを解放 (結果は Future に残る)
        self._executor.shutdown(wait=False)
        return future

    def __enter__(self) -> JobWorker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
