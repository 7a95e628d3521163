"""Runs blocking model calls off the event loop.

    scanner tick -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX Runtime

Embedding extraction is the only slow step of a checkpoint tick. A caller
that cannot get a slot within ``acquire_timeout`` gets TimeoutError, so a
stuck model surfaces as a failed scan instead of a growing backlog.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACQUIRE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Bounded worker pool with active/waiting counters for /health."""

    def __init__(self, max_concurrent: int, acquire_timeout: float = ACQUIRE_TIMEOUT_SECONDS) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._acquire_timeout = acquire_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="facegate-infer")
        self._counts = {"active": 0, "waiting": 0}
        self._counts_lock = threading.Lock()

    def _bump(self, key: str, delta: int) -> None:
        with self._counts_lock:
            self._counts[key] += delta

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._bump("waiting", 1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._acquire_timeout)
        finally:
            self._bump("waiting", -1)
        self._bump("active", 1)
        try:
            yield
        finally:
            self._semaphore.release()
            self._bump("active", -1)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the acquire timeout.
        """
        async with self._slot():
            return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    @property
    def active_count(self) -> int:
        with self._counts_lock:
            return self._counts["active"]

    @property
    def queue_depth(self) -> int:
        """Callers waiting for a slot."""
        with self._counts_lock:
            return self._counts["waiting"]

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        logger.debug("Inference pool shut down")
