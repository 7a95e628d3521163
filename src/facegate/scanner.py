"""Checkpoint scanning loop: poll, detect, gate, embed, match.

One ``CheckpointScanner`` drives one camera stream. Every tick pulls a frame,
runs the coarse detector and the quality gate. Passing ticks fill a scan
progress meter; when it is full an embedding extraction is started in the
inference pool and its result is matched against the gallery.

At most one extraction is in flight per scanner. Ticks that fire while it is
running only report BUSY. A timed-out extraction reports ERROR but keeps the
scanner busy until its worker thread returns. ``cancel()`` stops the timer
at once; an extraction already running is left to finish but its result is
thrown away.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from facegate.core import messages
from facegate.core.errors import ExtractorUnavailable, MalformedEmbedding
from facegate.core.quality import DEFAULT_QUALITY_CONFIG, QualityConfig, QualityVerdict, check_quality
from facegate.core.types import FrameSize

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from facegate.core.matcher import IdentityMatcher
    from facegate.core.types import Detection, MatchResult
    from facegate.ml.context import VisionContext
    from facegate.ml.inference import InferencePool

logger = logging.getLogger(__name__)

PROGRESS_FULL = 100


@dataclass(frozen=True)
class ScanConfig:
    poll_interval: float = 0.15
    progress_step: int = 25
    progress_decay: int = 10
    match_cooldown: float = 2.0
    extract_timeout: float | None = None
    quality: QualityConfig = DEFAULT_QUALITY_CONFIG

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {self.poll_interval}")
        if not 0 < self.progress_step <= PROGRESS_FULL:
            raise ValueError(f"Progress step must be in (0, {PROGRESS_FULL}], got {self.progress_step}")
        if self.progress_decay < 0 or self.match_cooldown < 0:
            raise ValueError("Progress decay and match cooldown must be non-negative")


class ScanEventKind(StrEnum):
    NO_FRAME = "no_frame"
    QUALITY = "quality"
    IDENTIFYING = "identifying"
    BUSY = "busy"
    COOLDOWN = "cooldown"
    NO_EMBEDDING = "no_embedding"
    MATCH = "match"
    ERROR = "error"


@dataclass(frozen=True)
class ScanEvent:
    kind: ScanEventKind
    progress: int = 0
    verdict: QualityVerdict | None = None
    result: MatchResult | None = None
    status: str = messages.SCANNING


class CheckpointScanner:
    """Cooperative polling loop for a single camera stream."""

    def __init__(
        self,
        context: VisionContext,
        matcher_provider: Callable[[], IdentityMatcher],
        frame_source: Callable[[], NDArray[np.uint8] | None],
        pool: InferencePool,
        config: ScanConfig | None = None,
        on_event: Callable[[ScanEvent], None] | None = None,
    ) -> None:
        self._context = context
        self._matcher_provider = matcher_provider
        self._frame_source = frame_source
        self._pool = pool
        self._config = config or ScanConfig()
        self._on_event = on_event

        self._progress = 0
        self._cooldown_until = 0.0
        self._inflight: asyncio.Task[None] | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._closed = False
        self._fatal: BaseException | None = None

    # -- State --------------------------------------------------------------

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def busy(self) -> bool:
        """True while an embedding extraction is in flight."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def closed(self) -> bool:
        return self._closed

    # -- Loop control -------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        """Run the polling loop as a task until ``cancel()`` or a fatal error."""
        if self._closed:
            raise RuntimeError("Scanner has been cancelled")
        if self._loop_task is not None:
            raise RuntimeError("Scanner is already running")
        self._loop_task = asyncio.create_task(self._run(), name="checkpoint-scanner")
        return self._loop_task

    def cancel(self) -> None:
        """Stop polling. An in-flight extraction finishes but is discarded."""
        if self._closed:
            return
        self._closed = True
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
        logger.info("Scanner cancelled (extraction in flight: %s)", self.busy)

    async def wait_idle(self) -> None:
        """Wait for the in-flight extraction, if any, to settle."""
        if self._inflight is not None:
            await self._inflight

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._config.poll_interval
        logger.info("Scanner started (interval=%.3fs)", interval)
        next_tick = loop.time()
        try:
            while not self._closed:
                await self.tick()
                next_tick += interval
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
        finally:
            logger.info("Scanner stopped")

    # -- One polling step ---------------------------------------------------

    async def tick(self) -> ScanEvent | None:
        """Run one poll-detect-gate step.

        Returns the emitted event, or None once the scanner is cancelled.

        Raises:
            ExtractorUnavailable: If the models are unavailable.
            MalformedEmbedding: If a previous extraction produced an embedding
                the gallery cannot be matched against.
        """
        if self._fatal is not None:
            raise self._fatal
        if self._closed:
            return None
        if self.busy:
            return self._emit(ScanEvent(ScanEventKind.BUSY, self._progress, status=messages.RECOGNIZING))

        loop = asyncio.get_running_loop()
        if loop.time() < self._cooldown_until:
            return self._emit(ScanEvent(ScanEventKind.COOLDOWN, self._progress))

        frame = self._frame_source()
        if frame is None:
            return self._emit(ScanEvent(ScanEventKind.NO_FRAME, self._progress))

        detection = self._context.detector.detect(frame)
        verdict = check_quality(detection, FrameSize(frame.shape[1], frame.shape[0]), self._config.quality)
        if detection is None or not verdict.ok:
            self._progress = max(0, self._progress - self._config.progress_decay)
            return self._emit(ScanEvent(ScanEventKind.QUALITY, self._progress, verdict, status=verdict.reason))

        self._progress = min(PROGRESS_FULL, self._progress + self._config.progress_step)
        if self._progress < PROGRESS_FULL:
            return self._emit(ScanEvent(ScanEventKind.QUALITY, self._progress, verdict, status=verdict.reason))

        self._progress = 0
        self._inflight = asyncio.create_task(self._identify(frame, detection), name="checkpoint-identify")
        return self._emit(ScanEvent(ScanEventKind.IDENTIFYING, PROGRESS_FULL, verdict, status=messages.RECOGNIZING))

    async def _identify(self, frame: NDArray[np.uint8], detection: Detection) -> None:
        job: asyncio.Future[NDArray[np.float32] | None] | None = None
        try:
            job = asyncio.ensure_future(self._pool.run(self._context.extractor.extract, frame, detection))
            embedding = await asyncio.wait_for(asyncio.shield(job), timeout=self._config.extract_timeout)
        except ExtractorUnavailable as exc:
            self._fail(exc, messages.ENGINE_UNAVAILABLE)
            return
        except TimeoutError:
            logger.warning("Embedding extraction timed out")
            self._emit(ScanEvent(ScanEventKind.ERROR, status=messages.SCANNING))
            if job is not None and not job.done():
                # The worker thread cannot be interrupted; stay busy until it returns.
                await asyncio.gather(job, return_exceptions=True)
                logger.debug("Discarding late extraction result")
            return
        except Exception:
            logger.exception("Embedding extraction failed")
            self._emit(ScanEvent(ScanEventKind.ERROR, status=messages.SCANNING))
            return

        if self._closed:
            logger.debug("Discarding extraction result after cancel")
            return
        if embedding is None:
            self._emit(ScanEvent(ScanEventKind.NO_EMBEDDING, status=messages.SCANNING))
            return

        try:
            result = self._matcher_provider().find_best_match(embedding)
        except MalformedEmbedding as exc:
            self._fail(exc, messages.INTERNAL_ERROR)
            return
        except Exception:
            logger.exception("Gallery match failed")
            self._emit(ScanEvent(ScanEventKind.ERROR, status=messages.INTERNAL_ERROR))
            return

        self._cooldown_until = asyncio.get_running_loop().time() + self._config.match_cooldown
        logger.debug("Checkpoint decision: %s (distance=%.4f)", result.label, result.distance)
        status = messages.RECOGNIZED if result.matched else messages.UNKNOWN_FACE
        self._emit(ScanEvent(ScanEventKind.MATCH, result=result, status=status))

    def _fail(self, exc: BaseException, status: str) -> None:
        logger.error("Scanner stopping: %s", exc)
        self._fatal = exc
        self._emit(ScanEvent(ScanEventKind.ERROR, status=status))

    def _emit(self, event: ScanEvent) -> ScanEvent:
        if self._on_event is not None and not self._closed:
            self._on_event(event)
        return event
