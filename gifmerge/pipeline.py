"""
Merge job orchestration: decode, composite, encode.

A MergePipeline runs exactly one job. Its state only moves forward:

    idle -> decoding -> compositing -> encoding -> done
                                  \\-> failed | cancelled
"""

import logging
import threading
import time
from concurrent.futures import Future
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .compositor import MergedSequence, composite
from .decoder import decode_gif
from .encoder import Color, encode
from .errors import DecodeError, JobCancelledError
from .models import DecodedAnimation
from .options import DEFAULT_OPTIONS, MergeOptions
from .watermark import Watermark

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]
Payload = Union[bytes, Tuple[str, bytes]]


class PipelineState(str, Enum):
    IDLE = "idle"
    DECODING = "decoding"
    COMPOSITING = "compositing"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.FAILED, PipelineState.CANCELLED})

_STATE_ORDER = [
    PipelineState.IDLE,
    PipelineState.DECODING,
    PipelineState.COMPOSITING,
    PipelineState.ENCODING,
]


class MergePipeline:
    """
    Runs one merge job and reports its progress.

    Progress is reported as ``on_progress(percent, label)`` with a
    non-decreasing percent: frame generation covers 0-50, encoding 50-100,
    and 100 is only reported on success.
    """

    def __init__(
        self,
        options: MergeOptions = DEFAULT_OPTIONS,
        watermarks: Sequence[Watermark] = (),
        on_progress: Optional[ProgressCallback] = None,
        palette: Optional[Sequence[Color]] = None,
    ):
        self.options = options
        self.watermarks = list(watermarks)
        self.on_progress = on_progress
        self.palette = palette
        self.state = PipelineState.IDLE
        self.error: Optional[BaseException] = None
        self.warnings: List[str] = []
        self.result: Optional[bytes] = None
        self.progress = 0
        self._cancel_requested = threading.Event()
        self._lock = threading.Lock()

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next frame boundary."""
        with self._lock:
            if self.state == PipelineState.IDLE:
                self.state = PipelineState.CANCELLED
                self.error = JobCancelledError("Cancelled before start")
            elif not self.finished:
                self._cancel_requested.set()

    def _advance(self, state: PipelineState) -> None:
        with self._lock:
            if self.finished or _STATE_ORDER.index(state) <= _STATE_ORDER.index(self.state):
                raise RuntimeError(f"Cannot move from {self.state.value} to {state.value}")
            self.state = state
        logger.debug("Pipeline state: %s", state.value)

    def _finish(self, state: PipelineState, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self.state = state
            self.error = error

    def _report(self, percent: float, label: str) -> None:
        percent = max(self.progress, min(100, int(percent)))
        self.progress = percent
        if self.on_progress is not None:
            self.on_progress(percent, label)

    def _check_cancel(self) -> bool:
        return self._cancel_requested.is_set()

    def _decode(self, payloads: Sequence[Payload]) -> List[DecodedAnimation]:
        animations = []
        failures: List[DecodeError] = []
        for position, payload in enumerate(payloads):
            if self._check_cancel():
                raise JobCancelledError(f"Cancelled after decoding {position} inputs")
            if isinstance(payload, tuple):
                name, data = payload
            else:
                name, data = f"input {position + 1}", payload
            try:
                animations.append(decode_gif(data, name=name))
            except DecodeError as exc:
                logger.warning("Skipping %s: %s", name, exc)
                self.warnings.append(f"{name}: {exc}")
                failures.append(exc)
        if failures and not animations:
            raise failures[0]
        return animations

    def _merge(self, animations: Sequence[DecodedAnimation]) -> bytes:
        self._advance(PipelineState.COMPOSITING)
        self._report(0, "Generating frames")
        merged: Optional[MergedSequence] = None
        try:
            merged = composite(
                animations,
                self.watermarks,
                self.options,
                on_frame=lambda done, total: self._report(done * 50 / total, f"Generating frames ({done}/{total})"),
                should_cancel=self._check_cancel,
            )
            self._advance(PipelineState.ENCODING)
            self._report(50, "Encoding")
            return encode(
                merged,
                self.options.frame_interval_ms,
                palette=self.palette,
                loop=self.options.loop,
                on_frame=lambda done, total: self._report(50 + done * 50 / total, f"Encoding ({done}/{total})"),
                should_cancel=self._check_cancel,
            )
        finally:
            if merged is not None:
                merged.close()

    def _execute(self, job: Callable[[], bytes]) -> bytes:
        with self._lock:
            if self.state == PipelineState.CANCELLED:
                raise JobCancelledError("Pipeline was cancelled before it started")
            if self.state != PipelineState.IDLE:
                raise RuntimeError(f"Pipeline is {self.state.value}; create a new pipeline per job")
        started = time.perf_counter()
        try:
            data = job()
        except JobCancelledError as exc:
            logger.info("Merge cancelled: %s", exc)
            self._finish(PipelineState.CANCELLED, exc)
            raise
        except Exception as exc:
            logger.debug("Merge failed in state %s", self.state.value, exc_info=True)
            self._finish(PipelineState.FAILED, exc)
            raise
        self.result = data
        self._finish(PipelineState.DONE)
        self._report(100, "Done")
        logger.info("Merge finished: %d bytes in %.2fs", len(data), time.perf_counter() - started)
        return data

    def run(self, animations: Sequence[DecodedAnimation]) -> bytes:
        """Merge already decoded animations and return the GIF bytes."""
        return self._execute(lambda: self._merge(animations))

    def run_from_bytes(self, payloads: Sequence[Payload]) -> bytes:
        """
        Decode raw GIF inputs, then merge them.

        Each payload is either GIF bytes or a ``(name, bytes)`` pair. Inputs
        that fail to decode are skipped and listed in ``warnings``; if every
        input fails the first decode error is raised.
        """
        def job() -> bytes:
            self._advance(PipelineState.DECODING)
            self._report(0, "Decoding")
            animations = self._decode(payloads)
            try:
                return self._merge(animations)
            finally:
                for animation in animations:
                    animation.close()

        return self._execute(job)

    def _start_thread(self, target: Callable[[], bytes]) -> "Future[bytes]":
        future: "Future[bytes]" = Future()

        def worker() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(target())
            except BaseException as exc:
                future.set_exception(exc)

        threading.Thread(target=worker, daemon=True, name="gifmerge-job").start()
        return future

    def start(self, animations: Sequence[DecodedAnimation]) -> "Future[bytes]":
        """Run ``run`` on a background thread."""
        return self._start_thread(lambda: self.run(animations))

    def start_from_bytes(self, payloads: Sequence[Payload]) -> "Future[bytes]":
        """Run ``run_from_bytes`` on a background thread."""
        return self._start_thread(lambda: self.run_from_bytes(payloads))
