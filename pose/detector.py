from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

import numpy as np

from .backend import LandmarkSet, PoseBackend


logger = logging.getLogger(__name__)


class DetectorLoadError(RuntimeError):
    """The pose model could not be loaded. The manager stays not-ready and may retry."""


class DetectorNotReadyError(RuntimeError):
    """detect() was called before a model was acquired or after release()."""


class DetectorManager:
    """
    Owns the pose-estimation model for one session.

    - acquire() loads the model once; concurrent callers await the same in-flight load
    - a failed load surfaces as DetectorLoadError and leaves the manager ready to retry
    - detect() drops the previous result before running the next detection and
      runs one detection at a time; a result finishing after release() is not kept
    - release() and release_async() close the model only after an in-flight detection
      returns; both are idempotent and also abandon a pending load

    factory is any zero-argument callable returning an object with
    detect(frame) -> Optional[LandmarkSet] and optionally close().
    Construction is blocking, so it runs in the default executor.
    """

    def __init__(self, factory: Callable[[], Any] = PoseBackend) -> None:
        self._factory = factory
        self._handle: Optional[Any] = None
        self._pending: Optional["asyncio.Future[Any]"] = None
        self._generation = 0
        self._error: Optional[str] = None
        self._last_result: Optional[LandmarkSet] = None
        self._inflight: Optional["asyncio.Future[Any]"] = None
        self._detect_lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._handle is not None

    @property
    def busy(self) -> bool:
        """True while a detect_async() worker thread is still running."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def loading(self) -> bool:
        return self._pending is not None and not self._pending.done()

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def last_result(self) -> Optional[LandmarkSet]:
        return self._last_result

    async def acquire(self) -> Any:
        if self._handle is not None:
            return self._handle
        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._load(self._generation))
        # shield: one waiter being cancelled must not cancel the shared load
        return await asyncio.shield(self._pending)

    async def _load(self, generation: int) -> Any:
        loop = asyncio.get_running_loop()
        logger.info("Loading pose detector")
        try:
            handle = await loop.run_in_executor(None, self._factory)
        except Exception as exc:
            if generation == self._generation:
                self._pending = None
                self._error = f"Failed to load pose detection: {exc}"
            logger.error("Pose detector failed to load: %s", exc)
            raise DetectorLoadError(f"Failed to load pose detection: {exc}") from exc

        if generation != self._generation:
            # release() ran while loading; nobody owns this handle
            self._close(handle)
            raise DetectorLoadError("Pose detector was released while loading")

        self._handle = handle
        self._pending = None
        self._error = None
        logger.info("Pose detector ready")
        return handle

    def preload(self) -> Optional["asyncio.Future[Any]"]:
        """Start loading in the background. Must be called with a running event loop."""
        if self._handle is not None or self.loading:
            return None
        task = asyncio.ensure_future(self.acquire())
        task.add_done_callback(self._on_preload_done)
        return task

    @staticmethod
    def _on_preload_done(task: "asyncio.Future[Any]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Pose detector preload failed: %s", exc)

    def detect(self, frame: np.ndarray) -> Optional[LandmarkSet]:
        # One detection per handle at a time; release() waits on the same lock
        with self._detect_lock:
            handle = self._handle
            if handle is None:
                raise DetectorNotReadyError("Pose detector is not loaded")
            # Drop the previous result before producing a new one
            self._last_result = None
            result = handle.detect(frame)
            if handle is self._handle:
                self._last_result = result
            return result

    async def detect_async(self, frame: np.ndarray) -> Optional[LandmarkSet]:
        """
        Run detect() in the default executor.

        The executor future is tracked until the worker thread returns, even if
        the awaiting caller is cancelled, so `busy` stays true for as long as the
        model is actually in use.
        """
        loop = asyncio.get_running_loop()
        fut = loop.run_in_executor(None, self.detect, frame)
        fut.add_done_callback(_consume_result)
        self._inflight = fut
        return await asyncio.shield(fut)

    def _detach(self) -> Optional[Any]:
        self._generation += 1
        self._pending = None
        self._last_result = None
        handle, self._handle = self._handle, None
        return handle

    def release(self) -> None:
        """Close the model, blocking until a detection running on another thread returns."""
        handle = self._detach()
        if handle is None:
            return
        with self._detect_lock:
            self._close(handle)
            self._last_result = None
        logger.info("Pose detector released")

    async def release_async(self) -> None:
        """Like release(), but awaits an in-flight detect_async() instead of blocking the loop."""
        handle = self._detach()
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            logger.debug("Waiting for in-flight detection before release")
            await asyncio.wait([inflight])
        self._inflight = None
        if handle is None:
            return
        with self._detect_lock:
            self._close(handle)
            self._last_result = None
        logger.info("Pose detector released")

    @staticmethod
    def _close(handle: Any) -> None:
        close_fn = getattr(handle, "close", None)
        if not callable(close_fn):
            return
        try:
            close_fn()
        except Exception as exc:
            logger.warning("Error closing pose detector: %s", exc)


def _consume_result(fut: "asyncio.Future[Any]") -> None:
    # The awaiting caller may be gone; mark the outcome as retrieved
    if not fut.cancelled():
        fut.exception()
