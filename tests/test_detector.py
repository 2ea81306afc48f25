from __future__ import annotations

import asyncio
import threading

import numpy as np
import pytest

from pose.backend import Landmark
from pose.detector import DetectorLoadError, DetectorManager, DetectorNotReadyError


class _FakeBackend:
    def __init__(self) -> None:
        self.closed = 0
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        return (Landmark(0.5, 0.5, 0.0, 1.0),)

    def close(self) -> None:
        self.closed += 1


class _CountingFactory:
    def __init__(self, failures: int = 0) -> None:
        self.calls = 0
        self.failures = failures
        self.built = []

    def __call__(self) -> _FakeBackend:
        self.calls += 1
        if self.calls <= self.failures:
            raise OSError("model file unreachable")
        backend = _FakeBackend()
        self.built.append(backend)
        return backend


def _frame() -> np.ndarray:
    return np.zeros((8, 8, 3), dtype=np.uint8)


def test_concurrent_acquire_loads_once():
    factory = _CountingFactory()
    manager = DetectorManager(factory)

    async def go():
        return await asyncio.gather(manager.acquire(), manager.acquire(), manager.acquire())

    handles = asyncio.run(go())
    assert factory.calls == 1
    assert handles[0] is handles[1] is handles[2]
    assert manager.ready is True
    assert manager.loading is False


def test_load_failure_is_recoverable():
    factory = _CountingFactory(failures=1)
    manager = DetectorManager(factory)

    async def go():
        with pytest.raises(DetectorLoadError, match="model file unreachable"):
            await manager.acquire()
        assert manager.ready is False
        assert "Failed to load pose detection" in manager.error
        return await manager.acquire()

    handle = asyncio.run(go())
    assert factory.calls == 2
    assert manager.ready is True
    assert manager.error is None
    assert handle is factory.built[0]


def test_detect_requires_acquire():
    manager = DetectorManager(_CountingFactory())
    with pytest.raises(DetectorNotReadyError):
        manager.detect(_frame())


def test_detect_keeps_only_latest_result():
    manager = DetectorManager(_CountingFactory())
    asyncio.run(manager.acquire())
    first = manager.detect(_frame())
    assert manager.last_result is first
    second = manager.detect(_frame())
    assert manager.last_result is second


def test_detect_async_runs_backend():
    factory = _CountingFactory()
    manager = DetectorManager(factory)

    async def go():
        await manager.acquire()
        return await manager.detect_async(_frame())

    out = asyncio.run(go())
    assert out[0].visibility == 1.0
    assert factory.built[0].calls == 1


def test_release_is_idempotent_and_closes_once():
    factory = _CountingFactory()
    manager = DetectorManager(factory)
    asyncio.run(manager.acquire())
    manager.release()
    manager.release()
    assert factory.built[0].closed == 1
    assert manager.ready is False
    assert manager.last_result is None
    with pytest.raises(DetectorNotReadyError):
        manager.detect(_frame())


def test_release_during_load_discards_handle():
    factory = _CountingFactory()
    manager = DetectorManager(factory)

    async def go():
        pending = asyncio.ensure_future(manager.acquire())
        await asyncio.sleep(0)
        assert manager.loading is True
        manager.release()
        with pytest.raises(DetectorLoadError):
            await pending

    asyncio.run(go())
    assert manager.ready is False
    assert factory.built[0].closed == 1


def test_preload_starts_background_load():
    factory = _CountingFactory()
    manager = DetectorManager(factory)

    async def go():
        task = manager.preload()
        assert task is not None
        assert manager.preload() is None
        await task

    asyncio.run(go())
    assert manager.ready is True
    assert factory.calls == 1


def test_close_errors_are_not_raised():
    class _Broken(_FakeBackend):
        def close(self) -> None:
            raise RuntimeError("native close failed")

    manager = DetectorManager(_Broken)
    asyncio.run(manager.acquire())
    manager.release()
    assert manager.ready is False


def test_release_from_other_thread_waits_for_detection():
    started = threading.Event()
    unblock = threading.Event()
    log = []

    class _Slow(_FakeBackend):
        def detect(self, frame):
            started.set()
            unblock.wait(timeout=5.0)
            log.append("detect done")
            return super().detect(frame)

        def close(self) -> None:
            log.append("close")
            super().close()

    manager = DetectorManager(_Slow)

    async def go():
        await manager.acquire()
        detecting = asyncio.ensure_future(manager.detect_async(_frame()))
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, started.wait, 5.0)
        assert manager.busy is True
        releasing = loop.run_in_executor(None, manager.release)
        await asyncio.sleep(0.05)
        assert log == []
        unblock.set()
        await releasing
        return await detecting

    out = asyncio.run(go())
    assert out is not None
    assert log == ["detect done", "close"]
    assert manager.last_result is None
    assert manager.busy is False
