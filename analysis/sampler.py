from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np


logger = logging.getLogger(__name__)


# Average detection latency bands (ms)
SLOW_LATENCY_MS = 80.0
MODERATE_LATENCY_MS = 50.0
FAST_LATENCY_MS = 30.0
MODERATE_RATE_FRACTION = 0.6


class AdaptiveSampler:
    """
    Throttles detection to what the device can sustain.

    Keeps the last `window` detection latencies. Once the window is full the
    average picks one of four coarse target rates:

      avg > 80ms        -> min_rate
      50ms <= avg <= 80 -> 60% of max_rate
      avg < 30ms        -> max_rate
      otherwise         -> midpoint of min_rate and max_rate

    Coarse bands keep noisy per-frame timings from making the rate oscillate.
    """

    def __init__(self, min_rate: float = 5.0, max_rate: float = 15.0, window: int = 10) -> None:
        if min_rate <= 0 or max_rate <= 0:
            raise ValueError("rates must be positive")
        if min_rate > max_rate:
            raise ValueError("min_rate must not exceed max_rate")
        if window < 1:
            raise ValueError("window must be >= 1")
        self.min_rate = float(min_rate)
        self.max_rate = float(max_rate)
        self.window = int(window)
        self._latencies: Deque[float] = deque(maxlen=self.window)
        self._target_rate = self.max_rate
        self._last_detection_ms: Optional[float] = None

    @property
    def target_rate(self) -> float:
        return self._target_rate

    @property
    def current_interval_ms(self) -> float:
        return 1000.0 / self._target_rate

    @property
    def last_detection_ms(self) -> Optional[float]:
        return self._last_detection_ms

    @property
    def latencies(self) -> tuple:
        return tuple(self._latencies)

    def reset(self) -> None:
        self._latencies.clear()
        self._target_rate = self.max_rate
        self._last_detection_ms = None

    def should_run_detection(self, now_ms: float) -> bool:
        """True when enough time has passed since the last detection; stamps now_ms when it is."""
        if self._last_detection_ms is not None and now_ms - self._last_detection_ms < self.current_interval_ms:
            return False
        self._last_detection_ms = float(now_ms)
        return True

    def record_latency(self, duration_ms: float) -> None:
        self._latencies.append(float(duration_ms))
        if len(self._latencies) < self.window:
            return

        avg = float(np.mean(self._latencies))
        if avg > SLOW_LATENCY_MS:
            rate = self.min_rate
        elif avg >= MODERATE_LATENCY_MS:
            rate = max(self.min_rate, self.max_rate * MODERATE_RATE_FRACTION)
        elif avg < FAST_LATENCY_MS:
            rate = self.max_rate
        else:
            rate = (self.min_rate + self.max_rate) / 2.0

        if rate != self._target_rate:
            logger.debug("Detection rate %.1f/s -> %.1f/s (avg latency %.1fms)", self._target_rate, rate, avg)
        self._target_rate = rate
