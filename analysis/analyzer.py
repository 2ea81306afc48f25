from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from pose.backend import LandmarkSet, to_landmark_set
from pose.detector import DetectorManager
from pose.smoothing import EmaSmoother
from .form import MSG_DETECTION_ERROR, FormScore, no_person_score, score_form
from .fsm_hold import HOLD_LOST, HOLD_STARTED, HoldFSM
from .sampler import AdaptiveSampler
from .utils import FormThresholds, HoldConfig, PLANK_FORM


logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class FrameResult:
    frame_idx: int
    score: FormScore
    hold_event: Optional[str]
    hold_active: bool


class HoldMonitor:
    """
    One hold-detection session: smoother -> form scorer -> hold FSM, gated by an adaptive sampler.

    Landmarks can be fed directly with process_landmarks() (e.g. from a client
    running its own pose model) or produced from frames by the DetectorManager
    through process_frame(). Each monitor owns its own smoother, FSM and sampler.
    """

    def __init__(
        self,
        detector: Optional[DetectorManager] = None,
        config: HoldConfig = HoldConfig(),
        *,
        thresholds: FormThresholds = PLANK_FORM,
        on_hold_started: Optional[Callable[[], None]] = None,
        on_hold_lost: Optional[Callable[[], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config.validate()
        self.thresholds = thresholds
        self.detector = detector
        self.smoother = EmaSmoother(alpha=config.smoothing_alpha)
        self.fsm = HoldFSM(config.stability)
        self.sampler = AdaptiveSampler(
            min_rate=config.min_detections_per_sec,
            max_rate=config.max_detections_per_sec,
        )
        self._on_hold_started = on_hold_started
        self._on_hold_lost = on_hold_lost
        self._clock = clock or _monotonic_ms
        self._latest_score: Optional[FormScore] = None
        self._last_error: Optional[str] = None
        self._generation = 0

    @property
    def latest_score(self) -> Optional[FormScore]:
        return self._latest_score

    @property
    def hold_active(self) -> bool:
        return self.fsm.active

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def interval_ms(self) -> float:
        return self.sampler.current_interval_ms

    @property
    def ready(self) -> bool:
        return self.detector is not None and self.detector.ready

    async def start(self) -> None:
        """Acquire the pose detector. Raises DetectorLoadError on failure; calling again retries."""
        if self.detector is None:
            raise RuntimeError("HoldMonitor has no detector")
        try:
            await self.detector.acquire()
        except Exception as exc:
            self._last_error = str(exc)
            raise
        self._last_error = None

    def process_landmarks(self, landmarks: Optional[Sequence[Any]]) -> FrameResult:
        """Score one frame's landmarks (None when nobody was detected) and advance the hold FSM."""
        if landmarks is None:
            score = no_person_score()
        else:
            smoothed = self.smoother.update(to_landmark_set(landmarks))
            score = score_form(smoothed, self.thresholds)
        return self._advance(score)

    def _advance(self, score: FormScore) -> FrameResult:
        self._latest_score = score
        event = self.fsm.process_frame(score.is_valid)
        hold_event = event["hold_event"]
        if hold_event is not None:
            self._fire(hold_event)
        return FrameResult(
            frame_idx=int(event["frame_idx"]),
            score=score,
            hold_event=hold_event,
            hold_active=self.fsm.active,
        )

    def _fire(self, hold_event: str) -> None:
        if hold_event == HOLD_STARTED:
            logger.info("Hold started")
            callback = self._on_hold_started
        else:
            logger.info("Hold lost")
            callback = self._on_hold_lost
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Hold %s callback failed", hold_event)

    def record_latency(self, duration_ms: float) -> None:
        """Report an externally measured detection cost (client-side models)."""
        self.sampler.record_latency(duration_ms)

    async def process_frame(self, frame: np.ndarray, now_ms: Optional[float] = None) -> Optional[FrameResult]:
        """
        Run detection on a frame if the sampler allows it.

        Returns None when the frame is skipped: detector not ready, a detection
        already in flight, too soon after the previous one, or the session was
        reset while this detection ran. A failing detection counts as one
        invalid frame and never raises. If the caller is cancelled the worker
        thread keeps running; later calls are skipped until it returns.
        """
        if self.detector is None or not self.detector.ready or self.detector.busy:
            return None
        now = self._clock() if now_ms is None else float(now_ms)
        if not self.sampler.should_run_detection(now):
            return None

        generation = self._generation
        error: Optional[Exception] = None
        landmarks: Optional[LandmarkSet] = None
        t0 = time.perf_counter()
        try:
            landmarks = await self.detector.detect_async(frame)
        except Exception as exc:
            error = exc
        latency_ms = (time.perf_counter() - t0) * 1000.0

        if generation != self._generation:
            logger.debug("Discarding detection result from before reset")
            return None

        self.sampler.record_latency(latency_ms)
        if error is not None:
            logger.warning("Pose detection failed, skipping frame: %s", error)
            self._last_error = MSG_DETECTION_ERROR
            return self._advance(no_person_score(MSG_DETECTION_ERROR))
        return self.process_landmarks(landmarks)

    def reset(self) -> None:
        """Clear session state but keep the detector loaded. Fires no events."""
        self._generation += 1
        self.smoother.reset()
        self.fsm.reset()
        self.sampler.reset()
        self._latest_score = None
        self._last_error = None

    async def teardown(self) -> None:
        """Reset, wait for an in-flight detection, then release the detector. Safe to call more than once."""
        self.reset()
        if self.detector is not None:
            await self.detector.release_async()


def analyze_stream(
    frames_iter: Iterable[Optional[Sequence[Any]]],
    *,
    fps: Optional[float] = None,
    config: HoldConfig = HoldConfig(),
) -> Dict[str, object]:
    """
    Analyze a recorded stream of per-frame landmark sets and return a JSON-serializable dict.

    frames_iter yields a landmark set per frame, or None where nobody was detected.
    A hold is taken to begin at the first valid frame of the run that started it
    and to end at the first invalid frame of the run that lost it.

    Output structure (example):
    {
      "session_id": "<uuid4>",
      "summary": {"holds": 1, "longest_hold_frames": 240, "longest_hold_seconds": 24.0,
                  "valid_frames": 251, "total_frames": 300},
      "frame_data": [
        {"frame_index": 14, "exercise": "plank", "hold_id": 1, "hold_event": "hold_started",
         "hold_start_frame": 0, "confidence": 100}
      ]
    }
    """
    monitor = HoldMonitor(config=config)
    stability = config.stability

    frame_records: List[Dict[str, object]] = []
    holds: List[int] = []
    valid_frames = 0
    total_frames = 0
    hold_id = 0
    hold_start: Optional[int] = None

    for frame_idx, landmarks in enumerate(frames_iter):
        res = monitor.process_landmarks(landmarks)
        total_frames += 1
        if res.score.is_valid:
            valid_frames += 1

        if res.hold_event == HOLD_STARTED:
            hold_id += 1
            hold_start = frame_idx - stability.stability_frames + 1
            frame_records.append(
                {
                    "frame_index": frame_idx,
                    "exercise": "plank",
                    "hold_id": hold_id,
                    "hold_event": HOLD_STARTED,
                    "hold_start_frame": hold_start,
                    "confidence": res.score.confidence,
                }
            )
        elif res.hold_event == HOLD_LOST and hold_start is not None:
            hold_end = frame_idx - stability.grace_frames + 1
            holds.append(hold_end - hold_start)
            frame_records.append(
                {
                    "frame_index": frame_idx,
                    "exercise": "plank",
                    "hold_id": hold_id,
                    "hold_event": HOLD_LOST,
                    "hold_end_frame": hold_end,
                    "confidence": res.score.confidence,
                }
            )
            hold_start = None

    # Stream ended mid-hold: count up to the last valid frame
    if hold_start is not None:
        holds.append(total_frames - monitor.fsm.state.invalid_count - hold_start)

    longest = max(holds) if holds else 0
    summary: Dict[str, object] = {
        "holds": hold_id,
        "longest_hold_frames": int(longest),
        "longest_hold_seconds": (float(longest) / float(fps)) if fps and fps > 0 else None,
        "valid_frames": valid_frames,
        "total_frames": total_frames,
    }
    return {
        "session_id": str(uuid.uuid4()),
        "summary": summary,
        "frame_data": frame_records,
    }
