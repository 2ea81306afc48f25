from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from .utils import HOLD_STABILITY, StabilityThresholds


HOLD_STARTED = "hold_started"
HOLD_LOST = "hold_lost"


@dataclass(frozen=True)
class HoldState:
    valid_count: int = 0
    invalid_count: int = 0
    active: bool = False


def step(
    state: HoldState, is_valid: bool, thresholds: StabilityThresholds = HOLD_STABILITY
) -> Tuple[HoldState, Optional[str]]:
    """
    Pure hysteresis transition for one frame.

    - A valid frame bumps valid_count and zeroes invalid_count; an inactive hold
      starts once valid_count reaches stability_frames
    - An invalid frame does the opposite; an active hold is lost once
      invalid_count reaches grace_frames
    Returns the next state and HOLD_STARTED / HOLD_LOST, or None when no threshold was crossed.
    """
    if is_valid:
        nxt = HoldState(valid_count=state.valid_count + 1, invalid_count=0, active=state.active)
        if not nxt.active and nxt.valid_count >= thresholds.stability_frames:
            return replace(nxt, active=True), HOLD_STARTED
        return nxt, None

    nxt = HoldState(valid_count=0, invalid_count=state.invalid_count + 1, active=state.active)
    if nxt.active and nxt.invalid_count >= thresholds.grace_frames:
        return replace(nxt, active=False), HOLD_LOST
    return nxt, None


class HoldFSM:
    """
    Hold FSM debouncing per-frame form validity.

    Starting is conservative (stability_frames valid in a row), stopping is
    forgiving (grace_frames invalid in a row), so a lucky frame does not start
    a hold and a brief occlusion does not end one.
    """

    def __init__(self, thresholds: StabilityThresholds = HOLD_STABILITY) -> None:
        if thresholds.stability_frames < 1 or thresholds.grace_frames < 1:
            raise ValueError("stability_frames and grace_frames must be >= 1")
        self.thresholds = thresholds
        self.state = HoldState()
        self.holds = 0
        self._frame_idx = -1

    @property
    def active(self) -> bool:
        return self.state.active

    def reset(self) -> None:
        self.state = HoldState()
        self.holds = 0
        self._frame_idx = -1

    def process_frame(
        self,
        is_valid: bool,
        *,
        frame_idx: Optional[int] = None,
    ) -> Dict[str, object]:
        """
        Feed one frame's validity (False also for "no person" and failed detections).
        Returns an event dict: {frame_idx, exercise, hold_event, counts, flags}
        """
        self._frame_idx = int(frame_idx) if frame_idx is not None else (self._frame_idx + 1)

        self.state, hold_event = step(self.state, bool(is_valid), self.thresholds)
        if hold_event == HOLD_STARTED:
            self.holds += 1

        return {
            "frame_idx": self._frame_idx,
            "exercise": "plank",
            "hold_event": hold_event,
            "counts": {"valid": self.state.valid_count, "invalid": self.state.invalid_count},
            "flags": {"hold_active": self.state.active},
        }
