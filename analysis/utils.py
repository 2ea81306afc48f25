from __future__ import annotations

import os
from dataclasses import dataclass


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, str(default))).strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class FormThresholds:
    """Plank form criteria. Degrees for angles, normalized image units for offsets."""

    min_visibility: float = 0.3

    # Shoulder-hip-ankle angle
    body_angle_min: float = 155.0
    body_angle_max: float = 190.0
    body_angle_ideal_min: float = 165.0
    body_angle_ideal_max: float = 180.0
    body_angle_penalty: int = 35
    body_angle_minor_penalty: int = 20

    # Shoulder-hip-ankle colinearity score
    colinearity_max: float = 0.25
    colinearity_minor: float = 0.15
    colinearity_penalty: int = 30
    colinearity_minor_penalty: int = 15

    # Hip-knee-ankle angle
    knee_angle_min: float = 160.0
    knee_angle_ideal_min: float = 170.0
    knee_penalty: int = 25
    knee_minor_penalty: int = 10

    # Shoulder-elbow-wrist angle: below forearm_max is a forearm plank,
    # above straight_arm_min a straight-arm plank, in between is ambiguous
    forearm_max: float = 130.0
    straight_arm_min: float = 145.0
    arm_style_penalty: int = 20
    elbow_offset_max: float = 0.15
    elbow_offset_penalty: int = 15

    head_offset_max: float = 0.15
    head_penalty: int = 10

    level_offset_max: float = 0.15
    level_penalty: int = 15

    frame_center_min: float = 0.25
    frame_center_max: float = 0.75
    frame_penalty: int = 10

    # Final judgment
    min_confidence: int = 60
    max_feedback: int = 3
    good_confidence: int = 70
    perfect_confidence: int = 85


# Empirically tuned; tests pin these values
PLANK_FORM = FormThresholds()


@dataclass(frozen=True)
class StabilityThresholds:
    """Hysteresis in frames: enter the hold after stability_frames valid, leave after grace_frames invalid."""
    stability_frames: int = 15  # ~1.5s at 10 detections/s
    grace_frames: int = 50      # ~5s


HOLD_STABILITY = StabilityThresholds()


@dataclass(frozen=True)
class HoldConfig:
    smoothing_alpha: float = 0.3
    stability_frames: int = 15
    grace_frames: int = 50
    min_detections_per_sec: float = 5.0
    max_detections_per_sec: float = 15.0

    def validate(self) -> "HoldConfig":
        if not (0.0 < self.smoothing_alpha <= 1.0):
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if self.stability_frames < 1 or self.grace_frames < 1:
            raise ValueError("stability_frames and grace_frames must be >= 1")
        if self.min_detections_per_sec <= 0 or self.max_detections_per_sec <= 0:
            raise ValueError("detection rates must be positive")
        if self.min_detections_per_sec > self.max_detections_per_sec:
            raise ValueError("min_detections_per_sec must not exceed max_detections_per_sec")
        return self

    @property
    def stability(self) -> StabilityThresholds:
        return StabilityThresholds(
            stability_frames=self.stability_frames, grace_frames=self.grace_frames
        )

    @classmethod
    def from_env(cls) -> "HoldConfig":
        """Read overrides from HOLDWATCH_* environment variables; unparsable values fall back to defaults."""
        d = cls()
        return cls(
            smoothing_alpha=_get_env_float("HOLDWATCH_SMOOTHING_ALPHA", d.smoothing_alpha),
            stability_frames=_get_env_int("HOLDWATCH_STABILITY_FRAMES", d.stability_frames),
            grace_frames=_get_env_int("HOLDWATCH_GRACE_FRAMES", d.grace_frames),
            min_detections_per_sec=_get_env_float("HOLDWATCH_MIN_RATE", d.min_detections_per_sec),
            max_detections_per_sec=_get_env_float("HOLDWATCH_MAX_RATE", d.max_detections_per_sec),
        ).validate()
