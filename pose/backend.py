from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0


LandmarkSet = Tuple[Landmark, ...]

# Stand-in for an absent landmark: zero visibility fails every visibility check
MISSING = Landmark(x=0.0, y=0.0, z=0.0, visibility=0.0)

NUM_LANDMARKS = 33

# MediaPipe BlazePose landmark indices (subset used here)
NOSE = 0
L_SHOULDER, R_SHOULDER = 11, 12
L_ELBOW, R_ELBOW = 13, 14
L_WRIST, R_WRIST = 15, 16
L_HIP, R_HIP = 23, 24
L_KNEE, R_KNEE = 25, 26
L_ANKLE, R_ANKLE = 27, 28


def landmark_at(landmarks: Sequence[Optional[Landmark]], idx: int) -> Landmark:
    """Index into a landmark set, treating out-of-range or None entries as MISSING."""
    if idx < 0 or idx >= len(landmarks):
        return MISSING
    lm = landmarks[idx]
    return MISSING if lm is None else lm


def _clean(value: Any, lo: Optional[float] = None, hi: Optional[float] = None) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not np.isfinite(v):
        return 0.0
    if lo is not None:
        v = max(lo, v)
    if hi is not None:
        v = min(hi, v)
    return v


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, 0.0)
    return getattr(obj, name, 0.0)


def to_landmark_set(raw: Sequence[Any], size: int = NUM_LANDMARKS) -> LandmarkSet:
    """
    Normalize a sequence of landmark-like objects into a fixed-size LandmarkSet.

    Items may be Landmark instances, objects exposing .x/.y/.z/.visibility
    (MediaPipe NormalizedLandmark) or mappings with the same keys.
    None entries and missing trailing indices become MISSING.
    Visibility is clamped to [0, 1]; non-finite values become 0.
    """
    out = []
    for idx in range(size):
        item = raw[idx] if idx < len(raw) else None
        if item is None:
            out.append(MISSING)
        elif isinstance(item, Landmark):
            out.append(item)
        else:
            out.append(
                Landmark(
                    x=_clean(_field(item, "x")),
                    y=_clean(_field(item, "y")),
                    z=_clean(_field(item, "z")),
                    visibility=_clean(_field(item, "visibility"), 0.0, 1.0),
                )
            )
    return tuple(out)


class PoseBackend:
    """
    Single-person pose backend using MediaPipe BlazePose.

    - Keeps the model warm-loaded after construction
    - Accepts BGR frames (as from OpenCV)
    - Returns a 33-entry LandmarkSet in normalized coordinates, or None if no pose is detected
    """

    NUM_LANDMARKS = NUM_LANDMARKS

    def __init__(
        self,
        model_complexity: int = 0,
        min_detection_confidence: float = 0.3,
        min_tracking_confidence: float = 0.3,
        pose_model: Optional[object] = None,
        smooth_landmarks: bool = False,
    ) -> None:
        """
        If pose_model is provided, it must expose a .process(np.ndarray[R,G,B]) -> result
        where result.pose_landmarks is either None or an object with .landmark list
        of items having attributes .x, .y, .z and .visibility.

        Defaults use the lite model with low confidence bars, tuned for phones.
        MediaPipe's own smoothing is off since the caller smooths.
        """
        self._external_model = pose_model is not None
        self._closed = False
        if pose_model is not None:
            self._pose = pose_model
        else:
            try:
                import mediapipe as mp  # type: ignore
            except Exception as exc:  # pragma: no cover - exercised only when mediapipe missing
                raise ImportError(
                    "mediapipe is required for PoseBackend. Install with `pip install mediapipe`"
                ) from exc

            self._mp_pose = mp.solutions.pose
            self._pose = self._mp_pose.Pose(
                model_complexity=model_complexity,
                smooth_landmarks=smooth_landmarks,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
            logger.info("MediaPipe pose model loaded (complexity=%d)", model_complexity)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release underlying resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        # Injected models are owned by the caller
        if self._external_model:
            return
        close_fn = getattr(self._pose, "close", None)
        if callable(close_fn):
            close_fn()

    def __enter__(self) -> "PoseBackend":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def detect(self, frame_bgr: np.ndarray) -> Optional[LandmarkSet]:
        """Run single-person pose detection on a BGR image frame."""
        if self._closed:
            raise RuntimeError("PoseBackend is closed")
        if not isinstance(frame_bgr, np.ndarray) or frame_bgr.ndim < 2:
            raise ValueError("frame_bgr must be an HxWxC numpy array")

        # Convert BGR (OpenCV) -> RGB without requiring cv2
        if frame_bgr.ndim == 3 and frame_bgr.shape[2] >= 3:
            frame_rgb = np.ascontiguousarray(frame_bgr[..., 2::-1])
        else:
            frame_rgb = frame_bgr

        result = self._pose.process(frame_rgb)

        if result is None or getattr(result, "pose_landmarks", None) is None:
            return None

        landmarks = getattr(result.pose_landmarks, "landmark", None)
        if landmarks is None or len(landmarks) == 0:
            return None

        return to_landmark_set(list(landmarks), self.NUM_LANDMARKS)
