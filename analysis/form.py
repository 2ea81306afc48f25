from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from pose.backend import (
    Landmark,
    LandmarkSet,
    L_ANKLE,
    L_ELBOW,
    L_HIP,
    L_KNEE,
    L_SHOULDER,
    L_WRIST,
    NOSE,
    R_ANKLE,
    R_ELBOW,
    R_HIP,
    R_KNEE,
    R_SHOULDER,
    R_WRIST,
    landmark_at,
)
from .features import angle, colinearity, horiz_offset, landmarks_visible, side_visibility, vert_offset
from .utils import FormThresholds, PLANK_FORM


MSG_NOT_VISIBLE = "Position yourself sideways to camera. Show full body from head to feet."
MSG_NO_PERSON = "No person detected. Position yourself in frame."
MSG_DETECTION_ERROR = "Detection error - try refreshing if issue persists"
MSG_CORE = "Keep your core tight - straighten your body"
MSG_CORE_MINOR = "Minor body curve - engage core more"
MSG_LIFT_HIPS = "Lift your hips higher"
MSG_LOWER_HIPS = "Lower your hips - avoid sagging"
MSG_HIPS_MINOR = "Adjust hips for straighter alignment"
MSG_LEGS = "Straighten your legs completely"
MSG_LEGS_MINOR = "Legs could be straighter"
MSG_ARM_STYLE = "Choose forearm or straight-arm plank"
MSG_ARMS_UNDER = "Position arms under shoulders"
MSG_HEAD = "Keep head in neutral position"
MSG_LEVEL = "Keep body parallel to ground"
MSG_CENTER = "Center yourself in frame"
MSG_PERFECT = "Perfect plank form!"
MSG_GOOD = "Good plank position - keep it up!"
MSG_DETECTED = "Plank detected - maintain form"


@dataclass(frozen=True)
class FormScore:
    is_valid: bool
    confidence: int
    feedback: Tuple[str, ...]
    landmarks: Optional[LandmarkSet] = None
    # Measured values behind the judgment (degrees / normalized units)
    metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "confidence": self.confidence,
            "feedback": list(self.feedback),
            "metrics": dict(self.metrics),
        }


class _Side(NamedTuple):
    shoulder: Landmark
    elbow: Landmark
    wrist: Landmark
    hip: Landmark
    knee: Landmark
    ankle: Landmark


def _side(landmarks: Sequence[Landmark], indices: Tuple[int, int, int, int, int, int]) -> _Side:
    return _Side(*(landmark_at(landmarks, i) for i in indices))


_LEFT = (L_SHOULDER, L_ELBOW, L_WRIST, L_HIP, L_KNEE, L_ANKLE)
_RIGHT = (R_SHOULDER, R_ELBOW, R_WRIST, R_HIP, R_KNEE, R_ANKLE)


def no_person_score(message: str = MSG_NO_PERSON) -> FormScore:
    """Invalid score for frames without usable landmarks (nobody found, or detection failed)."""
    return FormScore(is_valid=False, confidence=0, feedback=(message,))


def score_form(landmarks: LandmarkSet, thresholds: FormThresholds = PLANK_FORM) -> FormScore:
    """
    Score a side-view plank from one (smoothed) landmark set.

    Confidence starts at 100 and each violated criterion subtracts its penalty.
    With both sides visible every measure is the mean of the left and right values.
    The hold counts as valid when confidence >= min_confidence and at most
    max_feedback corrections were raised; a positive message is then prepended.
    """
    t = thresholds
    if not landmarks_visible(landmarks, t.min_visibility):
        return FormScore(is_valid=False, confidence=0, feedback=(MSG_NOT_VISIBLE,), landmarks=landmarks)

    left, right = side_visibility(landmarks, t.min_visibility)
    sides: List[_Side] = []
    if left:
        sides.append(_side(landmarks, _LEFT))
    if right:
        sides.append(_side(landmarks, _RIGHT))
    nose = landmark_at(landmarks, NOSE)

    def bilateral(measure: Callable[[_Side], float]) -> float:
        return float(np.mean([measure(s) for s in sides]))

    body_angle = bilateral(lambda s: angle(s.shoulder, s.hip, s.ankle))
    body_line = bilateral(lambda s: colinearity(s.shoulder, s.hip, s.ankle))
    knee_angle = bilateral(lambda s: angle(s.hip, s.knee, s.ankle))
    elbow_angle = bilateral(lambda s: angle(s.shoulder, s.elbow, s.wrist))
    elbow_offset = bilateral(lambda s: horiz_offset(s.elbow, s.shoulder))
    head_offset = bilateral(lambda s: vert_offset(s.shoulder, nose))
    level_offset = bilateral(lambda s: vert_offset(s.shoulder, s.hip))
    center_y = bilateral(lambda s: (s.shoulder.y + s.hip.y + s.ankle.y) / 3.0)

    feedback: List[str] = []
    confidence = 100

    if body_line > t.colinearity_max:
        feedback.append(MSG_CORE)
        confidence -= t.colinearity_penalty
    elif body_line > t.colinearity_minor:
        feedback.append(MSG_CORE_MINOR)
        confidence -= t.colinearity_minor_penalty

    if body_angle < t.body_angle_min:
        feedback.append(MSG_LIFT_HIPS)
        confidence -= t.body_angle_penalty
    elif body_angle > t.body_angle_max:
        feedback.append(MSG_LOWER_HIPS)
        confidence -= t.body_angle_penalty
    elif body_angle < t.body_angle_ideal_min or body_angle > t.body_angle_ideal_max:
        feedback.append(MSG_HIPS_MINOR)
        confidence -= t.body_angle_minor_penalty

    if knee_angle < t.knee_angle_min:
        feedback.append(MSG_LEGS)
        confidence -= t.knee_penalty
    elif knee_angle < t.knee_angle_ideal_min:
        feedback.append(MSG_LEGS_MINOR)
        confidence -= t.knee_minor_penalty

    # Forearm and straight-arm planks are both fine; the band between is not
    if t.forearm_max <= elbow_angle <= t.straight_arm_min:
        feedback.append(MSG_ARM_STYLE)
        confidence -= t.arm_style_penalty

    if elbow_offset > t.elbow_offset_max:
        feedback.append(MSG_ARMS_UNDER)
        confidence -= t.elbow_offset_penalty

    if head_offset > t.head_offset_max:
        feedback.append(MSG_HEAD)
        confidence -= t.head_penalty

    if level_offset > t.level_offset_max:
        feedback.append(MSG_LEVEL)
        confidence -= t.level_penalty

    if center_y < t.frame_center_min or center_y > t.frame_center_max:
        feedback.append(MSG_CENTER)
        confidence -= t.frame_penalty

    is_valid = confidence >= t.min_confidence and len(feedback) <= t.max_feedback

    if is_valid and confidence >= t.perfect_confidence:
        feedback.insert(0, MSG_PERFECT)
    elif is_valid and confidence >= t.good_confidence:
        feedback.insert(0, MSG_GOOD)
    elif is_valid:
        feedback.insert(0, MSG_DETECTED)

    metrics = {
        "body_angle": body_angle,
        "colinearity": body_line,
        "knee_angle": knee_angle,
        "elbow_angle": elbow_angle,
        "elbow_offset": elbow_offset,
        "head_offset": head_offset,
        "level_offset": level_offset,
        "center_y": center_y,
    }
    return FormScore(
        is_valid=bool(is_valid),
        confidence=max(0, confidence),
        feedback=tuple(feedback),
        landmarks=landmarks,
        metrics=metrics,
    )
