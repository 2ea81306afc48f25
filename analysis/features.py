from __future__ import annotations

from math import acos, degrees
from typing import Sequence, Tuple

import numpy as np

from pose.backend import (
    Landmark,
    L_ANKLE,
    L_HIP,
    L_KNEE,
    L_SHOULDER,
    NOSE,
    R_ANKLE,
    R_HIP,
    R_KNEE,
    R_SHOULDER,
    landmark_at,
)


MIN_VISIBILITY = 0.3

LEFT_BODY = (L_SHOULDER, L_HIP, L_KNEE, L_ANKLE)
RIGHT_BODY = (R_SHOULDER, R_HIP, R_KNEE, R_ANKLE)


def _vec(a: Landmark, b: Landmark) -> Tuple[float, float]:
    return (b.x - a.x, b.y - a.y)


def _dot(ax: float, ay: float, bx: float, by: float) -> float:
    return ax * bx + ay * by


def _norm(ax: float, ay: float) -> float:
    return float(np.hypot(ax, ay))


def angle(a: Landmark, b: Landmark, c: Landmark) -> float:
    """
    Returns the angle at point B (in degrees) for triangle (A,B,C), in [0, 180].

    - Uses the 2D image plane only; z is too noisy from a single camera
    - If either arm BA or BC has zero length, returns 0.0
    """
    bax, bay = _vec(b, a)
    bcx, bcy = _vec(b, c)
    n1 = _norm(bax, bay)
    n2 = _norm(bcx, bcy)
    if n1 == 0.0 or n2 == 0.0:
        return 0.0

    cos_theta = _dot(bax, bay, bcx, bcy) / (n1 * n2)
    # Clamp due to numerical errors
    cos_theta = max(-1.0, min(1.0, float(cos_theta)))
    return float(degrees(acos(cos_theta)))


def colinearity(a: Landmark, b: Landmark, c: Landmark) -> float:
    """
    Deviation of A-B-C from a straight line: 0 on a line, capped at 1.

    |cross(A->B, B->C)| / |A->C|, doubled so typical body proportions land in ~0..1.
    Returns 1.0 when A and C coincide.
    """
    dx1, dy1 = _vec(a, b)
    dx2, dy2 = _vec(b, c)
    cross = abs(dx1 * dy2 - dy1 * dx2)
    total = _norm(c.x - a.x, c.y - a.y)
    if total == 0.0:
        return 1.0
    return float(min(1.0, cross / total * 2.0))


def horiz_offset(a: Landmark, b: Landmark) -> float:
    """Absolute horizontal distance between two landmarks (normalized units)."""
    return float(abs(b.x - a.x))


def vert_offset(a: Landmark, b: Landmark) -> float:
    """Absolute vertical distance between two landmarks (normalized units)."""
    return float(abs(b.y - a.y))


def is_visible(lm: Landmark, min_visibility: float = MIN_VISIBILITY) -> bool:
    return bool(lm.visibility) and lm.visibility >= min_visibility


def side_visibility(
    landmarks: Sequence[Landmark], min_visibility: float = MIN_VISIBILITY
) -> Tuple[bool, bool]:
    """(left, right): every one of shoulder, hip, knee and ankle of that side is visible."""
    left = all(is_visible(landmark_at(landmarks, i), min_visibility) for i in LEFT_BODY)
    right = all(is_visible(landmark_at(landmarks, i), min_visibility) for i in RIGHT_BODY)
    return left, right


def landmarks_visible(
    landmarks: Sequence[Landmark], min_visibility: float = MIN_VISIBILITY
) -> bool:
    """Nose plus at least one full side must be visible to judge form."""
    if not is_visible(landmark_at(landmarks, NOSE), min_visibility):
        return False
    left, right = side_visibility(landmarks, min_visibility)
    return left or right
