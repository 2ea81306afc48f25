from __future__ import annotations

import math

from pose.backend import (
    Landmark,
    MISSING,
    NOSE,
    L_ANKLE,
    L_HIP,
    L_KNEE,
    L_SHOULDER,
    R_ANKLE,
    R_HIP,
    R_KNEE,
    R_SHOULDER,
)
from analysis.features import (
    angle,
    colinearity,
    horiz_offset,
    landmarks_visible,
    side_visibility,
    vert_offset,
)


def _lm(x: float, y: float, v: float = 1.0) -> Landmark:
    return Landmark(x=x, y=y, z=0.0, visibility=v)


def test_angle_basic_right_angle():
    # Right angle at B: A(0,0), B(0,1), C(1,1)
    th = angle(_lm(0.0, 0.0), _lm(0.0, 1.0), _lm(1.0, 1.0))
    assert abs(th - 90.0) < 1e-9


def test_angle_symmetric_in_outer_points():
    a, b, c = _lm(0.1, 0.7), _lm(0.4, 0.3), _lm(0.9, 0.5)
    assert abs(angle(a, b, c) - angle(c, b, a)) < 1e-12


def test_angle_collinear_is_180():
    assert abs(angle(_lm(0.2, 0.5), _lm(0.5, 0.5), _lm(0.8, 0.5)) - 180.0) < 1e-9
    # Diagonal line with B between A and C
    assert abs(angle(_lm(0.1, 0.1), _lm(0.3, 0.3), _lm(0.6, 0.6)) - 180.0) < 1e-6


def test_angle_same_outer_points_is_zero():
    a = _lm(0.3, 0.2)
    assert angle(a, _lm(0.6, 0.6), a) == 0.0


def test_angle_zero_length_arm_returns_zero():
    b = _lm(0.5, 0.5)
    assert angle(b, b, _lm(0.9, 0.1)) == 0.0


def test_colinearity_zero_when_on_line():
    assert colinearity(_lm(0.0, 0.0), _lm(0.5, 0.0), _lm(1.0, 0.0)) == 0.0


def test_colinearity_normalized_cross_product():
    # cross((0.5,0.1),(0.5,-0.1)) = -0.1 -> 0.1 / 1.0 * 2 = 0.2
    r = colinearity(_lm(0.0, 0.0), _lm(0.5, 0.1), _lm(1.0, 0.0))
    assert abs(r - 0.2) < 1e-12


def test_colinearity_capped_and_degenerate():
    assert colinearity(_lm(0.0, 0.0), _lm(0.5, 5.0), _lm(0.1, 0.0)) == 1.0
    a = _lm(0.4, 0.4)
    assert colinearity(a, _lm(0.6, 0.1), a) == 1.0


def test_offsets_are_absolute():
    assert abs(horiz_offset(_lm(0.7, 0.2), _lm(0.4, 0.9)) - 0.3) < 1e-12
    assert abs(vert_offset(_lm(0.7, 0.2), _lm(0.4, 0.9)) - 0.7) < 1e-12


def _body(v_left: float = 1.0, v_right: float = 1.0, v_nose: float = 1.0):
    lms = [MISSING] * 33
    lms[NOSE] = _lm(0.1, 0.5, v_nose)
    for idx in (L_SHOULDER, L_HIP, L_KNEE, L_ANKLE):
        lms[idx] = _lm(0.5, 0.5, v_left)
    for idx in (R_SHOULDER, R_HIP, R_KNEE, R_ANKLE):
        lms[idx] = _lm(0.5, 0.5, v_right)
    return tuple(lms)


def test_side_visibility_threshold():
    assert side_visibility(_body(0.3, 0.29)) == (True, False)
    assert side_visibility(_body(0.0, 0.9)) == (False, True)


def test_landmarks_visible_needs_nose_and_one_side():
    assert landmarks_visible(_body())
    assert landmarks_visible(_body(v_left=0.0))
    assert not landmarks_visible(_body(v_nose=0.1))
    assert not landmarks_visible(_body(v_left=0.0, v_right=0.0))


def test_visibility_on_short_landmark_set_does_not_raise():
    assert not landmarks_visible((_lm(0.1, 0.5),))
    assert math.isfinite(angle(MISSING, MISSING, MISSING))
