from __future__ import annotations

import pytest

from pose.backend import Landmark
from pose.smoothing import EmaSmoother, smooth


def _set(*points):
    return tuple(Landmark(x=x, y=y, z=z, visibility=v) for x, y, z, v in points)


CUR = _set((0.4, 0.6, -0.2, 0.9), (0.8, 0.2, 0.0, 0.1))
PREV = _set((0.2, 0.4, 0.2, 0.5), (0.6, 0.4, 0.4, 1.0))


def test_cold_start_returns_current_for_any_alpha():
    for a in (0.01, 0.3, 1.0):
        assert smooth(CUR, None, a) is CUR


def test_alpha_one_returns_current():
    assert smooth(CUR, PREV, 1.0) == CUR


def test_blend_is_per_coordinate_and_keeps_current_visibility():
    out = smooth(CUR, PREV, 0.5)
    assert abs(out[0].x - 0.3) < 1e-12
    assert abs(out[0].y - 0.5) < 1e-12
    assert abs(out[0].z - 0.0) < 1e-12
    # visibility is not smoothed
    assert out[0].visibility == 0.9
    assert out[1].visibility == 0.1


def test_small_alpha_stays_near_previous_and_converges_without_overshoot():
    out = smooth(CUR, PREV, 0.01)
    assert abs(out[0].x - PREV[0].x) <= 0.01 * abs(CUR[0].x - PREV[0].x) + 1e-12

    state = PREV
    last_gap = abs(CUR[0].x - state[0].x)
    for _ in range(200):
        state = smooth(CUR, state, 0.05)
        gap = CUR[0].x - state[0].x
        # approaches from below, never crosses the target
        assert gap >= 0.0
        assert gap <= last_gap
        last_gap = gap
    assert last_gap < 1e-3


def test_invalid_alpha_rejected():
    with pytest.raises(ValueError):
        smooth(CUR, PREV, 0.0)
    with pytest.raises(ValueError):
        EmaSmoother(alpha=1.5)


def test_ema_smoother_update_and_reset():
    sm = EmaSmoother(alpha=0.5)
    assert sm.previous is None
    first = sm.update(PREV)
    assert first == PREV

    second = sm.update(CUR)
    assert abs(second[0].x - 0.3) < 1e-12
    assert sm.previous == second

    sm.reset()
    assert sm.previous is None
    assert sm.update(CUR) == CUR
