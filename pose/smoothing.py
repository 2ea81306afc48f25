from __future__ import annotations

from typing import Optional

from .backend import Landmark, LandmarkSet


DEFAULT_ALPHA = 0.3


def _check_alpha(alpha: float) -> float:
    if not (0.0 < alpha <= 1.0):
        raise ValueError("alpha must be in (0, 1]")
    return float(alpha)


def smooth(
    current: LandmarkSet,
    previous: Optional[LandmarkSet],
    alpha: float = DEFAULT_ALPHA,
) -> LandmarkSet:
    """
    Exponential smoothing of one landmark set against the previous smoothed set.

    - previous=None returns current unchanged (cold start)
    - x, y and z are blended as alpha*current + (1-alpha)*previous
    - visibility is taken from current as-is; smoothing it would delay visibility gating

    Sets of different length are a caller error; extra entries of current are passed through.
    """
    a = _check_alpha(alpha)
    if previous is None:
        return current

    out = []
    for idx, cur in enumerate(current):
        if idx >= len(previous):
            out.append(cur)
            continue
        prev = previous[idx]
        out.append(
            Landmark(
                x=a * cur.x + (1.0 - a) * prev.x,
                y=a * cur.y + (1.0 - a) * prev.y,
                z=a * cur.z + (1.0 - a) * prev.z,
                visibility=cur.visibility,
            )
        )
    return tuple(out)


class EmaSmoother:
    """
    Per-session exponential moving average over whole landmark sets.

    Owns the most recent smoothed set; the first update after construction
    or reset() passes its input through unchanged.
    """

    def __init__(self, alpha: float = DEFAULT_ALPHA) -> None:
        self.alpha = _check_alpha(alpha)
        self._previous: Optional[LandmarkSet] = None

    @property
    def previous(self) -> Optional[LandmarkSet]:
        return self._previous

    def reset(self) -> None:
        self._previous = None

    def update(self, current: LandmarkSet) -> LandmarkSet:
        smoothed = smooth(current, self._previous, self.alpha)
        self._previous = smoothed
        return smoothed
