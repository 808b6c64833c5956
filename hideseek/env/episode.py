from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)


class EpisodePhase(Enum):
    GRACE_PERIOD = "grace_period"
    ACTIVE = "active"
    TERMINATING = "terminating"


@dataclass
class EpisodeState:
    grace_period_steps: int
    current_step: int = 0
    capture_count: int = 0
    phase: EpisodePhase = EpisodePhase.GRACE_PERIOD

    @property
    def is_grace_period(self) -> bool:
        return self.current_step < self.grace_period_steps

    def reset(self) -> None:
        self.current_step = 0
        self.capture_count = 0
        self.phase = EpisodePhase.GRACE_PERIOD if self.grace_period_steps > 0 else EpisodePhase.ACTIVE

    def advance(self) -> bool:
        """Increment the step counter; True on the tick the grace period ends."""
        self.current_step += 1
        if self.phase is EpisodePhase.GRACE_PERIOD and not self.is_grace_period:
            self.phase = EpisodePhase.ACTIVE
            return True
        return False


def footprint_radius(half_size: Sequence[float]) -> float:
    """Radius of the circle enclosing a body's horizontal footprint."""
    return float(math.hypot(half_size[0], half_size[1]))


def _apart(a: np.ndarray, b: np.ndarray, distance: float) -> bool:
    return float(np.hypot(a[0] - b[0], a[1] - b[1])) >= distance


def sample_spawn(
    rng: np.random.Generator,
    x_range: tuple[float, float],
    y_range: tuple[float, float],
    z: float,
    placed: Sequence[np.ndarray],
    min_separation: float,
    attempts: int,
    obstacles: Sequence[tuple[np.ndarray, float]] = (),
) -> tuple[np.ndarray, bool]:
    """Rejection-sample a point at least ``min_separation`` (horizontal) from every placed point.

    ``obstacles`` are (pos, clearance) pairs, each with its own horizontal
    clearance. Returns (pos, ok). When every attempt collides the last sample
    is returned with ok=False.
    """
    pos = np.zeros(3, dtype=np.float64)
    for _ in range(max(1, int(attempts))):
        pos = np.asarray(
            [rng.uniform(*x_range), rng.uniform(*y_range), float(z)],
            dtype=np.float64,
        )
        if all(_apart(pos, p, min_separation) for p in placed) and all(
            _apart(pos, p, clearance) for p, clearance in obstacles
        ):
            return pos, True
    logger.debug(f"spawn sampling exhausted after {attempts} attempts; using last sample {pos[:2]}")
    return pos, False


def team_spawn_ranges(
    half_extent: float, margin: float, hider: bool
) -> tuple[tuple[float, float], tuple[float, float]]:
    """Hiders spawn in the x < 0 half, seekers in the x > 0 half, ``margin`` clear of the midline."""
    inner = max(0.0, half_extent - margin)
    gap = min(max(0.0, margin), inner)
    x_range = (-inner, -gap) if hider else (gap, inner)
    return x_range, (-inner, inner)
