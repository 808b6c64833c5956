from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

import numpy as np


ACTION_DIM = 5

# Discrete channels fire above this value.
TOGGLE_THRESHOLD = 0.5


class ActionIndex(IntEnum):
    STRAFE = 0  # -1 left .. +1 right
    FORWARD = 1  # -1 back .. +1 forward
    ROTATE = 2  # yaw rate, -1 clockwise .. +1 counter-clockwise
    GRAB = 3  # grab / release toggle
    LOCK = 4  # lock / unlock toggle


@dataclass(frozen=True)
class AgentCommand:
    """One tick of decoded intent for a single agent."""

    strafe: float = 0.0
    forward: float = 0.0
    rotate: float = 0.0
    grab: bool = False
    lock: bool = False

    def planar_velocity(self, fwd: np.ndarray, right: np.ndarray, speed: float) -> np.ndarray:
        """Desired world-frame horizontal velocity; magnitude never exceeds ``speed``."""
        move = fwd * self.forward + right * self.strafe
        move[2] = 0.0
        n = float(np.linalg.norm(move))
        if n > 1.0:
            move = move / n
        return move * float(speed)


def sanitize_action(action: object) -> tuple[np.ndarray, bool]:
    """Coerce anything into a finite float32[ACTION_DIM].

    Returns (vector, ok). ``ok`` is False when the input had to be reshaped or
    could not be read at all; non-finite entries are zeroed without flagging.
    """
    try:
        a = np.asarray(action, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return np.zeros(ACTION_DIM, dtype=np.float32), False

    ok = a.size == ACTION_DIM
    if a.size < ACTION_DIM:
        a = np.concatenate([a, np.zeros(ACTION_DIM - a.size, dtype=np.float64)])
    elif a.size > ACTION_DIM:
        a = a[:ACTION_DIM]
    a = np.nan_to_num(a, nan=0.0, posinf=0.0, neginf=0.0)
    # Every channel lives in [-1, 1]; clamp before narrowing to float32.
    a = np.clip(a, -1.0, 1.0)
    return a.astype(np.float32), ok


def decode_action(action: object) -> tuple[AgentCommand, bool]:
    a, ok = sanitize_action(action)
    cmd = AgentCommand(
        strafe=float(a[ActionIndex.STRAFE]),
        forward=float(a[ActionIndex.FORWARD]),
        rotate=float(a[ActionIndex.ROTATE]),
        grab=bool(a[ActionIndex.GRAB] > TOGGLE_THRESHOLD),
        lock=bool(a[ActionIndex.LOCK] > TOGGLE_THRESHOLD),
    )
    return cmd, ok
