"""Per-step reward shaping for HideSeekEnv.

Four additive components per agent:
1. visibility: seekers paid per hider in view, hiders paid for staying unseen
2. activity: idle penalty after a run of near-stationary ticks
3. exploration: one-time bonus per newly visited grid cell
4. team: hider clustering / seeker spread

Design:
- RewardWeights: configurable scale for each component
- RewardContext: everything one tick's computation reads
- RewardComputer: owns the per-episode trackers and produces RewardComponents

This is the only place visibility turns into reward. Terminal, capture, step
and bounds rewards are episode-level and applied by the env.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from ..sim.entities import AgentState

if TYPE_CHECKING:
    from ..sim.visibility import VisibilitySystem


@dataclass(frozen=True)
class RewardWeights:
    """Scales for the shaping components.

    Expected magnitudes over a 300-tick seek phase:
    - visibility: ~3 pts (0.01 per tick), the dominant signal
    - perfect hide bonus: +50% on top for hiders that stay unseen
    - team / exploration / idle: small nudges, an order of magnitude below
    """

    visibility: float = 0.01
    perfect_hide_bonus: float = 0.005

    team_coordination: float = 0.002
    optimal_hider_distance: float = 3.0  # hiders are paid most for this mean spacing
    distance_scale: float = 10.0  # deviation (hiders) / spread (seekers) normalizer

    idle_penalty: float = -0.001
    idle_threshold: float = 0.1  # metres moved per tick below which a tick counts as idle
    idle_frame_threshold: int = 50

    exploration: float = 0.001
    exploration_grid: float = 2.0  # cell edge in metres


@dataclass
class RewardComponents:
    """Breakdown of one agent's shaping reward for one tick."""

    visibility: float = 0.0
    activity: float = 0.0
    exploration: float = 0.0
    team: float = 0.0

    def total(self) -> float:
        return self.visibility + self.activity + self.exploration + self.team

    def to_dict(self) -> dict[str, float]:
        return {
            "visibility": self.visibility,
            "activity": self.activity,
            "exploration": self.exploration,
            "team": self.team,
        }


@dataclass
class ExplorationTracker:
    """Visited exploration cells per agent handle; only grows within an episode."""

    cell_size: float = 2.0
    visited: dict[int, set[tuple[int, int]]] = field(default_factory=dict)

    def cell(self, pos: np.ndarray) -> tuple[int, int]:
        size = self.cell_size if self.cell_size > 0.0 else 1.0
        return (math.floor(float(pos[0]) / size), math.floor(float(pos[1]) / size))

    def visit(self, handle: int, pos: np.ndarray) -> bool:
        """Record the agent's current cell; True the first time it is entered."""
        cells = self.visited.setdefault(handle, set())
        c = self.cell(pos)
        if c in cells:
            return False
        cells.add(c)
        return True

    def coverage(self, handle: int) -> int:
        return len(self.visited.get(handle, ()))

    def clear(self) -> None:
        self.visited.clear()

    def __len__(self) -> int:
        return sum(len(v) for v in self.visited.values())


@dataclass
class ActivityTracker:
    """Last position and consecutive idle ticks per agent handle."""

    threshold: float = 0.1
    last_pos: dict[int, np.ndarray] = field(default_factory=dict)
    idle_frames: dict[int, int] = field(default_factory=dict)

    def update(self, handle: int, pos: np.ndarray) -> int:
        p = np.asarray(pos, dtype=np.float64).copy()
        prev = self.last_pos.get(handle)
        self.last_pos[handle] = p
        if prev is None:
            self.idle_frames[handle] = 0
            return 0
        if float(np.linalg.norm(p - prev)) < self.threshold:
            self.idle_frames[handle] = self.idle_frames.get(handle, 0) + 1
        else:
            self.idle_frames[handle] = 0
        return self.idle_frames[handle]

    def clear(self) -> None:
        self.last_pos.clear()
        self.idle_frames.clear()

    def __len__(self) -> int:
        return len(self.last_pos)


@dataclass
class RewardContext:
    """All per-step state needed for reward computation."""

    agents: Sequence[AgentState]
    positions: dict[int, np.ndarray]  # handle -> base position
    visibility: VisibilitySystem
    view_angle: float
    view_distance: float


def mean_pairwise_distance(points: Sequence[np.ndarray]) -> float:
    n = len(points)
    if n < 2:
        return 0.0
    total = 0.0
    pairs = 0
    for i in range(n):
        for j in range(i + 1, n):
            total += float(np.linalg.norm(points[i] - points[j]))
            pairs += 1
    return total / pairs


def _clamp01(x: float) -> float:
    return min(1.0, max(0.0, x))


class RewardComputer:
    """Shaping reward computation; owns the exploration and activity trackers."""

    def __init__(self, weights: RewardWeights | None = None, arena_size: float = 25.0):
        self.weights = weights or RewardWeights()
        self.arena_size = float(arena_size)
        self.exploration = ExplorationTracker(cell_size=self.weights.exploration_grid)
        self.activity = ActivityTracker(threshold=self.weights.idle_threshold)
        # hider handle -> seen by any active seeker on the last compute()
        self.last_seen: dict[int, bool] = {}

    def reset_tracking(self) -> None:
        self.exploration.clear()
        self.activity.clear()
        self.last_seen.clear()

    def exploration_coverage(self, agent: AgentState) -> float:
        """Fraction of the arena's exploration cells the agent has entered this episode."""
        grid = self.weights.exploration_grid if self.weights.exploration_grid > 0.0 else 1.0
        per_side = max(1, math.ceil(self.arena_size / grid))
        return self.exploration.coverage(agent.handle) / float(per_side * per_side)

    def compute(self, ctx: RewardContext) -> dict[int, RewardComponents]:
        """Compute shaping components for every agent (inactive agents get zeros).

        Returns:
            dict mapping agent handle -> RewardComponents
        """
        components: dict[int, RewardComponents] = {a.handle: RewardComponents() for a in ctx.agents}
        active = [a for a in ctx.agents if a.active]
        hiders = [a for a in active if a.is_hider]
        seekers = [a for a in active if a.is_seeker]

        self._visibility(ctx, hiders, seekers, components)
        for a in active:
            components[a.handle].activity = self._activity(a, ctx)
            components[a.handle].exploration = self._exploration(a, ctx)
        self._team(ctx, hiders, seekers, components)
        return components

    def _visibility(
        self,
        ctx: RewardContext,
        hiders: list[AgentState],
        seekers: list[AgentState],
        components: dict[int, RewardComponents],
    ) -> None:
        w = self.weights
        seen = {h.handle: False for h in hiders}

        for s in seekers:
            count = 0
            for h in hiders:
                if ctx.visibility.can_see(s, h, ctx.view_angle, ctx.view_distance):
                    count += 1
                    seen[h.handle] = True
            components[s.handle].visibility = w.visibility * count if count > 0 else -w.visibility

        for h in hiders:
            if seen[h.handle]:
                components[h.handle].visibility = -w.visibility
            else:
                components[h.handle].visibility = w.visibility + w.perfect_hide_bonus

        self.last_seen = seen

    def _activity(self, agent: AgentState, ctx: RewardContext) -> float:
        idle = self.activity.update(agent.handle, ctx.positions[agent.handle])
        if idle > self.weights.idle_frame_threshold:
            return self.weights.idle_penalty
        return 0.0

    def _exploration(self, agent: AgentState, ctx: RewardContext) -> float:
        if self.exploration.visit(agent.handle, ctx.positions[agent.handle]):
            return self.weights.exploration
        return 0.0

    def _team(
        self,
        ctx: RewardContext,
        hiders: list[AgentState],
        seekers: list[AgentState],
        components: dict[int, RewardComponents],
    ) -> None:
        w = self.weights
        scale = w.distance_scale if w.distance_scale > 0.0 else 1.0

        if len(hiders) > 1:
            avg = mean_pairwise_distance([ctx.positions[h.handle] for h in hiders])
            score = _clamp01(1.0 - abs(avg - w.optimal_hider_distance) / scale)
            for h in hiders:
                components[h.handle].team = w.team_coordination * score

        if len(seekers) > 1:
            avg = mean_pairwise_distance([ctx.positions[s.handle] for s in seekers])
            score = _clamp01(avg / scale)
            for s in seekers:
                components[s.handle].team = w.team_coordination * score
