"""Observation computation for HideSeekEnv.

Layout per agent (float32, fixed length for a given config):

    self      pos / half_extent (3), forward (3), vel / move_speed (3), holding (1)
    episode   grace flag (1), elapsed fraction (1), is_hider (1)
    teammates max_team - 1 slots x AGENT_BLOCK_DIM
    opponents max_team slots x AGENT_BLOCK_DIM
    objects   one OBJECT_BLOCK_DIM block per object

Agent and object slots follow roster order; empty and inactive slots are zero
so the vector length never depends on who is still in play.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from ..sim.entities import AgentState, GrabbableObject

if TYPE_CHECKING:
    from ..config import ArenaConfig
    from ..sim.physics import PhysicsBackend


SELF_DIM = 10
EPISODE_DIM = 3
AGENT_BLOCK_DIM = 7  # rel pos (3), forward (3), active (1)
OBJECT_BLOCK_DIM = 7  # rel pos (3), grabbed, locked, locked_by_my_team, is_ramp


@dataclass
class ObservationContext:
    agents: Sequence[AgentState]
    objects: Sequence[GrabbableObject]
    physics: PhysicsBackend
    current_step: int
    is_grace_period: bool


def compute_agent_features(
    viewer: AgentState, other: AgentState, physics: PhysicsBackend, half_extent: float
) -> np.ndarray:
    feat = np.zeros(AGENT_BLOCK_DIM, dtype=np.float32)
    if not other.active:
        return feat
    v = physics.get_body(viewer.handle)
    o = physics.get_body(other.handle)
    feat[0:3] = (o.pos - v.pos) / half_extent
    feat[3:6] = o.forward
    feat[6] = 1.0
    return feat


def compute_object_features(
    viewer: AgentState, obj: GrabbableObject, physics: PhysicsBackend, half_extent: float
) -> np.ndarray:
    feat = np.zeros(OBJECT_BLOCK_DIM, dtype=np.float32)
    v = physics.get_body(viewer.handle)
    body = physics.get_body(obj.body_id)
    feat[0:3] = (body.pos - v.pos) / half_extent
    feat[3] = 1.0 if obj.grabbed else 0.0
    feat[4] = 1.0 if obj.locked else 0.0
    feat[5] = 1.0 if (obj.locked and obj.locking_team is viewer.team) else 0.0
    feat[6] = 1.0 if obj.is_ramp else 0.0
    return feat


class ObservationBuilder:
    def __init__(self, config: ArenaConfig):
        self.config = config
        max_team = config.max_team_size
        self.teammate_slots = max(0, max_team - 1)
        self.opponent_slots = max_team
        self.num_objects = config.num_boxes + config.num_ramps
        self.half_extent = config.half_extent
        self.max_speed = config.move_speed if config.move_speed > 0.0 else 1.0

    def obs_dim(self) -> int:
        return (
            SELF_DIM
            + EPISODE_DIM
            + (self.teammate_slots + self.opponent_slots) * AGENT_BLOCK_DIM
            + self.num_objects * OBJECT_BLOCK_DIM
        )

    def build_one(self, agent: AgentState, ctx: ObservationContext) -> np.ndarray:
        obs = np.zeros(self.obs_dim(), dtype=np.float32)
        body = ctx.physics.get_body(agent.handle)
        h = self.half_extent

        obs[0:3] = body.pos / h
        obs[3:6] = body.forward
        obs[6:9] = body.vel / self.max_speed
        obs[9] = 1.0 if agent.held_object is not None else 0.0

        i = SELF_DIM
        obs[i] = 1.0 if ctx.is_grace_period else 0.0
        obs[i + 1] = min(1.0, ctx.current_step / float(self.config.max_episode_steps))
        obs[i + 2] = 1.0 if agent.is_hider else 0.0
        i += EPISODE_DIM

        mates = [a for a in ctx.agents if a.team is agent.team and a.handle != agent.handle]
        opponents = [a for a in ctx.agents if a.team is not agent.team]
        for group, slots in ((mates, self.teammate_slots), (opponents, self.opponent_slots)):
            for other in group[:slots]:
                obs[i : i + AGENT_BLOCK_DIM] = compute_agent_features(agent, other, ctx.physics, h)
                i += AGENT_BLOCK_DIM
            # Zero padding for unused slots
            i += max(0, slots - len(group)) * AGENT_BLOCK_DIM

        for obj in ctx.objects[: self.num_objects]:
            obs[i : i + OBJECT_BLOCK_DIM] = compute_object_features(agent, obj, ctx.physics, h)
            i += OBJECT_BLOCK_DIM

        return obs

    def build(self, ctx: ObservationContext) -> dict[str, np.ndarray]:
        """Build observations for all agents (active or not).

        Returns:
            Dict mapping agent_id -> observation vector
        """
        return {a.agent_id: self.build_one(a, ctx) for a in ctx.agents}
