import numpy as np
import pytest

from hideseek.config import ArenaConfig, WorldConfig
from hideseek.constants import AGENT_HALF_SIZE, BOX_HALF_SIZE
from hideseek.env.env import HideSeekEnv
from hideseek.sim.entities import AgentState, GrabbableObject, ObjectKind, Team
from hideseek.sim.physics import KinematicPhysics, Layer
from hideseek.sim.world import OccluderWorld


class Arena:
    """Bare physics + roster, for exercising sim systems without the env."""

    def __init__(self):
        self.world = OccluderWorld.build(WorldConfig())
        self.physics = KinematicPhysics(self.world)
        self.agents: list[AgentState] = []
        self.objects: list[GrabbableObject] = []

    def add_agent(self, team: Team, pos, yaw: float = 0.0) -> AgentState:
        handle = len(self.agents)
        assert not self.objects, "add agents before objects"
        index = sum(1 for a in self.agents if a.team is team)
        agent = AgentState(handle=handle, arena_id=0, team=team, index=index)
        self.physics.add_body(handle, AGENT_HALF_SIZE, Layer.AGENTS)
        self.physics.set_pose(handle, np.asarray(pos, dtype=np.float64), yaw=yaw)
        self.agents.append(agent)
        return agent

    def add_object(self, pos, kind: ObjectKind = ObjectKind.BOX, half_size=BOX_HALF_SIZE) -> GrabbableObject:
        handle = len(self.objects)
        obj = GrabbableObject(handle=handle, arena_id=0, kind=kind, body_id=len(self.agents) + handle)
        self.physics.add_body(obj.body_id, half_size, Layer.OBJECTS, damping=2.0)
        self.physics.set_pose(obj.body_id, np.asarray(pos, dtype=np.float64))
        self.objects.append(obj)
        return obj


@pytest.fixture
def arena() -> Arena:
    return Arena()


@pytest.fixture
def make_env():
    def _make(seed: int = 0, **overrides) -> HideSeekEnv:
        env = HideSeekEnv(ArenaConfig(**overrides))
        env.reset(seed=seed)
        return env

    return _make


@pytest.fixture
def place():
    """Teleport an env agent to a pose and zero its velocity."""

    def _place(env: HideSeekEnv, agent_id: str, pos, yaw: float = 0.0) -> AgentState:
        agent = env.get_agent(agent_id)
        assert agent is not None
        env.physics.set_pose(agent.handle, np.asarray(pos, dtype=np.float64), yaw=yaw)
        env.physics.get_body(agent.handle).vel[:] = 0.0
        return agent

    return _place


@pytest.fixture
def make_arena():
    """Arena factory, for property tests that need a fresh arena per example."""
    return Arena
