from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class Team(IntEnum):
    HIDER = 0
    SEEKER = 1

    @property
    def label(self) -> str:
        return "hider" if self is Team.HIDER else "seeker"


class ObjectKind(IntEnum):
    BOX = 0
    RAMP = 1


@dataclass
class AgentState:
    """Arena-local agent record.

    Pose and velocity are owned by the physics backend (body id == ``handle``);
    this record holds the discrete state the engine manages.
    """

    handle: int
    arena_id: int
    team: Team
    index: int
    active: bool = True
    frozen: bool = False
    held_object: int | None = None  # object handle, maintained by GrabSystem
    reward: float = 0.0  # accumulated this tick
    episode_return: float = 0.0

    @property
    def agent_id(self) -> str:
        return f"{self.team.label}_{self.index}"

    @property
    def is_hider(self) -> bool:
        return self.team is Team.HIDER

    @property
    def is_seeker(self) -> bool:
        return self.team is Team.SEEKER

    def add_reward(self, amount: float) -> None:
        self.reward += float(amount)
        self.episode_return += float(amount)

    def reset(self) -> None:
        self.active = True
        self.frozen = False
        self.held_object = None
        self.reward = 0.0
        self.episode_return = 0.0


@dataclass
class GrabbableObject:
    handle: int
    arena_id: int
    kind: ObjectKind
    body_id: int
    grabbed: bool = False
    locked: bool = False
    locking_team: Team | None = None  # only meaningful while locked
    holder: int | None = None  # agent handle (weak back-reference)

    @property
    def is_ramp(self) -> bool:
        return self.kind is ObjectKind.RAMP

    @property
    def is_free(self) -> bool:
        return not self.grabbed and not self.locked

    def reset(self) -> None:
        self.grabbed = False
        self.locked = False
        self.locking_team = None
        self.holder = None
