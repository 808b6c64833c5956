from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np

from ..config import GrabConfig
from ..constants import HELD_OBJECT_LINEAR_DAMPING, OBJECT_LINEAR_DAMPING
from .entities import AgentState, GrabbableObject
from .physics import PhysicsBackend

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], None]


class GrabSystem:
    """Grab/hold/lock state for the arena's shared objects.

    The only writer of ``grabbed``/``locked``/``holder`` on objects and of
    ``held_object`` on agents. Held and locked are mutually exclusive, and an
    object has at most one holder.
    """

    def __init__(
        self,
        physics: PhysicsBackend,
        agents: Sequence[AgentState],
        objects: Sequence[GrabbableObject],
        config: GrabConfig,
        emit: EventSink | None = None,
    ):
        self.physics = physics
        self.agents = {a.handle: a for a in agents}
        self.objects = list(objects)
        self.config = config
        self.emit = emit
        # agent handle -> seconds until the next lock/unlock is allowed
        self.cooldowns: dict[int, float] = {}

    def _event(self, kind: str, agent: AgentState, obj: GrabbableObject) -> None:
        logger.debug(f"{kind}: {agent.agent_id} object={obj.handle} kind={obj.kind.name}")
        if self.emit is not None:
            self.emit({"type": kind, "agent": agent.agent_id, "object": obj.handle})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def held_object(self, agent: AgentState | None) -> GrabbableObject | None:
        if agent is None or agent.held_object is None:
            return None
        return self.objects[agent.held_object]

    def is_holding(self, agent: AgentState | None) -> bool:
        return self.held_object(agent) is not None

    def cooldown_remaining(self, agent: AgentState) -> float:
        return self.cooldowns.get(agent.handle, 0.0)

    def _usable(self, agent: AgentState | None) -> bool:
        return agent is not None and agent.active and agent.handle in self.agents

    def _nearest(self, agent: AgentState, *, require_facing: bool) -> GrabbableObject | None:
        a = self.physics.get_body(agent.handle)
        best: GrabbableObject | None = None
        best_dist = float("inf")
        for obj in self.objects:
            if obj.grabbed:
                continue
            if require_facing and obj.locked:
                continue
            body = self.physics.get_body(obj.body_id)
            if not body.enabled:
                continue
            delta = body.pos - a.pos
            dist = float(np.linalg.norm(delta))
            if dist > self.config.grab_range or dist >= best_dist:
                continue
            if require_facing:
                planar = np.asarray([delta[0], delta[1], 0.0], dtype=np.float64)
                n = float(np.linalg.norm(planar))
                if n > 1e-9 and float(np.dot(a.forward, planar / n)) <= self.config.facing_dot:
                    continue
            best = obj
            best_dist = dist
        return best

    # ------------------------------------------------------------------
    # Grab / release
    # ------------------------------------------------------------------

    def try_grab_or_release(self, agent: AgentState | None) -> bool:
        """Release the held object, or grab the nearest free object in the facing cone."""
        if not self._usable(agent):
            return False
        assert agent is not None

        if agent.held_object is not None:
            return self.release(agent, throw=True)

        obj = self._nearest(agent, require_facing=True)
        if obj is None:
            return False

        obj.grabbed = True
        obj.holder = agent.handle
        agent.held_object = obj.handle
        self.physics.set_gravity(obj.body_id, False, damping=HELD_OBJECT_LINEAR_DAMPING)
        self.physics.set_no_collide(agent.handle, obj.body_id, True)
        self._event("grab", agent, obj)
        return True

    def release(self, agent: AgentState | None, *, throw: bool = False) -> bool:
        if agent is None:
            return False
        obj = self.held_object(agent)
        if obj is None:
            return False

        self._detach(agent, obj)
        if throw and self.config.inherit_velocity:
            # Thrown along the holder's facing, carrying the holder's own motion.
            a = self.physics.get_body(agent.handle)
            self.physics.set_velocity(obj.body_id, a.vel + a.forward * self.config.throw_force)
        self._event("release", agent, obj)
        return True

    def _detach(self, agent: AgentState, obj: GrabbableObject) -> None:
        obj.grabbed = False
        obj.holder = None
        agent.held_object = None
        self.physics.set_gravity(obj.body_id, True, damping=OBJECT_LINEAR_DAMPING)
        self.physics.set_no_collide(agent.handle, obj.body_id, False)

    def release_all(self) -> None:
        """Forced release of every held object; no impulses, cooldowns cleared."""
        for obj in self.objects:
            if obj.holder is not None:
                holder = self.agents.get(obj.holder)
                if holder is not None:
                    self._detach(holder, obj)
                    continue
            obj.grabbed = False
            obj.holder = None
        for agent in self.agents.values():
            agent.held_object = None
        self.cooldowns.clear()

    def update_held(self, dt: float) -> None:
        """Drive each held object toward the point in front of its holder."""
        del dt  # velocity command; physics integrates it
        cfg = self.config
        for obj in self.objects:
            if not obj.grabbed or obj.holder is None:
                continue
            holder = self.agents.get(obj.holder)
            if holder is None or not holder.active:
                if holder is not None:
                    self._detach(holder, obj)
                else:
                    obj.grabbed = False
                    obj.holder = None
                continue

            a = self.physics.get_body(holder.handle)
            body = self.physics.get_body(obj.body_id)
            target = a.pos + a.forward * cfg.hold_distance
            # Held objects ride on the holder's ground plane.
            target[2] = a.pos[2]
            self.physics.set_velocity(obj.body_id, (target - body.pos) * cfg.hold_smoothing)
            self.physics.set_pose(obj.body_id, body.pos, yaw=a.yaw)

    # ------------------------------------------------------------------
    # Lock / unlock
    # ------------------------------------------------------------------

    def tick_cooldowns(self, dt: float) -> None:
        for handle in list(self.cooldowns):
            remaining = self.cooldowns[handle] - dt
            if remaining <= 0.0:
                del self.cooldowns[handle]
            else:
                self.cooldowns[handle] = remaining

    def try_lock_or_unlock(self, agent: AgentState | None) -> bool:
        """Lock the nearest free object, or unlock it if this agent's team locked it."""
        if not self._usable(agent):
            return False
        assert agent is not None
        if agent.held_object is not None:
            return False
        if self.cooldown_remaining(agent) > 0.0:
            return False

        obj = self._nearest(agent, require_facing=False)
        if obj is None:
            return False

        if obj.locked:
            if obj.locking_team is not agent.team:
                return False
            obj.locked = False
            obj.locking_team = None
            self.physics.set_kinematic(obj.body_id, False)
            self.cooldowns[agent.handle] = self.config.lock_cooldown_s
            self._event("unlock", agent, obj)
            return True

        if self.config.lock_requires_grounded:
            speed = float(np.linalg.norm(self.physics.get_body(obj.body_id).vel))
            if speed > self.config.lock_max_speed:
                return False

        obj.locked = True
        obj.locking_team = agent.team
        self.physics.set_kinematic(obj.body_id, True)
        self.cooldowns[agent.handle] = self.config.lock_cooldown_s
        self._event("lock", agent, obj)
        return True
