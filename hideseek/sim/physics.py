"""Physics collaborator boundary.

The engine only talks to physics through :class:`PhysicsBackend`: ray queries
for occlusion, velocity/pose commands, and pose read-back. ``KinematicPhysics``
is the bundled backend: axis-by-axis AABB integration against the static
occluder grid and the other bodies, with gravity and linear damping. It does
not model rotation dynamics, friction or stacking.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Protocol

import numpy as np

from .los import ray_aabb_distances, raycast_voxels
from .world import OccluderWorld


class Layer(IntFlag):
    NONE = 0
    STATIC = 1  # walls + injected occluders
    OBJECTS = 2  # boxes, ramps
    AGENTS = 4


OCCLUSION_LAYERS = Layer.STATIC | Layer.OBJECTS


@dataclass(frozen=True)
class RaycastResult:
    hit: bool
    distance: float = math.inf
    body_id: int | None = None  # None for static geometry or no hit


@dataclass
class Body:
    body_id: int
    pos: np.ndarray  # float64[3], base (bottom-centre) in arena metres
    half_size: np.ndarray  # float64[3]
    layer: Layer
    vel: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    yaw: float = 0.0  # radians, 0 = +x
    gravity: bool = True
    kinematic: bool = False  # immovable but still collides
    frozen: bool = False  # not integrated, velocity held at zero
    enabled: bool = True  # disabled bodies neither collide nor occlude
    damping: float = 0.0
    no_collide: set[int] = field(default_factory=set)

    @property
    def forward(self) -> np.ndarray:
        return np.asarray([math.cos(self.yaw), math.sin(self.yaw), 0.0], dtype=np.float64)

    @property
    def right(self) -> np.ndarray:
        # z-up, right-handed: right of +x facing is -y
        return np.asarray([math.sin(self.yaw), -math.cos(self.yaw), 0.0], dtype=np.float64)

    def aabb(self, pos: np.ndarray | None = None) -> tuple[np.ndarray, np.ndarray]:
        p = self.pos if pos is None else pos
        hx, hy, hz = self.half_size
        lo = np.asarray([p[0] - hx, p[1] - hy, p[2]], dtype=np.float64)
        hi = np.asarray([p[0] + hx, p[1] + hy, p[2] + 2.0 * hz], dtype=np.float64)
        return lo, hi


class PhysicsBackend(Protocol):
    """Queries and commands the simulation core issues to physics."""

    world: OccluderWorld

    def raycast(
        self, origin: np.ndarray, direction: np.ndarray, max_distance: float, layers: Layer
    ) -> RaycastResult: ...

    def get_body(self, body_id: int) -> Body: ...

    def set_pose(self, body_id: int, pos: np.ndarray, yaw: float | None = None) -> None: ...

    def set_velocity(self, body_id: int, vel: np.ndarray) -> None: ...

    def set_frozen(self, body_id: int, frozen: bool) -> None: ...

    def set_kinematic(self, body_id: int, kinematic: bool) -> None: ...

    def set_gravity(self, body_id: int, gravity: bool, damping: float | None = None) -> None: ...

    def set_enabled(self, body_id: int, enabled: bool) -> None: ...

    def set_no_collide(self, a: int, b: int, no_collide: bool) -> None: ...

    def step(self, dt: float) -> None: ...


def _overlaps(a_min: np.ndarray, a_max: np.ndarray, b_min: np.ndarray, b_max: np.ndarray) -> bool:
    return bool(
        a_min[0] < b_max[0]
        and a_max[0] > b_min[0]
        and a_min[1] < b_max[1]
        and a_max[1] > b_min[1]
        and a_min[2] < b_max[2]
        and a_max[2] > b_min[2]
    )


class KinematicPhysics:
    def __init__(self, world: OccluderWorld, gravity: float = 9.81):
        self.world = world
        self.gravity = float(gravity)
        self.bodies: dict[int, Body] = {}

    def add_body(
        self,
        body_id: int,
        half_size: tuple[float, float, float],
        layer: Layer,
        *,
        damping: float = 0.0,
    ) -> Body:
        body = Body(
            body_id=body_id,
            pos=np.zeros(3, dtype=np.float64),
            half_size=np.asarray(half_size, dtype=np.float64),
            layer=layer,
            damping=float(damping),
        )
        self.bodies[body_id] = body
        return body

    def get_body(self, body_id: int) -> Body:
        return self.bodies[body_id]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def set_pose(self, body_id: int, pos: np.ndarray, yaw: float | None = None) -> None:
        body = self.bodies[body_id]
        body.pos[:] = np.asarray(pos, dtype=np.float64)
        if yaw is not None:
            body.yaw = float(yaw)

    def set_velocity(self, body_id: int, vel: np.ndarray) -> None:
        body = self.bodies[body_id]
        if body.frozen or body.kinematic:
            return
        body.vel[:] = np.asarray(vel, dtype=np.float64)

    def set_frozen(self, body_id: int, frozen: bool) -> None:
        body = self.bodies[body_id]
        body.frozen = bool(frozen)
        if frozen:
            body.vel[:] = 0.0

    def set_kinematic(self, body_id: int, kinematic: bool) -> None:
        body = self.bodies[body_id]
        body.kinematic = bool(kinematic)
        if kinematic:
            body.vel[:] = 0.0

    def set_gravity(self, body_id: int, gravity: bool, damping: float | None = None) -> None:
        body = self.bodies[body_id]
        body.gravity = bool(gravity)
        if damping is not None:
            body.damping = float(damping)

    def set_enabled(self, body_id: int, enabled: bool) -> None:
        body = self.bodies[body_id]
        body.enabled = bool(enabled)
        if not enabled:
            body.vel[:] = 0.0

    def set_no_collide(self, a: int, b: int, no_collide: bool) -> None:
        for x, y in ((a, b), (b, a)):
            if no_collide:
                self.bodies[x].no_collide.add(y)
            else:
                self.bodies[x].no_collide.discard(y)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def raycast(
        self, origin: np.ndarray, direction: np.ndarray, max_distance: float, layers: Layer
    ) -> RaycastResult:
        o = np.asarray(origin, dtype=np.float64)
        d = np.asarray(direction, dtype=np.float64)
        n = float(np.linalg.norm(d))
        if n <= 1e-9 or max_distance <= 0.0:
            return RaycastResult(hit=False)
        d = d / n

        best = math.inf
        best_id: int | None = None

        if layers & Layer.STATIC:
            vox = raycast_voxels(self.world, o, o + d * float(max_distance))
            if vox.blocked and vox.distance <= max_distance:
                best = vox.distance

        candidates = [b for b in self.bodies.values() if b.enabled and (b.layer & layers)]
        if candidates:
            boxes = [b.aabb() for b in candidates]
            mins = np.stack([lo for lo, _ in boxes])
            maxs = np.stack([hi for _, hi in boxes])
            dists = ray_aabb_distances(o, d, mins, maxs)
            i = int(np.argmin(dists))
            if dists[i] <= max_distance and dists[i] < best:
                best = float(dists[i])
                best_id = candidates[i].body_id

        if math.isinf(best):
            return RaycastResult(hit=False)
        return RaycastResult(hit=True, distance=float(best), body_id=best_id)

    def _collides_world(self, body: Body, pos: np.ndarray) -> bool:
        lo, hi = body.aabb(pos)
        return self.world.aabb_collides(lo, hi)

    def _collides_bodies(self, body: Body, pos: np.ndarray) -> bool:
        # Only count bodies we are not already overlapping, so spawn overlaps can separate.
        t_min, t_max = body.aabb(pos)
        c_min, c_max = body.aabb()
        for other in self.bodies.values():
            if other.body_id == body.body_id or not other.enabled:
                continue
            if other.body_id in body.no_collide:
                continue
            o_min, o_max = other.aabb()
            if _overlaps(t_min, t_max, o_min, o_max) and not _overlaps(c_min, c_max, o_min, o_max):
                return True
        return False

    def _blocked(self, body: Body, pos: np.ndarray) -> bool:
        if self._collides_world(body, pos) and not self._collides_world(body, body.pos):
            return True
        return self._collides_bodies(body, pos)

    def _integrate(self, body: Body, dt: float) -> None:
        if body.gravity:
            body.vel[2] -= self.gravity * dt
        if body.damping > 0.0:
            body.vel *= 1.0 / (1.0 + body.damping * dt)

        pos = body.pos.copy()

        # Axis-by-axis collision resolution (cheap, stable).
        for axis in (0, 1):
            trial = pos.copy()
            trial[axis] = pos[axis] + body.vel[axis] * dt
            if not self._blocked(body, trial):
                pos[:] = trial
                body.pos[:] = pos
            else:
                body.vel[axis] = 0.0

        trial = pos.copy()
        trial[2] = pos[2] + body.vel[2] * dt
        if trial[2] < 0.0 and pos[2] >= 0.0:
            # Floor
            trial[2] = 0.0
            body.vel[2] = 0.0
        if not self._blocked(body, trial):
            pos[:] = trial
        else:
            body.vel[2] = 0.0
        body.pos[:] = pos

    def step(self, dt: float) -> None:
        for body_id in sorted(self.bodies):
            body = self.bodies[body_id]
            if not body.enabled or body.frozen or body.kinematic:
                continue
            self._integrate(body, float(dt))
