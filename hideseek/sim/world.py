from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ..config import WorldConfig


@dataclass
class OccluderWorld:
    """Static occlusion layer: a voxel grid in arena-centred coordinates.

    Arena coordinates are metres with the origin at the floor centre and z up.
    Voxel (ix, iy, iz) covers ``origin + [ix, ix+1) * voxel_size`` on each axis.
    """

    # Voxel types
    AIR = 0
    WALL = 1
    OCCLUDER = 2  # injected by a layout collaborator

    voxels: np.ndarray  # uint8[sz, sy, sx] (z-major)
    voxel_size: float = 0.25
    origin: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def size_z(self) -> int:
        return int(self.voxels.shape[0])

    @property
    def size_y(self) -> int:
        return int(self.voxels.shape[1])

    @property
    def size_x(self) -> int:
        return int(self.voxels.shape[2])

    def blocks_los_lut(self) -> np.ndarray:
        lut = np.zeros(256, dtype=np.bool_)
        lut[self.WALL] = True
        lut[self.OCCLUDER] = True
        return lut

    def in_bounds(self, ix: int, iy: int, iz: int) -> bool:
        return 0 <= ix < self.size_x and 0 <= iy < self.size_y and 0 <= iz < self.size_z

    def get_voxel(self, ix: int, iy: int, iz: int) -> int:
        if not self.in_bounds(ix, iy, iz):
            return self.AIR
        return int(self.voxels[iz, iy, ix])

    def to_grid(self, xyz: np.ndarray) -> np.ndarray:
        """Arena metres -> continuous grid coordinates."""
        return (np.asarray(xyz, dtype=np.float64) - self.origin) / self.voxel_size

    def _index_range(self, lo: float, hi: float, axis: int, size: int) -> tuple[int, int]:
        g_lo = (lo - float(self.origin[axis])) / self.voxel_size
        g_hi = (hi - float(self.origin[axis])) / self.voxel_size
        i_lo = max(math.floor(g_lo + 1e-9), 0)
        i_hi = min(math.ceil(g_hi - 1e-9), size)
        return i_lo, i_hi

    def set_box(self, aabb_min: np.ndarray, aabb_max: np.ndarray, value: int) -> None:
        """Fill every voxel overlapping the metric box [aabb_min, aabb_max)."""
        min_ix, max_ix = self._index_range(float(aabb_min[0]), float(aabb_max[0]), 0, self.size_x)
        min_iy, max_iy = self._index_range(float(aabb_min[1]), float(aabb_max[1]), 1, self.size_y)
        min_iz, max_iz = self._index_range(float(aabb_min[2]), float(aabb_max[2]), 2, self.size_z)
        if min_ix >= max_ix or min_iy >= max_iy or min_iz >= max_iz:
            return
        self.voxels[min_iz:max_iz, min_iy:max_iy, min_ix:max_ix] = int(value)

    def add_occluder(self, aabb_min: np.ndarray, aabb_max: np.ndarray) -> None:
        """Inject a static occluder (used by procedural layout collaborators)."""
        self.set_box(aabb_min, aabb_max, self.OCCLUDER)

    def clear_occluders(self) -> None:
        self.voxels[self.voxels == self.OCCLUDER] = self.AIR

    def aabb_collides(self, aabb_min: np.ndarray, aabb_max: np.ndarray) -> bool:
        # Below the floor is always solid.
        if aabb_min[2] < 0.0:
            return True

        min_ix, max_ix = self._index_range(float(aabb_min[0]), float(aabb_max[0]), 0, self.size_x)
        min_iy, max_iy = self._index_range(float(aabb_min[1]), float(aabb_max[1]), 1, self.size_y)
        min_iz, max_iz = self._index_range(float(aabb_min[2]), float(aabb_max[2]), 2, self.size_z)

        if min_ix >= max_ix or min_iy >= max_iy or min_iz >= max_iz:
            # Outside the grid (e.g. above the walls): open space.
            return False

        region = self.voxels[min_iz:max_iz, min_iy:max_iy, min_ix:max_ix]
        return bool(np.any(region != self.AIR))

    @classmethod
    def build(cls, config: WorldConfig) -> OccluderWorld:
        """Empty arena floor enclosed by four walls centred on the arena edges."""
        half = config.arena_size / 2.0
        t = config.wall_thickness
        outer = half + t / 2.0
        height = config.wall_height + config.headroom

        vs = float(config.voxel_size)
        sx = max(1, math.ceil(2.0 * outer / vs))
        sy = sx
        sz = max(1, math.ceil(height / vs))
        origin = np.asarray([-outer, -outer, 0.0], dtype=np.float64)

        world = cls(voxels=np.zeros((sz, sy, sx), dtype=np.uint8), voxel_size=vs, origin=origin)

        h = config.wall_height
        # North / South
        world.set_box(np.array([-outer, half - t / 2, 0.0]), np.array([outer, outer, h]), cls.WALL)
        world.set_box(np.array([-outer, -outer, 0.0]), np.array([outer, -half + t / 2, h]), cls.WALL)
        # East / West
        world.set_box(np.array([half - t / 2, -outer, 0.0]), np.array([outer, outer, h]), cls.WALL)
        world.set_box(np.array([-outer, -outer, 0.0]), np.array([-half + t / 2, outer, h]), cls.WALL)

        world.meta["arena_size"] = float(config.arena_size)
        world.meta["wall_height"] = float(config.wall_height)
        return world
