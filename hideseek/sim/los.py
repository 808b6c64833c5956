from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numba
import numpy as np

from .world import OccluderWorld


@dataclass(frozen=True)
class RaycastHit:
    blocked: bool
    blocked_voxel: tuple[int, int, int] | None
    distance: float = math.inf  # metres from the ray origin, inf when not blocked


def _raycast_dda_pure(
    voxels: np.ndarray,
    blocks_los_lut: np.ndarray,
    start_x: float, start_y: float, start_z: float,
    end_x_f: float, end_y_f: float, end_z_f: float,
    include_end: bool,
) -> Tuple[bool, int, int, int, float]:
    """
    Pure-Python DDA raycast core (grid units).

    Returns: (blocked, hit_x, hit_y, hit_z, t_hit)
             t_hit is the distance along the ray at which the blocking voxel is entered.
             If not blocked, hit coords are -1 and t_hit is 0.
    """
    dx = end_x_f - start_x
    dy = end_y_f - start_y
    dz = end_z_f - start_z

    length = math.sqrt(dx*dx + dy*dy + dz*dz)
    if length <= 1e-9:
        return (False, -1, -1, -1, 0.0)

    # Unit direction
    ux, uy, uz = dx/length, dy/length, dz/length

    # Current voxel coordinates
    x = int(math.floor(start_x))
    y = int(math.floor(start_y))
    z = int(math.floor(start_z))
    end_x = int(math.floor(end_x_f))
    end_y = int(math.floor(end_y_f))
    end_z = int(math.floor(end_z_f))

    step_x = 1 if ux > 0 else (-1 if ux < 0 else 0)
    step_y = 1 if uy > 0 else (-1 if uy < 0 else 0)
    step_z = 1 if uz > 0 else (-1 if uz < 0 else 0)

    t_delta_x = abs(1.0 / ux) if ux != 0 else 1e30
    t_delta_y = abs(1.0 / uy) if uy != 0 else 1e30
    t_delta_z = abs(1.0 / uz) if uz != 0 else 1e30

    if step_x > 0:
        t_max_x = (x + 1.0 - start_x) * t_delta_x
    elif step_x < 0:
        t_max_x = (start_x - x) * t_delta_x
    else:
        t_max_x = 1e30

    if step_y > 0:
        t_max_y = (y + 1.0 - start_y) * t_delta_y
    elif step_y < 0:
        t_max_y = (start_y - y) * t_delta_y
    else:
        t_max_y = 1e30

    if step_z > 0:
        t_max_z = (z + 1.0 - start_z) * t_delta_z
    elif step_z < 0:
        t_max_z = (start_z - z) * t_delta_z
    else:
        t_max_z = 1e30

    # Cache world dimensions
    sz, sy, sx = voxels.shape

    # Loop limit
    max_steps = int(length * 2) + sx + sy + sz + 2

    for _ in range(max_steps):
        if x == end_x and y == end_y and z == end_z:
            if not include_end:
                return (False, -1, -1, -1, 0.0)
            # Start and end share a voxel: check it if requested
            if 0 <= x < sx and 0 <= y < sy and 0 <= z < sz:
                if blocks_los_lut[voxels[z, y, x]]:
                    return (True, x, y, z, 0.0)
            return (False, -1, -1, -1, 0.0)

        if t_max_x < t_max_y:
            if t_max_x < t_max_z:
                t_enter = t_max_x
                x += step_x
                t_max_x += t_delta_x
            else:
                t_enter = t_max_z
                z += step_z
                t_max_z += t_delta_z
        else:
            if t_max_y < t_max_z:
                t_enter = t_max_y
                y += step_y
                t_max_y += t_delta_y
            else:
                t_enter = t_max_z
                z += step_z
                t_max_z += t_delta_z

        # Walked past the end point (float round-off at voxel boundaries)
        if t_enter > length:
            return (False, -1, -1, -1, 0.0)

        # Left the grid: the grid is convex, so the ray cannot come back in
        if not (0 <= x < sx and 0 <= y < sy and 0 <= z < sz):
            return (False, -1, -1, -1, 0.0)

        at_end = x == end_x and y == end_y and z == end_z
        if (not include_end) and at_end:
            return (False, -1, -1, -1, 0.0)

        if blocks_los_lut[voxels[z, y, x]]:
            return (True, x, y, z, t_enter)

        if at_end:
            return (False, -1, -1, -1, 0.0)

    return (False, -1, -1, -1, 0.0)


@numba.njit(cache=True)
def _raycast_dda_numba(
    voxels: np.ndarray,
    blocks_los_lut: np.ndarray,
    start_x: float, start_y: float, start_z: float,
    end_x_f: float, end_y_f: float, end_z_f: float,
    include_end: bool,
) -> Tuple[bool, int, int, int, float]:
    """
    Numba JIT-compiled DDA raycast core (grid units).

    Returns: (blocked, hit_x, hit_y, hit_z, t_hit)
             If not blocked, hit coords are -1 and t_hit is 0.
    """
    dx = end_x_f - start_x
    dy = end_y_f - start_y
    dz = end_z_f - start_z

    length = math.sqrt(dx*dx + dy*dy + dz*dz)
    if length <= 1e-9:
        return (False, -1, -1, -1, 0.0)

    # Unit direction
    ux, uy, uz = dx/length, dy/length, dz/length

    # Current voxel coordinates
    x = int(math.floor(start_x))
    y = int(math.floor(start_y))
    z = int(math.floor(start_z))
    end_x = int(math.floor(end_x_f))
    end_y = int(math.floor(end_y_f))
    end_z = int(math.floor(end_z_f))

    step_x = 1 if ux > 0 else (-1 if ux < 0 else 0)
    step_y = 1 if uy > 0 else (-1 if uy < 0 else 0)
    step_z = 1 if uz > 0 else (-1 if uz < 0 else 0)

    t_delta_x = abs(1.0 / ux) if ux != 0 else 1e30
    t_delta_y = abs(1.0 / uy) if uy != 0 else 1e30
    t_delta_z = abs(1.0 / uz) if uz != 0 else 1e30

    if step_x > 0:
        t_max_x = (x + 1.0 - start_x) * t_delta_x
    elif step_x < 0:
        t_max_x = (start_x - x) * t_delta_x
    else:
        t_max_x = 1e30

    if step_y > 0:
        t_max_y = (y + 1.0 - start_y) * t_delta_y
    elif step_y < 0:
        t_max_y = (start_y - y) * t_delta_y
    else:
        t_max_y = 1e30

    if step_z > 0:
        t_max_z = (z + 1.0 - start_z) * t_delta_z
    elif step_z < 0:
        t_max_z = (start_z - z) * t_delta_z
    else:
        t_max_z = 1e30

    # Cache world dimensions
    sz = voxels.shape[0]
    sy = voxels.shape[1]
    sx = voxels.shape[2]

    # Loop limit
    max_steps = int(length * 2) + sx + sy + sz + 2

    t_enter = 0.0
    for _ in range(max_steps):
        if x == end_x and y == end_y and z == end_z:
            if not include_end:
                return (False, -1, -1, -1, 0.0)
            if 0 <= x < sx and 0 <= y < sy and 0 <= z < sz:
                if blocks_los_lut[voxels[z, y, x]]:
                    return (True, x, y, z, 0.0)
            return (False, -1, -1, -1, 0.0)

        if t_max_x < t_max_y:
            if t_max_x < t_max_z:
                t_enter = t_max_x
                x += step_x
                t_max_x += t_delta_x
            else:
                t_enter = t_max_z
                z += step_z
                t_max_z += t_delta_z
        else:
            if t_max_y < t_max_z:
                t_enter = t_max_y
                y += step_y
                t_max_y += t_delta_y
            else:
                t_enter = t_max_z
                z += step_z
                t_max_z += t_delta_z

        if t_enter > length:
            return (False, -1, -1, -1, 0.0)

        if not (0 <= x < sx and 0 <= y < sy and 0 <= z < sz):
            return (False, -1, -1, -1, 0.0)

        at_end = x == end_x and y == end_y and z == end_z
        if (not include_end) and at_end:
            return (False, -1, -1, -1, 0.0)

        if blocks_los_lut[voxels[z, y, x]]:
            return (True, x, y, z, t_enter)

        if at_end:
            return (False, -1, -1, -1, 0.0)

    return (False, -1, -1, -1, 0.0)


def _clip_to_grid(start: np.ndarray, end: np.ndarray, shape: tuple[int, int, int]) -> tuple[float, float] | None:
    """Parametric [t0, t1] (fractions of the segment) inside the grid box, or None if it misses."""
    sz, sy, sx = shape
    hi = np.asarray([sx, sy, sz], dtype=np.float64)
    d = end - start
    t0, t1 = 0.0, 1.0
    for axis in range(3):
        if abs(d[axis]) < 1e-12:
            if start[axis] < 0.0 or start[axis] > hi[axis]:
                return None
            continue
        a = (0.0 - start[axis]) / d[axis]
        b = (hi[axis] - start[axis]) / d[axis]
        if a > b:
            a, b = b, a
        t0 = max(t0, a)
        t1 = min(t1, b)
        if t0 > t1:
            return None
    return t0, t1


def raycast_voxels(
    world: OccluderWorld,
    start_xyz: np.ndarray,
    end_xyz: np.ndarray,
    *,
    include_end: bool = True,
) -> RaycastHit:
    """
    Fast voxel traversal (3D DDA) from start to end, in arena metres.
    Uses Numba JIT-compiled core for performance.
    """
    g_start = world.to_grid(start_xyz)
    g_end = world.to_grid(end_xyz)

    clipped = _clip_to_grid(g_start, g_end, world.voxels.shape)
    if clipped is None:
        return RaycastHit(blocked=False, blocked_voxel=None)
    t0, _ = clipped

    seg = g_end - g_start
    seg_len = float(np.linalg.norm(seg))
    offset = 0.0
    if t0 > 0.0:
        # Enter the grid a hair past its boundary so floor() lands inside.
        nudge = min(1.0, t0 + 1e-6 / max(seg_len, 1e-9))
        g_start = g_start + seg * nudge
        offset = seg_len * nudge

    blocked, hx, hy, hz, t_hit = _raycast_dda_numba(
        world.voxels,
        world.blocks_los_lut(),
        float(g_start[0]), float(g_start[1]), float(g_start[2]),
        float(g_end[0]), float(g_end[1]), float(g_end[2]),
        include_end,
    )
    if not blocked:
        return RaycastHit(blocked=False, blocked_voxel=None)

    blocked_voxel = (hx, hy, hz) if hx >= 0 else None
    return RaycastHit(
        blocked=True,
        blocked_voxel=blocked_voxel,
        distance=float((offset + t_hit) * world.voxel_size),
    )


def ray_aabb_distances(
    origin: np.ndarray,
    direction: np.ndarray,
    aabb_mins: np.ndarray,
    aabb_maxs: np.ndarray,
) -> np.ndarray:
    """Slab test of one ray against N boxes.

    `direction` must be unit length. Returns float64[N] entry distances
    (0 when the origin is inside a box, inf on a miss or a box behind the ray).
    """
    o = np.asarray(origin, dtype=np.float64)
    d = np.asarray(direction, dtype=np.float64)
    mins = np.asarray(aabb_mins, dtype=np.float64).reshape(-1, 3)
    maxs = np.asarray(aabb_maxs, dtype=np.float64).reshape(-1, 3)
    if mins.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)

    parallel = np.abs(d) < 1e-12
    safe_d = np.where(parallel, 1.0, d)
    t1 = (mins - o) / safe_d
    t2 = (maxs - o) / safe_d
    t_lo = np.minimum(t1, t2)
    t_hi = np.maximum(t1, t2)

    inside = (o >= mins) & (o <= maxs)
    t_lo = np.where(parallel, np.where(inside, -np.inf, np.inf), t_lo)
    t_hi = np.where(parallel, np.where(inside, np.inf, -np.inf), t_hi)

    t_enter = t_lo.max(axis=1)
    t_exit = t_hi.min(axis=1)
    hit = (t_exit >= np.maximum(t_enter, 0.0)) & (t_exit >= 0.0)
    return np.where(hit, np.maximum(t_enter, 0.0), np.inf)


def has_los(world: OccluderWorld, start_xyz: np.ndarray, end_xyz: np.ndarray) -> bool:
    return not raycast_voxels(world, start_xyz, end_xyz).blocked
