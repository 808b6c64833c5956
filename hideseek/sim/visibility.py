"""Line-of-sight queries between agents.

``can_see`` applies three gates in order: 3D distance, a horizontal view cone,
then occlusion rays from the observer's eye to sample points on the target.
Results are memoized per ordered (observer, target) pair for a few steps; an
entry is only reused while the observer, the target and every movable
occluder are still where they were when it was computed.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

import numpy as np

from ..constants import (
    CACHE_PURGE_FACTOR,
    CACHE_PURGE_INTERVAL,
    EYE_HEIGHT,
    FRACTION_LATERAL_OFFSET,
    FRACTION_SAMPLE_HEIGHTS,
    OCCLUSION_EPSILON,
    TARGET_SAMPLE_HEIGHTS,
)
from .entities import AgentState
from .physics import OCCLUSION_LAYERS, Layer, PhysicsBackend

_UP = np.asarray([0.0, 0.0, 1.0], dtype=np.float64)

CacheKey = tuple[int, int, float, float]


class VisibilitySystem:
    def __init__(
        self,
        physics: PhysicsBackend,
        occluder_ids: Sequence[int] = (),
        *,
        cache_frames: int = 3,
        use_cache: bool = True,
        layers: Layer = OCCLUSION_LAYERS,
    ):
        self.physics = physics
        self.occluder_ids = tuple(int(i) for i in occluder_ids)
        self.cache_frames = int(cache_frames)
        self.use_cache = bool(use_cache)
        self.layers = layers

        self.current_step = 0
        self._cache: dict[CacheKey, tuple[bool, int, bytes]] = {}
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # Cache maintenance
    # ------------------------------------------------------------------

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()
        self.current_step = 0

    def tick(self, step: int) -> None:
        """Advance the cache clock; purges stale entries every CACHE_PURGE_INTERVAL steps."""
        self.current_step = int(step)
        if self.current_step > 0 and self.current_step % CACHE_PURGE_INTERVAL == 0:
            self.purge()

    def purge(self) -> int:
        max_age = CACHE_PURGE_FACTOR * self.cache_frames
        stale = [k for k, (_, at, _) in self._cache.items() if self.current_step - at > max_age]
        for k in stale:
            del self._cache[k]
        return len(stale)

    def _scene_key(self, observer: AgentState, target: AgentState) -> bytes:
        o = self.physics.get_body(observer.handle)
        t = self.physics.get_body(target.handle)
        parts = [o.pos.tobytes(), np.float64(o.yaw).tobytes(), t.pos.tobytes()]
        for body_id in self.occluder_ids:
            body = self.physics.get_body(body_id)
            parts.append(body.pos.tobytes() if body.enabled else b"-")
        return b"".join(parts)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _valid_pair(observer: AgentState | None, target: AgentState | None) -> bool:
        if observer is None or target is None:
            return False
        if not observer.active or not target.active:
            return False
        return observer.handle != target.handle

    def can_see(
        self,
        observer: AgentState | None,
        target: AgentState | None,
        view_angle: float,
        view_distance: float,
    ) -> bool:
        if not self._valid_pair(observer, target):
            return False
        assert observer is not None and target is not None

        if not self.use_cache:
            return self._compute_can_see(observer, target, view_angle, view_distance)

        key: CacheKey = (observer.handle, target.handle, float(view_angle), float(view_distance))
        scene = self._scene_key(observer, target)
        entry = self._cache.get(key)
        if entry is not None:
            visible, at, cached_scene = entry
            if self.current_step - at <= self.cache_frames and cached_scene == scene:
                self.hits += 1
                return visible

        self.misses += 1
        visible = self._compute_can_see(observer, target, view_angle, view_distance)
        self._cache[key] = (visible, self.current_step, scene)
        return visible

    def _compute_can_see(
        self, observer: AgentState, target: AgentState, view_angle: float, view_distance: float
    ) -> bool:
        o = self.physics.get_body(observer.handle)
        t = self.physics.get_body(target.handle)

        delta = t.pos - o.pos
        if float(np.linalg.norm(delta)) > view_distance:
            return False

        # Horizontal view cone.
        planar = np.asarray([delta[0], delta[1], 0.0], dtype=np.float64)
        n = float(np.linalg.norm(planar))
        if n > 1e-9:
            cos_a = float(np.clip(np.dot(o.forward, planar / n), -1.0, 1.0))
            if math.degrees(math.acos(cos_a)) > view_angle / 2.0:
                return False

        eye = o.pos + _UP * EYE_HEIGHT
        return any(self._ray_clear(eye, t.pos + _UP * h) for h in TARGET_SAMPLE_HEIGHTS)

    def _ray_clear(self, start: np.ndarray, end: np.ndarray) -> bool:
        d = end - start
        dist = float(np.linalg.norm(d))
        if dist <= 1e-9:
            return True
        hit = self.physics.raycast(start, d, dist, self.layers)
        return (not hit.hit) or hit.distance >= dist - OCCLUSION_EPSILON

    def visibility_fraction(
        self, observer: AgentState | None, target: AgentState | None, view_distance: float
    ) -> float:
        """Share of six target sample points with a clear ray from the observer's eye.

        Instrumentation only; ignores the view cone and the cache.
        """
        if not self._valid_pair(observer, target):
            return 0.0
        assert observer is not None and target is not None

        o = self.physics.get_body(observer.handle)
        t = self.physics.get_body(target.handle)
        if float(np.linalg.norm(t.pos - o.pos)) > view_distance:
            return 0.0

        points = [t.pos + _UP * h for h in FRACTION_SAMPLE_HEIGHTS]
        mid = t.pos + _UP * 0.5
        points.append(mid + t.right * FRACTION_LATERAL_OFFSET)
        points.append(mid - t.right * FRACTION_LATERAL_OFFSET)

        eye = o.pos + _UP * EYE_HEIGHT
        visible = sum(1 for p in points if self._ray_clear(eye, p))
        return visible / len(points)

    def visible_targets(
        self,
        observer: AgentState | None,
        targets: Iterable[AgentState],
        view_angle: float,
        view_distance: float,
    ) -> list[AgentState]:
        return [t for t in targets if self.can_see(observer, t, view_angle, view_distance)]
