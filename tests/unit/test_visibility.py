"""Tests for the visibility engine: gates, occlusion sampling and the result cache."""

from __future__ import annotations

import math

import numpy as np
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from hideseek.sim.entities import Team
from hideseek.sim.visibility import VisibilitySystem

VIEW_ANGLE = 135.0
VIEW_DISTANCE = 20.0


def _system(arena, **kwargs) -> VisibilitySystem:
    return VisibilitySystem(arena.physics, [o.body_id for o in arena.objects], **kwargs)


class TestGates:
    def test_clear_line_in_front_is_visible(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is True

    @pytest.mark.parametrize("yaw", [0.0, 0.6435, math.pi / 2, math.pi, -2.0])
    def test_distance_25_never_visible_at_view_distance_20(self, arena, yaw):
        """A 15/20/25 triangle: the hider is exactly 25 away whatever the facing."""
        seeker = arena.add_agent(Team.SEEKER, [-10.0, -7.5, 0.0], yaw=yaw)
        hider = arena.add_agent(Team.HIDER, [10.0, 7.5, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, 360.0, 20.0) is False
        assert vis.visibility_fraction(seeker, hider, 20.0) == 0.0

    def test_behind_observer_not_visible(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [-5.0, 0.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is False

    def test_angle_gate_uses_half_view_angle(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        inside = arena.add_agent(Team.HIDER, [5.0, 5.0, 0.0])  # 45 deg
        outside = arena.add_agent(Team.HIDER, [0.5, 5.0, 0.0])  # ~84 deg
        vis = _system(arena)

        assert vis.can_see(seeker, inside, VIEW_ANGLE, VIEW_DISTANCE) is True
        assert vis.can_see(seeker, outside, VIEW_ANGLE, VIEW_DISTANCE) is False

    def test_angle_ignores_vertical_offset(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [3.0, 0.0, 2.5])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, 30.0, VIEW_DISTANCE) is True


class TestOcclusion:
    def test_tall_occluder_blocks(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [8.0, 0.0, 0.0])
        arena.world.add_occluder(np.array([3.0, -2.0, 0.0]), np.array([4.0, 2.0, 2.5]))
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is False
        assert vis.visibility_fraction(seeker, hider, VIEW_DISTANCE) == 0.0

    def test_box_between_blocks(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [8.0, 0.0, 0.0])
        arena.add_object([2.5, 0.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is False

    def test_peeking_over_low_obstacle(self, arena):
        """Only the top sample clears a half-metre wall: one clear ray is enough."""
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [8.0, 0.0, 0.0])
        arena.add_object([4.0, 0.0, 0.0], half_size=(0.5, 1.0, 0.25))
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is True
        frac = vis.visibility_fraction(seeker, hider, VIEW_DISTANCE)
        assert 0.0 < frac < 1.0

    def test_low_wall_leaves_only_top_sample(self, arena):
        """A wall topping out at 0.75 m hides every fraction sample except the 1.2 m one."""
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [6.0, 0.0, 0.0])
        arena.world.add_occluder(np.array([3.0, -2.0, 0.0]), np.array([3.25, 2.0, 0.6]))
        vis = _system(arena)

        assert vis.visibility_fraction(seeker, hider, VIEW_DISTANCE) == pytest.approx(1.0 / 6.0)
        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is True

    def test_agents_never_occlude(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [8.0, 0.0, 0.0])
        arena.add_agent(Team.HIDER, [4.0, 0.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is True

    def test_clear_view_fraction_is_one(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [6.0, 2.0, 0.0])
        vis = _system(arena)

        assert vis.visibility_fraction(seeker, hider, VIEW_DISTANCE) == 1.0


class TestDegenerateInputs:
    def test_missing_endpoint(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, None, VIEW_ANGLE, VIEW_DISTANCE) is False
        assert vis.can_see(None, seeker, VIEW_ANGLE, VIEW_DISTANCE) is False
        assert vis.visibility_fraction(None, seeker, VIEW_DISTANCE) == 0.0

    def test_inactive_endpoint(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        hider.active = False
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is False

    def test_self_is_not_visible(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, seeker, VIEW_ANGLE, VIEW_DISTANCE) is False

    def test_visible_targets(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        front = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        back = arena.add_agent(Team.HIDER, [-5.0, 0.0, 0.0])
        vis = _system(arena)

        assert vis.visible_targets(seeker, [front, back], VIEW_ANGLE, VIEW_DISTANCE) == [front]


class TestCache:
    def test_repeat_query_hits_cache(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        vis = _system(arena)

        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)
        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)

        assert vis.misses == 1
        assert vis.hits == 1

    def test_pair_key_is_ordered(self, arena):
        a = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        b = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0], yaw=0.0)  # facing away from a
        vis = _system(arena)

        assert vis.can_see(a, b, VIEW_ANGLE, VIEW_DISTANCE) is True
        assert vis.can_see(b, a, VIEW_ANGLE, VIEW_DISTANCE) is False
        assert vis.cache_size == 2

    def test_entry_expires_after_window(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        vis = _system(arena, cache_frames=3)

        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)
        vis.tick(3)
        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)
        assert vis.hits == 1

        vis.tick(7)
        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)
        assert vis.misses == 2

    def test_moved_occluder_invalidates_entry(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [8.0, 0.0, 0.0])
        box = arena.add_object([2.5, 6.0, 0.0])
        vis = _system(arena)

        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is True
        arena.physics.set_pose(box.body_id, np.array([2.5, 0.0, 0.0]))
        assert vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) is False

    def test_purge_drops_old_entries(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        vis = _system(arena, cache_frames=3)

        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)
        vis.tick(30)
        assert vis.cache_size == 1  # age 30 == 10 x window, kept
        vis.tick(60)
        assert vis.cache_size == 0

    def test_clear_empties_cache(self, arena):
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0], yaw=0.0)
        hider = arena.add_agent(Team.HIDER, [5.0, 0.0, 0.0])
        vis = _system(arena)

        vis.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE)
        vis.clear()

        assert vis.cache_size == 0
        assert vis.current_step == 0


coord = st.floats(min_value=-11.0, max_value=11.0, allow_nan=False)
yaw_st = st.floats(min_value=-math.pi, max_value=math.pi, allow_nan=False)


class TestCacheTransparency:
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        moves=st.lists(st.tuples(coord, coord, yaw_st, coord, coord), min_size=1, max_size=6),
        box_x=coord,
        box_y=coord,
    )
    def test_cached_and_uncached_always_agree(self, make_arena, moves, box_x, box_y):
        """Whatever the pose sequence, caching never changes a can_see outcome."""
        arena = make_arena()
        seeker = arena.add_agent(Team.SEEKER, [0.0, 0.0, 0.0])
        hider = arena.add_agent(Team.HIDER, [1.0, 1.0, 0.0])
        arena.add_object([box_x, box_y, 0.0])
        cached = _system(arena, use_cache=True)
        uncached = _system(arena, use_cache=False)

        for step, (sx, sy, syaw, hx, hy) in enumerate(moves):
            arena.physics.set_pose(seeker.handle, np.array([sx, sy, 0.0]), yaw=syaw)
            arena.physics.set_pose(hider.handle, np.array([hx, hy, 0.0]))
            cached.tick(step)
            uncached.tick(step)
            for _ in range(2):
                assert cached.can_see(seeker, hider, VIEW_ANGLE, VIEW_DISTANCE) == uncached.can_see(
                    seeker, hider, VIEW_ANGLE, VIEW_DISTANCE
                )
