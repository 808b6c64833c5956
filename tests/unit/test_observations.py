"""Tests for observation encoding."""

from __future__ import annotations

import numpy as np
import pytest

from hideseek.config import ArenaConfig, WorldConfig
from hideseek.env.observations import AGENT_BLOCK_DIM, EPISODE_DIM, OBJECT_BLOCK_DIM, SELF_DIM, ObservationBuilder


class TestObservationLayout:
    def test_default_dim(self):
        builder = ObservationBuilder(ArenaConfig())

        # 2v2: 1 teammate slot + 2 opponent slots, 7 objects
        assert builder.obs_dim() == 13 + 7 * 3 + 7 * 7

    def test_env_vectors_match_space(self, make_env):
        env = make_env()
        obs, _ = env.reset(seed=1)

        assert set(obs) == set(env.possible_agents)
        for vec in obs.values():
            assert vec.shape == env.observation_space.shape
            assert vec.dtype == np.float32
            assert np.all(np.isfinite(vec))

    def test_uneven_teams_are_padded(self, make_env):
        env = make_env(num_hiders=1, num_seekers=3, num_boxes=1, num_ramps=0)
        obs, _ = env.reset(seed=0)

        # max team 3: 2 teammate slots + 3 opponent slots
        assert env.obs_dim() == SELF_DIM + EPISODE_DIM + 5 * AGENT_BLOCK_DIM + OBJECT_BLOCK_DIM
        hider_obs = obs["hider_0"]
        mates = hider_obs[SELF_DIM + EPISODE_DIM : SELF_DIM + EPISODE_DIM + 2 * AGENT_BLOCK_DIM]
        np.testing.assert_array_equal(mates, np.zeros_like(mates))

        seeker_obs = obs["seeker_0"]
        start = SELF_DIM + EPISODE_DIM
        assert seeker_obs[start + 6] == 1.0  # seeker_1 active
        assert seeker_obs[start + AGENT_BLOCK_DIM + 6] == 1.0  # seeker_2 active

    def test_episode_block(self, make_env):
        env = make_env()
        obs, _ = env.reset(seed=0)

        h = obs["hider_0"]
        s = obs["seeker_0"]
        assert h[SELF_DIM] == 1.0  # grace period
        assert h[SELF_DIM + 1] == 0.0  # elapsed fraction
        assert h[SELF_DIM + 2] == 1.0
        assert s[SELF_DIM + 2] == 0.0

    def test_self_position_normalized(self, make_env, place):
        env = make_env(num_boxes=0, num_ramps=0)
        place(env, "hider_0", [6.25, -3.125, 0.0], yaw=0.0)

        vec = env._obs()["hider_0"]

        np.testing.assert_allclose(vec[0:3], [0.5, -0.25, 0.0], atol=1e-6)
        np.testing.assert_allclose(vec[3:6], [1.0, 0.0, 0.0], atol=1e-6)

    def test_object_flags(self, make_env, place):
        env = make_env(num_boxes=1, num_ramps=1)
        place(env, "hider_0", [0.0, 0.0, 0.0], yaw=0.0)
        env.physics.set_pose(env.objects[0].body_id, np.array([2.0, 0.0, 0.0]))
        env.physics.get_body(env.objects[0].body_id).vel[:] = 0.0
        env.physics.set_pose(env.objects[1].body_id, np.array([-8.0, 8.0, 0.0]))
        hider = env.get_agent("hider_0")
        assert env.grab.try_lock_or_unlock(hider) is True

        base = env.obs_dim() - 2 * OBJECT_BLOCK_DIM
        h = env._obs()["hider_0"]
        s = env._obs()["seeker_0"]

        assert h[base + 3] == 0.0  # grabbed
        assert h[base + 4] == 1.0  # locked
        assert h[base + 5] == 1.0  # locked by my team
        assert s[base + 5] == 0.0
        assert h[base + OBJECT_BLOCK_DIM + 6] == 1.0  # second object is a ramp

    def test_zero_arena_size_falls_back(self):
        cfg = ArenaConfig(world=WorldConfig(arena_size=0.0))

        assert cfg.half_extent == pytest.approx(12.5)
        assert ObservationBuilder(cfg).half_extent == pytest.approx(12.5)
