from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import Any

import numpy as np
from gymnasium import spaces as gym_spaces

from ..actions import ACTION_DIM, AgentCommand, decode_action
from ..config import ArenaConfig
from ..constants import (
    AGENT_HALF_SIZE,
    AGENT_LINEAR_DAMPING,
    AGENT_SPAWN_HEIGHT,
    BOX_HALF_SIZE,
    CAPTURE_REWARD_FRACTION,
    OBJECT_EXTRA_SPACING,
    OBJECT_LINEAR_DAMPING,
    OBJECT_SPAWN_HEIGHT,
    RAMP_HALF_SIZE,
)
from ..sim.entities import AgentState, GrabbableObject, ObjectKind, Team
from ..sim.grab import GrabSystem
from ..sim.physics import KinematicPhysics, Layer
from ..sim.visibility import VisibilitySystem
from ..sim.world import OccluderWorld
from .episode import EpisodePhase, EpisodeState, footprint_radius, sample_spawn, team_spawn_ranges
from .observations import ObservationBuilder, ObservationContext
from .rewards import RewardComponents, RewardComputer, RewardContext

logger = logging.getLogger(__name__)

EventListener = Callable[[dict[str, Any]], None]
LayoutFn = Callable[[OccluderWorld, np.random.Generator], None]

# Event types counted into the episode statistics.
_COUNTED_EVENTS = ("grab", "release", "lock", "unlock", "out_of_bounds", "respawn", "capture")


class HideSeekEnv:
    """One hide-and-seek arena: a fixed-step, multi-agent episode loop.

    Parallel-dict API::

        obs, infos = env.reset(seed)
        obs, rewards, terminations, truncations, infos = env.step(actions)

    Agents are ``hider_<i>`` and ``seeker_<i>``. Every instance owns its own
    world, physics, caches and trackers, so separate instances share nothing.
    """

    def __init__(self, config: ArenaConfig | None = None, *, layout_fn: LayoutFn | None = None):
        self.config = config or ArenaConfig()
        self.layout_fn = layout_fn
        self.rng = np.random.default_rng(self.config.seed)

        cfg = self.config
        self.world = OccluderWorld.build(cfg.world)
        self.physics = KinematicPhysics(self.world, gravity=cfg.world.gravity)

        # Roster: hiders then seekers; handle == physics body id.
        self.agent_states: list[AgentState] = []
        for team, count in ((Team.HIDER, cfg.num_hiders), (Team.SEEKER, cfg.num_seekers)):
            for i in range(count):
                a = AgentState(handle=len(self.agent_states), arena_id=cfg.arena_id, team=team, index=i)
                self.agent_states.append(a)
                self.physics.add_body(a.handle, AGENT_HALF_SIZE, Layer.AGENTS, damping=AGENT_LINEAR_DAMPING)

        n_agents = len(self.agent_states)
        self.objects: list[GrabbableObject] = []
        for kind, count in ((ObjectKind.BOX, cfg.num_boxes), (ObjectKind.RAMP, cfg.num_ramps)):
            for _ in range(count):
                h = len(self.objects)
                obj = GrabbableObject(handle=h, arena_id=cfg.arena_id, kind=kind, body_id=n_agents + h)
                self.objects.append(obj)
                half = RAMP_HALF_SIZE if kind is ObjectKind.RAMP else BOX_HALF_SIZE
                self.physics.add_body(obj.body_id, half, Layer.OBJECTS, damping=OBJECT_LINEAR_DAMPING)

        self.possible_agents = [a.agent_id for a in self.agent_states]
        self.agents = list(self.possible_agents)
        self._by_id = {a.agent_id: a for a in self.agent_states}

        self.episode = EpisodeState(grace_period_steps=cfg.grace_period_steps)
        self.visibility = VisibilitySystem(
            self.physics,
            [o.body_id for o in self.objects],
            cache_frames=cfg.vision_cache_frames,
            use_cache=cfg.vision_cache,
        )
        self.grab = GrabSystem(self.physics, self.agent_states, self.objects, cfg.grab, emit=self._emit)
        self._reward_computer = RewardComputer(cfg.reward_weights, arena_size=2.0 * cfg.half_extent)
        self._obs_builder = ObservationBuilder(cfg)

        self.observation_space = gym_spaces.Box(
            low=-np.inf, high=np.inf, shape=(self._obs_builder.obs_dim(),), dtype=np.float32
        )
        self.action_space = gym_spaces.Box(low=-1.0, high=1.0, shape=(ACTION_DIM,), dtype=np.float32)

        self._events: list[dict[str, Any]] = []
        self._listeners: list[EventListener] = []
        self.last_outcome: dict | None = None
        self._episode_stats: dict[str, float] = {}
        self.episode_count = 0
        self._needs_reset = True

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def step_count(self) -> int:
        return self.episode.current_step

    @property
    def is_grace_period(self) -> bool:
        return self.episode.is_grace_period

    @property
    def capture_count(self) -> int:
        return self.episode.capture_count

    @property
    def reward_computer(self) -> RewardComputer:
        return self._reward_computer

    def get_agent(self, agent_id: str) -> AgentState | None:
        return self._by_id.get(agent_id)

    def team(self, team: Team, *, active_only: bool = False) -> list[AgentState]:
        return [a for a in self.agent_states if a.team is team and (a.active or not active_only)]

    def obs_dim(self) -> int:
        return self._obs_builder.obs_dim()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, callback: EventListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: EventListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: dict[str, Any]) -> None:
        event = {**event, "step": self.episode.current_step, "arena_id": self.config.arena_id}
        kind = event["type"]
        if kind in _COUNTED_EVENTS:
            self._episode_stats[kind] = float(self._episode_stats.get(kind, 0.0) + 1.0)
        self._events.append(event)
        for cb in list(self._listeners):
            cb(event)

    def _drain_events(self) -> list[dict[str, Any]]:
        events, self._events = self._events, []
        return events

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset(self, seed: int | None = None) -> tuple[dict[str, np.ndarray], dict]:
        if seed is not None:
            self.rng = np.random.default_rng(seed)
        self._reset_arena()
        infos: dict = {aid: {} for aid in self.possible_agents}
        infos["events"] = self._drain_events()
        return self._obs(), infos

    def _reset_arena(self) -> None:
        cfg = self.config
        self.grab.release_all()
        self.visibility.clear()
        self._reward_computer.reset_tracking()
        self.episode.reset()
        self.last_outcome = None
        self._episode_stats = {k: 0.0 for k in (*_COUNTED_EVENTS, "hider_seen_ticks", "bad_actions")}

        self.world.clear_occluders()
        if self.layout_fn is not None:
            self.layout_fn(self.world, self.rng)

        inner = max(0.0, cfg.half_extent - cfg.spawn_margin)
        placed: list[np.ndarray] = []
        zero = np.zeros(3, dtype=np.float64)
        for obj in self.objects:
            obj.reset()
            self.physics.set_enabled(obj.body_id, True)
            self.physics.set_kinematic(obj.body_id, False)
            self.physics.set_gravity(obj.body_id, True, damping=OBJECT_LINEAR_DAMPING)
            pos, _ = sample_spawn(
                self.rng,
                (-inner, inner),
                (-inner, inner),
                OBJECT_SPAWN_HEIGHT,
                placed,
                cfg.object_spacing + OBJECT_EXTRA_SPACING,
                cfg.object_spawn_attempts,
            )
            placed.append(pos)
            yaw = float(self.rng.uniform(0.0, 2.0 * math.pi)) if obj.is_ramp else 0.0
            self.physics.set_pose(obj.body_id, pos, yaw=yaw)
            self.physics.set_velocity(obj.body_id, zero)

        obstacles = self._object_obstacles()
        placed = []
        seekers_frozen = self.episode.grace_period_steps > 0
        for agent in self.agent_states:
            agent.reset()
            self.physics.set_enabled(agent.handle, True)
            self.physics.set_frozen(agent.handle, False)
            pos, _ = self._sample_agent_spawn(agent, placed, obstacles)
            placed.append(pos)
            self.physics.set_pose(agent.handle, pos, yaw=float(self.rng.uniform(0.0, 2.0 * math.pi)))
            self.physics.set_velocity(agent.handle, zero)
            if agent.is_seeker and seekers_frozen:
                agent.frozen = True
                self.physics.set_frozen(agent.handle, True)

        self.episode_count += 1
        self._needs_reset = False
        logger.debug(
            f"arena {cfg.arena_id} reset: episode={self.episode_count} "
            f"grace_steps={self.episode.grace_period_steps} agents={len(self.agent_states)} "
            f"objects={len(self.objects)}"
        )
        self._emit({"type": "episode_start", "episode": self.episode_count})

    def _object_obstacles(self) -> list[tuple[np.ndarray, float]]:
        """(position, clearance) for every enabled object, sized so an agent footprint cannot overlap it."""
        agent_r = footprint_radius(AGENT_HALF_SIZE)
        obstacles = []
        for obj in self.objects:
            body = self.physics.get_body(obj.body_id)
            if body.enabled:
                obstacles.append((body.pos.copy(), footprint_radius(body.half_size) + agent_r))
        return obstacles

    def _sample_agent_spawn(
        self,
        agent: AgentState,
        placed: list[np.ndarray],
        obstacles: list[tuple[np.ndarray, float]],
    ) -> tuple[np.ndarray, bool]:
        cfg = self.config
        x_range, y_range = team_spawn_ranges(cfg.half_extent, cfg.spawn_margin, hider=agent.is_hider)
        return sample_spawn(
            self.rng,
            x_range,
            y_range,
            AGENT_SPAWN_HEIGHT,
            placed,
            cfg.agent_radius * 3.0,
            cfg.agent_spawn_attempts,
            obstacles,
        )

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def step(
        self, actions: dict[str, np.ndarray] | None = None
    ) -> tuple[
        dict[str, np.ndarray],
        dict[str, float],
        dict[str, bool],
        dict[str, bool],
        dict,  # infos: per-agent dicts + global "events" list
    ]:
        if self._needs_reset:
            self._reset_arena()
        cfg = self.config
        actions = actions or {}

        for agent in self.agent_states:
            agent.reward = 0.0
        infos: dict = {aid: {} for aid in self.possible_agents}

        if self.episode.advance():
            for s in self.team(Team.SEEKER):
                s.frozen = False
                self.physics.set_frozen(s.handle, False)
            self._emit({"type": "grace_period_end"})

        self._apply_actions(actions)

        self.grab.update_held(cfg.dt)
        self.grab.tick_cooldowns(cfg.dt)
        self.physics.step(cfg.dt)

        for agent in self.agent_states:
            if not agent.active:
                continue
            agent.add_reward(cfg.step_penalty)
            self._check_bounds(agent)

        capture_quota = False
        if cfg.allow_capture and not self.episode.is_grace_period:
            capture_quota = self._apply_captures()

        if not self.episode.is_grace_period and not capture_quota:
            components = self._reward_computer.compute(
                RewardContext(
                    agents=self.agent_states,
                    positions={a.handle: self.physics.get_body(a.handle).pos.copy() for a in self.agent_states},
                    visibility=self.visibility,
                    view_angle=cfg.view_angle,
                    view_distance=cfg.view_distance,
                )
            )
            for agent in self.agent_states:
                comp = components.get(agent.handle, RewardComponents())
                agent.add_reward(comp.total())
                infos[agent.agent_id]["reward_components"] = comp.to_dict()
            self._episode_stats["hider_seen_ticks"] += float(sum(self._reward_computer.last_seen.values()))

        if cfg.record_visibility_fraction:
            self._record_visibility_fraction(infos)

        self.visibility.tick(self.episode.current_step)

        winner: str | None = None
        reason: str | None = None
        if capture_quota:
            winner, reason = "seekers", "capture_quota"
        elif self.episode.current_step >= cfg.max_episode_steps:
            winner, reason = "hiders", "timeout"

        if reason is not None:
            self.episode.phase = EpisodePhase.TERMINATING
            self._apply_terminal_rewards(winner)
            self.last_outcome = {
                "reason": reason,
                "winner": winner,
                "steps": self.episode.current_step,
                "captures": self.episode.capture_count,
                "returns": {a.agent_id: a.episode_return for a in self.agent_states},
                "stats": dict(self._episode_stats),
            }
            self._emit({"type": "episode_end", "reason": reason, "winner": winner})
            logger.info(
                f"arena {cfg.arena_id} episode {self.episode_count} ended: {reason} "
                f"winner={winner} steps={self.episode.current_step} captures={self.episode.capture_count}"
            )

        rewards = {a.agent_id: float(a.reward) for a in self.agent_states}
        terminations = {aid: reason == "capture_quota" for aid in self.possible_agents}
        truncations = {aid: reason == "timeout" for aid in self.possible_agents}
        for agent in self.agent_states:
            infos[agent.agent_id]["active"] = agent.active
            infos[agent.agent_id]["episode_return"] = agent.episode_return

        events = self._drain_events()
        obs = self._obs()

        if reason is not None:
            for aid in self.possible_agents:
                infos[aid]["outcome"] = self.last_outcome
            if cfg.auto_reset:
                for aid in self.possible_agents:
                    infos[aid]["final_observation"] = obs[aid]
                outcome = self.last_outcome
                self._reset_arena()
                self.last_outcome = outcome
                events.extend(self._drain_events())
                obs = self._obs()
            else:
                self._needs_reset = True

        infos["events"] = events
        return obs, rewards, terminations, truncations, infos

    def _apply_actions(self, actions: dict[str, np.ndarray]) -> None:
        cfg = self.config
        yaw_step = math.radians(cfg.rotate_speed_deg) * cfg.dt
        for agent in self.agent_states:
            raw = actions.get(agent.agent_id)
            if raw is None:
                cmd, ok = AgentCommand(), True
            else:
                cmd, ok = decode_action(raw)
            if not ok:
                self._episode_stats["bad_actions"] += 1.0
                logger.warning(f"malformed action for {agent.agent_id}; padded/truncated to {ACTION_DIM}")

            if not agent.active or agent.frozen:
                continue

            body = self.physics.get_body(agent.handle)
            self.physics.set_pose(agent.handle, body.pos, yaw=body.yaw + cmd.rotate * yaw_step)
            vel = cmd.planar_velocity(body.forward, body.right, cfg.move_speed)
            vel[2] = body.vel[2]
            self.physics.set_velocity(agent.handle, vel)

            if cmd.grab:
                self.grab.try_grab_or_release(agent)
            if cmd.lock:
                self.grab.try_lock_or_unlock(agent)

    def _check_bounds(self, agent: AgentState) -> None:
        cfg = self.config
        body = self.physics.get_body(agent.handle)
        z = float(body.pos[2])

        if z < cfg.world.min_z or z > cfg.world.max_z:
            agent.add_reward(cfg.fall_penalty)
            self.grab.release(agent)
            others = [self.physics.get_body(a.handle).pos for a in self.agent_states if a.active and a is not agent]
            pos, _ = self._sample_agent_spawn(agent, others, self._object_obstacles())
            self.physics.set_pose(agent.handle, pos)
            self.physics.set_velocity(agent.handle, np.zeros(3, dtype=np.float64))
            self._emit({"type": "respawn", "agent": agent.agent_id, "z": z})
            return

        half = cfg.half_extent
        x, y = float(body.pos[0]), float(body.pos[1])
        if abs(x) > half or abs(y) > half:
            clamped = body.pos.copy()
            clamped[0] = float(np.clip(x, -half, half))
            clamped[1] = float(np.clip(y, -half, half))
            self.physics.set_pose(agent.handle, clamped)
            agent.add_reward(cfg.out_of_bounds_penalty)
            self._emit({"type": "out_of_bounds", "agent": agent.agent_id})

    def _apply_captures(self) -> bool:
        """Deactivate hiders within capture distance; True once the capture quota is reached."""
        cfg = self.config
        partial = cfg.win_reward * CAPTURE_REWARD_FRACTION
        for seeker in self.team(Team.SEEKER, active_only=True):
            s_pos = self.physics.get_body(seeker.handle).pos
            for hider in self.team(Team.HIDER, active_only=True):
                h_pos = self.physics.get_body(hider.handle).pos
                if float(np.linalg.norm(h_pos - s_pos)) > cfg.capture_distance:
                    continue
                hider.active = False
                self.grab.release(hider)
                self.physics.set_frozen(hider.handle, True)
                self.physics.set_enabled(hider.handle, False)
                seeker.add_reward(partial)
                hider.add_reward(-partial)
                self.episode.capture_count += 1
                self._emit({"type": "capture", "seeker": seeker.agent_id, "hider": hider.agent_id})
                if self.episode.capture_count >= cfg.captures_to_win:
                    return True
        return False

    def _apply_terminal_rewards(self, winner: str | None) -> None:
        win = self.config.win_reward
        if winner == "seekers":
            for a in self.agent_states:
                a.add_reward(win if a.is_seeker else -win)
        elif winner == "hiders":
            for a in self.agent_states:
                if a.is_seeker:
                    a.add_reward(-win)
                elif a.active:
                    a.add_reward(win)

    def _record_visibility_fraction(self, infos: dict) -> None:
        seekers = self.team(Team.SEEKER, active_only=True)
        for hider in self.team(Team.HIDER, active_only=True):
            frac = max(
                (self.visibility.visibility_fraction(s, hider, self.config.view_distance) for s in seekers),
                default=0.0,
            )
            infos[hider.agent_id]["visibility_fraction"] = float(frac)

    def _obs(self) -> dict[str, np.ndarray]:
        ctx = ObservationContext(
            agents=self.agent_states,
            objects=self.objects,
            physics=self.physics,
            current_step=self.episode.current_step,
            is_grace_period=self.episode.is_grace_period,
        )
        return self._obs_builder.build(ctx)
