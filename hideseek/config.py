from __future__ import annotations

from dataclasses import dataclass, field

from .env.rewards import RewardWeights


@dataclass(frozen=True)
class WorldConfig:
    arena_size: float = 25.0
    wall_height: float = 3.0
    wall_thickness: float = 0.5
    # Resolution of the static occluder grid (metres per voxel).
    voxel_size: float = 0.25
    # Free space above the walls kept in the grid so injected occluders can be taller.
    headroom: float = 2.0
    # Playable vertical band; leaving it triggers a respawn.
    min_z: float = -1.0
    max_z: float = 20.0
    gravity: float = 9.81


@dataclass(frozen=True)
class GrabConfig:
    grab_range: float = 2.5
    # cos of the half-angle of the forward cone objects must be in to be grabbed (~70 deg)
    facing_dot: float = 0.3
    hold_distance: float = 1.5
    hold_smoothing: float = 10.0
    throw_force: float = 5.0
    inherit_velocity: bool = True
    lock_requires_grounded: bool = True
    lock_max_speed: float = 0.5
    lock_cooldown_s: float = 0.5


@dataclass(frozen=True)
class ArenaConfig:
    world: WorldConfig = field(default_factory=WorldConfig)
    grab: GrabConfig = field(default_factory=GrabConfig)
    reward_weights: RewardWeights = field(default_factory=RewardWeights)

    # Episode
    max_episode_steps: int = 500
    grace_period_fraction: float = 0.4
    dt: float = 0.02
    auto_reset: bool = True
    seed: int | None = None
    arena_id: int = 0

    # Agents
    num_hiders: int = 2
    num_seekers: int = 2
    move_speed: float = 5.0
    rotate_speed_deg: float = 200.0
    agent_radius: float = 0.5

    # Objects
    num_boxes: int = 5
    num_ramps: int = 2
    object_spacing: float = 3.0

    # Spawning
    spawn_margin: float = 3.0
    object_spawn_attempts: int = 100
    agent_spawn_attempts: int = 50

    # Vision
    view_angle: float = 135.0
    view_distance: float = 20.0
    vision_cache: bool = True
    vision_cache_frames: int = 3
    record_visibility_fraction: bool = False

    # Episode-level rewards (shaping terms live in RewardWeights)
    step_penalty: float = -0.0001
    out_of_bounds_penalty: float = -0.01
    fall_penalty: float = -0.05
    win_reward: float = 1.0

    # Capture rule (optional)
    allow_capture: bool = False
    capture_distance: float = 1.2
    captures_to_win: int = 3

    def __post_init__(self) -> None:
        if self.num_hiders < 0 or self.num_seekers < 0:
            raise ValueError(f"team sizes must be >= 0, got hiders={self.num_hiders} seekers={self.num_seekers}")
        if self.num_boxes < 0 or self.num_ramps < 0:
            raise ValueError(f"object counts must be >= 0, got boxes={self.num_boxes} ramps={self.num_ramps}")
        if self.max_episode_steps < 1:
            raise ValueError(f"max_episode_steps must be >= 1, got {self.max_episode_steps}")
        if not 0.0 <= self.grace_period_fraction <= 1.0:
            raise ValueError(f"grace_period_fraction must be in [0, 1], got {self.grace_period_fraction}")
        if self.dt <= 0.0:
            raise ValueError(f"dt must be > 0, got {self.dt}")

    @property
    def grace_period_steps(self) -> int:
        return int(round(self.max_episode_steps * self.grace_period_fraction))

    @property
    def half_extent(self) -> float:
        """Half the arena size, used to normalize positions."""
        half = self.world.arena_size / 2.0
        if half <= 0.0:
            return 12.5
        return half

    @property
    def max_team_size(self) -> int:
        return max(self.num_hiders, self.num_seekers)
