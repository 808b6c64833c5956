from .config import ArenaConfig, GrabConfig, WorldConfig
from .env.env import HideSeekEnv
from .env.rewards import RewardWeights

__all__ = ["ArenaConfig", "GrabConfig", "HideSeekEnv", "RewardWeights", "WorldConfig"]
