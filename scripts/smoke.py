# ruff: noqa: E402
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hideseek import ArenaConfig, HideSeekEnv


def run_episode(env: HideSeekEnv, rng: np.random.Generator, seed: int) -> dict:
    _obs, _ = env.reset(seed=seed)

    steps = 0
    events = 0
    while True:
        actions = {aid: rng.uniform(-1.0, 1.0, size=env.action_space.shape).astype(np.float32) for aid in env.agents}
        _obs, _rewards, terminations, truncations, infos = env.step(actions)
        steps += 1
        events += len(infos["events"])

        if any(terminations.values()) or any(truncations.values()):
            break

    outcome = env.last_outcome or {"winner": "none", "reason": "none"}
    return {
        "seed": seed,
        "steps": steps,
        "winner": outcome["winner"],
        "reason": outcome["reason"],
        "captures": outcome.get("captures", 0),
        "events": events,
    }


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--episodes", type=int, default=3)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--hiders", type=int, default=2)
    parser.add_argument("--seekers", type=int, default=2)
    parser.add_argument("--max-steps", type=int, default=500)
    parser.add_argument("--capture", action="store_true", help="Enable the capture rule")
    parser.add_argument("--no-cache", action="store_true", help="Disable the visibility cache")
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = ArenaConfig(
        num_hiders=args.hiders,
        num_seekers=args.seekers,
        max_episode_steps=args.max_steps,
        allow_capture=args.capture,
        vision_cache=not args.no_cache,
        seed=args.seed,
    )
    env = HideSeekEnv(cfg)
    rng = np.random.default_rng(args.seed)

    results = []
    for ep in range(args.episodes):
        result = run_episode(env, rng, seed=args.seed + ep)
        results.append(result)
        print(f"episode {ep}: {result}")

    # Tiny summary
    wins = {"hiders": 0, "seekers": 0}
    for r in results:
        wins[r["winner"]] = wins.get(r["winner"], 0) + 1
    print(f"summary: {wins}")


if __name__ == "__main__":
    main()
