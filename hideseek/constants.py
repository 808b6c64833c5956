from __future__ import annotations

# ==============================================================================
# Body Geometry
# ==============================================================================

# Agent body half extents (x, y, z). Bodies are anchored at their base
# (ground contact point), so an agent spans z in [base, base + 2 * hz].
AGENT_HALF_SIZE = (0.5, 0.5, 0.65)

# Box: 2 x 2 footprint, 1 tall.
BOX_HALF_SIZE = (1.0, 1.0, 0.5)

# Ramp: 2 wide, 3 long, 1 tall (treated as its bounding box).
RAMP_HALF_SIZE = (1.0, 1.5, 0.5)

# Spawn heights above the floor for objects and agents.
OBJECT_SPAWN_HEIGHT = 1.5
AGENT_SPAWN_HEIGHT = 1.0

# Extra separation added to object_spacing when placing objects.
OBJECT_EXTRA_SPACING = 2.0

# ==============================================================================
# Vision
# ==============================================================================

# Eye point above the observer's base position.
EYE_HEIGHT = 0.5

# Target sample heights for can_see: center, near-top, near-bottom.
TARGET_SAMPLE_HEIGHTS = (0.5, 1.2, 0.2)

# Sample heights for visibility_fraction, plus the lateral offset used for the
# left/right samples taken at center height.
FRACTION_SAMPLE_HEIGHTS = (0.2, 0.5, 0.8, 1.2)
FRACTION_LATERAL_OFFSET = 0.3

# A ray counts as reaching its endpoint if the first hit is within this distance of it.
OCCLUSION_EPSILON = 0.1

# Cache entries older than this many windows are dropped on purge.
CACHE_PURGE_FACTOR = 10

# Purge cadence in steps.
CACHE_PURGE_INTERVAL = 30

# ==============================================================================
# Physics
# ==============================================================================

# Unity-style linear damping: v *= 1 / (1 + damping * dt)
OBJECT_LINEAR_DAMPING = 2.0
HELD_OBJECT_LINEAR_DAMPING = 10.0
AGENT_LINEAR_DAMPING = 0.0

# ==============================================================================
# Capture
# ==============================================================================

# Fraction of win_reward granted to the seeker / taken from the hider on capture.
CAPTURE_REWARD_FRACTION = 0.5
