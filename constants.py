# constants.py
"""
Application-level constants.

These values are the default flocking parameters used whenever the
configuration file does not override them. They mirror the fixed
interaction radii and rule weights the simulation was tuned with.
"""

# --- Flocking rules ---
# Cohesion: steer toward the centroid of neighbors within this distance.
RULE1_DISTANCE = 5.0
RULE1_SCALE = 0.01
# Separation: steer away from neighbors closer than this distance.
RULE2_DISTANCE = 3.0
RULE2_SCALE = 0.1
# Alignment: match the average velocity of neighbors within this distance.
RULE3_DISTANCE = 5.0
RULE3_SCALE = 0.1

MAX_SPEED = 1.0

# Half-extent of the simulated cube: particles live in [-SCENE_SCALE, SCENE_SCALE]^3.
SCENE_SCALE = 100.0

DELTA_TIME = 0.2

# Chunk size handed to the parallel scheduler for every prange stage.
WORK_UNIT_BATCH_SIZE = 128

# Sentinel stored in the cell range table for cells holding no particles.
EMPTY_CELL = -1

# --- Step strategies ---
STRATEGY_BRUTE_FORCE = "brute_force"
STRATEGY_SCATTERED = "scattered"
STRATEGY_COHERENT = "coherent"
STRATEGIES = (STRATEGY_BRUTE_FORCE, STRATEGY_SCATTERED, STRATEGY_COHERENT)

# --- Neighbor cell window ---
# "inclusive" visits every cell in [c-1, c+1] on each axis (up to 27 cells).
# "half_open" visits [c-1, c+1) and so skips the next-higher cell on each axis.
WINDOW_INCLUSIVE = "inclusive"
WINDOW_HALF_OPEN = "half_open"
NEIGHBOR_WINDOWS = (WINDOW_INCLUSIVE, WINDOW_HALF_OPEN)
