# neighborhood.py
"""
Velocity update from the three flocking rules.

Three interchangeable strategies compute the same result: a brute-force
scan of every particle, a scattered grid search that reaches neighbors
through the sorted index array, and a coherent grid search that reads
particle data already gathered into cell-sorted order.
"""
import math
import numpy as np
from numba import jit, prange

# --- Data Contracts ---
#
# pack_rules(rule1_distance, rule2_distance, rule3_distance,
#            rule1_scale, rule2_scale, rule3_scale, max_speed) -> np.ndarray:
#   - Outputs: float64 array of length 7 in the order of the RULE_* indices.
#
# update_velocity_brute_force(positions, velocities, out_velocities, rules) -> None
# update_velocity_scattered(positions, velocities, out_velocities,
#                           particle_array_index, cell_start, cell_end,
#                           grid_minimum, inverse_cell_width, side_count,
#                           inclusive_window, rules) -> None
# update_velocity_coherent(sorted_positions, sorted_velocities, out_velocities,
#                          cell_start, cell_end, grid_minimum, inverse_cell_width,
#                          side_count, inclusive_window, rules) -> None
#   - Inputs are read-only; every unit writes only out_velocities[i].
#   - out_velocities[i] = clamp(velocities[i] + cohesion + separation + alignment).
#   - Coherent output slot i belongs to sorted position i.
#   - The self-particle never contributes to its own rules.

RULE1_DISTANCE = 0
RULE2_DISTANCE = 1
RULE3_DISTANCE = 2
RULE1_SCALE = 3
RULE2_SCALE = 4
RULE3_SCALE = 5
MAX_SPEED = 6

# Accumulator layout: cohesion sum (3), cohesion count, separation (3),
# alignment sum (3), alignment count.
_PERCEIVED_CENTER = 0
_COHESION_COUNT = 3
_SEPARATION = 4
_PERCEIVED_VELOCITY = 7
_ALIGNMENT_COUNT = 10
_ACCUMULATOR_SIZE = 11


def pack_rules(rule1_distance, rule2_distance, rule3_distance,
               rule1_scale, rule2_scale, rule3_scale, max_speed):
    rules = np.empty(7, dtype=np.float64)
    rules[RULE1_DISTANCE] = rule1_distance
    rules[RULE2_DISTANCE] = rule2_distance
    rules[RULE3_DISTANCE] = rule3_distance
    rules[RULE1_SCALE] = rule1_scale
    rules[RULE2_SCALE] = rule2_scale
    rules[RULE3_SCALE] = rule3_scale
    rules[MAX_SPEED] = max_speed
    return rules


@jit(nopython=True)
def _accumulate_neighbor(acc, here, there, there_velocity, rules):
    """
    Folds one candidate neighbor into the rule accumulators.
    """
    dx = there[0] - here[0]
    dy = there[1] - here[1]
    dz = there[2] - here[2]
    distance = math.sqrt(dx * dx + dy * dy + dz * dz)

    if distance < rules[RULE1_DISTANCE]:
        acc[_PERCEIVED_CENTER] += there[0]
        acc[_PERCEIVED_CENTER + 1] += there[1]
        acc[_PERCEIVED_CENTER + 2] += there[2]
        acc[_COHESION_COUNT] += 1.0

    if distance < rules[RULE2_DISTANCE]:
        acc[_SEPARATION] -= dx
        acc[_SEPARATION + 1] -= dy
        acc[_SEPARATION + 2] -= dz

    if distance < rules[RULE3_DISTANCE]:
        acc[_PERCEIVED_VELOCITY] += there_velocity[0]
        acc[_PERCEIVED_VELOCITY + 1] += there_velocity[1]
        acc[_PERCEIVED_VELOCITY + 2] += there_velocity[2]
        acc[_ALIGNMENT_COUNT] += 1.0


@jit(nopython=True)
def _write_velocity(acc, here, velocity, out, rules):
    """
    Adds the rule contributions to `velocity`, clamps the speed and stores
    the result in `out`.
    """
    vx = float(velocity[0])
    vy = float(velocity[1])
    vz = float(velocity[2])

    count = acc[_COHESION_COUNT]
    if count > 0.0:
        vx += (acc[_PERCEIVED_CENTER] / count - here[0]) * rules[RULE1_SCALE]
        vy += (acc[_PERCEIVED_CENTER + 1] / count - here[1]) * rules[RULE1_SCALE]
        vz += (acc[_PERCEIVED_CENTER + 2] / count - here[2]) * rules[RULE1_SCALE]

    vx += acc[_SEPARATION] * rules[RULE2_SCALE]
    vy += acc[_SEPARATION + 1] * rules[RULE2_SCALE]
    vz += acc[_SEPARATION + 2] * rules[RULE2_SCALE]

    count = acc[_ALIGNMENT_COUNT]
    if count > 0.0:
        vx += acc[_PERCEIVED_VELOCITY] / count * rules[RULE3_SCALE]
        vy += acc[_PERCEIVED_VELOCITY + 1] / count * rules[RULE3_SCALE]
        vz += acc[_PERCEIVED_VELOCITY + 2] / count * rules[RULE3_SCALE]

    speed = math.sqrt(vx * vx + vy * vy + vz * vz)
    max_speed = rules[MAX_SPEED]
    if speed > max_speed:
        vx = vx / speed * max_speed
        vy = vy / speed * max_speed
        vz = vz / speed * max_speed

    out[0] = vx
    out[1] = vy
    out[2] = vz


@jit(nopython=True)
def _cell_window(here, grid_minimum, inverse_cell_width, side_count, inclusive_window):
    """
    Per-axis [low, high) loop bounds of the candidate cell window.

    The +/-1 window around the particle's cell is clamped to the grid. The
    half-open variant drops the upper cell on each axis.
    """
    extra = 1 if inclusive_window else 0
    lows = np.empty(3, dtype=np.int64)
    highs = np.empty(3, dtype=np.int64)
    for axis in range(3):
        cell = int(math.floor((here[axis] - grid_minimum[axis]) * inverse_cell_width))
        lows[axis] = max(cell - 1, 0)
        highs[axis] = min(cell + 1, side_count - 1) + extra
    return lows, highs


@jit(nopython=True, parallel=True)
def update_velocity_brute_force(positions, velocities, out_velocities, rules):
    """
    Numba-jitted O(N^2) update, used as the correctness baseline.
    """
    n = positions.shape[0]
    for i in prange(n):
        acc = np.zeros(_ACCUMULATOR_SIZE)
        here = positions[i]
        for j in range(n):
            if j == i:
                continue
            _accumulate_neighbor(acc, here, positions[j], velocities[j], rules)
        _write_velocity(acc, here, velocities[i], out_velocities[i], rules)


@jit(nopython=True, parallel=True)
def update_velocity_scattered(positions, velocities, out_velocities,
                              particle_array_index, cell_start, cell_end,
                              grid_minimum, inverse_cell_width, side_count,
                              inclusive_window, rules):
    """
    Numba-jitted grid update reading the original, unsorted buffers.

    Every candidate is reached through particle_array_index. Cells are
    visited z, y, x with x innermost, matching the cell id layout.
    """
    side_area = side_count * side_count
    for i in prange(positions.shape[0]):
        acc = np.zeros(_ACCUMULATOR_SIZE)
        here = positions[i]
        lows, highs = _cell_window(here, grid_minimum, inverse_cell_width,
                                   side_count, inclusive_window)
        for z in range(lows[2], highs[2]):
            for y in range(lows[1], highs[1]):
                for x in range(lows[0], highs[0]):
                    cell = x + y * side_count + z * side_area
                    start = cell_start[cell]
                    if start < 0:
                        continue
                    for p in range(start, cell_end[cell] + 1):
                        j = particle_array_index[p]
                        if j == i:
                            continue
                        _accumulate_neighbor(acc, here, positions[j], velocities[j], rules)
        _write_velocity(acc, here, velocities[i], out_velocities[i], rules)


@jit(nopython=True, parallel=True)
def update_velocity_coherent(sorted_positions, sorted_velocities, out_velocities,
                             cell_start, cell_end, grid_minimum, inverse_cell_width,
                             side_count, inclusive_window, rules):
    """
    Numba-jitted grid update over reshuffled buffers.

    Cell ranges index the sorted buffers directly, so each cell is one
    contiguous run of memory.
    """
    side_area = side_count * side_count
    for i in prange(sorted_positions.shape[0]):
        acc = np.zeros(_ACCUMULATOR_SIZE)
        here = sorted_positions[i]
        lows, highs = _cell_window(here, grid_minimum, inverse_cell_width,
                                   side_count, inclusive_window)
        for z in range(lows[2], highs[2]):
            for y in range(lows[1], highs[1]):
                for x in range(lows[0], highs[0]):
                    cell = x + y * side_count + z * side_area
                    start = cell_start[cell]
                    if start < 0:
                        continue
                    for p in range(start, cell_end[cell] + 1):
                        if p == i:
                            continue
                        _accumulate_neighbor(acc, here, sorted_positions[p],
                                             sorted_velocities[p], rules)
        _write_velocity(acc, here, sorted_velocities[i], out_velocities[i], rules)
