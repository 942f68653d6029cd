# grid.py
"""
Uniform grid maintenance for the neighbor search.

This module labels every particle with the id of the cell it occupies,
sorts the (cell id, particle index) pairs by cell, derives the
[start, end] run of sorted positions for every cell, and gathers
particle data into cell-sorted order for the coherent strategy.
"""
import logging
import math
import numpy as np
from typing import Tuple
from numba import jit, prange
from constants import EMPTY_CELL

# --- Data Contracts ---
#
# class UniformGrid:
#   - __init__(self, max_interaction_radius: float, scene_scale: float):
#     - Invariants: cell_width == 2 * max_interaction_radius, so any
#       neighbor within the largest radius lies in an adjacent cell.
#       The grid covers [minimum, minimum + side_count * cell_width)^3,
#       which strictly contains [-scene_scale, scene_scale]^3.
#
# label_cells(positions, grid, particle_grid_index, particle_array_index) -> None:
#   - Preconditions: every position lies inside the grid volume. Nothing
#     is clamped; an outside particle gets an out-of-range id.
#   - Side Effects: particle_grid_index[i] = cell id of particle i,
#     particle_array_index[i] = i.
#
# sort_by_cell(particle_grid_index, particle_array_index) -> None:
#   - Side Effects: both arrays reordered identically, keys non-decreasing.
#   - Invariants: NOT stable. Ties within a cell come out in any order.
#
# reset_cell_ranges(cell_start, cell_end) / locate_cell_boundaries(...):
#   - Side Effects: for every populated cell c, cell_start[c] and
#     cell_end[c] are the first and last sorted positions with key c
#     (both inclusive). Empty cells hold EMPTY_CELL in both arrays.
#
# reshuffle(particle_array_index, positions, velocities, out_positions, out_velocities):
#   - Side Effects: out[i] = source[particle_array_index[i]]. Sources untouched.


class UniformGrid:
    """
    Cubic cells of equal width covering the whole scene.
    """
    def __init__(self, max_interaction_radius: float, scene_scale: float):
        self.cell_width = np.float32(2.0 * max_interaction_radius)
        self.inverse_cell_width = np.float32(1.0 / self.cell_width)

        half_side_count = int(scene_scale / self.cell_width) + 1
        self.side_count = 2 * half_side_count
        self.cell_count = self.side_count ** 3

        half_grid_width = self.cell_width * half_side_count
        self.minimum = np.full(3, -half_grid_width, dtype=np.float32)

        logging.info(
            f"Uniform grid: {self.side_count}^3 = {self.cell_count} cells, "
            f"cell width {self.cell_width:.2f}, origin {self.minimum[0]:.2f}."
        )

    def cell_coordinates(self, point) -> Tuple[int, int, int]:
        """Integer (x, y, z) coordinates of the cell containing `point`."""
        scaled = (np.asarray(point, dtype=np.float32) - self.minimum) * self.inverse_cell_width
        x, y, z = np.floor(scaled).astype(np.int64)
        return int(x), int(y), int(z)

    def encode(self, x: int, y: int, z: int) -> int:
        return x + y * self.side_count + z * self.side_count * self.side_count

    def cell_id(self, point) -> int:
        return self.encode(*self.cell_coordinates(point))


@jit(nopython=True, parallel=True)
def _label_cells_numba(positions, grid_minimum, inverse_cell_width, side_count,
                       particle_grid_index, particle_array_index):
    """
    Numba-jitted labeling pass, one unit per particle.
    """
    for i in prange(positions.shape[0]):
        x = int(math.floor((positions[i, 0] - grid_minimum[0]) * inverse_cell_width))
        y = int(math.floor((positions[i, 1] - grid_minimum[1]) * inverse_cell_width))
        z = int(math.floor((positions[i, 2] - grid_minimum[2]) * inverse_cell_width))
        particle_grid_index[i] = x + y * side_count + z * side_count * side_count
        particle_array_index[i] = i


def label_cells(positions: np.ndarray, grid: UniformGrid,
                particle_grid_index: np.ndarray, particle_array_index: np.ndarray) -> None:
    _label_cells_numba(
        positions, grid.minimum, grid.inverse_cell_width, grid.side_count,
        particle_grid_index, particle_array_index
    )


def sort_by_cell(particle_grid_index: np.ndarray, particle_array_index: np.ndarray) -> None:
    """
    Sorts the key/value pair arrays in place by key.

    The sort is not stable: particles sharing a cell come out in any order.
    """
    order = np.argsort(particle_grid_index, kind='quicksort')
    particle_grid_index[:] = particle_grid_index[order]
    particle_array_index[:] = particle_array_index[order]


@jit(nopython=True, parallel=True)
def reset_cell_ranges(cell_start, cell_end):
    """
    Marks every cell empty before the boundaries are located again.

    A cell populated in the previous step may be empty in this one, so the
    table is always cleared in full.
    """
    for c in prange(cell_start.shape[0]):
        cell_start[c] = EMPTY_CELL
        cell_end[c] = EMPTY_CELL


@jit(nopython=True, parallel=True)
def locate_cell_boundaries(particle_grid_index, cell_start, cell_end):
    """
    Numba-jitted boundary pass over the sorted keys.

    Each unit reads only its own key and its predecessor's, and every cell
    entry is written by at most one unit, so the pass needs no atomics.
    """
    n = particle_grid_index.shape[0]
    for p in prange(n):
        key = particle_grid_index[p]
        if p == 0:
            cell_start[key] = 0
        else:
            previous = particle_grid_index[p - 1]
            if key != previous:
                cell_start[key] = p
                cell_end[previous] = p - 1
        if p == n - 1:
            cell_end[key] = n - 1


@jit(nopython=True, parallel=True)
def reshuffle(particle_array_index, positions, velocities, out_positions, out_velocities):
    """
    Gathers particle data into cell-sorted order.
    """
    for i in prange(particle_array_index.shape[0]):
        source = particle_array_index[i]
        for axis in range(3):
            out_positions[i, axis] = positions[source, axis]
            out_velocities[i, axis] = velocities[source, axis]
