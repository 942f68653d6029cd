# simulation.py
"""
Handles the core simulation logic and the per-step pipeline.

This module defines the SimulationContext class, which owns every buffer
the flock needs and advances it by one time step with one of three
neighbor-search strategies: brute force, scattered grid, or coherent grid.
"""
import logging
import numpy as np
from contextlib import contextmanager
from typing import Dict, Any, Optional, Tuple
from numba import set_parallel_chunksize

from constants import (
    RULE1_DISTANCE, RULE2_DISTANCE, RULE3_DISTANCE,
    RULE1_SCALE, RULE2_SCALE, RULE3_SCALE,
    MAX_SPEED, SCENE_SCALE, DELTA_TIME, WORK_UNIT_BATCH_SIZE,
    STRATEGIES, STRATEGY_BRUTE_FORCE, STRATEGY_SCATTERED,
    NEIGHBOR_WINDOWS, WINDOW_INCLUSIVE,
)
from particle import ParticleStore
from grid import (
    UniformGrid, label_cells, sort_by_cell,
    reset_cell_ranges, locate_cell_boundaries, reshuffle,
)
from neighborhood import (
    pack_rules, update_velocity_brute_force,
    update_velocity_scattered, update_velocity_coherent,
)
from integrator import integrate_positions

# --- Data Contracts ---
#
# class SimulationContext:
#   - __init__(self, params: Dict[str, Any]):
#     - Inputs:
#       - params: Dictionary of simulation parameters from config.json.
#         Every key is optional and falls back to constants.py:
#         - "rule1_distance", "rule2_distance", "rule3_distance": float > 0
#         - "rule1_scale", "rule2_scale", "rule3_scale": float
#         - "max_speed": float > 0
#         - "scene_scale": float > 0
#         - "delta_time": float
#         - "work_unit_batch_size": int > 0
#         - "strategy": one of constants.STRATEGIES
#         - "neighbor_window": one of constants.NEIGHBOR_WINDOWS
#     - Side Effects: validates and stores parameters. No buffers yet.
#
#   - init(self, particle_count, initial_positions, initial_velocities=None) -> None:
#     - Side Effects: allocates the particle store, grid, sorted index
#       pair and cell range table; copies the initial state in.
#     - Errors: ValueError on bad shapes/counts, MemoryError re-raised
#       after a critical log.
#
#   - step_brute_force(dt) / step_scattered_grid(dt) / step_coherent_grid(dt) -> None:
#     - Side Effects: advances positions and velocities by one step.
#     - Invariants: after the step every speed is <= max_speed and every
#       coordinate lies in [-scene_scale, scene_scale].
#       The coherent step commits state in cell-sorted order and permutes
#       particle_ids to match.
#
#   - snapshot(self) -> (positions, velocities): read-only views.
#   - teardown(self) -> None: drops every buffer.


@contextmanager
def work_unit_batches(size: int):
    """Runs the enclosed prange stages with `size` iterations per scheduled chunk."""
    previous = set_parallel_chunksize(size)
    try:
        yield
    finally:
        set_parallel_chunksize(previous)


class SimulationContext:
    """
    Owns the flock state and runs the neighbor-search pipeline.
    """
    def __init__(self, params: Optional[Dict[str, Any]] = None):
        """
        Reads and validates the simulation parameters.

        Args:
            params (Dict[str, Any]): Simulation parameters from config.
        """
        params = params or {}
        self.rule1_distance = np.float32(params.get('rule1_distance', RULE1_DISTANCE))
        self.rule2_distance = np.float32(params.get('rule2_distance', RULE2_DISTANCE))
        self.rule3_distance = np.float32(params.get('rule3_distance', RULE3_DISTANCE))
        self.rule1_scale = np.float32(params.get('rule1_scale', RULE1_SCALE))
        self.rule2_scale = np.float32(params.get('rule2_scale', RULE2_SCALE))
        self.rule3_scale = np.float32(params.get('rule3_scale', RULE3_SCALE))
        self.max_speed = np.float32(params.get('max_speed', MAX_SPEED))
        self.scene_scale = np.float32(params.get('scene_scale', SCENE_SCALE))
        self.delta_time = np.float32(params.get('delta_time', DELTA_TIME))
        self.work_unit_batch_size = int(params.get('work_unit_batch_size', WORK_UNIT_BATCH_SIZE))
        self.strategy = params.get('strategy', STRATEGY_SCATTERED)
        self.neighbor_window = params.get('neighbor_window', WINDOW_INCLUSIVE)

        self._validate()

        self.rules = pack_rules(
            self.rule1_distance, self.rule2_distance, self.rule3_distance,
            self.rule1_scale, self.rule2_scale, self.rule3_scale, self.max_speed
        )
        self.inclusive_window = self.neighbor_window == WINDOW_INCLUSIVE

        self.particle_count = 0
        self.store: Optional[ParticleStore] = None
        self.grid: Optional[UniformGrid] = None
        self.particle_grid_index: Optional[np.ndarray] = None
        self.particle_array_index: Optional[np.ndarray] = None
        self.cell_start: Optional[np.ndarray] = None
        self.cell_end: Optional[np.ndarray] = None
        self._particle_ids: Optional[np.ndarray] = None

        logging.info(
            f"Simulation parameters validated: strategy '{self.strategy}', "
            f"neighbor window '{self.neighbor_window}', batch size {self.work_unit_batch_size}."
        )

    def _fail(self, msg: str):
        logging.critical(msg)
        raise ValueError(msg)

    def _validate(self):
        if self.strategy not in STRATEGIES:
            self._fail(
                f"Configuration error: unknown strategy '{self.strategy}'. "
                f"Expected one of {', '.join(STRATEGIES)}."
            )
        if self.neighbor_window not in NEIGHBOR_WINDOWS:
            self._fail(
                f"Configuration error: unknown neighbor window '{self.neighbor_window}'. "
                f"Expected one of {', '.join(NEIGHBOR_WINDOWS)}."
            )
        radii = (self.rule1_distance, self.rule2_distance, self.rule3_distance)
        if min(radii) <= 0:
            self._fail(f"Configuration error: interaction radii must be positive, got {radii}.")
        if self.max_speed <= 0:
            self._fail(f"Configuration error: max_speed must be positive, got {self.max_speed}.")
        if self.scene_scale <= 0:
            self._fail(f"Configuration error: scene_scale must be positive, got {self.scene_scale}.")
        if self.work_unit_batch_size <= 0:
            self._fail(
                f"Configuration error: work_unit_batch_size must be positive, "
                f"got {self.work_unit_batch_size}."
            )

    # --- Lifecycle ---

    def init(self, particle_count: int, initial_positions: np.ndarray,
             initial_velocities: Optional[np.ndarray] = None) -> None:
        """
        Allocates every buffer and loads the starting state.

        Args:
            particle_count (int): Number of particles (N).
            initial_positions (np.ndarray): (N, 3) positions inside the scene.
            initial_velocities (np.ndarray, optional): (N, 3) velocities.
                Defaults to zero.
        """
        if particle_count <= 0:
            self._fail(f"Configuration error: particle_count must be positive, got {particle_count}.")
        expected = (particle_count, 3)
        if np.shape(initial_positions) != expected:
            self._fail(
                f"Initial positions have shape {np.shape(initial_positions)}, expected {expected}."
            )
        if initial_velocities is not None and np.shape(initial_velocities) != expected:
            self._fail(
                f"Initial velocities have shape {np.shape(initial_velocities)}, expected {expected}."
            )

        grid = UniformGrid(
            max(self.rule1_distance, self.rule2_distance, self.rule3_distance),
            self.scene_scale
        )
        try:
            store = ParticleStore(particle_count)
            particle_grid_index = np.zeros(particle_count, dtype=np.int32)
            particle_array_index = np.zeros(particle_count, dtype=np.int32)
            cell_start = np.empty(grid.cell_count, dtype=np.int32)
            cell_end = np.empty(grid.cell_count, dtype=np.int32)
        except MemoryError:
            logging.critical(
                f"Could not allocate buffers for {particle_count} particles "
                f"and {grid.cell_count} grid cells. Aborting."
            )
            raise

        store.load(initial_positions, initial_velocities)

        self.particle_count = particle_count
        self.store = store
        self.grid = grid
        self.particle_grid_index = particle_grid_index
        self.particle_array_index = particle_array_index
        self.cell_start = cell_start
        self.cell_end = cell_end
        self._particle_ids = np.arange(particle_count, dtype=np.int32)

        logging.info(f"Simulation context initialized with {particle_count} particles.")

    def teardown(self) -> None:
        """Releases every buffer. The context can be re-initialized afterwards."""
        self.store = None
        self.grid = None
        self.particle_grid_index = None
        self.particle_array_index = None
        self.cell_start = None
        self.cell_end = None
        self._particle_ids = None
        logging.info(f"Simulation context torn down ({self.particle_count} particles released).")
        self.particle_count = 0

    def _require_buffers(self):
        if self.store is None:
            raise RuntimeError("Simulation context is not initialized; call init() first.")

    # --- Stepping ---

    def step(self, dt: Optional[float] = None) -> None:
        """Advances one step with the configured strategy."""
        dt = self.delta_time if dt is None else dt
        if self.strategy == STRATEGY_BRUTE_FORCE:
            self.step_brute_force(dt)
        elif self.strategy == STRATEGY_SCATTERED:
            self.step_scattered_grid(dt)
        else:
            self.step_coherent_grid(dt)

    def step_brute_force(self, dt: float) -> None:
        """
        Executes one time step with the O(N^2) neighbor scan.
        """
        self._require_buffers()
        store = self.store
        with work_unit_batches(self.work_unit_batch_size):
            update_velocity_brute_force(
                store.positions, store.velocities.front, store.velocities.back, self.rules
            )
            integrate_positions(
                store.positions, store.velocities.back, np.float32(dt), self.scene_scale
            )
        store.velocities.swap()

    def step_scattered_grid(self, dt: float) -> None:
        """
        Executes one time step with the grid, reaching neighbors through
        the sorted index array.
        """
        self._require_buffers()
        store = self.store
        with work_unit_batches(self.work_unit_batch_size):
            self._build_cell_ranges(store.positions)
            update_velocity_scattered(
                store.positions, store.velocities.front, store.velocities.back,
                self.particle_array_index, self.cell_start, self.cell_end,
                self.grid.minimum, self.grid.inverse_cell_width, self.grid.side_count,
                self.inclusive_window, self.rules
            )
            integrate_positions(
                store.positions, store.velocities.back, np.float32(dt), self.scene_scale
            )
        store.velocities.swap()

    def step_coherent_grid(self, dt: float) -> None:
        """
        Executes one time step with the grid over cell-sorted copies of
        the particle data.

        The new state is committed in sorted order: slot i afterwards holds
        the particle that sat at sorted position i.
        """
        self._require_buffers()
        store = self.store
        with work_unit_batches(self.work_unit_batch_size):
            self._build_cell_ranges(store.positions)
            reshuffle(
                self.particle_array_index, store.positions, store.velocities.front,
                store.sorted_positions, store.sorted_velocities
            )
            update_velocity_coherent(
                store.sorted_positions, store.sorted_velocities, store.velocities.back,
                self.cell_start, self.cell_end,
                self.grid.minimum, self.grid.inverse_cell_width, self.grid.side_count,
                self.inclusive_window, self.rules
            )
            integrate_positions(
                store.sorted_positions, store.velocities.back, np.float32(dt), self.scene_scale
            )
        store.swap_sorted_positions()
        store.velocities.swap()
        self._particle_ids = self._particle_ids[self.particle_array_index]

    def _build_cell_ranges(self, positions: np.ndarray) -> None:
        """Label, sort, and locate the per-cell runs of the sorted index pair."""
        label_cells(positions, self.grid, self.particle_grid_index, self.particle_array_index)
        reset_cell_ranges(self.cell_start, self.cell_end)
        sort_by_cell(self.particle_grid_index, self.particle_array_index)
        locate_cell_boundaries(self.particle_grid_index, self.cell_start, self.cell_end)

    # --- Read access ---

    def snapshot(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Read-only views of the committed positions and velocities.
        """
        self._require_buffers()
        positions = self.store.positions.view()
        velocities = self.store.velocities.front.view()
        positions.flags.writeable = False
        velocities.flags.writeable = False
        return positions, velocities

    @property
    def particle_ids(self) -> np.ndarray:
        """Starting slot of the particle currently stored in each slot."""
        self._require_buffers()
        ids = self._particle_ids.view()
        ids.flags.writeable = False
        return ids
