"""
Tests for the flocking rules and the three velocity-update strategies.
"""
import numpy as np
import pytest

from constants import (
    RULE1_DISTANCE, RULE2_DISTANCE, RULE3_DISTANCE,
    RULE1_SCALE, RULE2_SCALE, RULE3_SCALE, MAX_SPEED,
)
from grid import (
    UniformGrid, label_cells, sort_by_cell,
    reset_cell_ranges, locate_cell_boundaries, reshuffle,
)
from neighborhood import (
    pack_rules, update_velocity_brute_force,
    update_velocity_scattered, update_velocity_coherent,
)

RULES = pack_rules(
    RULE1_DISTANCE, RULE2_DISTANCE, RULE3_DISTANCE,
    RULE1_SCALE, RULE2_SCALE, RULE3_SCALE, MAX_SPEED,
)


class GridState:
    """Sorted index pair and cell ranges for one set of positions."""

    def __init__(self, positions, velocities):
        self.grid = UniformGrid(max(RULE1_DISTANCE, RULE2_DISTANCE, RULE3_DISTANCE), 100.0)
        n = positions.shape[0]
        self.keys = np.zeros(n, dtype=np.int32)
        self.order = np.zeros(n, dtype=np.int32)
        self.start = np.empty(self.grid.cell_count, dtype=np.int32)
        self.end = np.empty(self.grid.cell_count, dtype=np.int32)
        label_cells(positions, self.grid, self.keys, self.order)
        reset_cell_ranges(self.start, self.end)
        sort_by_cell(self.keys, self.order)
        locate_cell_boundaries(self.keys, self.start, self.end)

        self.sorted_positions = np.zeros_like(positions)
        self.sorted_velocities = np.zeros_like(velocities)
        reshuffle(self.order, positions, velocities, self.sorted_positions, self.sorted_velocities)


def brute_force(positions, velocities):
    out = np.zeros_like(velocities)
    update_velocity_brute_force(positions, velocities, out, RULES)
    return out


def scattered(positions, velocities, inclusive=True):
    state = GridState(positions, velocities)
    out = np.zeros_like(velocities)
    update_velocity_scattered(
        positions, velocities, out, state.order, state.start, state.end,
        state.grid.minimum, state.grid.inverse_cell_width, state.grid.side_count,
        inclusive, RULES
    )
    return out


def coherent(positions, velocities, inclusive=True):
    """Coherent update, mapped back to the original particle order."""
    state = GridState(positions, velocities)
    out_sorted = np.zeros_like(velocities)
    update_velocity_coherent(
        state.sorted_positions, state.sorted_velocities, out_sorted,
        state.start, state.end,
        state.grid.minimum, state.grid.inverse_cell_width, state.grid.side_count,
        inclusive, RULES
    )
    out = np.zeros_like(velocities)
    out[state.order] = out_sorted
    return out


STRATEGIES = [brute_force, scattered, coherent]


class TestRules:
    """Rule arithmetic on hand-sized examples."""

    @pytest.mark.parametrize("update", STRATEGIES)
    def test_isolated_particle_keeps_velocity(self, update):
        positions = np.array([[0.0, 0.0, 0.0], [50.0, 50.0, 50.0]], dtype=np.float32)
        velocities = np.array([[0.3, -0.2, 0.1], [0.0, 0.5, 0.0]], dtype=np.float32)

        out = update(positions, velocities)

        np.testing.assert_allclose(out, velocities, atol=1e-7)

    @pytest.mark.parametrize("update", STRATEGIES)
    def test_isolated_particle_is_clamped(self, update):
        positions = np.array([[0.0, 0.0, 0.0]], dtype=np.float32)
        velocities = np.array([[3.0, 4.0, 0.0]], dtype=np.float32)

        out = update(positions, velocities)

        np.testing.assert_allclose(out, [[0.6, 0.8, 0.0]], atol=1e-6)

    @pytest.mark.parametrize("update", STRATEGIES)
    def test_close_pair(self, update):
        # 1.5 apart: inside every rule radius, so cohesion pulls together,
        # separation pushes apart, and alignment averages the other's velocity.
        positions = np.array([[0.0, 0.0, 0.0], [1.5, 0.0, 0.0]], dtype=np.float32)
        velocities = np.array([[0.0, 0.0, 0.0], [0.0, 0.2, 0.0]], dtype=np.float32)

        out = update(positions, velocities)

        cohesion = 1.5 * RULE1_SCALE
        separation = -1.5 * RULE2_SCALE
        np.testing.assert_allclose(
            out[0], [cohesion + separation, 0.2 * RULE3_SCALE, 0.0], atol=1e-6
        )
        np.testing.assert_allclose(
            out[1], [-(cohesion + separation), 0.2, 0.0], atol=1e-6
        )

    def test_separation_only_band(self):
        # 4.0 apart: outside the separation radius, inside cohesion/alignment.
        positions = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 4.0]], dtype=np.float32)
        velocities = np.zeros((2, 3), dtype=np.float32)

        out = brute_force(positions, velocities)

        np.testing.assert_allclose(out[0], [0.0, 0.0, 4.0 * RULE1_SCALE], atol=1e-6)

    def test_separation_is_summed_not_averaged(self):
        positions = np.array([
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
        ], dtype=np.float32)
        velocities = np.zeros((3, 3), dtype=np.float32)

        out = brute_force(positions, velocities)

        expected_x = (1.0 * RULE1_SCALE) + (-2.0 * RULE2_SCALE)
        np.testing.assert_allclose(out[0], [expected_x, 0.0, 0.0], atol=1e-6)

    def test_inputs_are_not_modified(self, dense_flock):
        positions, velocities = dense_flock
        positions_before = positions.copy()
        velocities_before = velocities.copy()

        scattered(positions, velocities)

        np.testing.assert_array_equal(positions, positions_before)
        np.testing.assert_array_equal(velocities, velocities_before)


class TestSpeedClamp:

    @pytest.mark.parametrize("update", STRATEGIES)
    def test_all_speeds_bounded(self, update):
        rng = np.random.default_rng(5)
        positions = rng.uniform(-4.0, 4.0, size=(200, 3)).astype(np.float32)
        velocities = rng.uniform(-2.0, 2.0, size=(200, 3)).astype(np.float32)

        out = update(positions, velocities)

        speeds = np.linalg.norm(out.astype(np.float64), axis=1)
        assert np.all(speeds <= MAX_SPEED + 1e-6)


class TestStrategyEquivalence:
    """The grid is an optimization, not a behavior change."""

    @pytest.mark.parametrize("update", [scattered, coherent])
    def test_matches_brute_force(self, update, dense_flock):
        positions, velocities = dense_flock

        expected = brute_force(positions, velocities)
        actual = update(positions, velocities)

        np.testing.assert_allclose(actual, expected, atol=1e-4)

    @pytest.mark.parametrize("update", [scattered, coherent])
    def test_matches_brute_force_at_grid_edges(self, update):
        rng = np.random.default_rng(11)
        # Hug the scene faces so the cell window gets clamped.
        positions = rng.uniform(88.0, 100.0, size=(150, 3)).astype(np.float32)
        positions[75:] *= -1.0
        velocities = rng.uniform(-0.5, 0.5, size=(150, 3)).astype(np.float32)

        np.testing.assert_allclose(
            update(positions, velocities), brute_force(positions, velocities), atol=1e-4
        )


class TestNeighborWindow:
    """
    Particle A sits in cell x=11 and B in cell x=12, 1.5 apart.
    The half-open window only looks at cells [c-1, c+1) so A never sees B.
    """

    positions = np.array([[9.5, 1.0, 1.0], [11.0, 1.0, 1.0]], dtype=np.float32)
    velocities = np.zeros((2, 3), dtype=np.float32)
    pair_response = 1.5 * RULE1_SCALE - 1.5 * RULE2_SCALE

    def test_particles_straddle_a_cell_face(self):
        grid = UniformGrid(RULE1_DISTANCE, 100.0)
        assert grid.cell_coordinates(self.positions[0])[0] == 11
        assert grid.cell_coordinates(self.positions[1])[0] == 12

    @pytest.mark.parametrize("update", [scattered, coherent])
    def test_inclusive_window_sees_upper_neighbor(self, update):
        out = update(self.positions, self.velocities, inclusive=True)

        np.testing.assert_allclose(out[0], [self.pair_response, 0.0, 0.0], atol=1e-6)
        np.testing.assert_allclose(out[1], [-self.pair_response, 0.0, 0.0], atol=1e-6)

    @pytest.mark.parametrize("update", [scattered, coherent])
    def test_half_open_window_drops_upper_neighbor(self, update):
        out = update(self.positions, self.velocities, inclusive=False)

        np.testing.assert_allclose(out[0], [0.0, 0.0, 0.0], atol=1e-7)
        # B looks down into A's cell, which the half-open window still covers.
        np.testing.assert_allclose(out[1], [-self.pair_response, 0.0, 0.0], atol=1e-6)

    def test_half_open_diverges_from_brute_force(self, dense_flock):
        positions, velocities = dense_flock

        expected = brute_force(positions, velocities)
        narrowed = scattered(positions, velocities, inclusive=False)

        assert np.max(np.abs(narrowed - expected)) > 1e-4
