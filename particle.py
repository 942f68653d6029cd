# particle.py
"""
Manages the state of all particles in the simulation.

This module defines the ParticleStore class, which owns the position
buffers and the ping-pong velocity buffers in NumPy arrays, plus the
host-side generator for a random starting particle field.
"""
import logging
import numpy as np
from typing import Optional, Tuple

# --- Data Contracts ---
#
# class DoubleBuffer:
#   - __init__(self, front: np.ndarray, back: np.ndarray):
#     - Inputs: two arrays of identical shape and dtype.
#     - Invariants: `front` is the live (readable) slot, `back` is the
#       write-only scratch slot for the step in flight.
#   - swap(self) -> None:
#     - Side Effects: exchanges the two handles. No data is copied.
#
# class ParticleStore:
#   - __init__(self, particle_count: int):
#     - Inputs: particle_count > 0.
#     - Side Effects: allocates zeroed float32 arrays of shape (N, 3):
#       positions, sorted_positions (reshuffle target), and a velocity
#       DoubleBuffer. Also allocates sorted_velocities for the reshuffle.
#     - Invariants: every array keeps shape (N, 3) for the store's life.
#
# generate_initial_state(count, scene_scale, max_speed, seed) -> (positions, velocities):
#   - Positions uniform in [-scene_scale, scene_scale]^3, velocities with
#     speed <= max_speed, both float32, drawn from a single seeded RNG.


class DoubleBuffer:
    """
    Two named array slots with an explicit ownership swap.
    """
    def __init__(self, front: np.ndarray, back: np.ndarray):
        if front.shape != back.shape or front.dtype != back.dtype:
            raise ValueError(
                f"DoubleBuffer slots must match: {front.shape}/{front.dtype} "
                f"vs {back.shape}/{back.dtype}."
            )
        self.front = front
        self.back = back

    def swap(self) -> None:
        self.front, self.back = self.back, self.front


class ParticleStore:
    """
    A container for all particles, managing their state via NumPy arrays.
    """
    def __init__(self, particle_count: int):
        """
        Allocates the particle buffers.

        Args:
            particle_count (int): Number of particles (N).
        """
        self.particle_count = particle_count
        shape = (particle_count, 3)

        self.positions = np.zeros(shape, dtype=np.float32)
        self.velocities = DoubleBuffer(
            np.zeros(shape, dtype=np.float32),
            np.zeros(shape, dtype=np.float32),
        )
        # Gather targets for the coherent strategy.
        self.sorted_positions = np.zeros(shape, dtype=np.float32)
        self.sorted_velocities = np.zeros(shape, dtype=np.float32)

        logging.debug(
            f"ParticleStore allocated for {particle_count} particles, "
            f"{5 * self.positions.nbytes} bytes of particle state."
        )

    def load(self, positions: np.ndarray, velocities: Optional[np.ndarray] = None) -> None:
        """Copies an initial state into the live buffers."""
        self.positions[:] = positions
        if velocities is None:
            self.velocities.front.fill(0.0)
        else:
            self.velocities.front[:] = velocities
        self.velocities.back.fill(0.0)

    def swap_sorted_positions(self) -> None:
        """Makes the reshuffled position buffer the live one."""
        self.positions, self.sorted_positions = self.sorted_positions, self.positions


def generate_initial_state(
    count: int, scene_scale: float, max_speed: float, seed: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Draws a random starting particle field.

    All randomness is controlled by the single seed passed in.
    """
    rng = np.random.default_rng(seed)

    positions = rng.uniform(
        low=-scene_scale, high=scene_scale, size=(count, 3)
    ).astype(np.float32)

    velocities = rng.uniform(low=-1.0, high=1.0, size=(count, 3))
    speed = np.linalg.norm(velocities, axis=1)
    over_speed_mask = speed > 1.0
    velocities[over_speed_mask] /= speed[over_speed_mask, np.newaxis]
    velocities = (velocities * max_speed).astype(np.float32)

    logging.info(
        f"Generated initial state for {count} particles "
        f"(scene scale {scene_scale}, seed {seed})."
    )
    return positions, velocities
