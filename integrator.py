# integrator.py
"""
Explicit Euler position update with toroidal boundary wrap.
"""
from numba import jit, prange


@jit(nopython=True, parallel=True)
def integrate_positions(positions, velocities, dt, scene_scale):
    """
    Numba-jitted position update, one unit per particle.

    A coordinate strictly beyond +/-scene_scale re-enters at the opposite
    face; a coordinate exactly on a face is left alone. Axes wrap
    independently.
    """
    for i in prange(positions.shape[0]):
        for axis in range(3):
            x = positions[i, axis] + velocities[i, axis] * dt
            if x < -scene_scale:
                x = scene_scale
            elif x > scene_scale:
                x = -scene_scale
            positions[i, axis] = x
