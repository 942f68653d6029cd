"""Pytest configuration for the boids tests."""
import sys
from pathlib import Path

import numpy as np
import pytest


def pytest_configure(config):
    """Put the project root on the path so the flat modules import."""
    workspace_root = Path(__file__).parent.parent
    if str(workspace_root) not in sys.path:
        sys.path.insert(0, str(workspace_root))


@pytest.fixture
def dense_flock():
    """A crowded random flock where most particles have neighbors."""
    rng = np.random.default_rng(1234)
    count = 400
    positions = rng.uniform(-20.0, 20.0, size=(count, 3)).astype(np.float32)
    velocities = rng.uniform(-0.5, 0.5, size=(count, 3)).astype(np.float32)
    return positions, velocities
