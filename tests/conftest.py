import numpy as np
import pytest

from voxelwind.model.grid import FieldUpdate, GridParameters, VoxelGrid
from voxelwind.solvers.builder import build_grid


def make_grid(density, edge_length=1.0, extent=None, offset=(0.0, 0.0, 0.0), transform=None) -> VoxelGrid:
    if extent is None:
        extent = tuple(d * edge_length for d in density)
    parameters = GridParameters(
        edge_length=edge_length,
        extent=extent,
        density=density,
        offset=offset,
        transform=np.eye(4) if transform is None else transform,
    )
    return build_grid(parameters)


def seed_velocities(grid: VoxelGrid, velocities) -> VoxelGrid:
    velocities = np.array(velocities, dtype=np.float64).reshape(grid.count, 3)
    grid.commit(FieldUpdate(grid.generation, velocities, np.ones(grid.count, dtype=np.bool_)))
    return grid


@pytest.fixture
def grid_factory():
    return make_grid
