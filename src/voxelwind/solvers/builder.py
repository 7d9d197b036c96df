from __future__ import annotations

import logging
from typing import Optional, TYPE_CHECKING

import numpy as np

from voxelwind.model.geometry_primitives import to_grid_coord
from voxelwind.model.grid import GridParameters, VoxelGrid

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def cell_positions(
    parameters: GridParameters,
    coords: npt.NDArray[np.int64]
) -> npt.NDArray[np.float64]:
    """
    World-space positions of the cells at the given grid coordinates.

    Args:
        parameters: Grid parameters.
        coords: (N, 3) integer grid coordinates.

    Returns:
        (N, 3) array of world positions.
    """
    extent = np.array(tuple(parameters.extent), dtype=np.float64)
    offset = np.array(tuple(parameters.offset), dtype=np.float64)

    local = coords * parameters.edge_length - extent / 2.0 + offset

    matrix = parameters.matrix
    return local @ matrix[:3, :3].T + matrix[:3, 3]


def build_grid(parameters: GridParameters, previous: Optional[VoxelGrid] = None) -> VoxelGrid:
    """
    (Re)build the cells of a voxel grid.

    Every cell is computed independently from its linear index, so the map
    is fully vectorized. Velocities survive a rebuild only when the cell count
    is unchanged; the active flags always start out true.

    Args:
        parameters: The new grid parameters.
        previous: The grid being replaced, if any.

    Returns:
        A new grid whose generation follows the previous one.

    Raises:
        ConfigurationError: If the parameters are invalid. ``previous`` is left untouched.
    """
    parameters.validate()

    n = parameters.cell_count
    density = np.array(parameters.density, dtype=np.int64)
    x, y, z = to_grid_coord(np.arange(n, dtype=np.int64), density)
    coords = np.stack((x, y, z), axis=-1).astype(np.int64)

    positions = cell_positions(parameters, coords)

    if previous is not None and previous.count == n:
        velocities = previous.velocities.copy()
    else:
        velocities = np.zeros((n, 3), dtype=np.float64)

    generation = previous.generation + 1 if previous is not None else 0
    logger.info(
        f"Built voxel grid {parameters.density[0]}x{parameters.density[1]}x{parameters.density[2]} "
        f"({n} cells, edge {parameters.edge_length}), generation {generation}."
    )

    return VoxelGrid(
        parameters=parameters,
        positions=positions,
        coords=coords,
        velocities=velocities,
        active=np.ones(n, dtype=np.bool_),
        generation=generation,
    )
