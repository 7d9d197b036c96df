"""
Voxel Grid Data Model
=====================
Defines the voxelized region the wind field lives in.

Classes:
    GridParameters: The values that define the grid (transform, edge length,
        extent, offset, density). Changing any of them requires a rebuild.
    Cell: Read-only view of one voxel.
    FieldUpdate: A computed, not yet published, velocity buffer.
    VoxelGrid: The live cell arrays, linearly indexed with x varying fastest.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Dict, Sequence, TYPE_CHECKING

import numpy as np

from voxelwind.config import DEFAULT_EDGE_LENGTH, DEFAULT_EXTENT
from voxelwind.errors import ConfigurationError, StaleUpdateError
from voxelwind.model.geometry_primitives import Vector, to_grid_coord

if TYPE_CHECKING:
    import numpy.typing as npt

Matrix4 = tuple[tuple[float, float, float, float], ...]

IDENTITY: Matrix4 = tuple(tuple(float(v) for v in row) for row in np.eye(4))


def _as_matrix(transform: Any) -> Matrix4:
    try:
        matrix = np.asarray(transform, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Grid transform is not numeric: {e}") from e
    if matrix.shape != (4, 4):
        raise ConfigurationError(f"Grid transform must be 4x4, got shape {matrix.shape}.")
    return tuple(tuple(float(v) for v in row) for row in matrix)


def _as_density(density: Any) -> tuple[int, ...]:
    try:
        values = tuple(float(d) for d in density)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Grid density is not numeric: {e}") from e
    if not all(math.isfinite(v) and v == int(v) for v in values):
        raise ConfigurationError(f"Density components must be whole numbers, got {tuple(density)}.")
    return tuple(int(v) for v in values)


@dataclass(frozen=True)
class GridParameters:
    """
    Parameters of a voxel grid.

    ``transform`` maps grid-local coordinates to world space. A cell with
    grid coordinate ``c`` sits at the local position
    ``c * edge_length - extent / 2 + offset``.
    """
    edge_length: float = DEFAULT_EDGE_LENGTH
    extent: Vector = Vector(*DEFAULT_EXTENT)
    density: tuple[int, int, int] = (10, 10, 10)
    offset: Vector = Vector()
    transform: Matrix4 = IDENTITY

    def __post_init__(self) -> None:
        # Normalize host input (lists, arrays) into hashable, comparable values
        object.__setattr__(self, "edge_length", float(self.edge_length))
        object.__setattr__(self, "extent", Vector.of(self.extent))
        object.__setattr__(self, "offset", Vector.of(self.offset))
        object.__setattr__(self, "density", _as_density(self.density))
        object.__setattr__(self, "transform", _as_matrix(self.transform))

    @classmethod
    def from_extent(
        cls,
        extent: Vector | Sequence[float],
        edge_length: float = DEFAULT_EDGE_LENGTH,
        offset: Vector | Sequence[float] = Vector(),
        transform: Any = IDENTITY,
    ) -> GridParameters:
        """
        Derive the density from the extent: ``floor(extent / edge_length)`` per axis.
        """
        if not edge_length > 0.0 or not math.isfinite(edge_length):
            raise ConfigurationError(f"Edge length must be positive, got {edge_length}.")
        extent = Vector.of(extent)
        density = tuple(int(math.floor(e / edge_length)) for e in extent)
        return cls(
            edge_length=edge_length,
            extent=extent,
            density=density,
            offset=offset,
            transform=transform,
        )

    def validate(self) -> None:
        """
        Check that the parameters describe a finite, non-empty grid.

        Raises:
            ConfigurationError: On the first offending parameter.
        """
        if not math.isfinite(self.edge_length) or self.edge_length <= 0.0:
            raise ConfigurationError(f"Edge length must be positive, got {self.edge_length}.")
        if len(self.density) != 3:
            raise ConfigurationError(f"Density must have 3 components, got {self.density}.")
        for axis, value in zip("xyz", self.extent):
            if not math.isfinite(value) or value <= 0.0:
                raise ConfigurationError(f"Extent {axis} must be positive, got {value}.")
        for axis, value in zip("xyz", self.density):
            if value < 1:
                raise ConfigurationError(f"Density {axis} must be at least 1, got {value}.")
        if not all(math.isfinite(v) for v in self.offset):
            raise ConfigurationError(f"Offset must be finite, got {self.offset}.")
        matrix = self.matrix
        if not np.all(np.isfinite(matrix)) or abs(np.linalg.det(matrix)) < 1e-12:
            raise ConfigurationError("Grid transform must be finite and invertible.")

    @property
    def cell_count(self) -> int:
        return self.density[0] * self.density[1] * self.density[2]

    @property
    def matrix(self) -> npt.NDArray[np.float64]:
        return np.array(self.transform, dtype=np.float64)

    @property
    def inverse_matrix(self) -> npt.NDArray[np.float64]:
        return np.linalg.inv(self.matrix)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edge_length": self.edge_length,
            "extent": list(self.extent),
            "density": list(self.density),
            "offset": list(self.offset),
            "transform": [list(row) for row in self.transform],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> GridParameters:
        return GridParameters(
            edge_length=data.get("edge_length", DEFAULT_EDGE_LENGTH),
            extent=data.get("extent", DEFAULT_EXTENT),
            density=data.get("density", (10, 10, 10)),
            offset=data.get("offset", (0.0, 0.0, 0.0)),
            transform=data.get("transform", IDENTITY),
        )


@dataclass(frozen=True)
class Cell:
    """One voxel of the field, as seen by sinks."""
    position: Vector
    coord: tuple[int, int, int]
    edge_length: float
    velocity: Vector
    active: bool = True


@dataclass(frozen=True)
class FieldUpdate:
    """
    Output buffer of one field update, tagged with the grid generation it was
    computed from.
    """
    generation: int
    velocities: npt.NDArray[np.float64]
    active: npt.NDArray[np.bool_]


def _freeze(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


@dataclass(eq=False)
class VoxelGrid:
    """
    The live state of a wind zone.

    All per-cell arrays share the linear addressing law
    ``i = x + y * dx + z * dx * dy``. Published arrays are read-only; a tick
    replaces them wholesale through :meth:`commit`.
    """
    parameters: GridParameters
    positions: npt.NDArray[np.float64]
    coords: npt.NDArray[np.int64]
    velocities: npt.NDArray[np.float64]
    active: npt.NDArray[np.bool_]
    generation: int = 0
    tick_count: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        n = self.parameters.cell_count
        for name in ("positions", "coords", "velocities"):
            array = getattr(self, name)
            if array.shape != (n, 3):
                raise ValueError(f"Expected '{name}' of shape ({n}, 3), got {array.shape}.")
        if self.active.shape != (n,):
            raise ValueError(f"Expected 'active' of shape ({n},), got {self.active.shape}.")
        for array in (self.positions, self.coords, self.velocities, self.active):
            _freeze(array)

    @property
    def count(self) -> int:
        return self.parameters.cell_count

    @property
    def density(self) -> tuple[int, int, int]:
        return self.parameters.density

    @property
    def edge_length(self) -> float:
        return self.parameters.edge_length

    def __len__(self) -> int:
        return self.count

    def cell(self, index: int) -> Cell:
        if not 0 <= index < self.count:
            raise IndexError(f"Cell index {index} out of range for {self.count} cells.")
        x, y, z = to_grid_coord(index, self.density)
        return Cell(
            position=Vector.of(self.positions[index]),
            coord=(int(x), int(y), int(z)),
            edge_length=self.edge_length,
            velocity=Vector.of(self.velocities[index]),
            active=bool(self.active[index]),
        )

    @property
    def cells(self) -> list[Cell]:
        """All cells in linear index order."""
        return [self.cell(i) for i in range(self.count)]

    def velocity_volume(self) -> npt.NDArray[np.float64]:
        """Velocities reshaped to a ``(z, y, x, 3)`` volume for 3D samplers."""
        dx, dy, dz = self.density
        return self.velocities.reshape(dz, dy, dx, 3)

    def commit(self, update: FieldUpdate) -> None:
        """
        Publish a field update as the new live state.

        Raises:
            StaleUpdateError: If the update was computed from another grid generation.
        """
        if update.generation != self.generation:
            raise StaleUpdateError(
                f"Update for generation {update.generation} cannot be committed "
                f"to grid generation {self.generation}."
            )
        if update.velocities.shape != self.velocities.shape or update.active.shape != self.active.shape:
            raise StaleUpdateError("Update buffer does not match the grid size.")
        self.velocities = _freeze(update.velocities)
        self.active = _freeze(update.active)
        self.tick_count += 1

    def mean_speed(self) -> float:
        if self.count == 0:
            return 0.0
        return float(np.linalg.norm(self.velocities, axis=1).mean())
