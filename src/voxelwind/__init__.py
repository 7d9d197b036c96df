"""
Volumetric voxel wind field.

A rectangular grid of cells whose velocities are advected, blended with
wind sources and disturbed by moving obstacles once per tick.
"""
from voxelwind.controller.aggregator import SourceAggregator, WindSnapshot
from voxelwind.controller.emitters import GlobalWind, LocalWind, SphereObstacle
from voxelwind.controller.zone import WindZone
from voxelwind.errors import ConfigurationError, StaleUpdateError, VoxelWindError
from voxelwind.model.geometry_primitives import Vector
from voxelwind.model.grid import Cell, FieldUpdate, GridParameters, VoxelGrid
from voxelwind.model.sources import (
    GlobalWindKind,
    GlobalWindSource,
    LocalWindKind,
    LocalWindSource,
    Obstacle,
)
from voxelwind.solvers.builder import build_grid
from voxelwind.solvers.field_updater import FieldUpdater

__version__ = "0.1.0"

__all__ = [
    "Cell",
    "ConfigurationError",
    "FieldUpdate",
    "FieldUpdater",
    "GlobalWind",
    "GlobalWindKind",
    "GlobalWindSource",
    "GridParameters",
    "LocalWind",
    "LocalWindKind",
    "LocalWindSource",
    "Obstacle",
    "SourceAggregator",
    "SphereObstacle",
    "StaleUpdateError",
    "Vector",
    "VoxelGrid",
    "VoxelWindError",
    "WindSnapshot",
    "WindZone",
    "build_grid",
]
