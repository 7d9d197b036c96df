"""Exceptions raised by the wind field core."""


class VoxelWindError(Exception):
    """Base class for all wind field errors."""


class ConfigurationError(VoxelWindError, ValueError):
    """Grid parameters that cannot describe a finite, non-empty voxel grid."""


class StaleUpdateError(VoxelWindError):
    """A field update computed for a grid generation that is no longer live."""
