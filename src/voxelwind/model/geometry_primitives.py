"""
Geometric Primitives for the voxel wind field.

The ``Vector`` value class is what hosts use to describe positions and
directions. The containment and addressing helpers below are ``numba``
functions, so the same code answers Python callers and runs inside the
field update kernel.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, Sequence, TYPE_CHECKING
import math

import numba as nb
import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


@dataclass(frozen=True)
class Vector:
    """
    A vector in 3D space representing a position, a direction or a velocity.
    """
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: Vector) -> Vector:
        return Vector(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: Vector) -> Vector:
        return Vector(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, scalar: float) -> Vector:
        return Vector(self.x * scalar, self.y * scalar, self.z * scalar)

    __rmul__ = __mul__

    def __truediv__(self, scalar: float) -> Vector:
        if scalar == 0.0: raise ZeroDivisionError
        return Vector(self.x / scalar, self.y / scalar, self.z / scalar)

    def __neg__(self) -> Vector:
        return Vector(-self.x, -self.y, -self.z)

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.z

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def normalize(self) -> Vector:
        mag = self.magnitude
        if mag == 0.0: return Vector(0.0, 0.0, 0.0)
        return self / mag

    def dot(self, other: Vector) -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: Vector) -> Vector:
        return Vector(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x
        )

    def distance_to(self, other: Vector) -> float:
        return (self - other).magnitude

    def lerp(self, other: Vector, t: float) -> Vector:
        return self + (other - self) * t

    def to_array(self) -> npt.NDArray[np.float64]:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    @classmethod
    def of(cls, value: Vector | Sequence[float] | npt.NDArray[np.float64]) -> Vector:
        """Coerce a Vector, a 3-sequence or a (3,) array into a Vector."""
        if isinstance(value, Vector):
            return value
        x, y, z = (float(c) for c in value)
        return cls(x, y, z)


@nb.njit(cache=True)
def vector_length(v: npt.NDArray[np.float64]) -> float:
    return math.sqrt(v[0] * v[0] + v[1] * v[1] + v[2] * v[2])


@nb.njit(cache=True)
def safe_normalize(v: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """
    Normalize a (3,) vector. A zero-length vector normalizes to the zero vector.
    """
    out = np.zeros(3)
    length = vector_length(v)
    if length > 0.0:
        out[0] = v[0] / length
        out[1] = v[1] / length
        out[2] = v[2] / length
    return out


@nb.njit(cache=True)
def dot3(a: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


@nb.njit(cache=True)
def cross3(a: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    out = np.empty(3)
    out[0] = a[1] * b[2] - a[2] * b[1]
    out[1] = a[2] * b[0] - a[0] * b[2]
    out[2] = a[0] * b[1] - a[1] * b[0]
    return out


@nb.njit(cache=True)
def saturate(value: float) -> float:
    return min(max(value, 0.0), 1.0)


@nb.njit(cache=True)
def inside_cylinder(
    point: npt.NDArray[np.float64],
    base: npt.NDArray[np.float64],
    axis_direction: npt.NDArray[np.float64],
    lower_radius: float,
    upper_radius: float,
    height: float
) -> tuple[bool, float]:
    """
    Test whether a point lies in a (possibly tapered) cylinder.

    The cylinder starts at ``base`` and extends ``height`` along
    ``axis_direction``; its radius goes linearly from ``lower_radius`` at the
    base to ``upper_radius`` at the top.

    Args:
        point: (3,) point to test.
        base: (3,) centre of the base disc.
        axis_direction: (3,) axis direction, normalized internally.
        lower_radius: Radius at the base.
        upper_radius: Radius at the top.
        height: Length of the cylinder along its axis.

    Returns:
        ``(inside, t)`` where ``t`` is the projection length along the axis
        divided by the height, in [0, 1]. ``t`` is 0 when outside.
    """
    if height <= 0.0:
        return False, 0.0

    axis = safe_normalize(axis_direction)
    base_to_point = point - base
    projection_length = dot3(base_to_point, axis)
    if projection_length < 0.0 or projection_length > height:
        return False, 0.0

    t = projection_length / height
    effective_radius = lower_radius + (upper_radius - lower_radius) * t
    projected_point = base + axis * projection_length
    if vector_length(projected_point - point) > effective_radius:
        return False, 0.0

    return True, t


@nb.njit(cache=True)
def inside_sphere(
    point: npt.NDArray[np.float64],
    center: npt.NDArray[np.float64],
    radius: float
) -> tuple[bool, float]:
    """
    Test whether a point lies in a sphere.

    Returns:
        ``(inside, t)`` with ``t = distance / radius`` in [0, 1]; a point on
        the surface is inside with ``t == 1``. Non-positive radii contain nothing.
    """
    if radius <= 0.0:
        return False, 0.0

    distance = vector_length(point - center)
    if distance > radius:
        return False, 0.0

    return True, distance / radius


@nb.njit(cache=True)
def to_grid_coord(index, density):
    """
    Decode a linear cell index into its ``(x, y, z)`` grid coordinate.

    x varies fastest: ``index = x + y * dx + z * dx * dy``. ``index`` may be
    an int or an integer array; ``density`` is a 3-tuple or (3,) int array.
    """
    dx = density[0]
    dy = density[1]
    x = index % dx
    y = (index // dx) % dy
    z = index // (dx * dy)
    return x, y, z


@nb.njit(cache=True)
def to_linear_index(x, y, z, density):
    """Inverse of :func:`to_grid_coord`."""
    return x + y * density[0] + z * density[0] * density[1]
