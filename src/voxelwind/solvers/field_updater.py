from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence, TYPE_CHECKING

import numba as nb
import numpy as np
from scipy.ndimage import uniform_filter

from voxelwind.config import ADVECTION_DECAY, DIFFUSION_PASSES, DIFFUSION_RATE, NOISE_SEED
from voxelwind.model.geometry_primitives import (
    cross3,
    dot3,
    inside_cylinder,
    inside_sphere,
    safe_normalize,
    saturate,
    vector_length,
)
from voxelwind.model.grid import FieldUpdate
from voxelwind.model.sources import (
    GlobalWindKind,
    GlobalWindSource,
    LocalWindKind,
    LocalWindSource,
    Obstacle,
)
from voxelwind.solvers.noise import SimplexNoise, simplex_noise_gradient

if TYPE_CHECKING:
    import numpy.typing as npt

    from voxelwind.controller.aggregator import WindSnapshot
    from voxelwind.model.grid import VoxelGrid

logger = logging.getLogger(__name__)

# Kind codes understood by the kernel
GLOBAL_KIND_CODES = {GlobalWindKind.DIRECTIONAL: 0, GlobalWindKind.TURBULENT: 1}
LOCAL_KIND_CODES = {LocalWindKind.DIRECTIONAL: 0, LocalWindKind.OMNI: 1, LocalWindKind.VORTEX: 2}

GLOBAL_DIRECTIONAL = 0
GLOBAL_TURBULENT = 1
LOCAL_DIRECTIONAL = 0
LOCAL_OMNI = 1
LOCAL_VORTEX = 2


@dataclass(frozen=True)
class PackedGlobalWinds:
    active: npt.NDArray[np.bool_]
    kind: npt.NDArray[np.int64]
    direction: npt.NDArray[np.float64]
    strength: npt.NDArray[np.float64]
    speed: npt.NDArray[np.float64]
    noise_scale: npt.NDArray[np.float64]


@dataclass(frozen=True)
class PackedLocalWinds:
    active: npt.NDArray[np.bool_]
    kind: npt.NDArray[np.int64]
    overwrite: npt.NDArray[np.bool_]
    position: npt.NDArray[np.float64]
    direction: npt.NDArray[np.float64]
    speed: npt.NDArray[np.float64]
    radius: npt.NDArray[np.float64]


@dataclass(frozen=True)
class PackedObstacles:
    position: npt.NDArray[np.float64]
    velocity: npt.NDArray[np.float64]
    radius: npt.NDArray[np.float64]
    push_strength: npt.NDArray[np.float64]
    shadow_strength: npt.NDArray[np.float64]
    shadow_distance: npt.NDArray[np.float64]


def _vectors(values: Sequence, normalize: bool = False) -> npt.NDArray[np.float64]:
    array = np.array([v.to_array() for v in values], dtype=np.float64).reshape(-1, 3)
    if normalize and len(array):
        lengths = np.linalg.norm(array, axis=1, keepdims=True)
        array = np.divide(array, lengths, out=np.zeros_like(array), where=lengths > 0.0)
    return array


def pack_global_winds(sources: Sequence[GlobalWindSource]) -> PackedGlobalWinds:
    """Lay out global wind descriptors as kernel arrays. Directions are normalized."""
    return PackedGlobalWinds(
        active=np.array([s.active for s in sources], dtype=np.bool_),
        kind=np.array([GLOBAL_KIND_CODES[s.kind] for s in sources], dtype=np.int64),
        direction=_vectors([s.direction for s in sources], normalize=True),
        strength=np.array([s.strength for s in sources], dtype=np.float64),
        speed=np.array([s.speed for s in sources], dtype=np.float64),
        noise_scale=np.array([s.noise_scale for s in sources], dtype=np.float64),
    )


def pack_local_winds(sources: Sequence[LocalWindSource]) -> PackedLocalWinds:
    """Lay out local wind descriptors as kernel arrays, keeping their order."""
    return PackedLocalWinds(
        active=np.array([s.active for s in sources], dtype=np.bool_),
        kind=np.array([LOCAL_KIND_CODES[s.kind] for s in sources], dtype=np.int64),
        overwrite=np.array([s.overwrite for s in sources], dtype=np.bool_),
        position=_vectors([s.position for s in sources]),
        direction=_vectors([s.direction for s in sources], normalize=True),
        speed=np.array([s.speed for s in sources], dtype=np.float64),
        radius=np.array([s.radius for s in sources], dtype=np.float64),
    )


def pack_obstacles(obstacles: Sequence[Obstacle]) -> PackedObstacles:
    return PackedObstacles(
        position=_vectors([o.position for o in obstacles]),
        velocity=_vectors([o.velocity for o in obstacles]),
        radius=np.array([o.radius for o in obstacles], dtype=np.float64),
        push_strength=np.array([o.push_strength for o in obstacles], dtype=np.float64),
        shadow_strength=np.array([o.shadow_strength for o in obstacles], dtype=np.float64),
        shadow_distance=np.array([o.shadow_distance for o in obstacles], dtype=np.float64),
    )


def neighbourhood_mean(
    velocities: npt.NDArray[np.float64],
    density: tuple[int, int, int]
) -> npt.NDArray[np.float64]:
    """
    Mean velocity over each cell's 3x3x3 neighbourhood.

    Neighbours outside the grid are excluded from the mean rather than
    wrapped or clamped.

    Args:
        velocities: (N, 3) linearly indexed velocities.
        density: Grid density ``(dx, dy, dz)``.

    Returns:
        (N, 3) array of neighbourhood means, same indexing.
    """
    dx, dy, dz = density
    volume = velocities.reshape(dz, dy, dx, 3)
    # uniform_filter averages over 27 slots with zero padding; rescale by the in-bounds share
    padded_mean = uniform_filter(volume, size=(3, 3, 3, 1), mode="constant", cval=0.0)
    in_bounds = uniform_filter(np.ones((dz, dy, dx)), size=3, mode="constant", cval=0.0)
    return (padded_mean / in_bounds[..., np.newaxis]).reshape(-1, 3)


@nb.njit(cache=True)
def relax(
    velocity: npt.NDArray[np.float64],
    target: npt.NDArray[np.float64],
    passes: int,
    rate: float
) -> npt.NDArray[np.float64]:
    """Blend ``velocity`` towards ``target`` by ``rate``, ``passes`` times."""
    out = velocity.copy()
    for _ in range(passes):
        for a in range(3):
            out[a] += rate * (target[a] - out[a])
    return out


@nb.njit(cache=True)
def _grid_axis(g: float, size: int) -> tuple[int, int, float]:
    # Keep the floor well inside int range; anything past the border clamps anyway
    if not math.isfinite(g):
        g = 0.0
    g = min(max(g, -1.0), float(size))
    lower = int(math.floor(g))
    weight = g - lower
    i0 = min(max(lower, 0), size - 1)
    i1 = min(max(lower + 1, 0), size - 1)
    if i0 == i1:
        weight = 0.0
    return i0, i1, weight


@nb.njit(cache=True)
def sample_velocity(
    point: npt.NDArray[np.float64],
    velocities: npt.NDArray[np.float64],
    inverse_matrix: npt.NDArray[np.float64],
    local_origin: npt.NDArray[np.float64],
    edge_length: float,
    density: npt.NDArray[np.int64]
) -> npt.NDArray[np.float64]:
    """
    Trilinearly interpolate the velocity field at a world-space point.

    The point is brought into grid-local space with ``inverse_matrix`` and
    converted to fractional grid coordinates
    ``(local - local_origin) / edge_length``, where ``local_origin`` is the
    local position of cell (0, 0, 0). Corners are clamped to the grid per axis;
    an axis whose two corners clamp onto the same cell contributes no gradient.

    Returns:
        (3,) interpolated velocity.
    """
    g = np.empty(3)
    for a in range(3):
        local = (
            inverse_matrix[a, 0] * point[0]
            + inverse_matrix[a, 1] * point[1]
            + inverse_matrix[a, 2] * point[2]
            + inverse_matrix[a, 3]
        )
        g[a] = (local - local_origin[a]) / edge_length

    dx = density[0]
    dy = density[1]
    dz = density[2]
    x0, x1, fx = _grid_axis(g[0], dx)
    y0, y1, fy = _grid_axis(g[1], dy)
    z0, z1, fz = _grid_axis(g[2], dz)

    i000 = x0 + y0 * dx + z0 * dx * dy
    i100 = x1 + y0 * dx + z0 * dx * dy
    i010 = x0 + y1 * dx + z0 * dx * dy
    i110 = x1 + y1 * dx + z0 * dx * dy
    i001 = x0 + y0 * dx + z1 * dx * dy
    i101 = x1 + y0 * dx + z1 * dx * dy
    i011 = x0 + y1 * dx + z1 * dx * dy
    i111 = x1 + y1 * dx + z1 * dx * dy

    out = np.empty(3)
    for a in range(3):
        # along x
        c00 = velocities[i000, a] + (velocities[i100, a] - velocities[i000, a]) * fx
        c10 = velocities[i010, a] + (velocities[i110, a] - velocities[i010, a]) * fx
        c01 = velocities[i001, a] + (velocities[i101, a] - velocities[i001, a]) * fx
        c11 = velocities[i011, a] + (velocities[i111, a] - velocities[i011, a]) * fx
        # along y
        c0 = c00 + (c10 - c00) * fy
        c1 = c01 + (c11 - c01) * fy
        # along z
        out[a] = c0 + (c1 - c0) * fz
    return out


@nb.njit(cache=True)
def obstacle_shadow(
    position: npt.NDArray[np.float64],
    velocity: npt.NDArray[np.float64],
    direction: npt.NDArray[np.float64],
    speed: float,
    obstacle_position: npt.NDArray[np.float64],
    obstacle_radius: npt.NDArray[np.float64],
    shadow_strength: npt.NDArray[np.float64],
    shadow_distance: npt.NDArray[np.float64]
) -> tuple[npt.NDArray[np.float64], bool]:
    """
    Attenuate a wind stimulus by the obstacles standing in its way.

    A cell inside an obstacle is blocked: the velocity is scaled by
    ``1 - shadow_strength`` and the cell is reported as occluded, ending the
    scan. A cell downwind of an obstacle, within its radius of the wind line
    through the obstacle centre, is shadowed: the velocity is blended towards
    ``sqrt(d) * velocity`` where ``d`` grows from 0 at the obstacle surface to
    1 at ``shadow_distance * 2 * radius * speed``. Shadows from several
    obstacles compound.

    Args:
        position: (3,) cell position.
        velocity: (3,) incoming velocity.
        direction: (3,) unit wind direction.
        speed: Wind speed, stretching the shadow.

    Returns:
        ``(velocity, occluded)``.
    """
    result = velocity.copy()
    for o in range(obstacle_radius.shape[0]):
        radius = obstacle_radius[o]
        if radius <= 0.0:
            continue

        to_obstacle = obstacle_position[o] - position
        distance = vector_length(to_obstacle)
        if distance <= radius:
            return result * (1.0 - shadow_strength[o]), True

        projection = dot3(to_obstacle, direction)
        if projection >= 0.0:
            continue
        axis_point = position + direction * projection
        if vector_length(axis_point - obstacle_position[o]) > radius:
            continue

        reach = shadow_distance[o] * radius * 2.0 * speed
        if reach <= 0.0:
            continue
        attenuation = math.sqrt(saturate((distance - radius) / reach))
        result = result + (attenuation * result - result) * shadow_strength[o]

    return result, False


@nb.njit(cache=True)
def apply_global_winds(
    position: npt.NDArray[np.float64],
    velocity: npt.NDArray[np.float64],
    time: float,
    active: npt.NDArray[np.bool_],
    kind: npt.NDArray[np.int64],
    direction: npt.NDArray[np.float64],
    strength: npt.NDArray[np.float64],
    speed: npt.NDArray[np.float64],
    noise_scale: npt.NDArray[np.float64],
    perm: npt.NDArray[np.int64],
    obstacle_position: npt.NDArray[np.float64],
    obstacle_radius: npt.NDArray[np.float64],
    shadow_strength: npt.NDArray[np.float64],
    shadow_distance: npt.NDArray[np.float64]
) -> tuple[npt.NDArray[np.float64], bool]:
    """
    Add every active global wind, each one shadowed by the obstacles.

    Returns:
        ``(velocity, occluded)`` where ``occluded`` is true if any obstacle
        fully blocked the cell for any of the winds.
    """
    result = velocity.copy()
    occluded = False
    sample = np.empty(3)
    for s in range(active.shape[0]):
        if not active[s]:
            continue

        if kind[s] == GLOBAL_DIRECTIONAL:
            for a in range(3):
                result[a] += strength[s] * speed[s] * direction[s, a]
        else:
            # The noise scrolls against the wind direction over time
            for a in range(3):
                sample[a] = position[a] * noise_scale[s] - time * speed[s] * direction[s, a]
            _, gx, gy, gz = simplex_noise_gradient(sample, perm)
            result[0] += gx * strength[s]
            result[1] += gy * strength[s]
            result[2] += gz * strength[s]

        result, blocked = obstacle_shadow(
            position, result, direction[s], speed[s],
            obstacle_position, obstacle_radius, shadow_strength, shadow_distance
        )
        if blocked:
            occluded = True

    return result, occluded


@nb.njit(cache=True)
def apply_local_winds(
    position: npt.NDArray[np.float64],
    velocity: npt.NDArray[np.float64],
    active: npt.NDArray[np.bool_],
    kind: npt.NDArray[np.int64],
    overwrite: npt.NDArray[np.bool_],
    source_position: npt.NDArray[np.float64],
    direction: npt.NDArray[np.float64],
    speed: npt.NDArray[np.float64],
    radius: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    """
    Blend the local winds into a cell, in array order.

    The blend factor is ``1 - t`` from the containment test, so a wind is
    strongest on its axis or at its centre. An overwriting wind discards
    everything accumulated before it.
    """
    result = velocity.copy()
    for s in range(active.shape[0]):
        if not active[s]:
            continue

        source_direction = direction[s].copy()
        if kind[s] == LOCAL_DIRECTIONAL:
            # speed doubles as the cylinder height
            inside, t = inside_cylinder(
                position, source_position[s], source_direction, radius[s], radius[s], speed[s]
            )
            wind_direction = source_direction
        else:
            inside, t = inside_sphere(position, source_position[s], radius[s])
            radial = safe_normalize(position - source_position[s])
            if radial[0] == 0.0 and radial[1] == 0.0 and radial[2] == 0.0:
                radial = source_direction
            if kind[s] == LOCAL_OMNI:
                wind_direction = radial
            else:
                wind_direction = cross3(radial, source_direction)

        if not inside:
            continue

        contribution = (1.0 - t) * speed[s] * wind_direction
        if overwrite[s]:
            result = contribution
        else:
            result = result + contribution

    return result


@nb.njit(cache=True)
def apply_obstacle_push(
    position: npt.NDArray[np.float64],
    velocity: npt.NDArray[np.float64],
    edge_length: float,
    obstacle_position: npt.NDArray[np.float64],
    obstacle_velocity: npt.NDArray[np.float64],
    obstacle_radius: npt.NDArray[np.float64],
    push_strength: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    """
    Let moving obstacles drag the air ahead of them.

    Only cells within ``radius * (1 + edge_length)`` of the obstacle are
    pushed, weighted by how well the obstacle-to-cell direction lines up with
    the obstacle's motion. Cells behind the obstacle are not pushed.
    """
    result = velocity.copy()
    for o in range(obstacle_radius.shape[0]):
        moving = obstacle_velocity[o]
        if push_strength[o] == 0.0 or (moving[0] == 0.0 and moving[1] == 0.0 and moving[2] == 0.0):
            continue

        to_cell = position - obstacle_position[o]
        if vector_length(to_cell) > obstacle_radius[o] * (1.0 + edge_length):
            continue

        alignment = saturate(dot3(safe_normalize(moving), safe_normalize(to_cell)))
        for a in range(3):
            result[a] += push_strength[o] * alignment * moving[a]

    return result


@nb.njit(parallel=True, cache=True)
def update_field_kernel(
    positions, velocities, mean_velocities,
    inverse_matrix, local_origin, edge_length, density,
    time, delta_time, decay, diffusion_passes, diffusion_rate, perm,
    g_active, g_kind, g_direction, g_strength, g_speed, g_noise_scale,
    l_active, l_kind, l_overwrite, l_position, l_direction, l_speed, l_radius,
    o_position, o_velocity, o_radius, o_push_strength, o_shadow_strength, o_shadow_distance,
    out_velocities, out_active
):
    """
    One field update, one independent work item per cell.

    Reads ``velocities`` and ``mean_velocities``, writes only row ``i`` of
    ``out_velocities`` and ``out_active``; the output buffers must not alias
    the input.
    """
    for i in nb.prange(positions.shape[0]):
        position = positions[i]

        # Semi-Lagrangian backtrace through the previous field
        source_position = position - velocities[i] * delta_time
        velocity = sample_velocity(
            source_position, velocities, inverse_matrix, local_origin, edge_length, density
        ) * decay

        velocity, occluded = apply_global_winds(
            position, velocity, time,
            g_active, g_kind, g_direction, g_strength, g_speed, g_noise_scale, perm,
            o_position, o_radius, o_shadow_strength, o_shadow_distance
        )
        velocity = apply_local_winds(
            position, velocity,
            l_active, l_kind, l_overwrite, l_position, l_direction, l_speed, l_radius
        )
        velocity = apply_obstacle_push(
            position, velocity, edge_length, o_position, o_velocity, o_radius, o_push_strength
        )

        if occluded:
            velocity = relax(velocity, mean_velocities[i], diffusion_passes, diffusion_rate)

        for a in range(3):
            out_velocities[i, a] = velocity[a]
        out_active[i] = not occluded


class FieldUpdater:
    """
    Advances a voxel grid by one tick.

    Per cell: backtrace and interpolate the previous field, damp it, add the
    global winds (shadowed by obstacles), blend in the local winds, apply
    obstacle pushes and, for cells an obstacle fully blocked, relax towards the
    neighbourhood mean.
    """

    def __init__(
        self,
        noise_seed: int = NOISE_SEED,
        decay: float = ADVECTION_DECAY,
        diffusion_passes: int = DIFFUSION_PASSES,
        diffusion_rate: float = DIFFUSION_RATE,
    ) -> None:
        self.noise = SimplexNoise(noise_seed)
        self.decay = decay
        self.diffusion_passes = diffusion_passes
        self.diffusion_rate = diffusion_rate

    def update(
        self,
        grid: VoxelGrid,
        snapshot: WindSnapshot,
        time: float,
        delta_time: float
    ) -> FieldUpdate:
        """
        Compute the next field from the grid's live state.

        The grid is not modified; the result is a fresh buffer tagged with the
        grid's generation, to be published with :meth:`VoxelGrid.commit`.

        Args:
            grid: The live grid.
            snapshot: Wind sources and obstacles for this tick.
            time: Simulation time in seconds, scrolls turbulence.
            delta_time: Tick length in seconds, drives the backtrace.
        """
        parameters = grid.parameters
        density = np.array(parameters.density, dtype=np.int64)
        extent = np.array(tuple(parameters.extent), dtype=np.float64)
        offset = np.array(tuple(parameters.offset), dtype=np.float64)
        local_origin = offset - extent / 2.0

        mean_velocities = neighbourhood_mean(grid.velocities, parameters.density)

        out_velocities = np.empty((grid.count, 3), dtype=np.float64)
        out_active = np.empty(grid.count, dtype=np.bool_)

        g = snapshot.packed_global_winds
        lw = snapshot.packed_local_winds
        o = snapshot.packed_obstacles

        update_field_kernel(
            grid.positions, grid.velocities, mean_velocities,
            parameters.inverse_matrix, local_origin, parameters.edge_length, density,
            float(time), float(delta_time), float(self.decay),
            int(self.diffusion_passes), float(self.diffusion_rate), self.noise.perm,
            g.active, g.kind, g.direction, g.strength, g.speed, g.noise_scale,
            lw.active, lw.kind, lw.overwrite, lw.position, lw.direction, lw.speed, lw.radius,
            o.position, o.velocity, o.radius, o.push_strength, o.shadow_strength, o.shadow_distance,
            out_velocities, out_active,
        )

        occluded = int(grid.count - np.count_nonzero(out_active))
        logger.debug(
            f"Field update for generation {grid.generation}: "
            f"{grid.count} cells, {occluded} occluded."
        )
        return FieldUpdate(generation=grid.generation, velocities=out_velocities, active=out_active)
