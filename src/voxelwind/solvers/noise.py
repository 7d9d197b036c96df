"""
3D simplex noise with an analytic gradient.

Turbulent winds push each cell along the gradient of a smooth noise field.
Evaluating the gradient analytically keeps it continuous and costs about as
much as the noise value itself.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numba as nb
import numpy as np

from voxelwind.config import NOISE_SEED
from voxelwind.model.geometry_primitives import Vector

if TYPE_CHECKING:
    import numpy.typing as npt

F3 = 1.0 / 3.0
G3 = 1.0 / 6.0

# Midpoints of the edges of a cube
GRAD3 = np.array([
    [1.0, 1.0, 0.0], [-1.0, 1.0, 0.0], [1.0, -1.0, 0.0], [-1.0, -1.0, 0.0],
    [1.0, 0.0, 1.0], [-1.0, 0.0, 1.0], [1.0, 0.0, -1.0], [-1.0, 0.0, -1.0],
    [0.0, 1.0, 1.0], [0.0, -1.0, 1.0], [0.0, 1.0, -1.0], [0.0, -1.0, -1.0],
])

NOISE_AMPLITUDE = 32.0


def permutation_table(seed: int = NOISE_SEED) -> npt.NDArray[np.int64]:
    """
    Doubled permutation of 0..255, so lookups of ``perm[i + perm[j]]`` never wrap.
    """
    perm = np.random.default_rng(seed).permutation(256).astype(np.int64)
    return np.concatenate((perm, perm))


@nb.njit(cache=True, fastmath=True)
def simplex_noise_gradient(
    point: npt.NDArray[np.float64],
    perm: npt.NDArray[np.int64]
) -> tuple[float, float, float, float]:
    """
    Evaluate 3D simplex noise and its gradient.

    Args:
        point: (3,) sample position.
        perm: Doubled permutation table from :func:`permutation_table`.

    Returns:
        ``(value, dn/dx, dn/dy, dn/dz)``; the value lies roughly in [-1, 1].
    """
    x = point[0]
    y = point[1]
    z = point[2]

    # Skew into simplex space to find the containing cube
    s = (x + y + z) * F3
    i = int(math.floor(x + s))
    j = int(math.floor(y + s))
    k = int(math.floor(z + s))
    t = (i + j + k) * G3
    x0 = x - (i - t)
    y0 = y - (j - t)
    z0 = z - (k - t)

    # Rank the offsets to pick which of the six simplices we are in
    if x0 >= y0:
        if y0 >= z0:
            i1, j1, k1, i2, j2, k2 = 1, 0, 0, 1, 1, 0
        elif x0 >= z0:
            i1, j1, k1, i2, j2, k2 = 1, 0, 0, 1, 0, 1
        else:
            i1, j1, k1, i2, j2, k2 = 0, 0, 1, 1, 0, 1
    else:
        if y0 < z0:
            i1, j1, k1, i2, j2, k2 = 0, 0, 1, 0, 1, 1
        elif x0 < z0:
            i1, j1, k1, i2, j2, k2 = 0, 1, 0, 0, 1, 1
        else:
            i1, j1, k1, i2, j2, k2 = 0, 1, 0, 1, 1, 0

    xs = np.array([x0, x0 - i1 + G3, x0 - i2 + 2.0 * G3, x0 - 1.0 + 3.0 * G3])
    ys = np.array([y0, y0 - j1 + G3, y0 - j2 + 2.0 * G3, y0 - 1.0 + 3.0 * G3])
    zs = np.array([z0, z0 - k1 + G3, z0 - k2 + 2.0 * G3, z0 - 1.0 + 3.0 * G3])

    ii = i & 255
    jj = j & 255
    kk = k & 255
    gradients = np.empty(4, dtype=np.int64)
    gradients[0] = perm[ii + perm[jj + perm[kk]]] % 12
    gradients[1] = perm[ii + i1 + perm[jj + j1 + perm[kk + k1]]] % 12
    gradients[2] = perm[ii + i2 + perm[jj + j2 + perm[kk + k2]]] % 12
    gradients[3] = perm[ii + 1 + perm[jj + 1 + perm[kk + 1]]] % 12

    value = 0.0
    dx = 0.0
    dy = 0.0
    dz = 0.0
    for c in range(4):
        cx = xs[c]
        cy = ys[c]
        cz = zs[c]
        falloff = 0.6 - cx * cx - cy * cy - cz * cz
        if falloff <= 0.0:
            continue
        gx = GRAD3[gradients[c], 0]
        gy = GRAD3[gradients[c], 1]
        gz = GRAD3[gradients[c], 2]
        gdot = gx * cx + gy * cy + gz * cz
        falloff2 = falloff * falloff
        falloff4 = falloff2 * falloff2
        value += falloff4 * gdot
        # d/dx of falloff^4 * gdot
        radial = -8.0 * falloff2 * falloff * gdot
        dx += radial * cx + falloff4 * gx
        dy += radial * cy + falloff4 * gy
        dz += radial * cz + falloff4 * gz

    return (
        NOISE_AMPLITUDE * value,
        NOISE_AMPLITUDE * dx,
        NOISE_AMPLITUDE * dy,
        NOISE_AMPLITUDE * dz,
    )


class SimplexNoise:
    """
    Seeded simplex noise field.
    """
    def __init__(self, seed: int = NOISE_SEED) -> None:
        self.seed = seed
        self.perm = permutation_table(seed)

    def value(self, point: Vector) -> float:
        return simplex_noise_gradient(point.to_array(), self.perm)[0]

    def gradient(self, point: Vector) -> Vector:
        _, dx, dy, dz = simplex_noise_gradient(point.to_array(), self.perm)
        return Vector(dx, dy, dz)
