"""
Simulation Constants
====================
This module is the central registry for the tuning constants of the wind field.

The field is a lightweight advection-and-blend model, not a fluid solver. The
values below are what make it look like wind; they are shared by the update
kernel, the grid builder defaults and the tests.

Exports:
    ADVECTION_DECAY (float): Damping applied to the backtraced velocity each tick.
    DIFFUSION_PASSES (int): Relaxation passes run on occluded cells.
    DIFFUSION_RATE (float): Blend factor of one relaxation pass.
    NOISE_SEED (int): Seed of the permutation table used by turbulent winds.
"""

# Field update
ADVECTION_DECAY: float = 0.3
DIFFUSION_PASSES: int = 5
DIFFUSION_RATE: float = 0.3

# Turbulence
NOISE_SEED: int = 0

# Grid defaults (metres)
DEFAULT_EDGE_LENGTH: float = 1.0
DEFAULT_EXTENT: tuple[float, float, float] = (10.0, 10.0, 10.0)
