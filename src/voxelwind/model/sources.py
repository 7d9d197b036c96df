"""
Wind Source Data Model
======================
Immutable descriptors of the things that drive the field during one tick.

The descriptors are value snapshots taken from live emitters
(:mod:`voxelwind.controller.emitters`). The update kernel only ever reads
them, so a tick sees a consistent picture even if the host keeps moving its
emitters while the update runs.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Dict

from voxelwind.model.geometry_primitives import Vector


class GlobalWindKind(StrEnum):
    DIRECTIONAL = "directional"
    TURBULENT = "turbulent"


class LocalWindKind(StrEnum):
    DIRECTIONAL = "directional"
    OMNI = "omni"
    VORTEX = "vortex"


@dataclass(frozen=True)
class GlobalWindSource:
    """
    A field-wide wind.

    Directional winds add ``strength * speed * direction`` to every cell.
    Turbulent winds add the gradient of a scrolling noise field, scaled by
    ``strength``; ``speed`` and ``direction`` scroll the noise over time and
    ``noise_scale`` sets its spatial frequency.
    """
    kind: GlobalWindKind = GlobalWindKind.DIRECTIONAL
    direction: Vector = Vector(0.0, 0.0, 1.0)
    strength: float = 1.0
    speed: float = 1.0
    noise_scale: float = 1.0
    enabled: bool = True

    @property
    def active(self) -> bool:
        return self.enabled and self.strength != 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "direction": list(self.direction),
            "strength": self.strength,
            "speed": self.speed,
            "noise_scale": self.noise_scale,
            "enabled": self.enabled,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> GlobalWindSource:
        return GlobalWindSource(
            kind=GlobalWindKind(data.get("kind", GlobalWindKind.DIRECTIONAL)),
            direction=Vector.of(data.get("direction", (0.0, 0.0, 1.0))),
            strength=float(data.get("strength", 1.0)),
            speed=float(data.get("speed", 1.0)),
            noise_scale=float(data.get("noise_scale", 1.0)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class LocalWindSource:
    """
    A spatially bounded wind.

    Directional winds fill a cylinder of ``radius`` starting at ``position``
    and running ``speed`` units along ``direction``: the speed doubles as the
    cylinder height. Omni and Vortex winds fill a sphere of ``radius`` and blow
    outwards or swirl around ``direction`` respectively.

    With ``overwrite`` set, the wind replaces whatever velocity the cell had
    instead of adding to it.
    """
    kind: LocalWindKind = LocalWindKind.DIRECTIONAL
    position: Vector = Vector()
    direction: Vector = Vector(0.0, 0.0, 1.0)
    speed: float = 1.0
    radius: float = 5.0
    overwrite: bool = False
    enabled: bool = True

    @property
    def active(self) -> bool:
        return self.enabled and self.speed != 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "position": list(self.position),
            "direction": list(self.direction),
            "speed": self.speed,
            "radius": self.radius,
            "overwrite": self.overwrite,
            "enabled": self.enabled,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> LocalWindSource:
        return LocalWindSource(
            kind=LocalWindKind(data.get("kind", LocalWindKind.DIRECTIONAL)),
            position=Vector.of(data.get("position", (0.0, 0.0, 0.0))),
            direction=Vector.of(data.get("direction", (0.0, 0.0, 1.0))),
            speed=float(data.get("speed", 1.0)),
            radius=float(data.get("radius", 5.0)),
            overwrite=bool(data.get("overwrite", False)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class Obstacle:
    """
    A moving solid sphere.

    Cells inside the sphere are blocked, cells downwind of it are shadowed
    over roughly ``shadow_distance`` diameters, and a moving obstacle pushes
    the cells ahead of it with ``push_strength``.
    """
    position: Vector = Vector()
    velocity: Vector = Vector()
    radius: float = 1.0
    push_strength: float = 0.05
    shadow_strength: float = 1.0
    shadow_distance: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": list(self.position),
            "velocity": list(self.velocity),
            "radius": self.radius,
            "push_strength": self.push_strength,
            "shadow_strength": self.shadow_strength,
            "shadow_distance": self.shadow_distance,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Obstacle:
        return Obstacle(
            position=Vector.of(data.get("position", (0.0, 0.0, 0.0))),
            velocity=Vector.of(data.get("velocity", (0.0, 0.0, 0.0))),
            radius=float(data.get("radius", 1.0)),
            push_strength=float(data.get("push_strength", 0.05)),
            shadow_strength=float(data.get("shadow_strength", 1.0)),
            shadow_distance=float(data.get("shadow_distance", 1.0)),
        )
