"""
Live wind emitters.

Emitters are the mutable objects a host moves around and tweaks between
ticks. Once per tick the aggregator asks each one for an immutable snapshot
(:mod:`voxelwind.model.sources`), which is all the update kernel ever sees.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from voxelwind.model.geometry_primitives import Vector
from voxelwind.model.sources import (
    GlobalWindKind,
    GlobalWindSource,
    LocalWindKind,
    LocalWindSource,
    Obstacle,
)


class Emitter(ABC):
    """
    Base class for live emitters.
    """
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    @abstractmethod
    def snapshot(self):
        """Return the immutable descriptor of the emitter's current state."""
        pass


class GlobalWind(Emitter):
    """
    A field-wide wind. It goes quiet when disabled or when its strength is zero.
    """
    def __init__(
        self,
        kind: GlobalWindKind = GlobalWindKind.DIRECTIONAL,
        direction: Vector | Sequence[float] = Vector(0.0, 0.0, 1.0),
        strength: float = 1.0,
        speed: float = 1.0,
        noise_scale: float = 1.0,
        enabled: bool = True,
    ) -> None:
        super().__init__(enabled)
        self.kind = GlobalWindKind(kind)
        self.direction = Vector.of(direction)
        self.strength = strength
        self.speed = speed
        self.noise_scale = noise_scale

    @property
    def active(self) -> bool:
        return self.snapshot().active

    def snapshot(self) -> GlobalWindSource:
        return GlobalWindSource(
            kind=self.kind,
            direction=self.direction.normalize(),
            strength=float(self.strength),
            speed=float(self.speed),
            noise_scale=float(self.noise_scale),
            enabled=self.enabled,
        )


class LocalWind(Emitter):
    """
    A bounded wind volume. It goes quiet when disabled or when its speed is zero.
    """
    def __init__(
        self,
        kind: LocalWindKind = LocalWindKind.DIRECTIONAL,
        position: Vector | Sequence[float] = Vector(),
        direction: Vector | Sequence[float] = Vector(0.0, 0.0, 1.0),
        speed: float = 1.0,
        radius: float = 5.0,
        overwrite: bool = False,
        enabled: bool = True,
    ) -> None:
        super().__init__(enabled)
        self.kind = LocalWindKind(kind)
        self.position = Vector.of(position)
        self.direction = Vector.of(direction)
        self.speed = speed
        self.radius = radius
        self.overwrite = overwrite

    @property
    def active(self) -> bool:
        return self.snapshot().active

    def snapshot(self) -> LocalWindSource:
        return LocalWindSource(
            kind=self.kind,
            position=self.position,
            direction=self.direction.normalize(),
            speed=float(self.speed),
            radius=float(self.radius),
            overwrite=self.overwrite,
            enabled=self.enabled,
        )


class SphereObstacle(Emitter):
    """
    A moving sphere that blocks, shadows and pushes the wind.

    The obstacle's velocity is derived from how far it moved during the last
    tick, see :meth:`move_to`.
    """
    def __init__(
        self,
        position: Vector | Sequence[float] = Vector(),
        radius: float = 1.0,
        push_strength: float = 0.05,
        shadow_strength: float = 1.0,
        shadow_distance: float = 1.0,
        enabled: bool = True,
    ) -> None:
        super().__init__(enabled)
        self.position = Vector.of(position)
        self.velocity = Vector()
        self.radius = radius
        self.push_strength = push_strength
        self.shadow_strength = shadow_strength
        self.shadow_distance = shadow_distance

    def move_to(self, position: Vector | Sequence[float], delta_time: float) -> None:
        """
        Move the obstacle and update its velocity.

        Args:
            position: New position.
            delta_time: Time since the previous move. A non-positive value
                leaves the obstacle at rest.
        """
        position = Vector.of(position)
        if delta_time > 0.0:
            self.velocity = (position - self.position) / delta_time
        else:
            self.velocity = Vector()
        self.position = position

    def snapshot(self) -> Obstacle:
        return Obstacle(
            position=self.position,
            velocity=self.velocity,
            radius=float(self.radius),
            push_strength=float(self.push_strength),
            shadow_strength=float(self.shadow_strength),
            shadow_distance=float(self.shadow_distance),
        )
