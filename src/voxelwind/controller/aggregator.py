"""
Source Aggregation
==================
Collects the live emitters once per tick into an immutable snapshot.

An aggregator is an ordinary object: the host constructs it, registers
emitters on it and hands it to one or more wind zones. Winds registered as
"constant" are meant to be shared scene-wide and come first in the local
wind order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Iterable

import numpy as np

from voxelwind.controller.emitters import Emitter, GlobalWind, LocalWind, SphereObstacle
from voxelwind.model.sources import GlobalWindSource, LocalWindSource, Obstacle
from voxelwind.solvers.field_updater import (
    PackedGlobalWinds,
    PackedLocalWinds,
    PackedObstacles,
    pack_global_winds,
    pack_local_winds,
    pack_obstacles,
)

logger = logging.getLogger(__name__)


def _read_only(packed):
    for value in vars(packed).values():
        value.flags.writeable = False
    return packed


@dataclass(frozen=True)
class WindSnapshot:
    """
    Wind sources and obstacles for one tick.

    Holds the descriptors as tuples and the same data laid out as arrays
    for the update kernel. Local winds keep their order.
    """
    global_winds: tuple[GlobalWindSource, ...] = ()
    local_winds: tuple[LocalWindSource, ...] = ()
    obstacles: tuple[Obstacle, ...] = ()
    packed_global_winds: PackedGlobalWinds = field(init=False, repr=False)
    packed_local_winds: PackedLocalWinds = field(init=False, repr=False)
    packed_obstacles: PackedObstacles = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "global_winds", tuple(self.global_winds))
        object.__setattr__(self, "local_winds", tuple(self.local_winds))
        object.__setattr__(self, "obstacles", tuple(self.obstacles))
        object.__setattr__(self, "packed_global_winds", _read_only(pack_global_winds(self.global_winds)))
        object.__setattr__(self, "packed_local_winds", _read_only(pack_local_winds(self.local_winds)))
        object.__setattr__(self, "packed_obstacles", _read_only(pack_obstacles(self.obstacles)))

    @property
    def active_global_winds(self) -> int:
        return int(np.count_nonzero(self.packed_global_winds.active))

    @property
    def active_local_winds(self) -> int:
        return int(np.count_nonzero(self.packed_local_winds.active))


EMPTY_SNAPSHOT = WindSnapshot()


class SourceAggregator:
    """
    Registry of live emitters feeding one or more wind zones.
    """
    def __init__(
        self,
        global_winds: Iterable[GlobalWind] = (),
        local_winds: Iterable[LocalWind] = (),
        obstacles: Iterable[SphereObstacle] = (),
        constant_local_winds: Iterable[LocalWind] = (),
    ) -> None:
        self._lock = threading.Lock()
        self.global_winds: list[GlobalWind] = list(global_winds)
        self.local_winds: list[LocalWind] = list(local_winds)
        self.obstacles: list[SphereObstacle] = list(obstacles)
        self.constant_local_winds: list[LocalWind] = list(constant_local_winds)

    def add_global_wind(self, wind: GlobalWind) -> GlobalWind:
        with self._lock:
            self.global_winds.append(wind)
        return wind

    def add_local_wind(self, wind: LocalWind) -> LocalWind:
        with self._lock:
            self.local_winds.append(wind)
        return wind

    def add_constant_local_wind(self, wind: LocalWind) -> LocalWind:
        with self._lock:
            self.constant_local_winds.append(wind)
        return wind

    def add_obstacle(self, obstacle: SphereObstacle) -> SphereObstacle:
        with self._lock:
            self.obstacles.append(obstacle)
        return obstacle

    def remove(self, emitter: Emitter) -> None:
        """
        Unregister an emitter from whichever list holds it.

        Raises:
            ValueError: If the emitter is not registered.
        """
        with self._lock:
            for registry in (self.global_winds, self.local_winds, self.constant_local_winds, self.obstacles):
                if emitter in registry:
                    registry.remove(emitter)
                    return
        raise ValueError(f"Emitter {emitter!r} is not registered.")

    def snapshot(self) -> WindSnapshot:
        """
        Freeze the current state of every emitter.

        Disabled obstacles are left out; disabled winds are kept but inactive.
        """
        with self._lock:
            snapshot = WindSnapshot(
                global_winds=tuple(w.snapshot() for w in self.global_winds),
                local_winds=tuple(w.snapshot() for w in self.constant_local_winds + self.local_winds),
                obstacles=tuple(o.snapshot() for o in self.obstacles if o.enabled),
            )
        logger.debug(
            f"Snapshot: {snapshot.active_global_winds}/{len(snapshot.global_winds)} global, "
            f"{snapshot.active_local_winds}/{len(snapshot.local_winds)} local, "
            f"{len(snapshot.obstacles)} obstacles."
        )
        return snapshot
