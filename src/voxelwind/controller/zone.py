"""
Wind Zone
=========
Drives one voxel grid tick by tick.

A tick either rebuilds the grid (when its parameters changed) or advances
the field by one step. The field update is computed into a fresh buffer and
only published once complete; if the grid was rebuilt while the update was
running, the buffer is discarded.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional

from voxelwind.controller.aggregator import EMPTY_SNAPSHOT, SourceAggregator
from voxelwind.errors import ConfigurationError, StaleUpdateError
from voxelwind.model.grid import GridParameters, VoxelGrid
from voxelwind.solvers.builder import build_grid
from voxelwind.solvers.field_updater import FieldUpdater

logger = logging.getLogger(__name__)

GridSink = Callable[[VoxelGrid], None]


class WindZone:
    """
    A rectangular region of simulated wind.

    Args:
        parameters: Initial grid parameters. They are validated on the first tick.
        aggregator: Default source of winds and obstacles.
        sinks: Callables receiving the grid after every committed update.
        updater: Field updater; a default one is created if omitted.
    """
    def __init__(
        self,
        parameters: GridParameters,
        aggregator: Optional[SourceAggregator] = None,
        sinks: Iterable[GridSink] = (),
        updater: Optional[FieldUpdater] = None,
    ) -> None:
        self.aggregator = aggregator
        self.sinks: list[GridSink] = list(sinks)
        self.updater = updater or FieldUpdater()

        self._parameters = parameters
        self._grid: Optional[VoxelGrid] = None
        self._dirty = True

        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()

    @property
    def parameters(self) -> GridParameters:
        return self._parameters

    @property
    def grid(self) -> Optional[VoxelGrid]:
        """The last valid grid, or None before the first successful build."""
        return self._grid

    def set_parameters(self, parameters: GridParameters) -> None:
        """Schedule a rebuild with new parameters on the next tick."""
        with self._state_lock:
            if parameters == self._parameters:
                return
            self._parameters = parameters
            self._dirty = True

    def rebuild(self) -> VoxelGrid:
        """
        Rebuild the grid from the current parameters right away.

        Raises:
            ConfigurationError: If the parameters are invalid; the previous grid stays live.
        """
        with self._state_lock:
            grid = build_grid(self._parameters, previous=self._grid)
            self._grid = grid
            self._dirty = False
        return grid

    def tick(
        self,
        time: float,
        delta_time: float,
        aggregator: Optional[SourceAggregator] = None
    ) -> Optional[VoxelGrid]:
        """
        Advance the zone by one tick.

        Args:
            time: Simulation time in seconds.
            delta_time: Time since the previous tick in seconds.
            aggregator: Sources for this tick; defaults to the zone's aggregator.

        Returns:
            The live grid after the tick (None if no valid grid was ever built).
        """
        with self._tick_lock:
            if self._dirty or self._grid is None:
                try:
                    return self.rebuild()
                except ConfigurationError as e:
                    logger.error(f"Grid rebuild rejected, keeping previous grid: {e}")
                    return self._grid

            grid = self._grid
            sources = aggregator or self.aggregator
            snapshot = sources.snapshot() if sources is not None else EMPTY_SNAPSHOT

            update = self.updater.update(grid, snapshot, time=time, delta_time=delta_time)

            with self._state_lock:
                try:
                    self._grid.commit(update)
                except StaleUpdateError as e:
                    logger.warning(f"Discarding field update: {e}")
                    return self._grid
                grid = self._grid

            for sink in self.sinks:
                try:
                    sink(grid)
                except Exception:
                    logger.exception(f"Grid sink {sink!r} failed")
                    raise

            return grid
