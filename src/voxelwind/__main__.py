"""Command-line demo: a small breezy scene with a sphere orbiting through it."""
import logging
import math
import sys

from voxelwind.controller.aggregator import SourceAggregator
from voxelwind.controller.emitters import GlobalWind, LocalWind, SphereObstacle
from voxelwind.controller.zone import WindZone
from voxelwind.dev import timer
from voxelwind.logging_config import setup_logging
from voxelwind.model.geometry_primitives import Vector
from voxelwind.model.grid import GridParameters
from voxelwind.model.sources import GlobalWindKind, LocalWindKind

logger = logging.getLogger("voxelwind.demo")

TICKS = 120
DELTA_TIME = 1.0 / 30.0


@timer
def main() -> None:
    setup_logging(level=logging.INFO)
    output_dir = sys.argv[1] if len(sys.argv) > 1 else None

    aggregator = SourceAggregator()
    aggregator.add_global_wind(GlobalWind(direction=Vector(1.0, 0.0, 0.0), strength=1.0, speed=2.0))
    aggregator.add_global_wind(GlobalWind(
        kind=GlobalWindKind.TURBULENT,
        direction=Vector(1.0, 0.0, 0.0),
        strength=0.5,
        speed=1.0,
        noise_scale=0.15,
    ))
    aggregator.add_local_wind(LocalWind(
        kind=LocalWindKind.VORTEX,
        position=Vector(0.0, 0.0, 0.0),
        direction=Vector(0.0, 1.0, 0.0),
        speed=3.0,
        radius=4.0,
    ))
    sphere = aggregator.add_obstacle(SphereObstacle(position=Vector(6.0, 0.0, 0.0), radius=1.5))

    sinks = []
    if output_dir:
        from voxelwind.io import VtkSeriesSink
        sinks.append(VtkSeriesSink(output_dir, frame_time=DELTA_TIME))

    zone = WindZone(
        GridParameters.from_extent(extent=(20.0, 10.0, 20.0), edge_length=1.0),
        aggregator=aggregator,
        sinks=sinks,
    )

    for step in range(TICKS):
        time = step * DELTA_TIME
        angle = 0.5 * time
        sphere.move_to(Vector(6.0 * math.cos(angle), 0.0, 6.0 * math.sin(angle)), DELTA_TIME)
        grid = zone.tick(time=time, delta_time=DELTA_TIME)
        if grid is not None and step % 30 == 0:
            occluded = grid.count - int(grid.active.sum())
            logger.info(f"tick {step:4d}: mean speed {grid.mean_speed():.3f}, {occluded} occluded cells")

    if output_dir:
        logger.info(f"Frames written to '{output_dir}'. Open '{sinks[0].pvd_path}' in ParaView.")


if __name__ == "__main__":
    main()
