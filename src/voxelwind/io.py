"""
VTK Export
==========
Writes committed wind fields as a ParaView time series.

Each frame is a point cloud (one point per cell) carrying the velocity
vectors, their magnitude and the active flag. A ``.pvd`` collection ties the
frames together so ParaView can play them back.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

import numpy as np
import pyvista as pv

from voxelwind.model.grid import VoxelGrid

logger = logging.getLogger(__name__)


def grid_to_polydata(grid: VoxelGrid) -> pv.PolyData:
    """
    Convert a voxel grid into a PyVista point cloud.
    """
    cloud = pv.PolyData(np.array(grid.positions, dtype=np.float64))
    cloud.point_data["velocity"] = np.array(grid.velocities, dtype=np.float64)
    cloud.point_data["speed"] = np.linalg.norm(grid.velocities, axis=1)
    cloud.point_data["active"] = np.array(grid.active, dtype=np.uint8)
    cloud.field_data["edge_length"] = [grid.edge_length]
    return cloud


class VtkSeriesSink:
    """
    Grid sink writing every committed tick as ``frame_XXXXX.vtp``.

    Args:
        output_dir: Directory receiving the frames and ``wind_frames.pvd``.
        frame_time: Time step written into the collection; defaults to the frame index.
    """
    PVD_NAME = "wind_frames.pvd"

    def __init__(self, output_dir: str, frame_time: Optional[float] = None) -> None:
        self.output_dir = output_dir
        self.frame_time = frame_time
        self.frames: list[tuple[float, str]] = []
        os.makedirs(output_dir, exist_ok=True)

    @property
    def pvd_path(self) -> str:
        return os.path.join(self.output_dir, self.PVD_NAME)

    def __call__(self, grid: VoxelGrid) -> None:
        index = len(self.frames)
        filename = f"frame_{index:05d}.vtp"
        filepath = os.path.join(self.output_dir, filename)

        timestep = index * self.frame_time if self.frame_time is not None else float(index)

        cloud = grid_to_polydata(grid)
        cloud.field_data["TimeValue"] = [timestep]
        cloud.save(filepath)

        self.frames.append((timestep, filename))
        self._write_collection()
        logger.debug(f"Wrote wind frame {filepath}")

    def _write_collection(self) -> None:
        pvd_lines = [
            '<?xml version="1.0"?>',
            '<VTKFile type="Collection" version="0.1" byte_order="LittleEndian" compressor="vtkZLibDataCompressor">',
            '  <Collection>'
        ]
        for timestep, filename in self.frames:
            pvd_lines.append(f'    <DataSet timestep="{timestep}" group="" part="0" file="{filename}"/>')
        pvd_lines.append('  </Collection>')
        pvd_lines.append('</VTKFile>')

        with open(self.pvd_path, "w") as f:
            f.write("\n".join(pvd_lines))
