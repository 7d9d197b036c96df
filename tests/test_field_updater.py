"""Tests for the per-tick field update."""
import math

import numpy as np
import pytest

from voxelwind.controller.aggregator import EMPTY_SNAPSHOT, WindSnapshot
from voxelwind.errors import StaleUpdateError
from voxelwind.model.geometry_primitives import Vector, to_linear_index
from voxelwind.model.sources import (
    GlobalWindKind,
    GlobalWindSource,
    LocalWindKind,
    LocalWindSource,
    Obstacle,
)
from voxelwind.solvers.builder import build_grid
from voxelwind.solvers.field_updater import (
    FieldUpdater,
    apply_local_winds,
    apply_obstacle_push,
    neighbourhood_mean,
    obstacle_shadow,
    pack_local_winds,
    pack_obstacles,
    relax,
    sample_velocity,
)
from voxelwind.solvers.noise import SimplexNoise

from conftest import make_grid, seed_velocities

EAST = GlobalWindSource(direction=Vector(1.0, 0.0, 0.0), strength=2.0, speed=1.0)


def _v(*components):
    return np.array(components, dtype=np.float64)


def _sample(grid, point):
    parameters = grid.parameters
    local_origin = (
        np.array(tuple(parameters.offset)) - np.array(tuple(parameters.extent)) / 2.0
    )
    return sample_velocity(
        np.asarray(point, dtype=np.float64),
        grid.velocities,
        parameters.inverse_matrix,
        local_origin,
        parameters.edge_length,
        np.array(parameters.density, dtype=np.int64),
    )


def _local(sources, position, velocity):
    packed = pack_local_winds(sources)
    return apply_local_winds(
        np.asarray(position, dtype=np.float64),
        np.asarray(velocity, dtype=np.float64),
        packed.active, packed.kind, packed.overwrite,
        packed.position, packed.direction, packed.speed, packed.radius,
    )


def _push(obstacles, position, velocity, edge_length=1.0):
    packed = pack_obstacles(obstacles)
    return apply_obstacle_push(
        np.asarray(position, dtype=np.float64),
        np.asarray(velocity, dtype=np.float64),
        edge_length,
        packed.position, packed.velocity, packed.radius, packed.push_strength,
    )


class TestSampleVelocity:
    def test_exact_at_cell_positions(self):
        rng = np.random.default_rng(7)
        grid = seed_velocities(make_grid((3, 3, 3)), rng.normal(size=(27, 3)))
        for i in range(grid.count):
            np.testing.assert_allclose(_sample(grid, grid.positions[i]), grid.velocities[i], atol=1e-12)

    def test_midpoint_is_mean(self):
        grid = seed_velocities(make_grid((2, 1, 1)), [[1.0, 0.0, 0.0], [3.0, 2.0, 0.0]])
        midpoint = (grid.positions[0] + grid.positions[1]) / 2.0
        np.testing.assert_allclose(_sample(grid, midpoint), (2.0, 1.0, 0.0))

    def test_clamps_outside_grid(self):
        grid = seed_velocities(make_grid((2, 2, 2)), np.arange(24))
        np.testing.assert_allclose(_sample(grid, (-100.0, -100.0, -100.0)), grid.velocities[0])
        np.testing.assert_allclose(_sample(grid, (100.0, 100.0, 100.0)), grid.velocities[7])

    def test_non_finite_point_stays_in_grid(self):
        grid = seed_velocities(make_grid((2, 2, 2)), np.ones(24))
        np.testing.assert_allclose(_sample(grid, (math.nan, 0.0, math.inf)), (1.0, 1.0, 1.0))

    def test_follows_transform(self):
        transform = np.eye(4)
        transform[:3, 3] = (100.0, 0.0, 0.0)
        grid = seed_velocities(make_grid((2, 1, 1), transform=transform), [[1.0, 0.0, 0.0], [3.0, 0.0, 0.0]])
        assert grid.positions[0][0] == pytest.approx(99.0)
        np.testing.assert_allclose(_sample(grid, grid.positions[1]), (3.0, 0.0, 0.0))


class TestDiffusion:
    def test_neighbourhood_mean_excludes_out_of_bounds(self):
        velocities = np.zeros((27, 3))
        velocities[13] = (27.0, 0.0, 0.0)
        mean = neighbourhood_mean(velocities, (3, 3, 3))
        assert mean[13, 0] == pytest.approx(1.0)
        # corner: 2x2x2 in-bounds neighbours
        assert mean[0, 0] == pytest.approx(27.0 / 8.0)
        # face centre: 3x3x2 in-bounds neighbours
        assert mean[to_linear_index(1, 1, 0, (3, 3, 3)), 0] == pytest.approx(27.0 / 18.0)

    def test_uniform_field_is_fixed_point(self):
        velocities = np.tile([1.0, -2.0, 0.5], (24, 1))
        np.testing.assert_allclose(neighbourhood_mean(velocities, (2, 3, 4)), velocities)

    def test_relax_converges_monotonically(self):
        outlier = _v(27.0, 0.0, 0.0)
        target = _v(1.0, 0.0, 0.0)
        distances = [np.linalg.norm(relax(outlier, target, passes, 0.3) - target) for passes in range(6)]
        assert all(a > b for a, b in zip(distances, distances[1:]))
        assert distances[5] == pytest.approx(26.0 * 0.7**5)

    def test_zero_passes_is_identity(self):
        np.testing.assert_array_equal(relax(_v(1, 2, 3), _v(0, 0, 0), 0, 0.3), _v(1, 2, 3))


class TestObstacleShadow:
    def _shadow(self, position, velocity, obstacle_position, radius, strength=1.0, distance=1.0, speed=1.0):
        return obstacle_shadow(
            np.asarray(position, dtype=np.float64),
            np.asarray(velocity, dtype=np.float64),
            _v(1, 0, 0),
            speed,
            np.array([obstacle_position], dtype=np.float64),
            _v(radius),
            _v(strength),
            _v(distance),
        )

    def _shadow_all(self, position, velocity, obstacles):
        packed = pack_obstacles(obstacles)
        return obstacle_shadow(
            np.asarray(position, dtype=np.float64),
            np.asarray(velocity, dtype=np.float64),
            _v(1, 0, 0),
            1.0,
            packed.position,
            packed.radius,
            packed.shadow_strength,
            packed.shadow_distance,
        )

    @pytest.mark.parametrize("velocity", [(2.0, 0.0, 0.0), (0.0, -1.0, 3.0), (1.0, 1.0, 1.0)])
    def test_inside_obstacle_is_occluded(self, velocity):
        result, occluded = self._shadow((0.1, 0.0, 0.0), velocity, (0.0, 0.0, 0.0), 0.5, strength=0.75)
        assert occluded
        np.testing.assert_allclose(result, np.asarray(velocity) * 0.25)

    def test_downwind_is_attenuated(self):
        result, occluded = self._shadow((1.0, 0.0, 0.0), (2.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.4, strength=0.75)
        assert not occluded
        expected = 2.0 * (1.0 + 0.75 * (math.sqrt(0.75) - 1.0))
        np.testing.assert_allclose(result, (expected, 0.0, 0.0))

    def test_attenuation_fades_with_distance(self):
        near, _ = self._shadow((0.6, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.5)
        far, _ = self._shadow((1.2, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.5)
        beyond, _ = self._shadow((5.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.5)
        assert near[0] < far[0] < beyond[0]
        assert beyond[0] == pytest.approx(1.0)

    def test_upwind_is_untouched(self):
        result, occluded = self._shadow((-1.0, 0.0, 0.0), (2.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.4)
        assert not occluded
        np.testing.assert_array_equal(result, (2.0, 0.0, 0.0))

    def test_off_axis_is_untouched(self):
        result, _ = self._shadow((1.0, 1.0, 0.0), (2.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.4)
        np.testing.assert_array_equal(result, (2.0, 0.0, 0.0))

    def test_zero_radius_is_ignored(self):
        result, occluded = self._shadow((0.0, 0.0, 0.0), (2.0, 0.0, 0.0), (0.0, 0.0, 0.0), 0.0)
        assert not occluded
        np.testing.assert_array_equal(result, (2.0, 0.0, 0.0))

    def test_shadows_compound(self):
        near = Obstacle(position=Vector(2.0, 0.0, 0.0), radius=0.4, shadow_strength=0.75, shadow_distance=10.0)
        far = Obstacle(position=Vector(0.0, 0.0, 0.0), radius=0.4, shadow_strength=0.75, shadow_distance=10.0)
        cell, velocity = (3.0, 0.0, 0.0), (2.0, 0.0, 0.0)

        near_only, _ = self._shadow_all(cell, velocity, [near])
        far_only, _ = self._shadow_all(cell, velocity, [far])
        both, occluded = self._shadow_all(cell, velocity, [far, near])

        assert not occluded
        assert both[0] < min(near_only[0], far_only[0])
        # each shadow scales the velocity by its own factor
        assert both[0] == pytest.approx(near_only[0] * far_only[0] / 2.0)

    def test_first_full_occlusion_ends_scan(self):
        first = Obstacle(position=Vector(0.0, 0.0, 0.0), radius=1.0, shadow_strength=0.5)
        second = Obstacle(position=Vector(0.1, 0.0, 0.0), radius=1.0, shadow_strength=0.9)
        result, occluded = self._shadow_all((0.0, 0.0, 0.0), (2.0, 0.0, 0.0), [first, second])
        assert occluded
        np.testing.assert_allclose(result, (1.0, 0.0, 0.0))


class TestLocalWinds:
    def test_directional_cylinder(self):
        # a directional wind reaches as far along its axis as its speed
        CYLINDER_HEIGHT = SPEED = 4.0
        source = LocalWindSource(
            kind=LocalWindKind.DIRECTIONAL, direction=Vector(0.0, 0.0, 1.0), speed=SPEED, radius=1.0
        )
        quarter_up = (0.0, 0.0, CYLINDER_HEIGHT / 4.0)
        np.testing.assert_allclose(_local([source], quarter_up, (0.0, 0.0, 0.0)), (0.0, 0.0, 0.75 * SPEED))
        above_top = (0.0, 0.0, CYLINDER_HEIGHT + 1.0)
        np.testing.assert_allclose(_local([source], above_top, (1.0, 0.0, 0.0)), (1.0, 0.0, 0.0))

    def test_omni_blows_outwards(self):
        source = LocalWindSource(kind=LocalWindKind.OMNI, speed=2.0, radius=4.0)
        np.testing.assert_allclose(_local([source], (0.0, 2.0, 0.0), (0.0, 0.0, 0.0)), (0.0, 1.0, 0.0))

    def test_vortex_swirls(self):
        source = LocalWindSource(kind=LocalWindKind.VORTEX, direction=Vector(0.0, 1.0, 0.0), speed=2.0, radius=2.0)
        np.testing.assert_allclose(_local([source], (1.0, 0.0, 0.0), (0.0, 0.0, 0.0)), (0.0, 0.0, 1.0))

    def test_inactive_source_is_skipped(self):
        source = LocalWindSource(kind=LocalWindKind.OMNI, speed=2.0, radius=4.0, enabled=False, overwrite=True)
        np.testing.assert_allclose(_local([source], (0.0, 2.0, 0.0), (5.0, 5.0, 5.0)), (5.0, 5.0, 5.0))

    def test_overwrite_respects_order(self):
        additive = LocalWindSource(kind=LocalWindKind.OMNI, position=Vector(-1.0, 0.0, 0.0), speed=1.0, radius=10.0)
        overwriting = LocalWindSource(
            kind=LocalWindKind.OMNI, position=Vector(0.0, -1.0, 0.0), speed=2.0, radius=10.0, overwrite=True
        )
        start = (5.0, 5.0, 5.0)
        np.testing.assert_allclose(_local([additive, overwriting], (0.0, 0.0, 0.0), start), (0.0, 1.8, 0.0))
        np.testing.assert_allclose(_local([overwriting, additive], (0.0, 0.0, 0.0), start), (0.9, 1.8, 0.0))


class TestObstaclePush:
    OBSTACLE = Obstacle(position=Vector(), velocity=Vector(2.0, 0.0, 0.0), radius=1.0, push_strength=0.5)

    def test_pushes_ahead(self):
        np.testing.assert_allclose(_push([self.OBSTACLE], (1.0, 0.0, 0.0), (0.0, 0.0, 0.0)), (1.0, 0.0, 0.0))

    def test_no_push_behind(self):
        np.testing.assert_array_equal(_push([self.OBSTACLE], (-1.0, 0.0, 0.0), (0.0, 0.0, 0.0)), (0.0, 0.0, 0.0))

    def test_no_push_sideways(self):
        np.testing.assert_allclose(_push([self.OBSTACLE], (0.0, 1.0, 0.0), (0.0, 0.0, 0.0)), (0.0, 0.0, 0.0))

    def test_no_push_out_of_reach(self):
        np.testing.assert_array_equal(_push([self.OBSTACLE], (2.5, 0.0, 0.0), (0.0, 0.0, 0.0)), (0.0, 0.0, 0.0))

    def test_static_obstacle_does_not_push(self):
        static = Obstacle(radius=1.0, push_strength=0.5)
        np.testing.assert_array_equal(_push([static], (1.0, 0.0, 0.0), (0.0, 0.0, 0.0)), (0.0, 0.0, 0.0))


class TestNoise:
    @pytest.mark.parametrize("point", [(0.3, 1.7, -2.2), (10.1, 5.5, 3.3), (-4.2, 0.05, 7.9)])
    def test_gradient_matches_finite_differences(self, point):
        noise = SimplexNoise(seed=3)
        h = 1e-5
        p = Vector(*point)
        numeric = [
            (noise.value(p + step) - noise.value(p - step)) / (2.0 * h)
            for step in (Vector(h, 0.0, 0.0), Vector(0.0, h, 0.0), Vector(0.0, 0.0, h))
        ]
        np.testing.assert_allclose(tuple(noise.gradient(p)), numeric, rtol=1e-4, atol=1e-4)

    def test_seeded(self):
        p = Vector(1.3, -0.4, 2.2)
        assert SimplexNoise(5).value(p) == SimplexNoise(5).value(p)
        np.testing.assert_array_equal(SimplexNoise(5).perm, SimplexNoise(5).perm)
        assert not np.array_equal(SimplexNoise(5).perm, SimplexNoise(6).perm)

    def test_value_is_bounded(self):
        noise = SimplexNoise()
        rng = np.random.default_rng(0)
        values = [noise.value(Vector(*p)) for p in rng.uniform(-20.0, 20.0, size=(200, 3))]
        assert max(abs(v) for v in values) <= 1.1


class TestFieldUpdater:
    def test_uniform_directional_wind(self):
        grid = make_grid((2, 2, 2), extent=(2.0, 2.0, 2.0))
        update = FieldUpdater().update(grid, WindSnapshot(global_winds=(EAST,)), time=0.0, delta_time=0.0)
        np.testing.assert_allclose(update.velocities, np.tile([2.0, 0.0, 0.0], (8, 1)))
        assert update.active.all()
        assert update.generation == grid.generation

    def test_update_does_not_touch_grid(self):
        grid = make_grid((2, 2, 2))
        FieldUpdater().update(grid, WindSnapshot(global_winds=(EAST,)), time=0.0, delta_time=0.0)
        assert not grid.velocities.any()
        assert grid.tick_count == 0

    def test_empty_snapshot_decays_field(self):
        grid = seed_velocities(make_grid((2, 2, 2)), np.ones(24))
        update = FieldUpdater(decay=0.3).update(grid, EMPTY_SNAPSHOT, time=0.0, delta_time=0.0)
        np.testing.assert_allclose(update.velocities, np.full((8, 3), 0.3))

    def test_backtrace_advects_upstream_velocity(self):
        grid = make_grid((4, 1, 1))
        seed_velocities(grid, [[1.0, k, 0.0] for k in range(4)])
        update = FieldUpdater(decay=0.3).update(grid, EMPTY_SNAPSHOT, time=0.0, delta_time=1.0)
        np.testing.assert_allclose(
            update.velocities,
            [[0.3, 0.0, 0.0], [0.3, 0.0, 0.0], [0.3, 0.3, 0.0], [0.3, 0.6, 0.0]],
        )

    def test_omni_overwrite_scenario(self):
        grid = make_grid((11, 11, 11), edge_length=1.0, extent=(10.0, 10.0, 10.0))
        source = LocalWindSource(
            kind=LocalWindKind.OMNI,
            position=Vector(0.0, 0.0, 0.0),
            direction=Vector(0.0, 0.0, 1.0),
            speed=3.0,
            radius=5.0,
            overwrite=True,
        )
        breeze = GlobalWindSource(direction=Vector(1.0, 0.0, 0.0), strength=1.0, speed=1.0)
        update = FieldUpdater().update(
            grid, WindSnapshot(global_winds=(breeze,), local_winds=(source,)), time=0.0, delta_time=0.0
        )
        density = grid.density
        centre = to_linear_index(5, 5, 5, density)
        boundary = to_linear_index(0, 5, 5, density)
        inside = to_linear_index(8, 5, 5, density)
        corner = to_linear_index(0, 0, 0, density)

        np.testing.assert_allclose(grid.positions[centre], (0.0, 0.0, 0.0), atol=1e-12)
        assert np.linalg.norm(update.velocities[centre]) == pytest.approx(3.0)
        np.testing.assert_allclose(update.velocities[boundary], (0.0, 0.0, 0.0), atol=1e-12)
        np.testing.assert_allclose(update.velocities[inside], (1.2, 0.0, 0.0))
        np.testing.assert_allclose(update.velocities[corner], (1.0, 0.0, 0.0))

    def test_turbulent_wind_follows_noise_gradient(self):
        grid = make_grid((1, 1, 1))
        turbulent = GlobalWindSource(
            kind=GlobalWindKind.TURBULENT,
            direction=Vector(1.0, 0.0, 0.0),
            strength=0.5,
            speed=0.5,
            noise_scale=0.3,
        )
        updater = FieldUpdater(noise_seed=11)
        update = updater.update(grid, WindSnapshot(global_winds=(turbulent,)), time=2.0, delta_time=0.0)
        sample = Vector(-0.15 - 1.0, -0.15, -0.15)
        expected = updater.noise.gradient(sample) * 0.5
        np.testing.assert_allclose(update.velocities[0], tuple(expected), rtol=1e-6, atol=1e-9)

    def test_inactive_global_wind_is_ignored(self):
        grid = make_grid((2, 2, 2))
        calm = GlobalWindSource(direction=Vector(1.0, 0.0, 0.0), strength=0.0, speed=5.0)
        update = FieldUpdater().update(grid, WindSnapshot(global_winds=(calm,)), time=0.0, delta_time=0.0)
        assert not update.velocities.any()

    def test_obstacle_occludes_and_shadows(self):
        grid = make_grid((3, 3, 3))
        density = grid.density
        blocked = to_linear_index(1, 1, 1, density)
        obstacle = Obstacle(
            position=Vector.of(grid.positions[blocked]),
            radius=0.4,
            push_strength=0.0,
            shadow_strength=0.75,
            shadow_distance=1.0,
        )
        update = FieldUpdater(diffusion_passes=5, diffusion_rate=0.3).update(
            grid, WindSnapshot(global_winds=(EAST,), obstacles=(obstacle,)), time=0.0, delta_time=0.0
        )

        assert not update.active[blocked]
        assert int(np.count_nonzero(~update.active)) == 1
        # blocked, then relaxed towards the still neighbourhood
        assert update.velocities[blocked, 0] == pytest.approx(0.5 * 0.7**5)

        downwind = to_linear_index(2, 1, 1, density)
        expected = 2.0 * (1.0 + 0.75 * (math.sqrt(0.75) - 1.0))
        assert update.velocities[downwind, 0] == pytest.approx(expected)

        upwind = to_linear_index(0, 1, 1, density)
        assert update.velocities[upwind, 0] == pytest.approx(2.0)
        off_axis = to_linear_index(2, 0, 1, density)
        assert update.velocities[off_axis, 0] == pytest.approx(2.0)

    def test_occlusion_from_any_global_wind(self):
        grid = make_grid((3, 3, 3))
        blocked = to_linear_index(1, 1, 1, grid.density)
        obstacle = Obstacle(
            position=Vector.of(grid.positions[blocked]), radius=0.4, push_strength=0.0, shadow_strength=0.75
        )
        north = GlobalWindSource(direction=Vector(0.0, 1.0, 0.0), strength=2.0, speed=1.0)
        update = FieldUpdater(diffusion_passes=5, diffusion_rate=0.3).update(
            grid, WindSnapshot(global_winds=(EAST, north), obstacles=(obstacle,)), time=0.0, delta_time=0.0
        )

        assert int(np.count_nonzero(update.active)) == grid.count - 1
        assert not update.active[blocked]
        # each wind is blocked in turn: ((2, 0) * 0.25 + (0, 2)) * 0.25, then relaxed towards zero
        np.testing.assert_allclose(update.velocities[blocked], np.array([0.125, 0.5, 0.0]) * 0.7**5)

    def test_cell_recovers_after_obstacle_leaves(self):
        grid = make_grid((3, 3, 3))
        blocked = to_linear_index(1, 1, 1, grid.density)
        obstacle = Obstacle(position=Vector.of(grid.positions[blocked]), radius=0.4, push_strength=0.0)
        updater = FieldUpdater()
        grid.commit(updater.update(grid, WindSnapshot(global_winds=(EAST,), obstacles=(obstacle,)), 0.0, 0.0))
        assert not grid.active[blocked]
        grid.commit(updater.update(grid, WindSnapshot(global_winds=(EAST,)), 0.0, 0.0))
        assert grid.active.all()

    def test_update_for_rebuilt_grid_is_stale(self):
        grid = make_grid((2, 2, 2))
        update = FieldUpdater().update(grid, WindSnapshot(global_winds=(EAST,)), time=0.0, delta_time=0.0)
        rebuilt = build_grid(grid.parameters, previous=grid)
        with pytest.raises(StaleUpdateError):
            rebuilt.commit(update)
