"""Unit tests for single-beam tracing."""

import math

import numpy as np
import pytest

from focon.config import FoconConfig, build_system
from focon.exceptions import RayFault
from focon.rays import Beam, beam_from_angle, radial_distance
from focon.tracer import BeamStatus, RayTracer


@pytest.fixture
def tube_tracer(tube_config):
    return RayTracer(build_system(tube_config))


@pytest.fixture
def cone_tracer(cone_config):
    return RayTracer(build_system(cone_config))


class TestReflection:
    """Tests for the law of reflection at the guide wall."""

    @pytest.mark.parametrize("tracer_name", ["tube_tracer", "cone_tracer"])
    def test_reflection_about_wall_normal(self, request, tracer_name):
        tracer = request.getfixturevalue(tracer_name)
        guide = tracer.system.guide
        beam = Beam([2.0, 1.0, 0.0], [0.2, 0.5, 0.8])
        point = guide.intersect(beam)
        normal = guide.normal(point)
        reflected = tracer.reflect(beam, point)

        assert math.isclose(np.dot(beam.direction, normal), -np.dot(reflected.direction, normal),
                            abs_tol=1e-12)
        expected = beam.direction - 2 * np.dot(beam.direction, normal) * normal
        assert np.allclose(reflected.direction, expected, atol=1e-12)
        assert np.array_equal(reflected.origin, point)

    def test_tube_reflection_keeps_axial_component(self, tube_tracer):
        beam = beam_from_angle(3.0, -2.0, 20)
        point = tube_tracer.system.guide.intersect(beam)
        assert math.isclose(tube_tracer.reflect(beam, point).N, beam.N)


class TestTube:
    """Tests for tracing through a tube."""

    def test_on_axis_beam(self, tube_tracer):
        result = tube_tracer.trace(beam_from_angle(0, 0, 0))
        assert result.status is BeamStatus.DETECTED
        assert result.reflections == 0
        assert len(result.path) == 3
        assert np.allclose(result.path[-1], [0, 0, 51.1])

    def test_inclined_beam_without_reflection(self, tube_tracer):
        result = tube_tracer.trace(beam_from_angle(0, 0, 5))
        assert result.reflections == 0
        assert result.status is BeamStatus.MISSED
        assert math.isclose(result.exit_angle, 5.0, abs_tol=1e-9)

    def test_trace_is_deterministic(self, tube_tracer):
        beam = beam_from_angle(1.5, -3.0, 40)
        first = tube_tracer.trace(beam)
        second = tube_tracer.trace(beam)
        assert first.status is second.status
        assert first.reflections == second.reflections
        assert all(np.array_equal(a, b) for a, b in zip(first.path, second.path))

    def test_single_reflection(self, tube_tracer):
        result = tube_tracer.trace(beam_from_angle(0, 0, 30))
        assert result.reflections == 1
        assert tube_tracer.system.guide.on_surface(result.path[1])
        assert math.isclose(result.path[1][2], 12.5 / math.tan(math.radians(30)), rel_tol=1e-9)
        assert result.path[2][2] == 50.0

    def test_beam_across_tube_not_traced(self, tube_tracer):
        result = tube_tracer.trace(Beam([0, 0, 0], [1, 0, 1e-8]))
        assert result.status is BeamStatus.REFLECTED
        assert result.invalid_angle
        assert result.reflections == 0

    def test_backward_beam_reflected_immediately(self, tube_tracer):
        result = tube_tracer.trace(Beam([0, 0, 0], [0, 0.1, -1]))
        assert result.status is BeamStatus.REFLECTED
        assert len(result.path) == 1
        assert result.exit_beam is None
        assert result.exit_angle is None


class TestCone:
    """Tests for tracing through a cone."""

    def test_steep_beam_turns_back(self, cone_tracer):
        result = cone_tracer.trace(beam_from_angle(0, 10, 20))
        assert result.status is BeamStatus.REFLECTED
        assert result.reflections > 3
        assert result.path[-1][2] == 0.0

    def test_every_bounce_lies_on_wall(self, cone_tracer):
        result = cone_tracer.trace(beam_from_angle(0, 10, 20))
        guide = cone_tracer.system.guide
        bounces = result.path[1:-1]
        assert bounces
        assert all(guide.on_surface(point) for point in bounces)

    def test_mirrored_entry_points_trace_mirrored_paths(self, cone_tracer):
        a = cone_tracer.trace(beam_from_angle(3.0, 4.0, 8))
        b = cone_tracer.trace(beam_from_angle(-3.0, 4.0, 8))
        assert a.status is b.status
        assert a.reflections == b.reflections
        for p, q in zip(a.path, b.path):
            assert np.allclose(p, [-q[0], q[1], q[2]])


class TestFaults:
    """Tests for ray fault handling."""

    def test_fault_carries_original_beam(self, tube_tracer, monkeypatch):
        def broken(beam):
            raise RayFault("no intersection")

        monkeypatch.setattr(tube_tracer.system.guide, "intersect", broken)
        beam = beam_from_angle(1.0, 2.0, 10)
        with pytest.raises(RayFault) as info:
            tube_tracer.trace(beam)
        assert info.value.beam is beam
        assert isinstance(info.value.__cause__, RayFault)

    def test_reflection_limit(self, tube_config):
        tracer = RayTracer(build_system(tube_config), max_reflections=0)
        with pytest.raises(RayFault):
            tracer.trace(beam_from_angle(0, 0, 30))


class TestOptics:
    """Tests for lenses and the glass medium."""

    def test_auto_focused_lens_detects_off_axis_beam(self):
        system = build_system(FoconConfig(d_in=25, d_out=25, length=50, lens_enabled=True))
        result = RayTracer(system).trace(beam_from_angle(0, 10, 0))
        assert result.status is BeamStatus.DETECTED
        assert result.reflections == 0
        assert np.allclose(result.path[-1], [0, 0, 51.1], atol=1e-9)

    def test_ocular_bends_exit_beam(self):
        config = FoconConfig(d_in=25, d_out=25, length=50, ocular_enabled=True, ocular_focal_length=20)
        result = RayTracer(build_system(config)).trace(beam_from_angle(0, 5, 0))
        assert result.exit_beam.M < 0
        assert result.status is BeamStatus.MISSED

    def test_glass_refracts_at_both_faces(self):
        config = FoconConfig(d_in=25, d_out=25, length=50, glass_enabled=True, refractive_index=1.5)
        result = RayTracer(build_system(config)).trace(beam_from_angle(0, 0, 30))
        inside = math.asin(math.sin(math.radians(30)) / 1.5)
        assert result.reflections == 1
        assert math.isclose(result.path[1][2], 12.5 / math.tan(inside), rel_tol=1e-9)
        assert math.isclose(result.exit_angle, 30.0, abs_tol=1e-9)

    def test_glass_cavity_refracts_beam_outward(self):
        config = FoconConfig(d_in=25, d_out=25, length=50, glass_enabled=True,
                             refractive_index=1.5, cavity_length=10)
        system = build_system(config)
        result = RayTracer(system).trace(beam_from_angle(0, 1, 0))
        cavity_point = result.path[1]
        assert math.isclose(cavity_point[2], 40.8, rel_tol=1e-9)
        assert system.cavity.on_surface(cavity_point)
        assert result.path[2][2] == 50.0
        assert result.exit_beam.M > 0
        assert result.status is BeamStatus.MISSED


class TestGlassCavity:
    """Tests for beams crossing the air cavity in the exit face of a glass cone."""

    @pytest.fixture
    def system(self):
        return build_system(FoconConfig(d_in=25, d_out=5, length=100, glass_enabled=True,
                                        refractive_index=1.5, cavity_length=10))

    def test_beams_never_cross_the_walls(self, system):
        tracer = RayTracer(system)
        cavity = system.cavity
        crossings = reentries = 0
        for y in np.linspace(-12, 12, 13):
            for angle in range(-60, 61, 5):
                try:
                    result = tracer.trace(beam_from_angle(0, float(y), angle))
                except RayFault:
                    continue
                inside = [p for p in result.path if p[2] <= system.length]
                for point in inside:
                    assert radial_distance(point) <= system.guide.radius_at(point[2]) + 1e-6
                if any(cavity.on_surface(a) and cavity.on_surface(b) for a, b in zip(inside, inside[1:])):
                    reentries += 1
                if result.exit_beam is not None:
                    crossings += 1
                    assert radial_distance(result.exit_beam.origin) <= system.r2 + 1e-6
        assert crossings > 0
        assert reentries > 0

    @pytest.mark.filterwarnings("error")
    def test_axial_beam_passes_cavity_apex(self, system):
        result = RayTracer(system).trace(beam_from_angle(0, 0, 0))
        assert np.allclose(result.path[1], [0, 0, 90])
        assert np.allclose(result.exit_beam.origin, [0, 0, 100])
        assert np.allclose(result.exit_beam.direction, [0, 0, 1])
        assert result.status is BeamStatus.DETECTED
