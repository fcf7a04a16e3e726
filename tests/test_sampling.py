"""Tests for the sampling strategies and the loss metric."""

import math

import pytest

from focon import sampling
from focon.config import FoconConfig, build_system
from focon.exceptions import RayFault
from focon.rays import beam_from_angle, divergent_angles, parallel_entry_points, quadrant_entry_points
from focon.sampling import SampleResult, is_feasible, loss_db
from focon.tracer import BeamStatus, RayTracer


def _full_grid(radius, count):
    step = radius / count
    points = []
    for i in range(-count, count + 1):
        for j in range(-count, count + 1):
            x, y = i * step, j * step
            if x * x + y * y < radius * radius:
                points.append((x, y))
    return points


def _brute_force(system, entries):
    tracer = RayTracer(system)
    passed = total = 0
    for x, y, angle in entries:
        try:
            result = tracer.trace(beam_from_angle(x, y, angle))
        except RayFault:
            continue
        total += 1
        passed += result.status is BeamStatus.DETECTED
    return passed, total


@pytest.fixture
def cone_system(cone_config):
    return build_system(cone_config.with_changes(detector_window=6, detector_diameter=5,
                                                 detector_offset=0.5))


class TestLoss:
    """Tests for the loss metric and feasibility."""

    def test_loss_db(self):
        assert loss_db(10, 10) == 0.0
        assert loss_db(1, 10) == 10.0
        assert math.isclose(loss_db(1, 2), 10 * math.log10(2))

    def test_nothing_passed_is_infinite_loss(self):
        assert loss_db(0, 10) == math.inf
        assert SampleResult(passed=0, total=0).loss == math.inf

    def test_feasibility_is_strict(self):
        assert not is_feasible(SampleResult(passed=1, total=10))
        assert is_feasible(SampleResult(passed=2, total=10))
        assert not is_feasible(SampleResult(passed=0, total=10))

    def test_merge_scales_by_weight(self):
        result = SampleResult(passed=1, total=2)
        result.merge(SampleResult(passed=3, total=5, faults=1), weight=4)
        assert (result.passed, result.total, result.faults) == (13, 22, 4)


class TestParallelBundle:
    """Tests for the parallel bundle."""

    def test_total_counts_every_grid_point(self, cone_system):
        result = sampling.parallel_bundle(cone_system, 5, 6)
        assert result.faults == 0
        assert result.total == sum(w for _, _, w in parallel_entry_points(cone_system.r1, 6))

    def test_symmetry_folding_matches_full_grid(self, cone_system):
        result = sampling.parallel_bundle(cone_system, 5, 6)
        entries = [(x, y, 5) for x, y in _full_grid(cone_system.r1, 6)]
        assert (result.passed, result.total) == _brute_force(cone_system, entries)
        assert result.passed > 0

    def test_collect_samples(self, cone_system):
        result = sampling.parallel_bundle(cone_system, 5, 3, collect=True)
        assert len(result.samples) == len(parallel_entry_points(cone_system.r1, 3))
        assert all(sample.angle == 5 for sample in result.samples)
        assert not sampling.parallel_bundle(cone_system, 5, 3).samples

    def test_faults_excluded_from_totals(self, cone_system, monkeypatch):
        original = RayTracer.trace

        def flaky(self, beam):
            if beam.y > 0:
                raise RayFault("injected", beam=beam)
            return original(self, beam)

        monkeypatch.setattr(RayTracer, "trace", flaky)
        result = sampling.parallel_bundle(cone_system, 5, 6)
        weights = sum(w for _, _, w in parallel_entry_points(cone_system.r1, 6))
        assert result.faults > 0
        assert result.total + result.faults == weights
        assert result.passed <= result.total


class TestParallelBundleExit:
    """Tests for the mean exit angle."""

    def test_tube_preserves_angle(self, tube_config):
        result = sampling.parallel_bundle_exit(build_system(tube_config), 5, 5)
        assert math.isclose(result.mean_angle, 5.0, abs_tol=1e-9)
        assert result.beams == result.total

    def test_nothing_exits(self, cone_config):
        result = sampling.parallel_bundle_exit(build_system(cone_config), 60, 3)
        assert result.beams == 0
        assert result.mean_angle is None


class TestDivergentBundle:
    """Tests for the divergent bundle."""

    def test_beam_count(self, cone_system):
        result = sampling.divergent_bundle(cone_system, 0, 0, 5, 2)
        assert result.total == 21

    def test_angles_match_fan(self, cone_system):
        result = sampling.divergent_bundle(cone_system, 1, 2, 3, 2, collect=True)
        assert [s.angle for s in result.samples] == divergent_angles(3, 2)


class TestExhaustiveSampling:
    """Tests for exhaustive sampling."""

    def test_total(self, cone_system):
        result = sampling.exhaustive_sampling(cone_system, 5, 3, 1)
        weights = sum(w for _, _, w in quadrant_entry_points(cone_system.r1, 3))
        assert result.total == weights * 11

    def test_symmetry_folding_matches_full_grid(self, cone_system):
        result = sampling.exhaustive_sampling(cone_system, 5, 3, 1)
        entries = [(x, y, a) for x, y in _full_grid(cone_system.r1, 3) for a in divergent_angles(5, 1)]
        assert (result.passed, result.total) == _brute_force(cone_system, entries)


class TestMonteCarlo:
    """Tests for Monte Carlo sampling."""

    def test_reproducible_with_seed(self, cone_system):
        a = sampling.monte_carlo(cone_system, 5, 500, seed=7)
        b = sampling.monte_carlo(cone_system, 5, 500, seed=7)
        assert (a.passed, a.total) == (b.passed, b.total)
        assert a.total == 500

    def test_agrees_with_exhaustive_sampling(self):
        # Window and element cover the whole exit: every forward beam counts
        config = FoconConfig(d_in=10, d_out=4, length=30, angle=10, detector_window=4,
                             detector_offset=0, detector_diameter=4, detector_fov=90)
        system = build_system(config)
        exhaustive = sampling.exhaustive_sampling(system, 10, 8, 5)
        random = sampling.monte_carlo(system, 10, 3000, seed=1)
        assert abs(random.ratio - exhaustive.ratio) <= max(0.02, 0.25 * exhaustive.ratio)

    def test_agrees_with_exhaustive_sampling_on_steep_cone(self):
        system = build_system(FoconConfig(d_in=25, d_out=0.5, length=50))
        exhaustive = sampling.exhaustive_sampling(system, 5, 20, 10)
        random = sampling.monte_carlo(system, 5, 10_000, seed=11)
        assert exhaustive.passed > 0
        assert random.total + random.faults == 10_000
        # Five binomial standard errors of the random estimate plus one beam
        p = exhaustive.ratio
        tolerance = 5 * math.sqrt(p * (1 - p) / random.total) + 1 / random.total
        assert abs(random.ratio - p) <= tolerance


class TestSingleBeam:
    """Tests for the single-beam strategy."""

    def test_returns_trace(self, tube_config):
        result = sampling.single_beam(build_system(tube_config), beam_from_angle(0, 0, 0))
        assert result.status is BeamStatus.DETECTED

    def test_fault_is_reported_not_raised(self, tube_config, monkeypatch):
        def broken(self, beam):
            raise RayFault("injected", beam=beam)

        monkeypatch.setattr(RayTracer, "trace", broken)
        result = sampling.single_beam(build_system(tube_config), beam_from_angle(0, 0, 0))
        assert result.fault
        assert result.status is BeamStatus.REFLECTED
        assert result.path == []
        assert result.exit_beam is None
