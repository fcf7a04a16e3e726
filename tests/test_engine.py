"""Tests for the mode dispatcher."""

import pytest

from focon.config import FoconConfig, Mode
from focon.engine import run
from focon.exceptions import ConfigurationError, RayFault
from focon.optimizer import OptimizationResult
from focon.rays import parallel_entry_points
from focon.sampling import ExitAngleResult, SampleResult
from focon.tracer import BeamStatus, RayTracer, TraceResult


class TestRun:
    """Tests for run()."""

    def test_single_beam(self, tube_config):
        result = run(tube_config.with_changes(angle=0))
        assert isinstance(result, TraceResult)
        assert result.status is BeamStatus.DETECTED

    def test_single_beam_through_glass_cavity_apex(self):
        config = FoconConfig(d_in=25, d_out=5, length=100, angle=0, glass_enabled=True,
                             refractive_index=1.5, cavity_length=10)
        result = run(config)
        assert not result.fault
        assert result.status is BeamStatus.DETECTED

    def test_single_beam_fault_is_reported(self, tube_config, monkeypatch):
        def broken(self, beam):
            raise RayFault("injected", beam=beam)

        monkeypatch.setattr(RayTracer, "trace", broken)
        result = run(tube_config.with_changes(angle=0))
        assert result.fault
        assert result.status is BeamStatus.REFLECTED

    def test_parallel_bundle_collects_samples(self, tube_config, small_sampling):
        result = run(tube_config.with_changes(mode=Mode.PARALLEL_BUNDLE), small_sampling)
        assert isinstance(result, SampleResult)
        assert len(result.samples) == len(parallel_entry_points(12.5, small_sampling.parallel_grid))

    def test_parallel_bundle_exit(self, tube_config, small_sampling):
        result = run(tube_config.with_changes(mode=Mode.PARALLEL_BUNDLE_EXIT), small_sampling)
        assert isinstance(result, ExitAngleResult)
        assert abs(result.mean_angle - 5.0) < 1e-9

    def test_divergent_bundle(self, tube_config, small_sampling):
        result = run(tube_config.with_changes(mode=Mode.DIVERGENT_BUNDLE, offset_y=2), small_sampling)
        assert result.total == 21
        assert all(sample.point[1] == 2 for sample in result.samples)

    def test_exhaustive_sampling(self, cone_config, small_sampling):
        result = run(cone_config.with_changes(mode=Mode.EXHAUSTIVE_SAMPLING), small_sampling)
        assert isinstance(result, SampleResult)
        assert result.total > 0

    def test_monte_carlo_uses_seed(self, cone_config, small_sampling):
        config = cone_config.with_changes(mode=Mode.MONTE_CARLO, seed=3)
        a = run(config, small_sampling)
        b = run(config, small_sampling)
        assert (a.passed, a.total) == (b.passed, b.total)
        assert a.total + a.faults == small_sampling.monte_carlo_trials

    def test_optimization_modes(self, tube_config, small_sampling, fake_sampling):
        fake_sampling(lambda c: 1000 - abs(c.length - 42))
        result = run(tube_config.with_changes(mode=Mode.LENGTH_OPTIMIZATION), small_sampling)
        assert isinstance(result, OptimizationResult)
        assert result.value == 42

    def test_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            run(FoconConfig(length=-5))
