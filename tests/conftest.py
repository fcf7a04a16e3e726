"""Pytest configuration and fixtures."""
import logging
import sys

import pytest

from focon import sampling
from focon.config import FoconConfig, SamplingSettings
from focon.sampling import SampleResult


def pytest_configure(config):
    """Configure logging for test runs."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(logging.INFO)


@pytest.fixture
def small_sampling():
    """Coarse resolutions that keep full sampling runs fast."""
    return SamplingSettings(parallel_grid=6, exhaustive_grid=4, steps_per_degree=2,
                            monte_carlo_trials=2000)


@pytest.fixture
def tube_config():
    return FoconConfig(d_in=25, d_out=25, length=50, angle=5)


@pytest.fixture
def cone_config():
    return FoconConfig(d_in=25, d_out=5, length=100, angle=5)


@pytest.fixture
def fake_sampling(monkeypatch):
    """
    Replace the sampling calls made by the optimizer.

    install(profile, feasible) makes exhaustive sampling report
    round(profile(config)) detected beams out of 1000, and the parallel
    bundle gate pass whenever feasible(config) is true.
    """
    def install(profile, feasible=lambda config: True):
        def parallel_bundle(system, angle, grid, collect=False):
            if feasible(system.config):
                return SampleResult(passed=100, total=100)
            return SampleResult(passed=0, total=100)

        def exhaustive_sampling(system, angle, grid, steps_per_degree):
            return SampleResult(passed=int(round(profile(system.config))), total=1000)

        monkeypatch.setattr(sampling, "parallel_bundle", parallel_bundle)
        monkeypatch.setattr(sampling, "exhaustive_sampling", exhaustive_sampling)

    return install
