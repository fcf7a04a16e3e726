"""
engine.py - Entry point running one calculation mode on a configuration

    >>> from focon import FoconConfig, Mode, run
    >>> result = run(FoconConfig(d_in=25, d_out=25, length=50, angle=0))
    >>> result.status.value
    'detected'
"""

import logging
from typing import Optional, Union

from . import optimizer, sampling
from .config import FoconConfig, Mode, OptimizerSettings, SamplingSettings, build_system
from .optimizer import OptimizationResult
from .rays import beam_from_angle
from .sampling import ExitAngleResult, SampleResult
from .tracer import TraceResult

logger = logging.getLogger(__name__)

Result = Union[TraceResult, SampleResult, ExitAngleResult, OptimizationResult]

_OPTIMIZERS = {
    Mode.LENGTH_OPTIMIZATION: optimizer.optimal_length,
    Mode.D_OUT_OPTIMIZATION: optimizer.optimal_exit_diameter,
    Mode.FOCUS_OPTIMIZATION: optimizer.optimal_focus,
    Mode.FULL_OPTIMIZATION: optimizer.full_optimization,
    Mode.COMPLEX_OPTIMIZATION: optimizer.complex_optimization,
}


def run(
    config: FoconConfig,
    sampling_settings: Optional[SamplingSettings] = None,
    optimizer_settings: Optional[OptimizerSettings] = None
) -> Result:
    """
    Run the calculation selected by config.mode.

    Parameters
    ----------
    config : FoconConfig
        Simulation inputs
    sampling_settings : SamplingSettings, optional
        Overrides the resolutions implied by config.precision
    optimizer_settings : OptimizerSettings, optional
        Overrides the default search ranges

    Returns
    -------
    TraceResult
        For SINGLE_BEAM
    SampleResult
        For the bundle, exhaustive and Monte Carlo modes
    ExitAngleResult
        For PARALLEL_BUNDLE_EXIT
    OptimizationResult
        For the optimization modes

    Raises
    ------
    ConfigurationError
        If the configuration is inconsistent
    """
    config.validate()
    settings = sampling_settings or config.sampling
    mode = config.mode
    logger.info("Running %s", mode.value)

    if mode in _OPTIMIZERS:
        result = _OPTIMIZERS[mode](config, settings, optimizer_settings)
        logger.info("%s finished: feasible=%s, value=%s, loss=%.3f dB",
                    mode.value, result.feasible, result.value, result.loss)
        return result

    system = build_system(config)
    if mode is Mode.SINGLE_BEAM:
        return sampling.single_beam(system, beam_from_angle(config.offset_x, config.offset_y, config.angle))
    if mode is Mode.PARALLEL_BUNDLE:
        return sampling.parallel_bundle(system, config.angle, settings.parallel_grid, collect=True)
    if mode is Mode.PARALLEL_BUNDLE_EXIT:
        return sampling.parallel_bundle_exit(system, config.angle, settings.parallel_grid)
    if mode is Mode.DIVERGENT_BUNDLE:
        return sampling.divergent_bundle(system, config.offset_x, config.offset_y, config.angle,
                                         settings.steps_per_degree, collect=True)
    if mode is Mode.EXHAUSTIVE_SAMPLING:
        return sampling.exhaustive_sampling(system, config.angle, settings.exhaustive_grid,
                                            settings.steps_per_degree)
    if mode is Mode.MONTE_CARLO:
        return sampling.monte_carlo(system, config.angle, settings.monte_carlo_trials, seed=config.seed)
    raise ValueError(f"Unsupported mode {mode!r}")
