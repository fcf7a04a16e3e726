"""
optimizer.py - Parameter searches over focon geometries

Every search evaluates candidate configurations the same way:

    1. Feasibility gate: a parallel bundle at the configured input angle
       must lose strictly less than loss_limit dB
    2. Quality: exhaustive sampling counts the detected beams

Single-parameter searches (length, exit diameter, focal length) keep the
candidate with the most detected beams, ties going to the smaller value.
Joint searches (length with exit diameter, focal length with both) keep
the candidate with the lowest loss.

Integer parameters are scanned in two phases: a coarse sweep in steps of
coarse_step followed by a fine sweep in unit steps within fine_radius of
the coarse optimum.

Sampling calls go through the sampling module so they can be replaced in
tests.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Set

from . import sampling
from .config import FoconConfig, OptimizerSettings, SamplingSettings, build_system
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationResult:
    """
    Outcome of a parameter search.

    Attributes
    ----------
    feasible : bool
        False when no candidate passed the feasibility gate
    value : float or tuple
        Optimal parameter value, a tuple (length, d_out) for the full
        search and (length, focal_length, d_out) for the complex search;
        the upper end of the search range when infeasible
    loss : float
        Loss of the optimum in dB; loss_limit when infeasible
    config : FoconConfig, optional
        Configuration at the optimum
    passed, total : int
        Exhaustive-sampling counts at the optimum
    evaluations : int
        Number of candidates evaluated by the outer search
    """
    feasible: bool
    value: Any
    loss: float
    config: Optional[FoconConfig] = None
    passed: int = 0
    total: int = 0
    evaluations: int = 0


@dataclass
class _Candidate:
    value: Any
    score: float
    passed: int
    total: int
    loss: float
    config: FoconConfig


class _Scan:
    """Best-candidate bookkeeping shared by the sweeps of one search."""

    def __init__(self, name: str):
        self.name = name
        self.best: Optional[_Candidate] = None
        self.seen: Set[Any] = set()
        self.evaluations = 0

    def offer(self, candidate: _Candidate) -> bool:
        best = self.best
        if best is None or candidate.score > best.score or (
                candidate.score == best.score and candidate.value < best.value):
            self.best = candidate
            logger.info("New best %s %s: %d/%d passed, loss %.3f dB", self.name,
                        candidate.value, candidate.passed, candidate.total, candidate.loss)
            return True
        return False

    def evaluate(self, value: Any, evaluate: Callable[[Any], Optional[_Candidate]]) -> Optional[_Candidate]:
        self.seen.add(value)
        self.evaluations += 1
        return evaluate(value)

    def result(self, fallback: Any, loss_limit: float, pack=None) -> OptimizationResult:
        best = self.best
        if best is None:
            logger.warning("No feasible %s found", self.name)
            return OptimizationResult(False, fallback, loss_limit, evaluations=self.evaluations)
        value = pack(best) if pack is not None else best.value
        return OptimizationResult(True, value, best.loss, best.config,
                                  best.passed, best.total, self.evaluations)


def _sweep(
    scan: _Scan,
    values: Iterable[Any],
    evaluate: Callable[[Any], Optional[_Candidate]],
    plateau: Optional[float] = None,
    step: float = 1
) -> None:
    stale = 0
    for value in values:
        if value in scan.seen:
            continue
        if plateau is not None and stale * step >= plateau:
            logger.info("No %s improvement over %s, stopping the sweep", scan.name, plateau)
            break
        candidate = scan.evaluate(value, evaluate)
        if candidate is None:
            continue
        if scan.offer(candidate):
            stale = 0
        else:
            stale += 1


def _two_phase(
    scan: _Scan,
    low: int,
    high: int,
    evaluate: Callable[[int], Optional[_Candidate]],
    settings: OptimizerSettings,
    plateau: bool
) -> None:
    """Coarse sweep over [low, high], then unit steps around the best value."""
    _sweep(scan, range(low, high + 1, settings.coarse_step), evaluate,
           settings.plateau if plateau else None, settings.coarse_step)
    if scan.best is None:
        return
    center = scan.best.value
    fine = range(max(low, center - settings.fine_radius), min(high, center + settings.fine_radius) + 1)
    _sweep(scan, fine, evaluate)


def _sampled_candidate(
    value: Any,
    config: FoconConfig,
    sampling_settings: SamplingSettings,
    loss_limit: float
) -> Optional[_Candidate]:
    """Feasibility gate and exhaustive sampling of one configuration."""
    try:
        system = build_system(config.validate())
    except (ConfigurationError, ValueError) as error:
        logger.debug("Skipping %s: %s", value, error)
        return None

    bundle = sampling.parallel_bundle(system, config.angle, sampling_settings.parallel_grid)
    if not sampling.is_feasible(bundle, loss_limit):
        logger.debug("Candidate %s infeasible, parallel bundle loss %.3f dB", value, bundle.loss)
        return None

    result = sampling.exhaustive_sampling(system, config.angle, sampling_settings.exhaustive_grid,
                                          sampling_settings.steps_per_degree)
    if result.passed <= 0:
        return None
    return _Candidate(value, result.passed, result.passed, result.total, result.loss, config)


def _nested_candidate(value: Any, inner: OptimizationResult) -> Optional[_Candidate]:
    if not inner.feasible:
        return None
    return _Candidate(value, -inner.loss, inner.passed, inner.total, inner.loss, inner.config)


def _settings(config, sampling_settings, settings):
    return (sampling_settings or config.sampling), (settings or OptimizerSettings())


def optimal_length(
    config: FoconConfig,
    sampling_settings: Optional[SamplingSettings] = None,
    settings: Optional[OptimizerSettings] = None
) -> OptimizationResult:
    """
    Find the guide length detecting the most beams.

    Lengths run from ceil(d_in) up to max_length. The coarse sweep stops
    once feasible candidates have failed to improve on the best for
    plateau mm of length.

    Returns
    -------
    OptimizationResult
        value is the optimal length; (False, max_length, loss_limit) when
        no length is feasible
    """
    sampling_settings, settings = _settings(config, sampling_settings, settings)
    scan = _Scan("length")

    def evaluate(length):
        return _sampled_candidate(length, config.with_changes(length=length),
                                  sampling_settings, settings.loss_limit)

    _two_phase(scan, math.ceil(config.d_in), settings.max_length, evaluate, settings, plateau=True)
    return scan.result(settings.max_length, settings.loss_limit)


def optimal_focus(
    config: FoconConfig,
    sampling_settings: Optional[SamplingSettings] = None,
    settings: Optional[OptimizerSettings] = None
) -> OptimizationResult:
    """
    Find the entrance lens focal length detecting the most beams.

    The lens is enabled with a fixed focal length for the search. Focal
    lengths run from ceil(d_in) up to length + focus_cap_margin without
    early termination.

    Returns
    -------
    OptimizationResult
        value is the optimal focal length
    """
    sampling_settings, settings = _settings(config, sampling_settings, settings)
    base = config.with_changes(lens_enabled=True, auto_focus=False)
    high = int(config.length) + settings.focus_cap_margin
    scan = _Scan("focal length")

    def evaluate(focus):
        return _sampled_candidate(focus, base.with_changes(focal_length=focus),
                                  sampling_settings, settings.loss_limit)

    _two_phase(scan, math.ceil(config.d_in), high, evaluate, settings, plateau=False)
    return scan.result(high, settings.loss_limit)


def optimal_exit_diameter(
    config: FoconConfig,
    sampling_settings: Optional[SamplingSettings] = None,
    settings: Optional[OptimizerSettings] = None
) -> OptimizationResult:
    """
    Find the exit diameter detecting the most beams.

    Exit diameters run from the detector's diameter up to d_in in steps of
    d_out_step. The coarse sweep stops as soon as the detected count drops
    after having risen (an infeasible candidate counts as zero). A fine
    sweep in steps of d_out_fine_step covers ±d_out_fine_radius around the
    coarse optimum.

    Returns
    -------
    OptimizationResult
        value is the optimal exit diameter; (False, d_in, loss_limit) when
        no diameter is feasible
    """
    sampling_settings, settings = _settings(config, sampling_settings, settings)
    scan = _Scan("exit diameter")
    low = config.detector_diameter
    high = config.d_in

    def evaluate(d_out):
        return _sampled_candidate(d_out, config.with_changes(d_out=d_out),
                                  sampling_settings, settings.loss_limit)

    previous = None
    increased = False
    for d_out in _float_range(low, high, settings.d_out_step):
        candidate = scan.evaluate(d_out, evaluate)
        passed = candidate.passed if candidate is not None else 0
        if previous is not None:
            if passed > previous:
                increased = True
            elif passed < previous and increased:
                logger.info("Detected count fell at exit diameter %s, stopping the sweep", d_out)
                break
        previous = passed
        if candidate is not None:
            scan.offer(candidate)

    if scan.best is not None:
        center = scan.best.value
        fine = _float_range(max(low, center - settings.d_out_fine_radius),
                            min(high, center + settings.d_out_fine_radius),
                            settings.d_out_fine_step)
        _sweep(scan, fine, evaluate)

    return scan.result(high, settings.loss_limit)


def full_optimization(
    config: FoconConfig,
    sampling_settings: Optional[SamplingSettings] = None,
    settings: Optional[OptimizerSettings] = None
) -> OptimizationResult:
    """
    Joint search over length and exit diameter.

    Runs the two-phase length scan with an exit-diameter search at every
    length and keeps the pair with the lowest loss.

    Returns
    -------
    OptimizationResult
        value is the tuple (length, d_out)
    """
    sampling_settings, settings = _settings(config, sampling_settings, settings)
    scan = _Scan("length and exit diameter")

    def evaluate(length):
        inner = optimal_exit_diameter(config.with_changes(length=length), sampling_settings, settings)
        return _nested_candidate(length, inner)

    _two_phase(scan, math.ceil(config.d_in), settings.max_length, evaluate, settings, plateau=True)
    return scan.result((settings.max_length, config.d_in), settings.loss_limit,
                       pack=lambda best: (best.value, best.config.d_out))


def complex_optimization(
    config: FoconConfig,
    sampling_settings: Optional[SamplingSettings] = None,
    settings: Optional[OptimizerSettings] = None
) -> OptimizationResult:
    """
    Joint search over focal length, length and exit diameter.

    Runs the two-phase focal length scan with a full optimization at every
    focal length and keeps the combination with the lowest loss.

    Returns
    -------
    OptimizationResult
        value is the tuple (length, focal_length, d_out)
    """
    sampling_settings, settings = _settings(config, sampling_settings, settings)
    base = config.with_changes(lens_enabled=True, auto_focus=False)
    high = int(config.length) + settings.focus_cap_margin
    scan = _Scan("focal length, length and exit diameter")

    def evaluate(focus):
        inner = full_optimization(base.with_changes(focal_length=focus), sampling_settings, settings)
        return _nested_candidate(focus, inner)

    _two_phase(scan, math.ceil(config.d_in), high, evaluate, settings, plateau=False)
    return scan.result((settings.max_length, high, config.d_in), settings.loss_limit,
                       pack=lambda best: (best.config.length, best.value, best.config.d_out))


def _float_range(start: float, stop: float, step: float):
    """Values start, start + step, ... up to stop, rounded to 6 decimals."""
    values = []
    k = 0
    while True:
        value = round(start + k * step, 6)
        if value > stop + 1e-9:
            return values
        values.append(value)
        k += 1
