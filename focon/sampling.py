"""
sampling.py - Sampling strategies over many traced beams

Every strategy traces a set of beams through one surface model and counts
how many of them are detected:

    single_beam           one beam, full path for display
    parallel_bundle       grid of entry points, one common input angle
    parallel_bundle_exit  mean exit angle of a parallel bundle
    divergent_bundle      one entry point, fan of input angles
    exhaustive_sampling   divergent bundle at every entry point of a grid
    monte_carlo           random entry points and input angles

Mirror symmetry of the guide about the x=0 and y=0 planes is used to
trace only a half or quarter of the entrance aperture; mirrored entry
points are counted through integer weights.

A beam whose trace raises RayFault is logged and left out of both the
passed and the total count. single_beam reports it through
TraceResult.fault instead.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .config import FoconSystem
from .exceptions import RayFault
from .rays import (
    Beam,
    Point,
    beam_from_angle,
    divergent_angles,
    make_point,
    parallel_entry_points,
    quadrant_entry_points,
)
from .tracer import BeamStatus, RayTracer, TraceResult

logger = logging.getLogger(__name__)


def loss_db(passed: int, total: int) -> float:
    """
    Transmission loss in decibels.

    Returns
    -------
    float
        10·log10(total / passed), or infinity when no beam passed
    """
    if passed <= 0:
        return math.inf
    return 10.0 * math.log10(total / passed)


@dataclass
class BeamSample:
    """Entry point, input angle and outcome of one sampled beam."""
    point: Point
    angle: float
    status: BeamStatus
    exit_angle: Optional[float] = None


@dataclass
class SampleResult:
    """
    Weighted beam counts of a sampling run.

    Attributes
    ----------
    passed : int
        Detected beams, mirror images included
    total : int
        Traced beams, mirror images included
    faults : int
        Beams dropped because their trace raised RayFault
    samples : list of BeamSample
        Individual outcomes, only filled when requested
    """
    passed: int = 0
    total: int = 0
    faults: int = 0
    samples: List[BeamSample] = field(default_factory=list)

    @property
    def loss(self) -> float:
        return loss_db(self.passed, self.total)

    @property
    def ratio(self) -> float:
        """Fraction of beams detected."""
        return self.passed / self.total if self.total else 0.0

    def add(self, status: BeamStatus, weight: int = 1) -> None:
        self.total += weight
        if status is BeamStatus.DETECTED:
            self.passed += weight

    def merge(self, other: "SampleResult", weight: int = 1) -> None:
        """Add the counts of another result, scaled by a mirror weight."""
        self.passed += weight * other.passed
        self.total += weight * other.total
        self.faults += weight * other.faults
        self.samples.extend(other.samples)


@dataclass
class ExitAngleResult:
    """
    Exit-angle statistics of a parallel bundle.

    Attributes
    ----------
    mean_angle : float, optional
        Weighted mean angle from the axis in degrees of all beams leaving
        through the exit plane; None if no beam did
    beams : int
        Weighted number of beams leaving through the exit plane
    total : int
        Weighted number of traced beams
    samples : list of BeamSample
    """
    mean_angle: Optional[float]
    beams: int
    total: int
    samples: List[BeamSample] = field(default_factory=list)


def is_feasible(result: SampleResult, loss_limit: float = 10.0) -> bool:
    """Check whether a result's loss lies strictly below the limit in dB."""
    return result.loss < loss_limit


def _trace_one(tracer: RayTracer, beam: Beam) -> Optional[TraceResult]:
    try:
        return tracer.trace(beam)
    except RayFault as fault:
        logger.debug("Dropping sample: %s", fault)
        return None


def single_beam(system: FoconSystem, beam: Beam) -> TraceResult:
    """
    Trace one beam for display.

    Returns
    -------
    TraceResult
        Full path and classification; a beam whose path cannot be
        computed comes back REFLECTED with an empty path and fault set
    """
    try:
        result = RayTracer(system).trace(beam)
    except RayFault as fault:
        logger.warning("Single beam could not be traced: %s", fault)
        return TraceResult(BeamStatus.REFLECTED, fault=True)
    logger.info("Single beam: %s after %d reflections", result.status.value, result.reflections)
    return result


def parallel_bundle(
    system: FoconSystem,
    angle: float,
    grid: int,
    collect: bool = False
) -> SampleResult:
    """
    Trace a parallel bundle filling the entrance aperture.

    Entry points lie on a square grid of spacing r1/grid inside the
    aperture, restricted to the half-disk x >= 0; every beam is inclined
    by angle degrees in the y-z plane.

    Parameters
    ----------
    system : FoconSystem
        Surface model
    angle : float
        Common input angle in degrees
    grid : int
        Grid subdivisions per entrance radius
    collect : bool, optional
        Keep the individual outcomes in the result's samples

    Returns
    -------
    SampleResult
        Weighted counts over the full aperture
    """
    tracer = RayTracer(system)
    result = SampleResult()
    for x, y, weight in parallel_entry_points(system.r1, grid):
        trace = _trace_one(tracer, beam_from_angle(x, y, angle))
        if trace is None:
            result.faults += weight
            continue
        result.add(trace.status, weight)
        if collect:
            result.samples.append(BeamSample(make_point(x, y, 0.0), angle, trace.status, trace.exit_angle))
    logger.debug("Parallel bundle at %.2f°: %d/%d passed", angle, result.passed, result.total)
    return result


def parallel_bundle_exit(system: FoconSystem, angle: float, grid: int) -> ExitAngleResult:
    """
    Mean exit angle of a parallel bundle.

    Averages the angle from the axis of every beam that leaves through the
    exit plane, whatever the detector makes of it.
    """
    tracer = RayTracer(system)
    weighted_sum = 0.0
    beams = 0
    total = 0
    samples = []
    for x, y, weight in parallel_entry_points(system.r1, grid):
        trace = _trace_one(tracer, beam_from_angle(x, y, angle))
        if trace is None:
            continue
        total += weight
        samples.append(BeamSample(make_point(x, y, 0.0), angle, trace.status, trace.exit_angle))
        if trace.exit_beam is not None:
            weighted_sum += weight * trace.exit_angle
            beams += weight

    mean_angle = weighted_sum / beams if beams else None
    return ExitAngleResult(mean_angle, beams, total, samples)


def divergent_bundle(
    system: FoconSystem,
    x: float,
    y: float,
    angle: float,
    steps_per_degree: int,
    collect: bool = False
) -> SampleResult:
    """
    Trace a fan of beams from one entry point.

    Input angles run from -|angle| to +|angle| in steps of
    1/steps_per_degree degrees, so the fan holds 2·limit + 1 beams with
    limit = int(|angle|·steps_per_degree).
    """
    tracer = RayTracer(system)
    result = SampleResult()
    for beam_angle in divergent_angles(angle, steps_per_degree):
        trace = _trace_one(tracer, beam_from_angle(x, y, beam_angle))
        if trace is None:
            result.faults += 1
            continue
        result.add(trace.status)
        if collect:
            result.samples.append(BeamSample(make_point(x, y, 0.0), beam_angle, trace.status, trace.exit_angle))
    return result


def exhaustive_sampling(
    system: FoconSystem,
    angle: float,
    grid: int,
    steps_per_degree: int
) -> SampleResult:
    """
    Divergent bundle at every entry point of a grid over the aperture.

    Only the quadrant x >= 0, y >= 0 is traced; each entry point's counts
    are scaled by the number of its mirror images. The fan itself is
    symmetric in angle, so the y mirror holds for the whole bundle.

    Returns
    -------
    SampleResult
        Weighted counts over the full aperture and angle range
    """
    result = SampleResult()
    for x, y, weight in quadrant_entry_points(system.r1, grid):
        result.merge(divergent_bundle(system, x, y, angle, steps_per_degree), weight)
    logger.debug("Exhaustive sampling at ±%.2f°: %d/%d passed", angle, result.passed, result.total)
    return result


def monte_carlo(
    system: FoconSystem,
    angle: float,
    trials: int,
    seed: Optional[int] = None
) -> SampleResult:
    """
    Trace beams with random entry points and input angles.

    Entry points are drawn uniformly over the aperture disk by rejection
    from the bounding square; input angles uniformly in [-|angle|, |angle|].

    Parameters
    ----------
    system : FoconSystem
        Surface model
    angle : float
        Half-width of the input angle range in degrees
    trials : int
        Number of beams to trace
    seed : int, optional
        Seed of the random generator; equal seeds give equal results
    """
    rng = np.random.default_rng(seed)
    tracer = RayTracer(system)
    radius = system.r1
    half_width = abs(angle)
    result = SampleResult()
    for _ in range(trials):
        while True:
            x, y = rng.uniform(-radius, radius, size=2)
            if x * x + y * y < radius * radius:
                break
        beam_angle = rng.uniform(-half_width, half_width) if half_width > 0 else 0.0
        trace = _trace_one(tracer, beam_from_angle(float(x), float(y), float(beam_angle)))
        if trace is None:
            result.faults += 1
            continue
        result.add(trace.status)
    logger.info("Monte Carlo: %d/%d passed, loss %.3f dB", result.passed, result.total, result.loss)
    return result
