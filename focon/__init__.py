"""
focon - Geometric ray tracing and optimization of tapered light guides

Traces beams through a reflective tube or cone ("focon") in front of a
photodetector, optionally with an entrance lens, an ocular or a glass
filling, and searches for the guide geometry with the lowest loss.
"""

from .exceptions import ConfigurationError, FoconError, RayFault

from .rays import Beam, RotationMatrix, make_point, normalize
from .rays import beam_from_angle, divergent_angles, parallel_entry_points, quadrant_entry_points

from .surfaces import Cone, Detector, Lens, Plane, Tube
from .surfaces import Defocus, GuideKind
from .surfaces import DETECTOR_PRESETS, make_guide, refract_vector

from .config import FoconConfig, FoconSystem, Mode, OptimizerSettings, Precision, SamplingSettings
from .config import build_system

from .tracer import BeamStatus, RayTracer, TraceResult

from .sampling import BeamSample, ExitAngleResult, SampleResult
from .sampling import divergent_bundle, exhaustive_sampling, monte_carlo
from .sampling import parallel_bundle, parallel_bundle_exit, single_beam
from .sampling import is_feasible, loss_db

from .optimizer import OptimizationResult
from .optimizer import complex_optimization, full_optimization
from .optimizer import optimal_exit_diameter, optimal_focus, optimal_length

from .engine import run

__version__ = "0.1.0"

__all__ = [
    # Errors
    "FoconError",
    "RayFault",
    "ConfigurationError",
    # Rays
    "Beam",
    "RotationMatrix",
    "make_point",
    "normalize",
    "beam_from_angle",
    "divergent_angles",
    "parallel_entry_points",
    "quadrant_entry_points",
    # Surfaces
    "Plane",
    "Tube",
    "Cone",
    "Lens",
    "Detector",
    "Defocus",
    "GuideKind",
    "DETECTOR_PRESETS",
    "make_guide",
    "refract_vector",
    # Configuration
    "FoconConfig",
    "FoconSystem",
    "Mode",
    "Precision",
    "SamplingSettings",
    "OptimizerSettings",
    "build_system",
    # Tracing
    "BeamStatus",
    "RayTracer",
    "TraceResult",
    # Sampling
    "BeamSample",
    "SampleResult",
    "ExitAngleResult",
    "single_beam",
    "parallel_bundle",
    "parallel_bundle_exit",
    "divergent_bundle",
    "exhaustive_sampling",
    "monte_carlo",
    "loss_db",
    "is_feasible",
    # Optimization
    "OptimizationResult",
    "optimal_length",
    "optimal_exit_diameter",
    "optimal_focus",
    "full_optimization",
    "complex_optimization",
    # Engine
    "run",
]
