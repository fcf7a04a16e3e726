"""
config.py - Flat scalar configuration of a focon simulation

FoconConfig is an immutable value: every change (new length, exit
diameter, focal length) produces a new configuration, and the surface
model is rebuilt from it with build_system(). Nothing in the engine
mutates a configuration or a surface model in place.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from .exceptions import ConfigurationError
from .surfaces import (
    DETECTOR_PRESETS,
    Cone,
    Defocus,
    Detector,
    Guide,
    Lens,
    Plane,
    make_guide,
)


class Mode(Enum):
    """Calculation mode selector."""
    SINGLE_BEAM = "single_beam"
    PARALLEL_BUNDLE = "parallel_bundle"
    PARALLEL_BUNDLE_EXIT = "parallel_bundle_exit"
    DIVERGENT_BUNDLE = "divergent_bundle"
    EXHAUSTIVE_SAMPLING = "exhaustive_sampling"
    MONTE_CARLO = "monte_carlo"
    LENGTH_OPTIMIZATION = "length_optimization"
    D_OUT_OPTIMIZATION = "d_out_optimization"
    FOCUS_OPTIMIZATION = "focus_optimization"
    FULL_OPTIMIZATION = "full_optimization"
    COMPLEX_OPTIMIZATION = "complex_optimization"


class Precision(Enum):
    COARSE = "coarse"
    FINE = "fine"


@dataclass(frozen=True)
class SamplingSettings:
    """
    Resolution of the sampling strategies.

    Attributes
    ----------
    parallel_grid : int
        Grid subdivisions per entrance radius for parallel bundles
    exhaustive_grid : int
        Grid subdivisions per entrance radius for exhaustive sampling
    steps_per_degree : int
        Angular resolution of divergent bundles
    monte_carlo_trials : int
        Number of beams traced by the Monte Carlo method
    """
    parallel_grid: int = 50
    exhaustive_grid: int = 20
    steps_per_degree: int = 10
    monte_carlo_trials: int = 100_000

    @classmethod
    def for_precision(cls, precision: Precision) -> "SamplingSettings":
        if precision is Precision.COARSE:
            return cls(parallel_grid=20, exhaustive_grid=10,
                       steps_per_degree=5, monte_carlo_trials=10_000)
        return cls()


@dataclass(frozen=True)
class OptimizerSettings:
    """
    Search ranges and termination policy of the optimizer.

    Lengths and focal lengths are scanned in integer millimetres, exit
    diameters in fractions of a millimetre.
    """
    loss_limit: float = 10.0
    max_length: int = 500
    coarse_step: int = 5
    fine_radius: int = 4
    plateau: int = 150
    d_out_step: float = 0.5
    d_out_fine_step: float = 0.1
    d_out_fine_radius: float = 0.4
    focus_cap_margin: int = 100


@dataclass(frozen=True)
class FoconConfig:
    """
    Scalar inputs of a focon simulation.

    All lengths in mm, angles in degrees.

    Attributes
    ----------
    d_in, d_out : float
        Entrance and exit diameters of the guide
    length : float
        Guide length
    angle : float
        Input angle (half-width of divergent bundles)
    offset_x, offset_y : float
        Entry point of single beams and divergent bundles
    refractive_index : float
        Index of the glass medium (used when glass_enabled)
    lens_enabled, auto_focus, defocus, focal_length
        Entrance lens; with auto_focus the focal length follows the
        detector position and defocus bias
    ocular_enabled, ocular_focal_length
        Lens in the exit plane
    glass_enabled, cavity_length
        Glass-filled guide, optionally with a conical air cavity in the
        exit face
    detector_window, detector_offset, detector_fov, detector_diameter
        Detector geometry
    mode : Mode
        Calculation to run
    precision : Precision
        Coarse or fine sampling
    seed : int, optional
        Seed of the Monte Carlo generator
    """
    d_in: float = 25.0
    d_out: float = 0.5
    length: float = 50.0
    angle: float = 5.0
    offset_x: float = 0.0
    offset_y: float = 0.0
    refractive_index: float = 1.5
    lens_enabled: bool = False
    auto_focus: bool = True
    defocus: Defocus = Defocus.NONE
    focal_length: float = 50.0
    ocular_enabled: bool = False
    ocular_focal_length: float = -1.0
    glass_enabled: bool = False
    cavity_length: float = 0.0
    detector_window: float = 2.2
    detector_offset: float = 1.1
    detector_fov: float = 90.0
    detector_diameter: float = 0.5
    mode: Mode = Mode.SINGLE_BEAM
    precision: Precision = Precision.FINE
    seed: Optional[int] = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "FoconConfig":
        """
        Build a configuration from a flat {name: scalar} mapping.

        Enum fields accept members, values or member names in any case.

        Raises
        ------
        ConfigurationError
            For unknown keys or unparseable enum values
        """
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(mapping) - names
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        values = dict(mapping)
        for key, enum_type in (("mode", Mode), ("precision", Precision), ("defocus", Defocus)):
            if key in values:
                values[key] = _parse_enum(enum_type, values[key])
        return cls(**values)

    def with_changes(self, **changes: Any) -> "FoconConfig":
        """Return a new configuration with some fields replaced."""
        return dataclasses.replace(self, **changes)

    def with_detector(self, preset: str) -> "FoconConfig":
        """Return a new configuration using one of DETECTOR_PRESETS."""
        try:
            window, offset, diameter = DETECTOR_PRESETS[preset]
        except KeyError:
            raise ConfigurationError(f"Unknown detector preset {preset!r}") from None
        return self.with_changes(detector_window=window, detector_offset=offset,
                                 detector_diameter=diameter)

    @property
    def sampling(self) -> SamplingSettings:
        return SamplingSettings.for_precision(self.precision)

    def validate(self) -> "FoconConfig":
        """
        Check the configuration for consistency.

        Returns
        -------
        FoconConfig
            self, to allow chaining

        Raises
        ------
        ConfigurationError
            Describing the first problem found
        """
        if self.d_in <= 0 or self.d_out <= 0:
            raise ConfigurationError("Diameters must be positive")
        if self.length <= 0:
            raise ConfigurationError("Length must be positive")
        if abs(self.angle) >= 90:
            raise ConfigurationError(f"Input angle must lie in (-90, 90), got {self.angle}")
        if self.offset_x**2 + self.offset_y**2 >= (self.d_in / 2)**2:
            raise ConfigurationError("Entry point lies outside the entrance aperture")
        if self.glass_enabled and (self.lens_enabled or self.ocular_enabled):
            raise ConfigurationError("Lens and ocular are unavailable with the glass medium")
        if self.glass_enabled and self.refractive_index < 1:
            raise ConfigurationError("Refractive index must be at least 1")
        if not 0 <= self.cavity_length < self.length:
            raise ConfigurationError("Cavity length must lie in [0, length)")
        if self.lens_enabled and not self.auto_focus and self.focal_length == 0:
            raise ConfigurationError("Lens focal length must be non-zero")
        if self.ocular_enabled and abs(self.ocular_focal_length) < self.d_out / 2:
            raise ConfigurationError("Ocular focal length must be at least d_out/2 in magnitude")
        if min(self.detector_window, self.detector_diameter, self.detector_offset) < 0:
            raise ConfigurationError("Detector dimensions must be non-negative")
        if not 0 < self.detector_fov <= 90:
            raise ConfigurationError("Detector field of view must lie in (0, 90]")
        return self


def _parse_enum(enum_type, value):
    if isinstance(value, enum_type):
        return value
    for member in enum_type:
        if value == member.value or str(value).lower() == member.name.lower():
            return member
    raise ConfigurationError(f"Invalid {enum_type.__name__} value {value!r}")


@dataclass(frozen=True)
class FoconSystem:
    """
    Surface model built from a configuration.

    Attributes
    ----------
    guide : Tube or Cone
        Reflective wall
    detector : Detector
        Detector behind the exit plane
    lens : Lens, optional
        Entrance lens
    ocular : Lens, optional
        Exit lens
    cavity : Cone, optional
        Conical air cavity in the exit face of a glass guide
    glass : bool
        Guide filled with glass of index guide.n
    """
    guide: Guide
    detector: Detector
    lens: Optional[Lens] = None
    ocular: Optional[Lens] = None
    cavity: Optional[Cone] = None
    glass: bool = False
    config: Optional[FoconConfig] = field(default=None, compare=False, repr=False)

    @property
    def length(self) -> float:
        return self.guide.length

    @property
    def r1(self) -> float:
        return self.guide.r1

    @property
    def r2(self) -> float:
        return self.guide.r2

    @property
    def n(self) -> float:
        return self.guide.n

    @property
    def entrance(self) -> Plane:
        return Plane(0.0)

    @property
    def exit(self) -> Plane:
        return Plane(self.guide.length)


def build_system(config: FoconConfig) -> FoconSystem:
    """
    Build the surface model of a configuration.

    Parameters
    ----------
    config : FoconConfig
        Validated configuration

    Returns
    -------
    FoconSystem
        Guide, detector and optional lens, ocular and glass cavity
    """
    n = config.refractive_index if config.glass_enabled else 1.0
    guide = make_guide(config.d_in, config.d_out, config.length, n)
    detector = Detector(config.detector_window, config.detector_offset,
                        config.detector_fov, config.detector_diameter, z=config.length)

    lens = None
    if config.lens_enabled:
        if config.auto_focus:
            lens = Lens.focused_on(detector.detector_z, guide.r1, detector.radius, config.defocus)
        else:
            lens = Lens(config.focal_length)

    ocular = Lens(config.ocular_focal_length, z=config.length) if config.ocular_enabled else None

    cavity = None
    if config.glass_enabled and config.cavity_length > 0:
        cavity = Cone(0.0, config.d_out, config.cavity_length, n=1.0,
                      z0=config.length - config.cavity_length)

    return FoconSystem(guide=guide, detector=detector, lens=lens, ocular=ocular,
                       cavity=cavity, glass=config.glass_enabled, config=config)
