"""
tracer.py - Path of a single beam through a focon

A trace runs through four stages:

    1. Entering    entrance lens and/or refraction into the glass medium
    2. Bouncing    wall intersections and reflections until the beam
                   crosses the entrance or the exit plane
    3. Exiting     refraction out of the glass and/or through the ocular;
                   total internal reflection at the exit face sends the
                   beam back into stage 2
    4. Classified  REFLECTED, MISSED, HIT or DETECTED

Reflection works in the meridional frame of the point of incidence: the
direction is rotated so the wall normal becomes the +y axis, its y
component is negated and the result is rotated back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from .config import FoconSystem
from .exceptions import RayFault
from .rays import Beam, Point, RotationMatrix, radial_distance
from .surfaces import DEGENERACY_TOLERANCE, GuideKind, refract_vector

logger = logging.getLogger(__name__)

# A tube beam whose transverse direction is this close to unit length
# runs across the tube and never reaches either end
PERPENDICULAR_TOLERANCE = 1e-6

# Roots closer than this to a beam starting on the cavity wall are its own
# starting point
SURFACE_CLEARANCE = 1e-7


class BeamStatus(Enum):
    """Final state of a traced beam."""
    REFLECTED = "reflected"  # failed to pass the focon
    MISSED = "missed"        # passed the focon but missed the detector's apertures
    HIT = "hit"              # hit the detector outside its field of view
    DETECTED = "detected"    # hit within the detector's field of view


class _Exit(Enum):
    BACKWARD = "backward"
    FORWARD = "forward"
    CAVITY = "cavity"


@dataclass
class TraceResult:
    """
    Outcome of a single-beam trace.

    Attributes
    ----------
    status : BeamStatus
        Final classification
    path : list of np.ndarray
        Entry point, wall bounces, the plane crossing where the beam left
        the guide and, for forward beams, the point on the detector plane
    reflections : int
        Number of wall (and cavity) reflections
    exit_beam : Beam, optional
        Beam leaving the exit plane after all exit transforms
    invalid_angle : bool
        True when the beam runs across a tube and was not traced
    fault : bool
        True when the path could not be computed; the status is then
        REFLECTED and the path empty
    """
    status: BeamStatus
    path: List[Point] = field(default_factory=list)
    reflections: int = 0
    exit_beam: Optional[Beam] = None
    invalid_angle: bool = False
    fault: bool = False

    @property
    def passed(self) -> bool:
        return self.status is BeamStatus.DETECTED

    @property
    def exit_angle(self) -> Optional[float]:
        """Angle of the exit beam from the optical axis in degrees."""
        if self.exit_beam is None:
            return None
        return self.exit_beam.angle_from_axis_degrees()


class RayTracer:
    """
    Traces beams through a surface model.

    The tracer only reads the system; one tracer can trace any number of
    beams.

    Parameters
    ----------
    system : FoconSystem
        Guide, detector and optional lenses and glass cavity
    max_reflections : int, optional
        Wall bounces after which a trace is abandoned as a RayFault
    max_exit_reentries : int, optional
        Total internal reflections at the exit face after which a trace
        is abandoned as a RayFault
    """

    def __init__(
        self,
        system: FoconSystem,
        max_reflections: int = 100_000,
        max_exit_reentries: int = 64
    ):
        self.system = system
        self.max_reflections = max_reflections
        self.max_exit_reentries = max_exit_reentries

    def trace(self, beam: Beam) -> TraceResult:
        """
        Trace a beam entering the guide.

        Parameters
        ----------
        beam : Beam
            Beam starting in the entrance plane

        Returns
        -------
        TraceResult
            Classification and path of the beam

        Raises
        ------
        RayFault
            If the path cannot be computed; the fault carries the beam
            passed in, not the partially transformed one
        """
        try:
            return self._trace(beam)
        except RayFault as fault:
            logger.debug("Ray fault for %r: %s", beam, fault)
            raise RayFault(f"Cannot trace {beam!r}: {fault}", beam=beam) from fault
        except ValueError as error:
            logger.debug("Degenerate geometry for %r: %s", beam, error)
            raise RayFault(f"Cannot trace {beam!r}: {error}", beam=beam) from error

    def reflect(self, beam: Beam, point: Point) -> Beam:
        """
        Specular reflection of a beam at a point of the guide wall.

        Returns
        -------
        Beam
            Reflected beam starting at the point of incidence
        """
        rotation = RotationMatrix.meridional(point, self.system.guide.phi)
        local = rotation.apply(beam.direction)
        local[1] = -local[1]
        return Beam(point, rotation.transposed().apply(local))

    def _trace(self, beam: Beam) -> TraceResult:
        path = [beam.origin]
        beam = self._enter(beam)
        if beam.N <= 0:
            return TraceResult(BeamStatus.REFLECTED, path)

        guide = self.system.guide
        if guide.kind is GuideKind.TUBE and beam.transverse > 1 - PERPENDICULAR_TOLERANCE:
            logger.debug("Invalid input angle: %r runs across the tube", beam)
            return TraceResult(BeamStatus.REFLECTED, path, invalid_angle=True)

        reflections = 0
        for _ in range(self.max_exit_reentries + 1):
            beam, reflections, outcome = self._reflection_cycle(beam, path, reflections)
            if outcome is _Exit.BACKWARD:
                return TraceResult(BeamStatus.REFLECTED, path, reflections)
            if outcome is _Exit.CAVITY:
                break
            beam = self._exit(beam)
            if beam.N > 0:
                break
        else:
            raise RayFault("Beam keeps reflecting at the exit face")

        return self._classify(beam, path, reflections)

    def _enter(self, beam: Beam) -> Beam:
        if self.system.lens is not None:
            beam = self.system.lens.refract(beam)
        if self.system.glass:
            beam = self.system.entrance.refract(beam, 1.0, self.system.n)
        return beam

    def _reflection_cycle(
        self,
        beam: Beam,
        path: List[Point],
        reflections: int
    ) -> Tuple[Beam, int, _Exit]:
        """Bounce a beam along the wall until it leaves through an end plane."""
        guide = self.system.guide
        cavity = self.system.cavity
        while True:
            point = guide.intersect(beam)

            if cavity is not None:
                t = cavity.hit_distance(beam, cavity.z0, cavity.z_end, SURFACE_CLEARANCE)
                if t is not None and t < np.linalg.norm(point - beam.origin):
                    point = beam.point_at(t)
                    path.append(point)
                    if radial_distance(point) < DEGENERACY_TOLERANCE:
                        # Only an axial beam reaches the apex, at normal incidence
                        if beam.transverse >= DEGENERACY_TOLERANCE:
                            raise RayFault("Beam meets the cavity apex off axis")
                        direction = beam.direction
                        transmitted = True
                    else:
                        normal = cavity.normal(point)
                        direction = refract_vector(beam.direction, normal, self.system.n, 1.0)
                        transmitted = np.dot(direction, normal) * np.dot(beam.direction, normal) > 0
                    if transmitted:
                        beam, left = self._cross_cavity(Beam(point, direction), path)
                        if left:
                            return beam, reflections, _Exit.CAVITY
                        continue
                    # Total internal reflection at the cavity
                    reflections = self._count(reflections)
                    beam = Beam(point, direction)
                    continue

            if point[2] < self.system.entrance.z:
                crossing = self.system.entrance.intersect(beam)
                path.append(crossing)
                return beam.moved_to(crossing), reflections, _Exit.BACKWARD
            if point[2] > self.system.exit.z:
                crossing = self.system.exit.intersect(beam)
                path.append(crossing)
                return beam.moved_to(crossing), reflections, _Exit.FORWARD

            path.append(point)
            reflections = self._count(reflections)
            beam = self.reflect(beam, point)

    def _cross_cavity(self, beam: Beam, path: List[Point]) -> Tuple[Beam, bool]:
        """
        Follow a beam through the air cavity.

        Returns the beam at the exit plane and True when it leaves the
        guide there, or the beam refracted back into the glass at the far
        cavity wall and False.
        """
        cavity = self.system.cavity
        exit_plane = self.system.exit
        t = cavity.hit_distance(beam, cavity.z0, cavity.z_end, SURFACE_CLEARANCE)
        if beam.N > 0 and (t is None or t >= (exit_plane.z - beam.z) / beam.N):
            crossing = exit_plane.intersect(beam)
            path.append(crossing)
            return beam.moved_to(crossing), True
        if t is None:
            raise RayFault("Beam leaves the cavity without crossing its wall")

        point = beam.point_at(t)
        path.append(point)
        direction = refract_vector(beam.direction, cavity.normal(point), 1.0, self.system.n)
        return Beam(point, direction), False

    def _count(self, reflections: int) -> int:
        reflections += 1
        if reflections > self.max_reflections:
            raise RayFault(f"More than {self.max_reflections} reflections")
        return reflections

    def _exit(self, beam: Beam) -> Beam:
        if self.system.glass:
            beam = self.system.exit.refract(beam, self.system.n, 1.0)
            if beam.N < 0:
                return beam
        if self.system.ocular is not None:
            beam = self.system.ocular.refract(beam)
        return beam

    def _classify(self, beam: Beam, path: List[Point], reflections: int) -> TraceResult:
        detector = self.system.detector
        if detector.missed(beam):
            status = BeamStatus.MISSED
        elif detector.in_fov(beam):
            status = BeamStatus.DETECTED
        else:
            status = BeamStatus.HIT

        sensitive_point = detector.sensitive_point(beam)
        if sensitive_point is not None:
            path.append(sensitive_point)
        return TraceResult(status, path, reflections, exit_beam=beam)
