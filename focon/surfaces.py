"""
surfaces.py - Surface model of a focon light guide

Surface types:
    - Plane: z = const cross-section (entrance, exit, detector planes)
    - Tube: reflective cylinder of constant radius
    - Cone: reflective truncated cone (tapered guide, glass cavity)
    - Lens: thin paraxial lens in a plane z = const
    - Detector: window aperture, sensitive element and field of view

Guides are selected once per configuration through make_guide(): a Tube
when both diameters agree within 1e-6, a Cone otherwise. Cone never
models the equal-diameter case, its apex would lie at infinity.

Tolerances:
    1e-6   geometric membership of a point on a surface
    1e-8   discriminant noise clamped to zero
    1e-9   degenerate quadratic coefficients and denominators
"""

import numpy as np
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .exceptions import RayFault
from .rays import Beam, Point, as_point, make_point, normalize, radial_distance


MEMBERSHIP_TOLERANCE = 1e-6
DISCRIMINANT_TOLERANCE = 1e-8
DEGENERACY_TOLERANCE = 1e-9

# Hamamatsu G12180 series: (window diameter, window-to-element offset,
# sensitive element diameter) in mm
DETECTOR_PRESETS: Dict[str, Tuple[float, float, float]] = {
    "G12180-005A": (2.2, 1.1, 0.5),
    "G12180-010A": (2.2, 1.1, 1.0),
    "G12180-020A": (4.5, 2.4, 2.0),
}


class GuideKind(Enum):
    """Tag selecting the wall model of a light guide."""
    TUBE = "tube"
    CONE = "cone"


class Defocus(Enum):
    """Bias of the auto-focused entrance lens relative to the detector."""
    NONE = "none"
    MINUS = "minus"  # focal point in front of the detector
    PLUS = "plus"    # focal point behind the detector


def refract_vector(
    direction: Sequence[float],
    normal: Sequence[float],
    n1: float,
    n2: float
) -> np.ndarray:
    """
    Refract a direction at an interface using the vector form of Snell's law.

    Parameters
    ----------
    direction : array-like
        Unit direction of the incident beam
    normal : array-like
        Surface normal at the point of incidence (either orientation)
    n1 : float
        Refractive index on the incident side
    n2 : float
        Refractive index on the transmitted side

    Returns
    -------
    np.ndarray
        Transmitted direction, or the specularly reflected direction when
        the beam is totally internally reflected
    """
    d = np.asarray(direction, dtype=np.float64)
    n = normalize(np.asarray(normal, dtype=np.float64))
    cos_i = -float(np.dot(n, d))
    if cos_i < 0:
        # Orient the normal against the incident beam
        n = -n
        cos_i = -cos_i

    eta = n1 / n2
    sin2_t = eta**2 * (1.0 - cos_i**2)
    if sin2_t > 1.0:
        return d + 2.0 * cos_i * n

    cos_t = np.sqrt(1.0 - sin2_t)
    return normalize(eta * d + (eta * cos_i - cos_t) * n)


def _quadratic_roots(a: float, b: float, c: float) -> List[float]:
    """
    Real roots of a·t² + b·t + c = 0 in ascending order, a non-zero.

    The root of larger magnitude comes from q = -(b ± √d)/2 with the sign
    of b, the other one from c/q, so neither root suffers cancellation.
    Discriminants within DISCRIMINANT_TOLERANCE of zero count as a double
    root.
    """
    d = b**2 - 4 * a * c
    if abs(d) < DISCRIMINANT_TOLERANCE:
        d = 0.0
    if d < 0:
        return []
    q = -0.5 * (b + np.copysign(np.sqrt(d), b))
    if q == 0.0:
        return [0.0, 0.0]
    return sorted([q / a, c / q])


class Plane:
    """
    Plane z = const perpendicular to the optical axis.

    Attributes
    ----------
    z : float
        Axial position in mm
    """

    def __init__(self, z: float):
        self.z = float(z)

    def contains(self, point: Sequence[float]) -> bool:
        """Check if a point lies on the plane within the membership tolerance."""
        return abs(point[2] - self.z) < MEMBERSHIP_TOLERANCE

    def intersect(self, beam: Beam) -> Point:
        """
        Intersection of a beam with the plane.

        Closed form t = (z_plane - z_beam) / N. The returned point has its
        z coordinate set exactly to the plane position.

        Raises
        ------
        ValueError
            If the beam runs parallel to the plane
        """
        if abs(beam.N) < DEGENERACY_TOLERANCE:
            raise ValueError(f"Beam runs parallel to plane z={self.z}")
        t = (self.z - beam.z) / beam.N
        return make_point(beam.x + t * beam.L, beam.y + t * beam.M, self.z)

    def refract(self, beam: Beam, n1: float, n2: float) -> Beam:
        """
        Refract a beam crossing the plane from index n1 into index n2.

        The transverse direction cosines scale by n1/n2. When the
        transmitted sine would exceed 1 the beam is totally internally
        reflected: the axial direction component is negated instead.

        Returns
        -------
        Beam
            New beam starting at the point of incidence
        """
        point = beam.origin if self.contains(beam.origin) else self.intersect(beam)
        ratio = n1 / n2
        tx = ratio * beam.L
        ty = ratio * beam.M
        sin2_t = tx**2 + ty**2
        if sin2_t > 1.0:
            return Beam(point, [beam.L, beam.M, -beam.N])
        nz = np.sqrt(1.0 - sin2_t)
        return Beam(point, [tx, ty, nz if beam.N > 0 else -nz])

    def __repr__(self) -> str:
        return f"Plane(z={self.z:.4f})"


class Tube:
    """
    Reflective cylinder of constant radius.

    The tube occupies z0 <= z <= z0 + length with its wall at radius d1/2.

    Attributes
    ----------
    d1 : float
        Diameter in mm
    length : float
        Length along the optical axis in mm
    n : float
        Refractive index of the medium filling the tube (1 = air)
    z0 : float
        Axial position of the entrance plane
    """

    kind = GuideKind.TUBE

    def __init__(self, d1: float, length: float, n: float = 1.0, z0: float = 0.0):
        if d1 <= 0 or length <= 0:
            raise ValueError(f"Tube needs positive diameter and length, got d1={d1}, length={length}")
        self.d1 = float(d1)
        self.length = float(length)
        self.n = float(n)
        self.z0 = float(z0)

    @property
    def d2(self) -> float:
        return self.d1

    @property
    def r1(self) -> float:
        return self.d1 / 2

    @property
    def r2(self) -> float:
        return self.d1 / 2

    @property
    def phi(self) -> float:
        """Taper half-angle, always zero for a tube."""
        return 0.0

    @property
    def tan_phi(self) -> float:
        return 0.0

    @property
    def z_end(self) -> float:
        return self.z0 + self.length

    def radius_at(self, z: float) -> float:
        return self.r1

    def on_surface(self, point: Sequence[float]) -> bool:
        return abs(radial_distance(point) - self.r1) < MEMBERSHIP_TOLERANCE

    def normal(self, point: Sequence[float]) -> np.ndarray:
        """Outward unit normal of the wall at a point."""
        r = radial_distance(point)
        return np.array([point[0] / r, point[1] / r, 0.0])

    def intersect(self, beam: Beam) -> Point:
        """
        Next point where the beam meets the wall.

        Solves (x + tL)² + (y + tM)² = r² for the forward parameter t.
        A beam travelling parallel to the axis never meets the wall; the
        returned point then lies beyond the end of the tube in the direction
        of travel (z0 + 2·length forward, z0 - length backward).

        Raises
        ------
        RayFault
            If the beam is outside the tube and misses it
        """
        a = beam.L**2 + beam.M**2
        if a < DEGENERACY_TOLERANCE:
            z = self.z0 + 2 * self.length if beam.N > 0 else self.z0 - self.length
            return make_point(beam.x, beam.y, z)

        b = 2 * (beam.x * beam.L + beam.y * beam.M)
        c = beam.x**2 + beam.y**2 - self.r1**2
        roots = _quadratic_roots(a, b, c)
        if not roots:
            raise RayFault("Beam misses the tube wall")

        # The larger root is the forward hit for a beam inside the tube,
        # including one starting on the wall
        t = roots[-1]
        if t <= 0:
            raise RayFault("Tube wall lies behind the beam")
        return beam.point_at(t)

    def __repr__(self) -> str:
        return f"Tube(d={self.d1:.4f}, L={self.length:.4f}, n={self.n:.4f})"


class Cone:
    """
    Reflective truncated cone.

    The cone occupies z0 <= z <= z0 + length, with diameter d1 at the
    entrance and d2 at the exit. Its wall radius varies linearly,

        r(z) = (z_apex - z) · tan(phi),   tan(phi) = (d1 - d2) / (2·length)

    where z_apex is the axial position of the (virtual) apex. A narrowing
    cone has phi > 0 and its apex beyond the exit; a widening cone has
    phi < 0 and its apex before the entrance.

    Attributes
    ----------
    d1, d2 : float
        Entrance and exit diameters in mm
    length : float
        Length along the optical axis in mm
    n : float
        Refractive index of the medium filling the cone
    z0 : float
        Axial position of the entrance plane
    """

    kind = GuideKind.CONE

    def __init__(
        self,
        d1: float,
        d2: float,
        length: float,
        n: float = 1.0,
        z0: float = 0.0
    ):
        if abs(d1 - d2) < MEMBERSHIP_TOLERANCE:
            raise ValueError("Cone with equal diameters is a tube, use make_guide()")
        if d1 < 0 or d2 < 0 or length <= 0:
            raise ValueError(f"Invalid cone: d1={d1}, d2={d2}, length={length}")
        self.d1 = float(d1)
        self.d2 = float(d2)
        self.length = float(length)
        self.n = float(n)
        self.z0 = float(z0)
        self.tan_phi = (self.d1 - self.d2) / (2 * self.length)
        self.phi = float(np.arctan(self.tan_phi))
        self.z_apex = self.z0 + self.d1 * self.length / (self.d1 - self.d2)

    @property
    def r1(self) -> float:
        return self.d1 / 2

    @property
    def r2(self) -> float:
        return self.d2 / 2

    @property
    def z_end(self) -> float:
        return self.z0 + self.length

    @property
    def narrowing(self) -> bool:
        return self.d2 < self.d1

    def radius_at(self, z: float) -> float:
        return (self.z_apex - z) * self.tan_phi

    def on_surface(self, point: Sequence[float]) -> bool:
        """
        Check if a point lies on the cone's own nappe.

        The signed radius (z_apex - z)·tan(phi) is negative on the mirror
        nappe beyond the apex, so those points never pass.
        """
        expected = (self.z_apex - point[2]) * self.tan_phi
        return abs(radial_distance(point) - expected) < MEMBERSHIP_TOLERANCE

    def normal(self, point: Sequence[float]) -> np.ndarray:
        """
        Outward unit normal of the wall at a point.

        Raises
        ------
        ValueError
            At the apex, where the normal is undefined
        """
        r = radial_distance(point)
        if r < DEGENERACY_TOLERANCE:
            raise ValueError("Cone normal is undefined at the apex")
        cos_phi = np.cos(self.phi)
        return np.array([point[0] / r * cos_phi, point[1] / r * cos_phi, np.sin(self.phi)])

    def _roots(self, beam: Beam, t_min: float = DEGENERACY_TOLERANCE) -> List[float]:
        """Forward parameters t > t_min where the beam meets either nappe, ascending."""
        tan2 = self.tan_phi**2
        h = self.z_apex - beam.z
        a = beam.L**2 + beam.M**2 - beam.N**2 * tan2
        b = 2 * (beam.x * beam.L + beam.y * beam.M + h * beam.N * tan2)
        c = beam.x**2 + beam.y**2 - h**2 * tan2

        if abs(a) < DEGENERACY_TOLERANCE:
            # Beam parallel to a generator line: linear equation
            if abs(b) < DEGENERACY_TOLERANCE:
                return []
            roots = [-c / b]
        else:
            roots = _quadratic_roots(a, b, c)
        return [t for t in roots if t > t_min]

    def _beyond_ends(self, beam: Beam, t: float) -> Point:
        """
        Out-of-bounds sentinel for a beam that leaves without meeting the wall.

        Doubles the parameter until the point lies outside [z0, z0 + length]
        on the side the beam travels towards.
        """
        if abs(beam.N) < DEGENERACY_TOLERANCE:
            raise RayFault("Beam runs across the cone without meeting its wall")
        t = max(t, 1.0)
        for _ in range(128):
            point = beam.point_at(t)
            if point[2] < self.z0 or point[2] > self.z_end:
                return point
            t *= 2
        raise RayFault("Beam never leaves the cone")

    def intersect(self, beam: Beam) -> Point:
        """
        Next point where the beam meets the wall.

        Root selection: the smallest positive root whose point lies on the
        cone's own nappe; failing that, the other root; failing both, an
        out-of-bounds sentinel beyond the end the beam travels towards.
        A beam running along the optical axis meets the apex, if the apex
        lies ahead of it.

        Raises
        ------
        RayFault
            If no wall point and no sentinel can be constructed
        """
        if beam.transverse < DEGENERACY_TOLERANCE and radial_distance(beam.origin) < DEGENERACY_TOLERANCE:
            if (self.z_apex - beam.z) * beam.N > 0:
                return make_point(beam.x, beam.y, self.z_apex)
            return self._beyond_ends(beam, self.length)

        roots = self._roots(beam)
        for t in roots:
            point = beam.point_at(t)
            if self.on_surface(point):
                return point
        return self._beyond_ends(beam, roots[-1] if roots else 1.0)

    def hit_distance(
        self,
        beam: Beam,
        z_min: float,
        z_max: float,
        t_min: float = DEGENERACY_TOLERANCE
    ) -> Optional[float]:
        """
        Forward distance to the first wall hit with z_min <= z <= z_max.

        Parameters
        ----------
        beam : Beam
            Beam to intersect
        z_min, z_max : float
            Axial range of the wall to consider
        t_min : float, optional
            Roots up to this distance are ignored; a beam starting on the
            wall passes a larger value to skip its own starting point

        Returns
        -------
        float or None
            Beam parameter t, or None if the beam does not meet that part
            of the wall
        """
        for t in self._roots(beam, t_min):
            point = beam.point_at(t)
            if z_min <= point[2] <= z_max and self.on_surface(point):
                return t
        return None

    def __repr__(self) -> str:
        return (
            f"Cone(d1={self.d1:.4f}, d2={self.d2:.4f}, L={self.length:.4f}, "
            f"phi={np.degrees(self.phi):.4f}°, n={self.n:.4f})"
        )


Guide = Union[Tube, Cone]


def make_guide(d1: float, d2: float, length: float, n: float = 1.0) -> Guide:
    """
    Create the wall model of a light guide.

    Parameters
    ----------
    d1 : float
        Entrance diameter in mm
    d2 : float
        Exit diameter in mm
    length : float
        Length in mm
    n : float, optional
        Refractive index of the filling medium (default: 1.0 = air)

    Returns
    -------
    Tube or Cone
        Tube when |d1 - d2| < 1e-6, Cone otherwise
    """
    if abs(d1 - d2) < MEMBERSHIP_TOLERANCE:
        return Tube(d1, length, n)
    return Cone(d1, d2, length, n)


class Lens:
    """
    Thin paraxial lens in the plane z = const.

    A beam crossing the lens at transverse height h with transverse slope m
    (relative to its direction of travel) leaves with slope m - h/f: it
    heads for the point where the parallel ray through the lens centre
    meets the focal plane. A negative focal length gives a diverging lens.

    Attributes
    ----------
    focal_length : float
        Focal length in mm (non-zero)
    z : float
        Axial position of the principal plane
    """

    def __init__(self, focal_length: float, z: float = 0.0):
        if abs(focal_length) < DEGENERACY_TOLERANCE:
            raise ValueError("Lens focal length must be non-zero")
        self.focal_length = float(focal_length)
        self.z = float(z)

    @property
    def plane(self) -> Plane:
        return Plane(self.z)

    @classmethod
    def focused_on(
        cls,
        distance: float,
        aperture_radius: float,
        detector_radius: float,
        defocus: Defocus = Defocus.NONE,
        z: float = 0.0
    ) -> "Lens":
        """
        Lens focusing a full-aperture bundle relative to a detector plane.

        Without defocus the focal point lies on the detector plane. With a
        defocus bias the focal point moves so that the light cone has the
        detector's radius at the detector plane:

            f = D · r1 / (r1 ± r_det)

        Parameters
        ----------
        distance : float
            Distance D from the lens to the detector plane
        aperture_radius : float
            Entrance aperture radius r1
        detector_radius : float
            Radius of the sensitive element r_det
        defocus : Defocus, optional
            MINUS focuses in front of the detector, PLUS behind it
        """
        bias = {Defocus.NONE: 0, Defocus.MINUS: 1, Defocus.PLUS: -1}[defocus]
        denominator = aperture_radius + detector_radius * bias
        if denominator <= 0:
            raise ValueError("Defocus bias exceeds the entrance aperture")
        return cls(distance * aperture_radius / denominator, z)

    def refract(self, beam: Beam) -> Beam:
        """
        Refract a beam at the lens plane.

        Returns
        -------
        Beam
            New beam starting at the point where the input beam crosses
            the lens plane
        """
        plane = self.plane
        point = beam.origin if plane.contains(beam.origin) else plane.intersect(beam)
        axial = abs(beam.N)
        if axial < DEGENERACY_TOLERANCE:
            raise ValueError("Beam runs parallel to the lens plane")
        mx = beam.L / axial - point[0] / self.focal_length
        my = beam.M / axial - point[1] / self.focal_length
        return Beam(point, [mx, my, 1.0 if beam.N > 0 else -1.0])

    def __repr__(self) -> str:
        return f"Lens(f={self.focal_length:.4f}, z={self.z:.4f})"


class Detector:
    """
    Photodetector behind the exit plane of the guide.

    The detector window sits in the exit plane; the sensitive element sits
    offset mm further along the axis. A beam is detected when it clears
    both circular apertures and arrives within the field of view.

    Attributes
    ----------
    window : float
        Window aperture diameter in mm
    offset : float
        Distance from window to sensitive element in mm
    fov : float
        Field-of-view half-angle in degrees
    diameter : float
        Sensitive element diameter in mm
    z : float
        Axial position of the window (the guide's exit plane)
    """

    def __init__(
        self,
        window: float,
        offset: float,
        fov: float,
        diameter: float,
        z: float = 0.0
    ):
        self.window = float(window)
        self.offset = float(offset)
        self.fov = float(fov)
        self.diameter = float(diameter)
        self.z = float(z)

    @property
    def window_radius(self) -> float:
        return self.window / 2

    @property
    def radius(self) -> float:
        return self.diameter / 2

    @property
    def detector_z(self) -> float:
        """Axial position of the sensitive element."""
        return self.z + self.offset

    def sensitive_point(self, beam: Beam) -> Optional[Point]:
        """Point where a forward beam meets the sensitive plane, else None."""
        if beam.N <= 0:
            return None
        return Plane(self.detector_z).intersect(beam)

    def missed(self, beam: Beam) -> bool:
        """Check if the beam fails to clear the window or the sensitive element."""
        if beam.N <= 0:
            return True
        window_point = Plane(self.z).intersect(beam)
        if radial_distance(window_point) > self.window_radius:
            return True
        return radial_distance(self.sensitive_point(beam)) > self.radius

    def in_fov(self, beam: Beam) -> bool:
        return beam.angle_from_axis_degrees() <= self.fov

    def detected(self, beam: Beam) -> bool:
        return not self.missed(beam) and self.in_fov(beam)

    def __repr__(self) -> str:
        return (
            f"Detector(window={self.window:.4f}, offset={self.offset:.4f}, "
            f"fov={self.fov:.2f}°, d={self.diameter:.4f})"
        )


if __name__ == "__main__":
    cone = make_guide(25, 0.5, 50)
    print(cone)
    beam = Beam.from_angle(origin=[0, 5, 0], angle=10)
    point = cone.intersect(beam)
    print(f"First wall hit: {as_point(point)}, on surface: {cone.on_surface(point)}")

    tube = make_guide(25, 25, 50)
    print(tube)
    print(f"Axial beam sentinel: {tube.intersect(Beam([0, 0, 0], [0, 0, 1]))}")

    lens = Lens.focused_on(distance=51.1, aperture_radius=12.5, detector_radius=0.25)
    print(lens)
    print(f"Refracted marginal beam: {lens.refract(Beam([0, 12.5, 0], [0, 0, 1]))}")
