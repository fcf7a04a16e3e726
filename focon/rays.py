"""
rays.py - Geometry primitives for tracing beams through a light guide

A beam is defined by:
    - Origin point P = (x, y, z) in the guide's local frame
    - Direction cosines D = (L, M, N) where L² + M² + N² = 1

The z-axis is the optical axis. The entrance plane of the guide lies at
z = 0 and the exit plane at z = length.

Beams are value objects: every reflection or refraction creates a new
Beam rather than updating one in place.
"""

import numpy as np
from typing import List, Sequence, Tuple


Point = np.ndarray


def make_point(x: float, y: float, z: float) -> Point:
    """
    Create an immutable point.

    Parameters
    ----------
    x, y, z : float
        Coordinates in mm

    Returns
    -------
    np.ndarray
        Read-only float64 array [x, y, z]
    """
    point = np.array([x, y, z], dtype=np.float64)
    point.flags.writeable = False
    return point


def as_point(values: Sequence[float]) -> Point:
    """Copy any 3-element sequence into an immutable point."""
    return make_point(float(values[0]), float(values[1]), float(values[2]))


def radial_distance(point: Sequence[float]) -> float:
    """Distance of a point from the optical axis."""
    return float(np.hypot(point[0], point[1]))


def normalize(vector: np.ndarray) -> np.ndarray:
    """
    Normalize a vector to unit length.

    Parameters
    ----------
    vector : np.ndarray
        Input vector of any dimension

    Returns
    -------
    np.ndarray
        Unit vector in same direction

    Raises
    ------
    ValueError
        If vector has zero magnitude
    """
    magnitude = np.linalg.norm(vector)
    if magnitude < 1e-15:
        raise ValueError("Cannot normalize zero vector")
    return vector / magnitude


class Beam:
    """
    A ray travelling through the light guide.

    Attributes
    ----------
    origin : np.ndarray
        Current position of the beam [x, y, z] in mm (read-only)
    direction : np.ndarray
        Direction cosines [L, M, N] (read-only, unit length)

    Examples
    --------
    >>> beam = Beam(origin=[0, 0, 0], direction=[0, 0, 1])
    >>> beam.N
    1.0

    >>> beam = Beam.from_angle(origin=[0, 5, 0], angle=5)
    >>> round(beam.angle_from_axis_degrees(), 6)
    5.0
    """

    __slots__ = ("origin", "direction")

    def __init__(self, origin: Sequence[float], direction: Sequence[float]):
        """
        Initialize a Beam.

        Parameters
        ----------
        origin : array-like
            Starting position [x, y, z] in mm
        direction : array-like
            Direction vector, normalized to unit length on construction
        """
        origin = np.array(origin, dtype=np.float64)
        direction = normalize(np.array(direction, dtype=np.float64))
        origin.flags.writeable = False
        direction.flags.writeable = False
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "direction", direction)

    def __setattr__(self, name, value):
        raise AttributeError("Beam is immutable; create a new Beam instead")

    @property
    def L(self) -> float:
        """Direction cosine with respect to x-axis."""
        return float(self.direction[0])

    @property
    def M(self) -> float:
        """Direction cosine with respect to y-axis."""
        return float(self.direction[1])

    @property
    def N(self) -> float:
        """Direction cosine with respect to z-axis (optical axis)."""
        return float(self.direction[2])

    @property
    def x(self) -> float:
        return float(self.origin[0])

    @property
    def y(self) -> float:
        return float(self.origin[1])

    @property
    def z(self) -> float:
        return float(self.origin[2])

    @property
    def transverse(self) -> float:
        """Magnitude of the direction component orthogonal to the axis."""
        return float(np.hypot(self.direction[0], self.direction[1]))

    def point_at(self, t: float) -> Point:
        """
        Get the point along the beam at parameter t.

        The parametric beam equation is: P(t) = origin + t * direction
        """
        return as_point(self.origin + t * self.direction)

    def moved_to(self, origin: Sequence[float]) -> "Beam":
        """Return a beam with the same direction starting at a new origin."""
        return Beam(origin, self.direction)

    def redirected(self, direction: Sequence[float]) -> "Beam":
        """Return a beam from the same origin travelling in a new direction."""
        return Beam(self.origin, direction)

    def angle_from_axis(self) -> float:
        """
        Calculate the angle of the beam from the optical axis.

        Returns
        -------
        float
            Angle in radians, in [0, pi]
        """
        return float(np.arccos(np.clip(self.N, -1.0, 1.0)))

    def angle_from_axis_degrees(self) -> float:
        """Angle of the beam from the optical axis in degrees."""
        return float(np.degrees(self.angle_from_axis()))

    @classmethod
    def from_angle(
        cls,
        origin: Sequence[float],
        angle: float,
        angle_in_degrees: bool = True
    ) -> "Beam":
        """
        Create a beam inclined in the meridional y-z plane.

        Parameters
        ----------
        origin : array-like
            Starting position [x, y, z] in mm
        angle : float
            Inclination from the optical axis towards +y
        angle_in_degrees : bool, optional
            If True, angle is in degrees (default: True)

        Returns
        -------
        Beam
            New beam with direction (0, sin(angle), cos(angle))
        """
        if angle_in_degrees:
            angle = np.radians(angle)
        return cls(origin=origin, direction=[0.0, np.sin(angle), np.cos(angle)])

    @classmethod
    def from_two_points(
        cls,
        point1: Sequence[float],
        point2: Sequence[float]
    ) -> "Beam":
        """Create a beam starting at point1 and passing through point2."""
        p1 = np.array(point1, dtype=np.float64)
        p2 = np.array(point2, dtype=np.float64)
        return cls(origin=p1, direction=p2 - p1)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Beam):
            return NotImplemented
        return (np.array_equal(self.origin, other.origin)
                and np.array_equal(self.direction, other.direction))

    def __hash__(self) -> int:
        return hash((self.origin.tobytes(), self.direction.tobytes()))

    def __repr__(self) -> str:
        return (
            f"Beam at [{self.x:.4f}, {self.y:.4f}, {self.z:.4f}], "
            f"direction [{self.L:.4f}, {self.M:.4f}, {self.N:.4f}]"
        )


def transformation_angle(point: Sequence[float]) -> float:
    """
    In-plane rotation angle ksi of a point on the guide wall.

    Rotating the point by -ksi about the optical axis brings it onto the
    positive y-axis, i.e. into the reference meridional plane.

    Parameters
    ----------
    point : array-like
        Point [x, y, z]

    Returns
    -------
    float
        ksi in radians
    """
    return float(np.arctan2(point[1], point[0]) - np.pi / 2)


class RotationMatrix:
    """
    Orthonormal 3x3 rotation used to move a beam into the meridional frame.

    The meridional rotation M = Rx(-phi) · Rz(-ksi) maps the wall normal at
    a point of incidence onto the +y axis: in the rotated frame the law of
    reflection reduces to negating the y component of the direction.
    """

    __slots__ = ("matrix",)

    def __init__(self, matrix: np.ndarray):
        matrix = np.array(matrix, dtype=np.float64)
        if matrix.shape != (3, 3):
            raise ValueError(f"Rotation matrix must be 3x3, got {matrix.shape}")
        matrix.flags.writeable = False
        self.matrix = matrix

    @classmethod
    def from_angles(cls, ksi: float, phi: float) -> "RotationMatrix":
        """
        Build the meridional rotation from its two angles.

        Parameters
        ----------
        ksi : float
            In-plane angle of the point of incidence (see transformation_angle)
        phi : float
            Taper half-angle of the wall, 0 for a tube
        """
        return cls._build(np.cos(ksi), np.sin(ksi), phi)

    @classmethod
    def meridional(cls, point: Sequence[float], phi: float) -> "RotationMatrix":
        """
        Build the meridional rotation for a point of incidence.

        Equivalent to from_angles(transformation_angle(point), phi), but
        the sine and cosine of ksi come straight from the point's
        coordinates, so mirrored points give exactly mirrored matrices.
        """
        r = radial_distance(point)
        if r < 1e-12:
            raise ValueError("Point of incidence lies on the optical axis")
        # ksi = atan2(y, x) - pi/2
        return cls._build(point[1] / r, -point[0] / r, phi)

    @classmethod
    def _build(cls, cos_ksi: float, sin_ksi: float, phi: float) -> "RotationMatrix":
        cos_phi, sin_phi = np.cos(phi), np.sin(phi)
        rz = np.array([
            [cos_ksi, sin_ksi, 0.0],
            [-sin_ksi, cos_ksi, 0.0],
            [0.0, 0.0, 1.0],
        ])
        rx = np.array([
            [1.0, 0.0, 0.0],
            [0.0, cos_phi, sin_phi],
            [0.0, -sin_phi, cos_phi],
        ])
        return cls(rx @ rz)

    def transposed(self) -> "RotationMatrix":
        """Inverse rotation."""
        return RotationMatrix(self.matrix.T)

    def apply(self, vector: Sequence[float]) -> np.ndarray:
        return self.matrix @ np.asarray(vector, dtype=np.float64)

    def __repr__(self) -> str:
        return f"RotationMatrix({np.round(self.matrix, 6).tolist()})"


# =============================================================================
# Beam Generation Utilities
# =============================================================================

def beam_from_angle(x: float, y: float, angle: float) -> Beam:
    """Beam entering the guide at (x, y, 0) with inclination angle in degrees."""
    return Beam.from_angle(origin=[x, y, 0.0], angle=angle)


def parallel_entry_points(radius: float, count: int) -> List[Tuple[float, float, int]]:
    """
    Entry points of a parallel bundle in the half-disk x >= 0.

    The grid spacing is radius / count. Points on the aperture circle are
    excluded (a beam starting on the wall has no defined first bounce).

    Parameters
    ----------
    radius : float
        Entrance aperture radius in mm
    count : int
        Number of grid subdivisions per radius

    Returns
    -------
    List[Tuple[float, float, int]]
        (x, y, weight) triples; weight is 2 for x > 0 (the mirrored
        point at -x behaves identically) and 1 on the y-axis
    """
    points = []
    step = radius / count
    for i in range(count + 1):
        x = i * step
        for j in range(-count, count + 1):
            y = j * step
            if x * x + y * y < radius * radius:
                points.append((x, y, 2 if i > 0 else 1))
    return points


def quadrant_entry_points(radius: float, count: int) -> List[Tuple[float, float, int]]:
    """
    Entry points in the quadrant x >= 0, y >= 0.

    Returns
    -------
    List[Tuple[float, float, int]]
        (x, y, weight) triples; weight counts the mirror images of the
        point about both axes (1, 2 or 4)
    """
    points = []
    step = radius / count
    for i in range(count + 1):
        x = i * step
        for j in range(count + 1):
            y = j * step
            if x * x + y * y < radius * radius:
                points.append((x, y, (2 if i > 0 else 1) * (2 if j > 0 else 1)))
    return points


def divergent_angles(angle: float, steps_per_degree: int) -> List[float]:
    """
    Inclination angles of a divergent bundle, symmetric about zero.

    Parameters
    ----------
    angle : float
        Bundle half-width in degrees (sign ignored)
    steps_per_degree : int
        Angular resolution

    Returns
    -------
    List[float]
        Angles i / steps_per_degree for i in [-limit, limit]
    """
    limit = int(abs(angle) * steps_per_degree)
    return [i / steps_per_degree for i in range(-limit, limit + 1)]


if __name__ == "__main__":
    beam = Beam.from_angle(origin=[0, 0, 0], angle=5)
    print(beam)
    print(f"Angle from axis: {beam.angle_from_axis_degrees():.2f}°")

    point = make_point(3.0, 4.0, 10.0)
    m = RotationMatrix.meridional(point, np.radians(10))
    print(m)
    print(f"Rotated point: {m.apply(point)}")

    bundle = parallel_entry_points(radius=12.5, count=5)
    print(f"Parallel bundle: {len(bundle)} entry points, "
          f"{sum(w for _, _, w in bundle)} beams after unfolding")
