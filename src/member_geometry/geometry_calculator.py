"""Member placement math: endpoints + offsets + roll -> Placement.

Rotations use ``trimesh.transformations`` quaternions (w, x, y, z) internally
and are exposed as ``Quaternion`` records. The profile is extruded along the
reference axis (+Z by default); ``rotation`` carries that axis onto the member
direction and then rolls about the member's own axis.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np
import trimesh.transformations as tf

from member_geometry.contracts import (
    PLACEMENT_CENTER,
    PLACEMENT_TOP_ALIGNED,
    Offset,
    Placement,
    Quaternion,
    Vec3,
)
from member_geometry.errors import DegenerateGeometryError

logger = logging.getLogger(__name__)

REFERENCE_AXIS: Vec3 = (0.0, 0.0, 1.0)
LENGTH_TOLERANCE_MM = 1e-6
_ALIGNED_EPS = 1e-12


def _vec(point: Sequence[float]) -> np.ndarray:
    return np.asarray(point, dtype=float).reshape(3)


def _tuple(v: np.ndarray) -> Vec3:
    return (float(v[0]), float(v[1]), float(v[2]))


# ─── Quaternions ────────────────────────────────────────────────────────────


def quaternion_from_unit_vectors(v_from: Sequence[float], v_to: Sequence[float]) -> Quaternion:
    """Shortest-arc rotation taking unit vector ``v_from`` onto ``v_to``.

    The angle is ``atan2(|a x b|, a . b)``, accurate near parallel and
    antiparallel. Only a vanishing cross product falls back to the identity
    or a half turn.
    """
    a = _vec(v_from)
    b = _vec(v_to)
    dot = float(np.dot(a, b))
    cross = np.cross(a, b)
    sin_angle = float(np.linalg.norm(cross))

    if sin_angle < _ALIGNED_EPS and dot > 0.0:
        return Quaternion.identity()
    if sin_angle < _ALIGNED_EPS:
        # Half turn about any axis perpendicular to v_from
        axis = np.cross((1.0, 0.0, 0.0), a)
        if np.linalg.norm(axis) < 1e-6:
            axis = np.cross((0.0, 1.0, 0.0), a)
        axis = axis / np.linalg.norm(axis)
        return Quaternion(float(axis[0]), float(axis[1]), float(axis[2]), 0.0)

    angle = math.atan2(sin_angle, dot)
    return Quaternion.from_wxyz(tf.quaternion_about_axis(angle, cross / sin_angle))


def quaternion_section_up(direction: Sequence[float]) -> Quaternion:
    """Rotation whose local Z is ``direction`` and local Y points as far up as possible.

    Local X is the horizontal perpendicular (-dy, dx, 0). Members with no
    horizontal component fall back to world X.
    """
    z_axis = _vec(direction)
    z_axis = z_axis / np.linalg.norm(z_axis)
    x_axis = np.array([-z_axis[1], z_axis[0], 0.0])
    if np.linalg.norm(x_axis) < 1e-5:
        x_axis = np.array([1.0, 0.0, 0.0])
    x_axis = x_axis / np.linalg.norm(x_axis)
    y_axis = np.cross(z_axis, x_axis)
    y_axis = y_axis / np.linalg.norm(y_axis)
    x_axis = np.cross(y_axis, z_axis)

    basis = np.identity(4)
    basis[:3, 0] = x_axis
    basis[:3, 1] = y_axis
    basis[:3, 2] = z_axis
    return Quaternion.from_wxyz(tf.quaternion_from_matrix(basis))


def quaternion_about_axis(axis: Sequence[float], angle: float) -> Quaternion:
    return Quaternion.from_wxyz(tf.quaternion_about_axis(angle, _vec(axis)))


def quaternion_multiply(q1: Quaternion, q0: Quaternion) -> Quaternion:
    """Composition ``q1 * q0`` (apply q0 first, then q1)."""
    return Quaternion.from_wxyz(tf.quaternion_multiply(q1.as_wxyz(), q0.as_wxyz()))


def apply_roll(rotation: Quaternion, direction: Sequence[float], angle: float) -> Quaternion:
    """Roll an aligned rotation by ``angle`` radians about ``direction``."""
    if angle == 0.0:
        return rotation
    return quaternion_multiply(quaternion_about_axis(direction, angle), rotation)


def rotation_matrix(q: Quaternion) -> np.ndarray:
    """3x3 rotation matrix of ``q``."""
    return tf.quaternion_matrix(q.as_wxyz())[:3, :3]


def rotate_vector(q: Quaternion, v: Sequence[float]) -> np.ndarray:
    return rotation_matrix(q) @ _vec(v)


def placement_matrix(placement: Placement) -> np.ndarray:
    """4x4 local-to-world transform of a placement."""
    matrix = tf.quaternion_matrix(placement.rotation.as_wxyz())
    matrix[:3, 3] = placement.center
    return matrix


# ─── Placement ──────────────────────────────────────────────────────────────


def apply_offset(point: Sequence[float], offset: Optional[Offset]) -> np.ndarray:
    p = _vec(point)
    if offset is None:
        return p
    return p + np.array([offset.x, offset.y, offset.z])


def place_between(
    point_a: Sequence[float],
    point_b: Sequence[float],
    start_offset: Optional[Offset] = None,
    end_offset: Optional[Offset] = None,
    roll: float = 0.0,
    reference_axis: Sequence[float] = REFERENCE_AXIS,
    tolerance: float = LENGTH_TOLERANCE_MM,
    section_up: bool = False,
) -> Placement:
    """Placement of a prismatic member running from ``point_a`` to ``point_b``.

    Offsets are added to each end in world coordinates. ``roll`` is in
    radians. Raises ``DegenerateGeometryError`` when the adjusted endpoints
    are closer than ``tolerance``.

    The base alignment is the shortest arc from ``reference_axis`` onto the
    member direction, or with ``section_up`` the basis that keeps the
    profile's local Y pointing up (horizontal members). Roll follows.
    """
    a = apply_offset(point_a, start_offset)
    b = apply_offset(point_b, end_offset)
    delta = b - a
    length = float(np.linalg.norm(delta))
    if not np.isfinite(length) or length < tolerance:
        raise DegenerateGeometryError(
            f"Member endpoints coincide after offsets (length={length:.3g} mm)"
        )

    direction = delta / length
    ref = _vec(reference_axis)
    ref = ref / np.linalg.norm(ref)
    if section_up:
        rotation = quaternion_section_up(direction)
    else:
        rotation = quaternion_from_unit_vectors(ref, direction)
    rotation = apply_roll(rotation, direction, roll)

    return Placement(
        center=_tuple((a + b) / 2.0),
        direction=_tuple(direction),
        length=length,
        rotation=rotation,
    )


def place_column(
    bottom: Sequence[float],
    top: Sequence[float],
    bottom_offset: Optional[Offset] = None,
    top_offset: Optional[Offset] = None,
    roll: float = 0.0,
    reference_axis: Sequence[float] = REFERENCE_AXIS,
    tolerance: float = LENGTH_TOLERANCE_MM,
) -> Placement:
    """Vertical-member variant: only the X/Y components of offsets apply."""
    return place_between(
        bottom,
        top,
        _xy_only(bottom_offset),
        _xy_only(top_offset),
        roll,
        reference_axis,
        tolerance,
    )


def place_horizontal(
    start: Sequence[float],
    end: Sequence[float],
    start_offset: Optional[Offset] = None,
    end_offset: Optional[Offset] = None,
    roll: float = 0.0,
    placement_mode: str = PLACEMENT_CENTER,
    section_height: float = 0.0,
    reference_axis: Sequence[float] = REFERENCE_AXIS,
    tolerance: float = LENGTH_TOLERANCE_MM,
) -> Placement:
    """Beam/brace variant.

    In ``top-aligned`` mode both endpoints drop by ``section_height / 2`` so
    the top face of the section sits at the node level. That mode cannot be
    combined with Z offsets.
    """
    if placement_mode not in (PLACEMENT_CENTER, PLACEMENT_TOP_ALIGNED):
        raise ValueError(f"Unknown placement mode {placement_mode!r}")

    if placement_mode == PLACEMENT_TOP_ALIGNED:
        if (start_offset is not None and start_offset.has_z) or (
            end_offset is not None and end_offset.has_z
        ):
            raise ValueError("Z offsets and top-aligned placement are mutually exclusive")
        shift = Offset(0.0, 0.0, -section_height / 2.0)
        start = apply_offset(start, shift)
        end = apply_offset(end, shift)

    return place_between(
        start, end, start_offset, end_offset, roll, reference_axis, tolerance, section_up=True
    )


def end_points(placement: Placement) -> Tuple[np.ndarray, np.ndarray]:
    """Start and end points of the member axis."""
    center = _vec(placement.center)
    half = _vec(placement.direction) * (placement.length / 2.0)
    return center - half, center + half


def _xy_only(offset: Optional[Offset]) -> Optional[Offset]:
    if offset is None:
        return None
    if offset.has_z:
        logger.debug("Ignoring Z offset %.1f on vertical member", offset.z)
    return Offset(offset.x, offset.y, 0.0)
