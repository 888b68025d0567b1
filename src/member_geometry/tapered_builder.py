"""Prismatic and tapered solids built from cross-section profiles.

Solids are ``trimesh.Trimesh`` objects in the member's local frame: the
extrusion axis is +Z and the member spans ``z = -L/2 .. L/2``, so the
placement center and rotation position them directly. Caps are triangulated
with shapely's constrained Delaunay triangulation and side walls are quads
split into two triangles per ring edge.

Lofting interpolates linearly between matched vertex pairs of consecutive
stations. Stations must share winding and ring topology; circular stations
are resampled to a common segment count and polygon rings with different
vertex counts are densified along their longest edges.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import shapely
import trimesh
from shapely.geometry import Polygon

from member_geometry.contracts import Profile, ProfileMeta, TaperStation
from member_geometry.errors import InvalidDimensionsError
from member_geometry.parameter_mapper import DEFAULT_SEGMENTS, pick, to_positive_float
from member_geometry.profile_calculator import calculate_circle, signed_area

logger = logging.getLogger(__name__)

STEP_EPSILON_MM = 0.1

PILE_STRAIGHT = "Straight"
PILE_EXTENDED_FOOT = "ExtendedFoot"
PILE_EXTENDED_TOP = "ExtendedTop"
PILE_EXTENDED_TOP_FOOT = "ExtendedTopFoot"
EXTENDED_PILE_TYPES = (PILE_EXTENDED_FOOT, PILE_EXTENDED_TOP, PILE_EXTENDED_TOP_FOOT)

Loops = List[np.ndarray]


# ─── Rings ──────────────────────────────────────────────────────────────────


def _orient(ring: np.ndarray, ccw: bool) -> np.ndarray:
    if (signed_area(ring.tolist()) > 0) != ccw:
        return ring[::-1].copy()
    return ring


def _circle_ring(radius: float, segments: int) -> np.ndarray:
    angles = np.arange(segments) * (2.0 * math.pi / segments)
    return np.column_stack([radius * np.cos(angles), radius * np.sin(angles)])


def _profile_loops(profile: Profile, circle_segments: Optional[int] = None) -> Loops:
    """Outer ring (CCW) followed by hole rings (CW) as (n, 2) arrays."""
    if len(profile.outer) < 3:
        raise InvalidDimensionsError(f"Profile needs >= 3 vertices, got {len(profile.outer)}")

    if profile.is_circular and circle_segments and circle_segments != len(profile.outer):
        loops = [_circle_ring(profile.meta.outer_radius, circle_segments)]
        if profile.meta.inner_radius:
            loops.append(_orient(_circle_ring(profile.meta.inner_radius, circle_segments), ccw=False))
        return loops

    loops = [_orient(np.asarray(profile.outer, dtype=float), ccw=True)]
    for hole in profile.holes:
        if len(hole) < 3:
            raise InvalidDimensionsError(f"Hole ring needs >= 3 vertices, got {len(hole)}")
        loops.append(_orient(np.asarray(hole, dtype=float), ccw=False))
    return loops


def densify_ring(ring: np.ndarray, count: int) -> np.ndarray:
    """Insert midpoints on the longest edges until the ring has ``count`` vertices.

    Existing vertices are kept so corners survive.
    """
    points = [tuple(p) for p in np.asarray(ring, dtype=float)]
    while len(points) < count:
        n = len(points)
        lengths = [
            math.dist(points[i], points[(i + 1) % n]) for i in range(n)
        ]
        i = int(np.argmax(lengths))
        a = points[i]
        b = points[(i + 1) % n]
        points.insert(i + 1, ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0))
    return np.asarray(points, dtype=float)


def _key(x: float, y: float) -> Tuple[float, float]:
    return (round(float(x), 6), round(float(y), 6))


def _cap_faces(loops: Loops) -> np.ndarray:
    """Counter-clockwise triangles over the profile, indexing the stacked loops."""
    lookup: Dict[Tuple[float, float], int] = {}
    base = 0
    for loop in loops:
        for i, (x, y) in enumerate(loop):
            lookup.setdefault(_key(x, y), base + i)
        base += len(loop)

    poly = Polygon(loops[0], [loop for loop in loops[1:]])
    if not poly.is_valid or poly.area <= 0:
        raise InvalidDimensionsError("Profile polygon is invalid or has zero area")

    faces: List[List[int]] = []
    for tri in shapely.constrained_delaunay_triangles(poly).geoms:
        if tri.is_empty or tri.area <= 1e-9:
            continue
        if not poly.covers(tri.representative_point()):
            continue
        coords = list(tri.exterior.coords)[:3]
        indices = [lookup.get(_key(x, y)) for x, y in coords]
        if any(i is None for i in indices):
            raise InvalidDimensionsError("Cap triangulation introduced a vertex not on the profile")
        if signed_area(coords) < 0:
            indices.reverse()
        faces.append(indices)

    if not faces:
        raise InvalidDimensionsError("Profile produced no cap triangles")
    return np.asarray(faces, dtype=int)


# ─── Mesh assembly ──────────────────────────────────────────────────────────


def _stack_mesh(station_loops: Sequence[Loops], z_values: Sequence[float]) -> trimesh.Trimesh:
    loop_sizes = [len(loop) for loop in station_loops[0]]
    per_station = sum(loop_sizes)

    vertices = np.vstack([
        np.column_stack([np.vstack(loops), np.full(per_station, z)])
        for loops, z in zip(station_loops, z_values)
    ])

    all_faces: List[np.ndarray] = []
    for s in range(len(station_loops) - 1):
        lower = s * per_station
        upper = (s + 1) * per_station
        start = 0
        for n in loop_sizes:
            k = np.arange(n)
            k_next = (k + 1) % n
            b0 = lower + start + k
            b1 = lower + start + k_next
            t0 = upper + start + k
            t1 = upper + start + k_next
            all_faces.append(np.column_stack([b0, b1, t1]))
            all_faces.append(np.column_stack([b0, t1, t0]))
            start += n

    bottom_cap = _cap_faces(station_loops[0])
    top_cap = _cap_faces(station_loops[-1])
    all_faces.append(bottom_cap[:, ::-1])
    all_faces.append(top_cap + (len(station_loops) - 1) * per_station)

    mesh = trimesh.Trimesh(vertices=vertices, faces=np.vstack(all_faces), process=False)
    if not mesh.is_watertight or mesh.volume <= 0:
        raise InvalidDimensionsError("Generated solid is not a closed positive-volume mesh")
    return mesh


def extrude_profile(
    profile: Profile, length: float, circle_segments: Optional[int] = None
) -> trimesh.Trimesh:
    """Straight prism of ``profile`` along +Z, centered on the origin."""
    if not np.isfinite(length) or length <= 0:
        raise InvalidDimensionsError(f"Extrusion length must be > 0, got {length}")
    loops = _profile_loops(profile, circle_segments)
    return _stack_mesh([loops, loops], [-length / 2.0, length / 2.0])


# ─── Lofting ────────────────────────────────────────────────────────────────

_NAMED_POSITIONS = {
    "START": 0.0,
    "BOTTOM": 0.0,
    "CENTER": 0.5,
    "END": 1.0,
    "TOP": 1.0,
}


def station_offsets(stations: Sequence[TaperStation], total_length: float) -> List[float]:
    """Axial offsets from the start end, explicit or derived from names."""
    n = len(stations)
    offsets = []
    for i, station in enumerate(stations):
        if station.offset is not None:
            offsets.append(float(station.offset))
            continue
        fraction = _NAMED_POSITIONS.get(station.position.upper())
        if fraction is None:
            fraction = i / max(1, n - 1)
        offsets.append(fraction * total_length)
    return offsets


def _compatible_loops(profiles: Sequence[Profile], circle_segments: Optional[int]) -> List[Loops]:
    if all(p.is_circular for p in profiles):
        hollow = [bool(p.meta.inner_radius) for p in profiles]
        segments = circle_segments or max(len(p.outer) for p in profiles)
        if all(hollow) or not any(hollow):
            result = []
            for p in profiles:
                loops = [_circle_ring(p.meta.outer_radius, segments)]
                if p.meta.inner_radius:
                    loops.append(_orient(_circle_ring(p.meta.inner_radius, segments), ccw=False))
                result.append(loops)
            return result

    station_loops = [_profile_loops(p) for p in profiles]
    hole_counts = {len(loops) for loops in station_loops}
    if len(hole_counts) > 1:
        logger.warning("Loft stations have differing hole counts; lofting outer rings only")
        station_loops = [loops[:1] for loops in station_loops]

    for j in range(len(station_loops[0])):
        target = max(len(loops[j]) for loops in station_loops)
        for loops in station_loops:
            if len(loops[j]) != target:
                loops[j] = densify_ring(loops[j], target)
    return station_loops


def loft(
    stations: Sequence[TaperStation],
    total_length: float,
    circle_segments: Optional[int] = None,
) -> trimesh.Trimesh:
    """Watertight solid through ``stations`` over ``total_length``.

    A single station is a straight extrusion of its profile. Stations that
    do not reach either end are extended with a constant section.
    """
    if not stations:
        raise InvalidDimensionsError("Loft needs at least one station")
    if not np.isfinite(total_length) or total_length <= 0:
        raise InvalidDimensionsError(f"Loft length must be > 0, got {total_length}")
    if len(stations) == 1:
        return extrude_profile(stations[0].profile, total_length, circle_segments)

    offsets = station_offsets(stations, total_length)
    order = sorted(range(len(stations)), key=lambda i: offsets[i])
    offsets = [offsets[i] for i in order]
    profiles = [stations[i].profile for i in order]

    tol = 1e-6
    if offsets[0] < -tol or offsets[-1] > total_length + tol:
        raise InvalidDimensionsError(
            f"Station offsets {offsets[0]:.1f}..{offsets[-1]:.1f} outside member length {total_length:.1f}"
        )
    if any(b - a <= tol for a, b in zip(offsets, offsets[1:])):
        raise InvalidDimensionsError("Loft stations must be at distinct axial positions")

    if offsets[0] > tol:
        offsets.insert(0, 0.0)
        profiles.insert(0, profiles[0])
    if offsets[-1] < total_length - tol:
        offsets.append(total_length)
        profiles.append(profiles[-1])
    offsets[0] = 0.0
    offsets[-1] = total_length

    station_loops = _compatible_loops(profiles, circle_segments)
    z_values = [offset - total_length / 2.0 for offset in offsets]
    return _stack_mesh(station_loops, z_values)


def interpolate_profile(a: Profile, b: Profile, t: float) -> Profile:
    """Linear blend of two compatible profiles, ``t`` in [0, 1]."""
    loops_a, loops_b = _compatible_loops([a, b], None)
    t = min(max(t, 0.0), 1.0)
    blended = [la + (lb - la) * t for la, lb in zip(loops_a, loops_b)]

    meta = ProfileMeta()
    if a.is_circular and b.is_circular:
        inner = None
        if a.meta.inner_radius and b.meta.inner_radius:
            inner = a.meta.inner_radius + (b.meta.inner_radius - a.meta.inner_radius) * t
        meta = ProfileMeta(
            kind="circular",
            outer_radius=a.meta.outer_radius + (b.meta.outer_radius - a.meta.outer_radius) * t,
            inner_radius=inner,
        )
    return Profile(
        outer=tuple(map(tuple, blended[0].tolist())),
        holes=tuple(tuple(map(tuple, loop.tolist())) for loop in blended[1:]),
        meta=meta,
    )


def profile_at(stations: Sequence[TaperStation], total_length: float, offset: float) -> Profile:
    """Section of a lofted member at ``offset`` from its start end."""
    offsets = station_offsets(stations, total_length)
    pairs = sorted(zip(offsets, range(len(stations))))
    if offset <= pairs[0][0]:
        return stations[pairs[0][1]].profile
    for (o0, i0), (o1, i1) in zip(pairs, pairs[1:]):
        if o0 <= offset <= o1:
            t = (offset - o0) / (o1 - o0) if o1 > o0 else 0.0
            return interpolate_profile(stations[i0].profile, stations[i1].profile, t)
    return stations[pairs[-1][1]].profile


# ─── Multi-section members ──────────────────────────────────────────────────


def section_boundaries(
    sections: Sequence[Tuple[str, Profile]],
    length: float,
    haunch_start: float = 0.0,
    haunch_end: float = 0.0,
    epsilon: float = STEP_EPSILON_MM,
) -> List[TaperStation]:
    """Stations for a member with START/CENTER/END (or haunch) sections.

    Uniform regions between section changes are kept prismatic; a section
    change at a haunch boundary is a step of ``epsilon`` mm.
    """
    by_pos = {pos.upper(): profile for pos, profile in sections}
    has_start = "START" in by_pos
    has_center = "CENTER" in by_pos
    has_end = "END" in by_pos
    hs = haunch_start or 0.0
    he = haunch_end or 0.0
    points: List[Tuple[str, float, Profile]] = []

    if has_start and has_center and has_end and (hs > 0 or he > 0):
        points.append(("START", 0.0, by_pos["START"]))
        if hs > 0:
            points.append(("START", hs - epsilon, by_pos["START"]))
            points.append(("CENTER", hs, by_pos["CENTER"]))
        elif he > 0:
            points.append(("CENTER", (length - he) / 2.0, by_pos["CENTER"]))
        if he > 0:
            points.append(("CENTER", length - he, by_pos["CENTER"]))
            points.append(("END", length - he + epsilon, by_pos["END"]))
        points.append(("END", length, by_pos["END"]))
    elif has_start and has_center and not has_end:
        transition = hs if hs > 0 else length * 0.2
        points.append(("START", 0.0, by_pos["START"]))
        points.append(("START", transition - epsilon, by_pos["START"]))
        points.append(("CENTER", transition, by_pos["CENTER"]))
        points.append(("CENTER", length, by_pos["CENTER"]))
    elif has_center and has_end and not has_start:
        transition = length - he if he > 0 else length * 0.8
        points.append(("CENTER", 0.0, by_pos["CENTER"]))
        points.append(("CENTER", transition, by_pos["CENTER"]))
        points.append(("END", transition + epsilon, by_pos["END"]))
        points.append(("END", length, by_pos["END"]))
    elif has_start and has_end and not has_center:
        points.append(("START", 0.0, by_pos["START"]))
        points.append(("END", length, by_pos["END"]))
    else:
        n = len(sections)
        for i, (pos, profile) in enumerate(sections):
            key = pos.upper()
            if key in ("START", "BOTTOM"):
                offset = 0.0
            elif key == "HAUNCH_S":
                offset = hs
            elif key == "CENTER":
                offset = length / 2.0
            elif key == "HAUNCH_E":
                offset = length - he
            elif key in ("END", "TOP"):
                offset = length
            else:
                offset = length * i / max(1, n - 1)
            points.append((key, offset, profile))

    points.sort(key=lambda item: item[1])
    return [TaperStation(position=pos, profile=profile, offset=offset) for pos, offset, profile in points]


# ─── Extended piles ─────────────────────────────────────────────────────────


def classify_pile(dimensions: Mapping[str, object], profile_hint: Optional[str] = None) -> str:
    """Pile type: ``Straight`` or one of the extended variants."""
    pile_type = dimensions.get("pile_type")
    if pile_type == PILE_STRAIGHT:
        return PILE_STRAIGHT
    has_foot = to_positive_float(dimensions.get("D_extended_foot")) is not None
    has_top = to_positive_float(dimensions.get("D_extended_top")) is not None
    if not (profile_hint == "EXTENDED_PILE" or has_foot or has_top or pile_type):
        return PILE_STRAIGHT
    if pile_type in EXTENDED_PILE_TYPES:
        return str(pile_type)
    if has_foot and has_top:
        return PILE_EXTENDED_TOP_FOOT
    if has_foot:
        return PILE_EXTENDED_FOOT
    if has_top:
        return PILE_EXTENDED_TOP
    return PILE_STRAIGHT


def taper_length(d_extended: float, d_axial: float, angle_degrees: Optional[float]) -> float:
    """Axial length of the cone between two diameters at ``angle_degrees``.

    Without an angle the change is a hard step.
    """
    if not angle_degrees or angle_degrees <= 0 or angle_degrees >= 90:
        return 0.0
    radius_difference = abs(d_extended - d_axial) / 2.0
    return radius_difference / math.tan(math.radians(angle_degrees))


def _non_negative(dimensions: Mapping[str, object], key: str) -> float:
    value = to_positive_float(dimensions.get(key))
    return value if value is not None else 0.0


def plan_extended_pile_stations(
    pile_type: str,
    dimensions: Mapping[str, object],
    length: float,
    segments: int = DEFAULT_SEGMENTS,
    step_epsilon: float = STEP_EPSILON_MM,
) -> Optional[List[TaperStation]]:
    """Bottom-to-top stations for an extended pile, or None if unbuildable.

    Offsets are measured from the pile bottom. Returns None when a governing
    diameter is missing or the tapers do not fit in ``length``; the caller
    then extrudes the straight shaft instead.
    """
    if pile_type not in EXTENDED_PILE_TYPES:
        logger.warning("Unknown extended pile type %r", pile_type)
        return None

    d_axial = pick(dimensions, ("D_axial", "diameter", "D"))
    if d_axial is None:
        logger.warning("Extended pile without D_axial; cannot taper")
        return None

    def circle(diameter: float) -> Profile:
        return calculate_circle({"radius": diameter / 2.0, "segments": segments})

    plan: List[Tuple[str, float, float]] = []
    if pile_type in (PILE_EXTENDED_FOOT, PILE_EXTENDED_TOP_FOOT):
        d_foot = to_positive_float(dimensions.get("D_extended_foot"))
        if d_foot is None:
            logger.warning("%s pile without D_extended_foot", pile_type)
            return None
        foot_length = _non_negative(dimensions, "length_extended_foot")
        foot_taper = taper_length(d_foot, d_axial, to_positive_float(dimensions.get("angle_extended_foot_taper")))
        plan.append(("BOTTOM", 0.0, d_foot))
        if foot_length > 0:
            plan.append(("FOOT_END", foot_length, d_foot))
        plan.append(("SHAFT_START", foot_length + (foot_taper or step_epsilon), d_axial))
    else:
        plan.append(("BOTTOM", 0.0, d_axial))

    if pile_type in (PILE_EXTENDED_TOP, PILE_EXTENDED_TOP_FOOT):
        d_top = to_positive_float(dimensions.get("D_extended_top"))
        if d_top is None:
            logger.warning("%s pile without D_extended_top", pile_type)
            return None
        top_taper = taper_length(d_top, d_axial, to_positive_float(dimensions.get("angle_extended_top_taper")))
        plan.append(("SHAFT_END", length - (top_taper or step_epsilon), d_axial))
        plan.append(("TOP", length, d_top))
    else:
        plan.append(("TOP", length, d_axial))

    offsets = [offset for _, offset, _ in plan]
    if any(b <= a for a, b in zip(offsets, offsets[1:])):
        logger.warning(
            "%s pile tapers do not fit in length %.1f (stations at %s)",
            pile_type, length, ", ".join(f"{o:.1f}" for o in offsets),
        )
        return None

    return [TaperStation(position=name, profile=circle(d), offset=offset) for name, offset, d in plan]
