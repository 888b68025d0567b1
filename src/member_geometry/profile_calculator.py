"""Closed-form 2D cross-section profiles.

One pure function per family, registered in ``PROFILE_CALCULATORS``. Every
function takes the canonical parameter record produced by
``parameter_mapper.normalize`` and returns a ``Profile`` whose outer ring is
counter-clockwise and whose holes are clockwise.

Local frame: X is the section's width direction, Y its depth direction.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from shapely.geometry import box
from shapely.ops import unary_union

from member_geometry.contracts import Profile, ProfileMeta, Ring, Vec2
from member_geometry.errors import UnsupportedProfileFamilyError
from member_geometry.parameter_mapper import DEFAULT_SEGMENTS, normalize, normalize_family_code

logger = logging.getLogger(__name__)

Params = Mapping[str, float]
Calculator = Callable[[Params], Profile]


# ─── Ring helpers ───────────────────────────────────────────────────────────


def signed_area(points: Sequence[Vec2]) -> float:
    """Shoelace area, positive for counter-clockwise rings."""
    total = 0.0
    n = len(points)
    for i in range(n):
        x0, y0 = points[i]
        x1, y1 = points[(i + 1) % n]
        total += x0 * y1 - x1 * y0
    return total / 2.0


def _ring(points: Iterable[Sequence[float]], ccw: bool = True) -> Ring:
    ring = tuple((float(x), float(y)) for x, y in points)
    if (signed_area(ring) > 0) != ccw:
        ring = tuple(reversed(ring))
    return ring


def _rect_points(x0: float, y0: float, x1: float, y1: float) -> List[Vec2]:
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]


def _profile(outer: Iterable[Sequence[float]], holes: Iterable[Iterable[Sequence[float]]] = ()) -> Profile:
    return Profile(
        outer=_ring(outer, ccw=True),
        holes=tuple(_ring(h, ccw=False) for h in holes),
    )


def _circle_points(radius: float, segments: int) -> List[Vec2]:
    step = 2.0 * math.pi / segments
    return [(radius * math.cos(i * step), radius * math.sin(i * step)) for i in range(segments)]


def _solid_fallback(family: str, reason: str, width: float, height: float) -> Profile:
    logger.warning("%s profile %s; using solid %.1fx%.1f rectangle", family, reason, width, height)
    return calculate_rectangle({"width": width, "height": height})


def translate_profile(profile: Profile, dx: float, dy: float) -> Profile:
    """Copy of ``profile`` shifted by (dx, dy)."""
    def shift(ring: Ring) -> Ring:
        return tuple((x + dx, y + dy) for x, y in ring)

    return Profile(
        outer=shift(profile.outer),
        holes=tuple(shift(h) for h in profile.holes),
        meta=profile.meta,
    )


def center_on_bounds(profile: Profile) -> Profile:
    """Move the bounding-box center of ``profile`` to the origin."""
    min_x, min_y, max_x, max_y = profile.bounds()
    return translate_profile(profile, -(min_x + max_x) / 2.0, -(min_y + max_y) / 2.0)


# ─── Single shapes ──────────────────────────────────────────────────────────


def calculate_h(p: Params) -> Profile:
    """12-vertex H/I section centered on the origin."""
    depth = p["overallDepth"]
    width = p["overallWidth"]
    tw = p["webThickness"]
    tf = p["flangeThickness"]
    if tw >= width or 2 * tf >= depth:
        return _solid_fallback("H", "web/flange thicker than section", width, depth)

    hd = depth / 2.0
    hw = width / 2.0
    hweb = tw / 2.0
    inner = hd - tf
    return _profile([
        (-hw, -hd), (hw, -hd), (hw, -inner), (hweb, -inner),
        (hweb, inner), (hw, inner), (hw, hd), (-hw, hd),
        (-hw, inner), (-hweb, inner), (-hweb, -inner), (-hw, -inner),
    ])


def calculate_box(p: Params) -> Profile:
    width = p["width"]
    height = p["height"]
    t = p["wallThickness"]
    hw = width / 2.0
    hh = height / 2.0
    outer = _rect_points(-hw, -hh, hw, hh)
    if 2 * t >= min(width, height):
        logger.warning(
            "BOX wall %.1f too thick for %.1fx%.1f; solid section", t, width, height
        )
        return _profile(outer)
    return _profile(outer, [_rect_points(-hw + t, -hh + t, hw - t, hh - t)])


def calculate_pipe(p: Params) -> Profile:
    outer_radius = p["outerDiameter"] / 2.0
    inner_radius = outer_radius - p["wallThickness"]
    segments = int(p.get("segments", DEFAULT_SEGMENTS))
    outer = _circle_points(outer_radius, segments)
    if inner_radius <= 0:
        logger.warning(
            "PIPE wall %.1f >= radius %.1f; solid section", p["wallThickness"], outer_radius
        )
        holes: List[List[Vec2]] = []
        inner_meta: Optional[float] = None
    else:
        holes = [_circle_points(inner_radius, segments)]
        inner_meta = inner_radius
    profile = _profile(outer, holes)
    return Profile(
        outer=profile.outer,
        holes=profile.holes,
        meta=ProfileMeta(kind="circular", outer_radius=outer_radius, inner_radius=inner_meta),
    )


def calculate_circle(p: Params) -> Profile:
    radius = p["radius"]
    segments = int(p.get("segments", DEFAULT_SEGMENTS))
    return Profile(
        outer=_ring(_circle_points(radius, segments)),
        meta=ProfileMeta(kind="circular", outer_radius=radius),
    )


def calculate_rectangle(p: Params) -> Profile:
    hw = p["width"] / 2.0
    hh = p["height"] / 2.0
    return _profile(_rect_points(-hw, -hh, hw, hh))


def calculate_flat_bar(p: Params) -> Profile:
    hw = p["width"] / 2.0
    ht = p["thickness"] / 2.0
    return _profile(_rect_points(-hw, -ht, hw, ht))


def calculate_channel(p: Params) -> Profile:
    """11-vertex channel, web on +X so the opening faces -X.

    The web's back face carries three collinear vertices (both flange roots
    and mid-depth).
    """
    depth = p["overallDepth"]
    width = p["flangeWidth"]
    tw = p["webThickness"]
    tf = p["flangeThickness"]
    if tw >= width or 2 * tf >= depth:
        return _solid_fallback("C", "web/flange thicker than section", width, depth)

    x_left = -width / 2.0
    x_right = width / 2.0
    x_web = x_right - tw
    y_bot = -depth / 2.0
    y_top = depth / 2.0
    return _profile([
        (x_left, y_bot), (x_right, y_bot),
        (x_right, y_bot + tf), (x_right, 0.0), (x_right, y_top - tf),
        (x_right, y_top), (x_left, y_top), (x_left, y_top - tf),
        (x_web, y_top - tf), (x_web, y_bot + tf), (x_left, y_bot + tf),
    ])


def calculate_l(p: Params) -> Profile:
    """6-vertex angle with the heel at the origin (not centered)."""
    depth = p["depth"]
    width = p["width"]
    t = p["thickness"]
    if t >= min(depth, width):
        logger.warning("L thickness %.1f >= leg length; solid %.1fx%.1f", t, width, depth)
        return _profile(_rect_points(0.0, 0.0, width, depth))
    return _profile([(0.0, 0.0), (width, 0.0), (width, t), (t, t), (t, depth), (0.0, depth)])


def calculate_t(p: Params) -> Profile:
    """8-vertex tee, flange on y=0 and the stem centered on the Y axis."""
    depth = p["overallDepth"]
    width = p["flangeWidth"]
    tw = p["webThickness"]
    tf = p["flangeThickness"]
    if tw >= width or tf >= depth:
        logger.warning("T stem/flange thicker than section; solid %.1fx%.1f", width, depth)
        return _profile(_rect_points(-width / 2.0, 0.0, width / 2.0, depth))
    hf = width / 2.0
    hs = tw / 2.0
    return _profile([
        (-hf, 0.0), (hf, 0.0), (hf, tf), (hs, tf),
        (hs, depth), (-hs, depth), (-hs, tf), (-hf, tf),
    ])


def calculate_cross(p: Params) -> Profile:
    """Plate cruciform: a width x thickness bar crossed by a thickness x height bar."""
    width = p["width"]
    height = p["height"]
    t = p["thickness"]
    if t >= min(width, height):
        return _solid_fallback("CROSS", "thickness exceeds arm length", width, height)
    return _cruciform(width / 2.0, t / 2.0, t / 2.0, height / 2.0)


def calculate_cross_h(p: Params) -> Profile:
    """Outline of two orthogonal H sections crossing at their webs.

    The X arm is an H whose depth runs along local X, the Y arm one whose
    depth runs along local Y. Arm sizes may differ.
    """
    x_half_len = p["overallDepthX"] / 2.0
    x_half_width = p["overallWidthX"] / 2.0
    y_half_width = p["overallWidthY"] / 2.0
    y_half_len = p["overallDepthY"] / 2.0
    if x_half_len > y_half_width and y_half_len > x_half_width:
        return _cruciform(x_half_len, x_half_width, y_half_width, y_half_len)

    # One arm does not protrude past the other; the union is a plain outline
    merged = unary_union([
        box(-x_half_len, -x_half_width, x_half_len, x_half_width),
        box(-y_half_width, -y_half_len, y_half_width, y_half_len),
    ]).simplify(0.0)
    return _profile(list(merged.exterior.coords)[:-1])


def _cruciform(ax: float, ay: float, bx: float, by: float) -> Profile:
    """12-vertex cross: horizontal bar (±ax, ±ay) over vertical bar (±bx, ±by)."""
    return _profile([
        (-bx, -by), (bx, -by), (bx, -ay), (ax, -ay),
        (ax, ay), (bx, ay), (bx, by), (-bx, by),
        (-bx, ay), (-ax, ay), (-ax, -ay), (-bx, -ay),
    ])


# ─── Built-up shapes ────────────────────────────────────────────────────────
# Each built-up is drawn as its bounding ring with the enclosed void(s)
# between the constituent shapes as holes. Open sides are closed by a strip
# as thick as the constituent plate.


def calculate_double_angle_back_to_back(p: Params) -> Profile:
    """Two angles, vertical legs back to back across ``gap``, horizontal legs outward."""
    depth = p["depth"]
    width = p["width"]
    t = p["thickness"]
    half_gap = p.get("gap", 0.0) / 2.0
    half_total = half_gap + width
    outer = _rect_points(-half_total, 0.0, half_total, depth)
    if 2 * t >= width or 2 * t >= depth:
        logger.warning("2L-BB thickness %.1f too large; solid section", t)
        return _profile(outer)
    return _profile(outer, [
        _rect_points(-half_total + t, t, -half_gap - t, depth - t),
        _rect_points(half_gap + t, t, half_total - t, depth - t),
    ])


def calculate_double_angle_face_to_face(p: Params) -> Profile:
    """Two angles with toes facing across ``gap`` enclosing one void."""
    depth = p["depth"]
    width = p["width"]
    t = p["thickness"]
    half_h = depth + p.get("gap", 0.0) / 2.0
    half_w = width / 2.0
    outer = _rect_points(-half_w, -half_h, half_w, half_h)
    if 2 * t >= width or t >= half_h:
        logger.warning("2L-FF thickness %.1f too large; solid section", t)
        return _profile(outer)
    return _profile(outer, [_rect_points(-half_w + t, -half_h + t, half_w - t, half_h - t)])


def calculate_double_channel_back_to_back(p: Params) -> Profile:
    """Two channels, webs back to back across ``gap``."""
    depth = p["overallDepth"]
    width = p["flangeWidth"]
    tw = p["webThickness"]
    tf = p["flangeThickness"]
    half_gap = p.get("gap", 0.0) / 2.0
    half_total = half_gap + width
    hd = depth / 2.0
    outer = _rect_points(-half_total, -hd, half_total, hd)
    if tw + tf >= width or 2 * tf >= depth:
        logger.warning("2C-BB web/flange too thick; solid section")
        return _profile(outer)
    return _profile(outer, [
        _rect_points(-half_total + tf, -hd + tf, -half_gap - tw, hd - tf),
        _rect_points(half_gap + tw, -hd + tf, half_total - tf, hd - tf),
    ])


def calculate_double_channel_face_to_face(p: Params) -> Profile:
    """Two channels with toes facing across ``gap`` enclosing one void."""
    depth = p["overallDepth"]
    width = p["flangeWidth"]
    tw = p["webThickness"]
    tf = p["flangeThickness"]
    half_total = p.get("gap", 0.0) / 2.0 + width
    hd = depth / 2.0
    outer = _rect_points(-half_total, -hd, half_total, hd)
    if tw >= width or 2 * tf >= depth:
        logger.warning("2C-FF web/flange too thick; solid section")
        return _profile(outer)
    return _profile(outer, [_rect_points(-half_total + tw, -hd + tf, half_total - tw, hd - tf)])


# ─── Dispatch ───────────────────────────────────────────────────────────────

PROFILE_CALCULATORS: Dict[str, Calculator] = {
    "H": calculate_h,
    "BOX": calculate_box,
    "PIPE": calculate_pipe,
    "CIRCLE": calculate_circle,
    "RECTANGLE": calculate_rectangle,
    "FB": calculate_flat_bar,
    "C": calculate_channel,
    "L": calculate_l,
    "T": calculate_t,
    "CROSS": calculate_cross,
    "CROSS_H": calculate_cross_h,
    "2L-BB": calculate_double_angle_back_to_back,
    "2L-FF": calculate_double_angle_face_to_face,
    "2C-BB": calculate_double_channel_back_to_back,
    "2C-FF": calculate_double_channel_face_to_face,
}


def get_calculator(family_code: str) -> Calculator:
    """Strict lookup; raises ``UnsupportedProfileFamilyError``."""
    family = normalize_family_code(family_code)
    if family is None or family not in PROFILE_CALCULATORS:
        raise UnsupportedProfileFamilyError(f"No profile calculator for family {family_code!r}")
    return PROFILE_CALCULATORS[family]


def calculate(family_code: Optional[str], params: Params) -> Profile:
    """Profile for ``family_code``; unknown families become a rectangle."""
    family = normalize_family_code(family_code)
    calculator = PROFILE_CALCULATORS.get(family) if family else None
    if calculator is None:
        logger.warning("Unsupported profile family %r; falling back to RECTANGLE", family_code)
        return calculate_rectangle(normalize("RECTANGLE", params))
    return calculator(params)


def profile_from_dimensions(family_code: Optional[str], raw_dimensions: Optional[Mapping[str, object]]) -> Profile:
    """Normalize raw section dimensions and build the profile."""
    return calculate(family_code, normalize(family_code, raw_dimensions))


def section_height(family_code: Optional[str], profile: Profile) -> float:
    """Vertical extent of ``profile`` for top-aligned beams. Circular shapes return 0."""
    if normalize_family_code(family_code) in ("PIPE", "CIRCLE"):
        return 0.0
    _, min_y, _, max_y = profile.bounds()
    return max_y - min_y
