"""Per-member geometry orchestration.

Each builder resolves the member's nodes and section, picks the profile
family, computes the profile and placement and (optionally) the local-frame
solid. ``build_member`` is the failure boundary: missing nodes, missing
sections and degenerate geometry come back as ``MemberFailure`` records, and
``build_members`` keeps going after any of them.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from member_geometry.config import GeometryConfig
from member_geometry.contracts import (
    PLACEMENT_CENTER,
    PLACEMENT_TOP_ALIGNED,
    BatchResult,
    FailureReason,
    MemberFailure,
    MemberGeometry,
    MemberKind,
    MemberRecord,
    Offset,
    Placement,
    Profile,
    SecondaryProfile,
    SectionSpec,
    TaperStation,
    Vec3,
)
from member_geometry.errors import (
    DegenerateGeometryError,
    InvalidDimensionsError,
    MissingNodeDataError,
    MissingSectionDataError,
)
from member_geometry.geometry_cache import GeometryCache, cache_key
from member_geometry.geometry_calculator import place_column, place_horizontal
from member_geometry.parameter_mapper import normalize, pick
from member_geometry.profile_calculator import calculate, calculate_circle, center_on_bounds, section_height
from member_geometry.profile_types import resolve_family
from member_geometry.tapered_builder import (
    PILE_STRAIGHT,
    classify_pile,
    extrude_profile,
    loft,
    plan_extended_pile_stations,
    section_boundaries,
)

logger = logging.getLogger(__name__)

MemberOutcome = Union[MemberGeometry, MemberFailure]

# Families whose profile origin is not the section center
_OFF_CENTER_FAMILIES = ("L", "T", "2L-BB")

ROLE_CONCRETE = "concrete"
ROLE_BASE_PLATE = "base_plate"
ROLE_WALL_RISE = "wall_rise"


@dataclass
class BuildContext:
    """Caller-supplied lookups plus shared cache and numeric policy."""

    nodes: Mapping[str, Vec3]
    sections: Mapping[str, Union[SectionSpec, Mapping[str, Any]]]
    steel_shapes: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    cache: Optional[GeometryCache] = None
    config: GeometryConfig = field(default_factory=GeometryConfig)


# ─── Lookups ────────────────────────────────────────────────────────────────


def _node(ctx: BuildContext, node_id: Optional[str], role: str) -> np.ndarray:
    if node_id is None:
        raise MissingNodeDataError(f"No {role} node id")
    point = ctx.nodes.get(node_id)
    if point is None:
        raise MissingNodeDataError(f"{role} node {node_id!r} not found")
    return np.asarray(point, dtype=float)


def _endpoints(record: MemberRecord, ctx: BuildContext) -> Tuple[np.ndarray, np.ndarray]:
    start = (
        np.asarray(record.start_point, dtype=float)
        if record.start_point is not None
        else _node(ctx, record.start_node_id, "start")
    )
    end = (
        np.asarray(record.end_point, dtype=float)
        if record.end_point is not None
        else _node(ctx, record.end_node_id, "end")
    )
    return start, end


def _section(ctx: BuildContext, section_id: Optional[str]) -> SectionSpec:
    if section_id is None:
        raise MissingSectionDataError("Member has no section id")
    section = ctx.sections.get(section_id)
    if section is None:
        raise MissingSectionDataError(f"Section {section_id!r} not found")
    if not isinstance(section, SectionSpec):
        section = SectionSpec.from_dict(section)
    return section


def _steel_shape_dimensions(ctx: BuildContext, ref: Optional[str]) -> Dict[str, Any]:
    if not ref:
        return {}
    shape = ctx.steel_shapes.get(ref)
    if shape is None:
        logger.warning("Steel shape %r not in lookup; using section dimensions only", ref)
        return {}
    return dict(shape)


def _resolve_dimensions(section: SectionSpec, ctx: BuildContext) -> Dict[str, Any]:
    """Section dimensions merged over any referenced steel shape."""
    dims = _steel_shape_dimensions(ctx, section.steel_shape_ref)
    dims.update(section.dimensions)

    # CROSS_H arms reference two independent H shapes
    for axis in ("X", "Y"):
        shape = _steel_shape_dimensions(ctx, dims.get(f"crossH_shape{axis}"))
        if not shape:
            continue
        for canonical, aliases in (
            ("overallDepth", ("overall_depth", "A", "H")),
            ("overallWidth", ("overall_width", "B")),
            ("webThickness", ("web_thickness", "t1")),
            ("flangeThickness", ("flange_thickness", "t2")),
        ):
            value = pick(shape, aliases)
            if value is not None:
                dims.setdefault(f"{canonical}{axis}", value)
    return dims


# ─── Profiles and solids ────────────────────────────────────────────────────


def _profile(family: str, dims: Mapping[str, Any]) -> Tuple[Profile, Dict[str, float]]:
    params = normalize(family, dims)
    profile = calculate(family, params)
    if family in _OFF_CENTER_FAMILIES:
        profile = center_on_bounds(profile)
    return profile, params


def _solid(
    ctx: BuildContext,
    key: str,
    factory: Callable[[], Any],
) -> Tuple[Any, Optional[str]]:
    """Solid and the cache key it is held under (None when uncached)."""
    if not ctx.config.build_solids:
        return None, None
    try:
        if ctx.cache is not None and ctx.cache.enabled:
            return ctx.cache.get_or_create(key, factory), key
        return factory(), None
    except InvalidDimensionsError as exc:
        logger.warning("Could not build solid %s: %s", key, exc)
        return None, None


def _prism(ctx: BuildContext, family: str, params: Mapping[str, Any], profile: Profile, length: float) -> Tuple[Any, Optional[str]]:
    return _solid(ctx, cache_key(family, params, length), lambda: extrude_profile(profile, length))


def _lofted(ctx: BuildContext, key: str, stations: List[TaperStation], length: float) -> Tuple[Any, Optional[str]]:
    return _solid(ctx, key, lambda: loft(stations, length, ctx.config.circle_segments))


def _multi_section_stations(
    section: SectionSpec, family: str, dims: Mapping[str, Any], length: float, ctx: BuildContext
) -> Tuple[List[TaperStation], Dict[str, Any]]:
    sections: List[Tuple[str, Profile]] = []
    key_params: Dict[str, Any] = {}
    for variant in section.shapes:
        variant_dims = dict(dims)
        variant_dims.update(variant.dimensions)
        variant_family = resolve_family(
            SectionSpec(family_code=variant.family_code or family, dimensions=variant_dims)
        )
        profile, params = _profile(variant_family, variant_dims)
        sections.append((variant.pos, profile))
        key_params.update({f"{variant.pos}.{k}": v for k, v in params.items()})
        key_params[f"{variant.pos}.family"] = variant_family

    stations = section_boundaries(
        sections,
        length,
        section.haunch_start or 0.0,
        section.haunch_end or 0.0,
        ctx.config.step_epsilon_mm,
    )
    key_params["haunch_start"] = section.haunch_start
    key_params["haunch_end"] = section.haunch_end
    return stations, key_params


def _main_geometry(
    ctx: BuildContext, section: SectionSpec, family: str, dims: Mapping[str, Any], length: float
) -> Tuple[Profile, Any, Optional[str], bool, Tuple[TaperStation, ...]]:
    """Profile, solid, cache key, tapered flag and stations for a member body."""
    if section.is_multi_section:
        stations, key_params = _multi_section_stations(section, family, dims, length, ctx)
        solid, key = _lofted(ctx, cache_key(f"{family}-MULTI", key_params, length), stations, length)
        return stations[len(stations) // 2].profile, solid, key, True, tuple(stations)

    profile, params = _profile(family, dims)
    solid, key = _prism(ctx, family, params, profile, length)
    return profile, solid, key, False, ()


def _top_aligned_height(section: SectionSpec, family: str, dims: Mapping[str, Any]) -> float:
    """Deepest profile extent over the section and its variants."""
    if not section.is_multi_section:
        return section_height(family, _profile(family, dims)[0])
    height = 0.0
    for variant in section.shapes:
        variant_dims = {**dims, **variant.dimensions}
        variant_family = resolve_family(
            SectionSpec(family_code=variant.family_code or family, dimensions=variant_dims)
        )
        height = max(height, section_height(variant_family, _profile(variant_family, variant_dims)[0]))
    return height


def _roll_radians(record: MemberRecord, extra_degrees: float = 0.0) -> float:
    return math.radians(record.roll_degrees + extra_degrees)


# ─── Secondary profiles ─────────────────────────────────────────────────────


def _concrete_encasement(
    ctx: BuildContext, section: SectionSpec, placement: Placement
) -> Optional[SecondaryProfile]:
    concrete = section.concrete
    if concrete is None:
        return None
    family = resolve_family(concrete, default="RECTANGLE")
    profile, params = _profile(family, concrete.dimensions)
    solid, key = _prism(ctx, family, params, profile, placement.length)
    return SecondaryProfile(
        role=ROLE_CONCRETE,
        profile=profile,
        placement=placement,
        family=family,
        solid=solid,
        cache_key=key,
    )


def _base_plate(
    ctx: BuildContext, section: SectionSpec, bottom: np.ndarray, roll: float
) -> Optional[SecondaryProfile]:
    plate = section.base_plate
    if plate is None:
        return None
    top = bottom + np.array([plate.offset_x, plate.offset_y, 0.0])
    placement = place_column(
        top - np.array([0.0, 0.0, plate.thickness]),
        top,
        roll=roll,
        reference_axis=ctx.config.reference_axis,
        tolerance=ctx.config.length_tolerance_mm,
    )
    params = {"width": plate.width_x, "height": plate.width_y}
    profile = calculate("RECTANGLE", params)
    solid, key = _prism(ctx, "RECTANGLE", params, profile, plate.thickness)
    return SecondaryProfile(
        role=ROLE_BASE_PLATE,
        profile=profile,
        placement=placement,
        family="RECTANGLE",
        solid=solid,
        cache_key=key,
    )


# ─── Builders ───────────────────────────────────────────────────────────────


def build_column(record: MemberRecord, ctx: BuildContext) -> MemberGeometry:
    """Vertical member between bottom and top nodes.

    Adds a concrete encasement for SRC sections and a base plate when the
    section defines one. A section flagged as not in the reference direction
    is rolled a further 90 degrees.
    """
    section = _section(ctx, record.section_id)
    bottom, top = _endpoints(record, ctx)
    family = resolve_family(section)
    dims = _resolve_dimensions(section, ctx)
    roll = _roll_radians(record, 0.0 if section.is_reference_direction else 90.0)

    placement = place_column(
        bottom,
        top,
        record.start_offset,
        record.end_offset,
        roll,
        ctx.config.reference_axis,
        ctx.config.length_tolerance_mm,
    )
    profile, solid, key, tapered, stations = _main_geometry(ctx, section, family, dims, placement.length)

    secondary = []
    encasement = _concrete_encasement(ctx, section, placement)
    if encasement is not None:
        secondary.append(encasement)
    plate = _base_plate(ctx, section, bottom + np.array([record.start_offset.x, record.start_offset.y, 0.0]), roll)
    if plate is not None:
        secondary.append(plate)

    return MemberGeometry(
        member_id=record.member_id,
        kind=record.kind,
        family=family,
        profile=profile,
        placement=placement,
        secondary_profiles=tuple(secondary),
        solid=solid,
        tapered=tapered,
        stations=stations,
        cache_key=key,
    )


def build_post(record: MemberRecord, ctx: BuildContext) -> MemberGeometry:
    """Posts share the column geometry rules."""
    return build_column(record, ctx)


def _horizontal(record: MemberRecord, ctx: BuildContext, default_mode: str) -> MemberGeometry:
    section = _section(ctx, record.section_id)
    start, end = _endpoints(record, ctx)
    family = resolve_family(section)
    dims = _resolve_dimensions(section, ctx)

    mode = record.placement_mode or default_mode
    if mode not in (PLACEMENT_CENTER, PLACEMENT_TOP_ALIGNED):
        logger.warning("Member %s: unknown placement mode %r", record.member_id, mode)
        mode = default_mode
    has_z = record.start_offset.has_z or record.end_offset.has_z
    if mode == PLACEMENT_TOP_ALIGNED and has_z:
        logger.debug("Member %s has Z offsets; placing by centroid", record.member_id)
        mode = PLACEMENT_CENTER

    height = _top_aligned_height(section, family, dims) if mode == PLACEMENT_TOP_ALIGNED else 0.0

    placement = place_horizontal(
        start,
        end,
        record.start_offset,
        record.end_offset,
        _roll_radians(record),
        mode,
        height,
        ctx.config.reference_axis,
        ctx.config.length_tolerance_mm,
    )
    profile, solid, key, tapered, stations = _main_geometry(ctx, section, family, dims, placement.length)
    return MemberGeometry(
        member_id=record.member_id,
        kind=record.kind,
        family=family,
        profile=profile,
        placement=placement,
        solid=solid,
        tapered=tapered,
        stations=stations,
        cache_key=key,
    )


def build_beam(record: MemberRecord, ctx: BuildContext) -> MemberGeometry:
    """Beam/girder. Top-aligned when requested and no Z offsets are given."""
    return _horizontal(record, ctx, PLACEMENT_TOP_ALIGNED)


def build_brace(record: MemberRecord, ctx: BuildContext) -> MemberGeometry:
    """Brace placed on its centroid axis."""
    return _horizontal(record, ctx, PLACEMENT_CENTER)


def _pile_endpoints(record: MemberRecord, ctx: BuildContext, dims: Mapping[str, Any]) -> Tuple[np.ndarray, np.ndarray, Offset, Offset]:
    """Bottom/top points and the offsets still to apply."""
    if record.node_id is None:
        bottom, top = _endpoints(record, ctx)
        return bottom, top, record.start_offset, record.end_offset

    # Single-node format: the node is the pile head, offsets already applied here
    head = _node(ctx, record.node_id, "pile head")
    top = np.array([
        head[0] + record.end_offset.x,
        head[1] + record.end_offset.y,
        record.level_top if record.level_top is not None else head[2],
    ])

    length = record.length_all
    if length is None:
        length = pick(dims, ("length_pile", "length"))
    if length is None:
        diameter = pick(dims, ("D_axial", "diameter", "D", "outer_diameter"))
        if diameter is None:
            raise DegenerateGeometryError("Cannot determine pile length")
        length = diameter * ctx.config.pile_length_diameter_factor
        logger.warning(
            "Pile %s has no length; estimating %.0f mm from diameter %.0f",
            record.member_id, length, diameter,
        )
    bottom = top - np.array([0.0, 0.0, length])
    return bottom, top, Offset(), Offset()


def build_pile(record: MemberRecord, ctx: BuildContext) -> MemberGeometry:
    """Pile, straight or with an extended foot and/or head.

    Extended piles are lofted from bottom to top. When the taper data is
    incomplete the straight shaft is extruded instead.
    """
    section = _section(ctx, record.section_id)
    dims = _resolve_dimensions(section, ctx)
    bottom, top, bottom_offset, top_offset = _pile_endpoints(record, ctx, dims)
    placement = place_column(
        bottom,
        top,
        bottom_offset,
        top_offset,
        _roll_radians(record),
        ctx.config.reference_axis,
        ctx.config.length_tolerance_mm,
    )

    hint = dims.get("profile_hint") or section.family_code
    pile_type = classify_pile(dims, str(hint).upper() if hint else None)
    family = resolve_family(section)

    if pile_type != PILE_STRAIGHT:
        stations = plan_extended_pile_stations(
            pile_type,
            dims,
            placement.length,
            ctx.config.circle_segments,
            ctx.config.step_epsilon_mm,
        )
        d_axial = pick(dims, ("D_axial", "diameter", "D"))
        if stations is not None:
            shaft = calculate_circle({"radius": d_axial / 2.0, "segments": ctx.config.circle_segments})
            key_params = {k: v for k, v in dims.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}
            key_params["pile_type"] = pile_type
            solid, key = _lofted(ctx, cache_key("PILE", key_params, placement.length), stations, placement.length)
            return MemberGeometry(
                member_id=record.member_id,
                kind=record.kind,
                family="CIRCLE",
                profile=shaft,
                placement=placement,
                solid=solid,
                tapered=True,
                stations=tuple(stations),
                cache_key=key,
            )
        logger.warning("Pile %s: %s taper unusable; extruding straight shaft", record.member_id, pile_type)
        if d_axial is not None:
            family = "CIRCLE"
            dims = {"diameter": d_axial}

    profile, params = _profile(family, dims)
    solid, key = _prism(ctx, family, params, profile, placement.length)
    return MemberGeometry(
        member_id=record.member_id,
        kind=record.kind,
        family=family,
        profile=profile,
        placement=placement,
        solid=solid,
        cache_key=key,
    )


def build_foundation_column(record: MemberRecord, ctx: BuildContext) -> MemberGeometry:
    """Foundation column hanging below its base node.

    The foundation part (FD) runs ``length_fd`` down from the node; the wall
    rise part (WR) occupies the top ``length_wr`` of the member and is
    returned as a secondary profile.
    """
    section = _section(ctx, record.section_id)
    node = _node(ctx, record.node_id, "base")
    length_fd = record.length_fd or 0.0
    length_wr = record.length_wr or 0.0
    if length_fd + length_wr <= ctx.config.length_tolerance_mm:
        raise DegenerateGeometryError("Foundation column has no FD or WR length")

    base = node + np.array([record.start_offset.x, record.start_offset.y, 0.0])
    top = base
    bottom = base - np.array([0.0, 0.0, length_fd + length_wr])
    roll = _roll_radians(record)
    family = resolve_family(section, default="RECTANGLE")
    dims = _resolve_dimensions(section, ctx)

    secondary: List[SecondaryProfile] = []
    if length_wr > 0 and record.section_wr_id is not None:
        wr_section = _section(ctx, record.section_wr_id)
        wr_family = resolve_family(wr_section, default="RECTANGLE")
        wr_profile, wr_params = _profile(wr_family, _resolve_dimensions(wr_section, ctx))
        wr_placement = place_column(
            top - np.array([0.0, 0.0, length_wr]),
            top,
            roll=roll,
            reference_axis=ctx.config.reference_axis,
            tolerance=ctx.config.length_tolerance_mm,
        )
        wr_solid, wr_key = _prism(ctx, wr_family, wr_params, wr_profile, length_wr)
        secondary.append(SecondaryProfile(
            role=ROLE_WALL_RISE,
            profile=wr_profile,
            placement=wr_placement,
            family=wr_family,
            solid=wr_solid,
            cache_key=wr_key,
        ))
        fd_top = top - np.array([0.0, 0.0, length_wr])
    else:
        fd_top = top
        length_fd = length_fd + length_wr

    if length_fd <= ctx.config.length_tolerance_mm:
        raise DegenerateGeometryError("Foundation column FD part has zero length")
    placement = place_column(
        bottom,
        fd_top,
        roll=roll,
        reference_axis=ctx.config.reference_axis,
        tolerance=ctx.config.length_tolerance_mm,
    )
    profile, params = _profile(family, dims)
    solid, key = _prism(ctx, family, params, profile, placement.length)
    return MemberGeometry(
        member_id=record.member_id,
        kind=record.kind,
        family=family,
        profile=profile,
        placement=placement,
        secondary_profiles=tuple(secondary),
        solid=solid,
        cache_key=key,
    )


MEMBER_BUILDERS: Dict[MemberKind, Callable[[MemberRecord, BuildContext], MemberGeometry]] = {
    MemberKind.COLUMN: build_column,
    MemberKind.POST: build_post,
    MemberKind.PILE: build_pile,
    MemberKind.BEAM: build_beam,
    MemberKind.BRACE: build_brace,
    MemberKind.FOUNDATION_COLUMN: build_foundation_column,
}

_FAILURE_REASONS = (
    (MissingNodeDataError, FailureReason.MISSING_NODE_DATA),
    (MissingSectionDataError, FailureReason.MISSING_SECTION_DATA),
    (DegenerateGeometryError, FailureReason.DEGENERATE_GEOMETRY),
)


def build_member(record: MemberRecord, ctx: BuildContext) -> MemberOutcome:
    """Geometry for one member, or a structured failure."""
    builder = MEMBER_BUILDERS[record.kind]
    try:
        return builder(record, ctx)
    except (MissingNodeDataError, MissingSectionDataError, DegenerateGeometryError) as exc:
        reason = next(r for cls, r in _FAILURE_REASONS if isinstance(exc, cls))
        logger.warning("Skipping %s %s: %s", record.kind.value, record.member_id, exc)
        return MemberFailure(
            member_id=record.member_id,
            kind=record.kind,
            reason=reason,
            message=str(exc),
        )


def build_members(
    records: Iterable[MemberRecord],
    nodes: Mapping[str, Vec3],
    sections: Mapping[str, Union[SectionSpec, Mapping[str, Any]]],
    steel_shapes: Optional[Mapping[str, Mapping[str, Any]]] = None,
    cache: Optional[GeometryCache] = None,
    config: Optional[GeometryConfig] = None,
    max_workers: Optional[int] = None,
) -> BatchResult:
    """Build every record; per-member failures never stop the batch.

    With ``max_workers`` > 1 members are built on a thread pool that shares
    ``cache``. Results keep the input order either way.
    """
    ctx = BuildContext(
        nodes=nodes,
        sections=sections,
        steel_shapes=steel_shapes or {},
        cache=cache,
        config=config or GeometryConfig(),
    )
    records = list(records)
    if max_workers and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(lambda r: build_member(r, ctx), records))
    else:
        outcomes = [build_member(r, ctx) for r in records]

    batch = BatchResult()
    for outcome in outcomes:
        if isinstance(outcome, MemberFailure):
            batch.failures.append(outcome)
        else:
            batch.results.append(outcome)

    summary = batch.summary()
    logger.info(
        "Built %d/%d members (%d failed)",
        summary["succeeded"], summary["total"], summary["failed"],
    )
    if cache is not None:
        logger.debug("Geometry cache: %s", cache.stats())
    return batch
