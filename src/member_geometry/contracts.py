"""Value types passed between the member geometry stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from shapely.geometry import Polygon

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]
Ring = Tuple[Vec2, ...]

PLACEMENT_CENTER = "center"
PLACEMENT_TOP_ALIGNED = "top-aligned"


# ─── Profiles ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProfileMeta:
    kind: str = "polygon"  # "polygon" | "circular"
    outer_radius: Optional[float] = None
    inner_radius: Optional[float] = None


@dataclass(frozen=True)
class Profile:
    """2D cross-section in the member's local XY plane (mm).

    ``outer`` is counter-clockwise and implicitly closed. Every ring in
    ``holes`` is clockwise and lies inside ``outer``.
    """

    outer: Ring
    holes: Tuple[Ring, ...] = ()
    meta: ProfileMeta = field(default_factory=ProfileMeta)

    @property
    def is_circular(self) -> bool:
        return self.meta.kind == "circular" and bool(self.meta.outer_radius)

    @property
    def vertex_count(self) -> int:
        return len(self.outer)

    def to_polygon(self) -> Polygon:
        return Polygon(self.outer, [list(h) for h in self.holes])

    @property
    def area(self) -> float:
        return float(self.to_polygon().area)

    def bounds(self) -> Tuple[float, float, float, float]:
        xs = [p[0] for p in self.outer]
        ys = [p[1] for p in self.outer]
        return min(xs), min(ys), max(xs), max(ys)


# ─── Placement ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Quaternion:
    """Unit quaternion stored as (x, y, z, w)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0

    @classmethod
    def identity(cls) -> "Quaternion":
        return cls(0.0, 0.0, 0.0, 1.0)

    @classmethod
    def from_wxyz(cls, q: Sequence[float]) -> "Quaternion":
        return cls(float(q[1]), float(q[2]), float(q[3]), float(q[0]))

    def as_wxyz(self) -> Tuple[float, float, float, float]:
        return (self.w, self.x, self.y, self.z)

    def as_xyzw(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.z, self.w)

    def is_close(self, other: "Quaternion", tol: float = 1e-9) -> bool:
        """True if both represent the same rotation (q and -q are equal)."""
        dot = abs(sum(a * b for a, b in zip(self.as_xyzw(), other.as_xyzw())))
        return abs(1.0 - dot) <= tol


@dataclass(frozen=True)
class Offset:
    """Endpoint offset in world coordinates (mm)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @property
    def is_zero(self) -> bool:
        return self.x == 0.0 and self.y == 0.0 and self.z == 0.0

    @property
    def has_z(self) -> bool:
        return self.z != 0.0


@dataclass(frozen=True)
class Placement:
    center: Vec3
    direction: Vec3
    length: float
    rotation: Quaternion


# ─── Sections ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BasePlateSpec:
    width_x: float
    width_y: float
    thickness: float
    offset_x: float = 0.0
    offset_y: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["BasePlateSpec"]:
        """Parse ``{B_X, B_Y, t, offset_X, offset_Y}``; None when incomplete."""
        try:
            width_x = float(data["B_X"])
            width_y = float(data["B_Y"])
            thickness = float(data["t"])
        except (KeyError, TypeError, ValueError):
            return None
        if width_x <= 0 or width_y <= 0 or thickness <= 0:
            return None
        return cls(
            width_x=width_x,
            width_y=width_y,
            thickness=thickness,
            offset_x=_float_or(data.get("offset_X"), 0.0),
            offset_y=_float_or(data.get("offset_Y"), 0.0),
        )


@dataclass(frozen=True)
class SectionVariant:
    """One section of a multi-section member, tagged with its position."""

    pos: str
    family_code: Optional[str]
    dimensions: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SectionSpec:
    family_code: Optional[str] = None
    dimensions: Dict[str, Any] = field(default_factory=dict)
    steel_shape_ref: Optional[str] = None
    concrete: Optional["SectionSpec"] = None
    base_plate: Optional[BasePlateSpec] = None
    is_reference_direction: bool = True
    mode: str = "single"  # "single" | "double" | "multi"
    shapes: Tuple[SectionVariant, ...] = ()
    haunch_start: Optional[float] = None
    haunch_end: Optional[float] = None
    name: Optional[str] = None

    @property
    def is_multi_section(self) -> bool:
        return self.mode in ("double", "multi") and len(self.shapes) >= 2

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SectionSpec":
        """Build from an already-parsed section dictionary.

        Accepts the keys produced by the STB/JSON readers: ``section_type``,
        ``profile_type``, ``shapeTypeAttr``, ``dimensions``, ``steel_shape``,
        ``concreteProfile``, ``basePlate``, ``isReferenceDirection``,
        ``mode`` and ``shapes``.
        """
        family = None
        for key in ("section_type", "profile_type", "profileType", "shapeTypeAttr", "shape_type"):
            if data.get(key):
                family = str(data[key])
                break

        dimensions = dict(data.get("dimensions") or {})
        for key in ("haunch_start", "haunch_end", "length_haunch_start", "length_haunch_end"):
            if key in data and key not in dimensions:
                dimensions[key] = data[key]

        concrete = None
        concrete_data = data.get("concreteProfile") or data.get("concrete_profile")
        if concrete_data:
            concrete = SectionSpec(
                family_code=concrete_data.get("profileType") or concrete_data.get("profile_type"),
                dimensions={k: v for k, v in concrete_data.items()
                            if k not in ("profileType", "profile_type")},
            )

        base_plate = None
        plate_data = data.get("basePlate") or data.get("base_plate")
        if plate_data:
            base_plate = BasePlateSpec.from_dict(plate_data)

        shapes = tuple(
            SectionVariant(
                pos=str(s.get("pos", "CENTER")).upper(),
                family_code=s.get("section_type") or s.get("shape_type") or s.get("profile_type"),
                dimensions=dict(s.get("dimensions") or s.get("variant_dimensions") or {}),
            )
            for s in (data.get("shapes") or ())
        )

        return cls(
            family_code=family,
            dimensions=dimensions,
            steel_shape_ref=data.get("steel_shape") or data.get("shape_name"),
            concrete=concrete,
            base_plate=base_plate,
            is_reference_direction=data.get("isReferenceDirection", True) is not False,
            mode=str(data.get("mode", "single")),
            shapes=shapes,
            haunch_start=_float_or(
                dimensions.get("haunch_start", dimensions.get("length_haunch_start")), None),
            haunch_end=_float_or(
                dimensions.get("haunch_end", dimensions.get("length_haunch_end")), None),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class TaperStation:
    """Cross-section at a named position along a lofted member.

    ``offset`` is the axial distance from the start end. When it is None the
    builder derives it from ``position``.
    """

    position: str
    profile: Profile
    offset: Optional[float] = None


# ─── Members ────────────────────────────────────────────────────────────────


class MemberKind(Enum):
    COLUMN = "column"
    POST = "post"
    PILE = "pile"
    BEAM = "beam"
    BRACE = "brace"
    FOUNDATION_COLUMN = "foundation_column"


@dataclass(frozen=True)
class MemberRecord:
    """Caller-supplied description of one member.

    For two-node members ``start`` is the bottom (columns, posts, piles) or
    the start end (beams, braces).
    """

    member_id: str
    kind: MemberKind
    section_id: Optional[str] = None
    start_node_id: Optional[str] = None
    end_node_id: Optional[str] = None
    start_point: Optional[Vec3] = None
    end_point: Optional[Vec3] = None
    start_offset: Offset = Offset()
    end_offset: Offset = Offset()
    roll_degrees: float = 0.0
    # None lets the builder pick (beams top-aligned, braces centered)
    placement_mode: Optional[str] = None
    # Single-node piles and foundation columns
    node_id: Optional[str] = None
    level_top: Optional[float] = None
    length_all: Optional[float] = None
    # Foundation columns
    length_fd: Optional[float] = None
    length_wr: Optional[float] = None
    section_wr_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_stb_attributes(
        cls, kind: MemberKind, attrs: Mapping[str, Any]
    ) -> "MemberRecord":
        """Map STB element attribute names onto a record."""
        kind = MemberKind(kind)
        member_id = str(attrs.get("id", attrs.get("member_id", "")))
        roll = _float_or(attrs.get("rotate", attrs.get("angle")), 0.0)

        if kind in (MemberKind.COLUMN, MemberKind.POST):
            return cls(
                member_id=member_id,
                kind=kind,
                section_id=_str_or_none(attrs.get("id_section")),
                start_node_id=_str_or_none(attrs.get("id_node_bottom")),
                end_node_id=_str_or_none(attrs.get("id_node_top")),
                start_point=_point_or_none(attrs.get("bottom_point")),
                end_point=_point_or_none(attrs.get("top_point")),
                start_offset=Offset(
                    _float_or(attrs.get("offset_bottom_X"), 0.0),
                    _float_or(attrs.get("offset_bottom_Y"), 0.0),
                ),
                end_offset=Offset(
                    _float_or(attrs.get("offset_top_X"), 0.0),
                    _float_or(attrs.get("offset_top_Y"), 0.0),
                ),
                roll_degrees=roll,
                attributes=dict(attrs),
            )

        if kind in (MemberKind.BEAM, MemberKind.BRACE):
            default_mode = PLACEMENT_TOP_ALIGNED if kind == MemberKind.BEAM else PLACEMENT_CENTER
            return cls(
                member_id=member_id,
                kind=kind,
                section_id=_str_or_none(attrs.get("id_section")),
                start_node_id=_str_or_none(attrs.get("id_node_start")),
                end_node_id=_str_or_none(attrs.get("id_node_end")),
                start_point=_point_or_none(attrs.get("start_point")),
                end_point=_point_or_none(attrs.get("end_point")),
                start_offset=Offset(
                    _float_or(attrs.get("offset_start_X"), 0.0),
                    _float_or(attrs.get("offset_start_Y"), 0.0),
                    _float_or(attrs.get("offset_start_Z"), 0.0),
                ),
                end_offset=Offset(
                    _float_or(attrs.get("offset_end_X"), 0.0),
                    _float_or(attrs.get("offset_end_Y"), 0.0),
                    _float_or(attrs.get("offset_end_Z"), 0.0),
                ),
                roll_degrees=roll,
                placement_mode=str(attrs.get("placement_mode") or default_mode),
                attributes=dict(attrs),
            )

        if kind == MemberKind.PILE:
            offset = Offset(
                _float_or(attrs.get("offset_X"), 0.0),
                _float_or(attrs.get("offset_Y"), 0.0),
            )
            return cls(
                member_id=member_id,
                kind=kind,
                section_id=_str_or_none(attrs.get("id_section")),
                start_node_id=_str_or_none(attrs.get("id_node_bottom")),
                end_node_id=_str_or_none(attrs.get("id_node_top")),
                start_point=_point_or_none(attrs.get("bottom_point")),
                end_point=_point_or_none(attrs.get("top_point")),
                start_offset=offset,
                end_offset=offset,
                roll_degrees=roll,
                node_id=_str_or_none(attrs.get("id_node")),
                level_top=_float_or(attrs.get("level_top"), None),
                length_all=_float_or(attrs.get("length_all"), None),
                attributes=dict(attrs),
            )

        offset = Offset(
            _float_or(attrs.get("offset_FD_X"), 0.0),
            _float_or(attrs.get("offset_FD_Y"), 0.0),
        )
        return cls(
            member_id=member_id,
            kind=kind,
            section_id=_str_or_none(attrs.get("id_section_FD", attrs.get("id_section"))),
            start_offset=offset,
            end_offset=offset,
            roll_degrees=roll,
            node_id=_str_or_none(attrs.get("id_node")),
            length_fd=_float_or(attrs.get("length_FD"), None),
            length_wr=_float_or(attrs.get("length_WR"), None),
            section_wr_id=_str_or_none(attrs.get("id_section_WR")),
            attributes=dict(attrs),
        )


# ─── Results ────────────────────────────────────────────────────────────────


class FailureReason(Enum):
    MISSING_NODE_DATA = "missing_node_data"
    MISSING_SECTION_DATA = "missing_section_data"
    DEGENERATE_GEOMETRY = "degenerate_geometry"


@dataclass(frozen=True)
class SecondaryProfile:
    """Independent sibling solid (concrete encasement, base plate, ...)."""

    role: str
    profile: Profile
    placement: Placement
    family: str = "RECTANGLE"
    solid: Any = field(default=None, compare=False)
    # Key of ``solid`` in the GeometryCache that produced it, if any
    cache_key: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class MemberGeometry:
    member_id: str
    kind: MemberKind
    family: str
    profile: Profile
    placement: Placement
    secondary_profiles: Tuple[SecondaryProfile, ...] = ()
    # trimesh.Trimesh in the local frame (axis +Z, centered on the origin)
    solid: Any = field(default=None, compare=False)
    tapered: bool = False
    stations: Tuple[TaperStation, ...] = ()
    cache_key: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class MemberFailure:
    member_id: str
    kind: MemberKind
    reason: FailureReason
    message: str


@dataclass
class BatchResult:
    results: List[MemberGeometry] = field(default_factory=list)
    failures: List[MemberFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.failures)

    def summary(self) -> Dict[str, Any]:
        by_reason: Dict[str, int] = {}
        for failure in self.failures:
            by_reason[failure.reason.value] = by_reason.get(failure.reason.value, 0) + 1
        return {
            "total": self.total,
            "succeeded": len(self.results),
            "failed": len(self.failures),
            "failures_by_reason": by_reason,
        }


# ─── Helpers ────────────────────────────────────────────────────────────────


def _float_or(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result):
        return default
    return result


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _point_or_none(value: Any) -> Optional[Vec3]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return (float(value.get("x", 0.0)), float(value.get("y", 0.0)), float(value.get("z", 0.0)))
    x, y, z = value
    return (float(x), float(y), float(z))
