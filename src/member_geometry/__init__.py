"""Cross-section profiles, placements and solids for STB structural members."""

from member_geometry.config import CacheConfig, GeometryConfig
from member_geometry.contracts import (
    BatchResult,
    FailureReason,
    MemberFailure,
    MemberGeometry,
    MemberKind,
    MemberRecord,
    Offset,
    Placement,
    Profile,
    Quaternion,
    SecondaryProfile,
    SectionSpec,
    TaperStation,
)
from member_geometry.geometry_cache import GeometryCache
from member_geometry.geometry_calculator import place_between, place_column, place_horizontal
from member_geometry.orchestrator import BuildContext, build_member, build_members
from member_geometry.parameter_mapper import normalize
from member_geometry.profile_calculator import calculate
from member_geometry.profile_types import resolve_family, to_ifc_profile
from member_geometry.tapered_builder import extrude_profile, loft

__all__ = [
    "BatchResult",
    "BuildContext",
    "CacheConfig",
    "FailureReason",
    "GeometryCache",
    "GeometryConfig",
    "MemberFailure",
    "MemberGeometry",
    "MemberKind",
    "MemberRecord",
    "Offset",
    "Placement",
    "Profile",
    "Quaternion",
    "SecondaryProfile",
    "SectionSpec",
    "TaperStation",
    "build_member",
    "build_members",
    "calculate",
    "extrude_profile",
    "loft",
    "normalize",
    "place_between",
    "place_column",
    "place_horizontal",
    "resolve_family",
    "to_ifc_profile",
]
