"""Section family resolution and IFC profile mapping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from member_geometry.contracts import SectionSpec
from member_geometry.parameter_mapper import normalize, normalize_family_code

logger = logging.getLogger(__name__)

DEFAULT_FAMILY = "H"


def _has(dims: Mapping[str, Any], *keys: str) -> bool:
    return all(dims.get(k) not in (None, "") for k in keys)


def _has_any(dims: Mapping[str, Any], *keys: str) -> bool:
    return any(dims.get(k) not in (None, "") for k in keys)


def infer_family_from_dimensions(dims: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Family implied by which dimension fields are present, or None."""
    if not dims:
        return None
    if _has_any(dims, "D_axial", "D_extended_foot", "D_extended_top"):
        return "CIRCLE"
    if _has_any(dims, "outer_diameter", "outerDiameter", "diameter"):
        return "PIPE"
    if _has(dims, "width", "height") and _has_any(dims, "thickness", "wall_thickness"):
        return "BOX"
    if _has(dims, "wall_thickness"):
        return "BOX"
    if _has(dims, "overall_depth", "overall_width", "web_thickness", "flange_thickness"):
        return "H"
    if _has(dims, "overall_depth", "flange_width", "web_thickness", "flange_thickness"):
        return "C"
    if _has(dims, "depth", "width", "thickness") and not _has_any(dims, "overall_depth", "web_thickness"):
        return "L"
    if _has(dims, "radius"):
        return "CIRCLE"
    if _has(dims, "width_X", "width_Y") or (
        _has(dims, "width", "height")
        and not _has_any(dims, "thickness", "wall_thickness", "web_thickness", "flange_thickness")
    ):
        return "RECTANGLE"
    return None


def resolve_family(section: SectionSpec, default: str = DEFAULT_FAMILY) -> str:
    """Canonical family for ``section``.

    Priority: explicit family tag, then the dimension-field pattern, then
    ``default``.
    """
    family = normalize_family_code(section.family_code)
    if family is not None:
        return family
    if section.family_code:
        logger.warning("Unrecognized family tag %r; inferring from dimensions", section.family_code)

    family = normalize_family_code(section.dimensions.get("profile_type"))
    if family is None:
        family = infer_family_from_dimensions(section.dimensions)
    if family is not None:
        return family

    logger.debug("No family pattern matched %s; defaulting to %s", sorted(section.dimensions), default)
    return default


# ─── IFC mapping ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IfcProfile:
    ifc_type: str
    profile_name: str
    parameters: Dict[str, float] = field(default_factory=dict)
    profile_type: str = "AREA"


IFC_PROFILE_TYPES: Dict[str, str] = {
    "H": "IfcIShapeProfileDef",
    "BOX": "IfcRectangleHollowProfileDef",
    "PIPE": "IfcCircularHollowProfileDef",
    "CIRCLE": "IfcCircleProfileDef",
    "RECTANGLE": "IfcRectangleProfileDef",
    "FB": "IfcRectangleProfileDef",
    "L": "IfcLShapeProfileDef",
    "T": "IfcTShapeProfileDef",
    "C": "IfcUShapeProfileDef",
    "CROSS_H": "IfcArbitraryClosedProfileDef",
    "CROSS": "IfcArbitraryClosedProfileDef",
    "2L-BB": "IfcArbitraryProfileDefWithVoids",
    "2L-FF": "IfcArbitraryProfileDefWithVoids",
    "2C-BB": "IfcArbitraryProfileDefWithVoids",
    "2C-FF": "IfcArbitraryProfileDefWithVoids",
}


def _ifc_parameters(family: str, p: Mapping[str, float]) -> Dict[str, float]:
    if family == "H":
        return {
            "OverallWidth": p["overallWidth"],
            "OverallDepth": p["overallDepth"],
            "WebThickness": p["webThickness"],
            "FlangeThickness": p["flangeThickness"],
            "FilletRadius": p["filletRadius"],
        }
    if family == "BOX":
        return {
            "XDim": p["width"],
            "YDim": p["height"],
            "WallThickness": p["wallThickness"],
            "InnerFilletRadius": 0.0,
            "OuterFilletRadius": 0.0,
        }
    if family == "PIPE":
        return {"Radius": p["outerDiameter"] / 2.0, "WallThickness": p["wallThickness"]}
    if family == "CIRCLE":
        return {"Radius": p["radius"]}
    if family == "RECTANGLE":
        return {"XDim": p["width"], "YDim": p["height"]}
    if family == "FB":
        return {"XDim": p["width"], "YDim": p["thickness"]}
    if family == "L":
        return {
            "Depth": p["depth"],
            "Width": p["width"],
            "Thickness": p["thickness"],
            "FilletRadius": 0.0,
            "EdgeRadius": 0.0,
        }
    if family == "T":
        return {
            "Depth": p["overallDepth"],
            "FlangeWidth": p["flangeWidth"],
            "WebThickness": p["webThickness"],
            "FlangeThickness": p["flangeThickness"],
        }
    if family == "C":
        return {
            "Depth": p["overallDepth"],
            "FlangeWidth": p["flangeWidth"],
            "WebThickness": p["webThickness"],
            "FlangeThickness": p["flangeThickness"],
            "FilletRadius": 0.0,
            "EdgeRadius": 0.0,
        }
    # Arbitrary profiles carry their outline, not named parameters
    return {}


def to_ifc_profile(
    family_code: Optional[str],
    params: Optional[Mapping[str, float]] = None,
    name: Optional[str] = None,
) -> IfcProfile:
    """IFC4 profile definition type and parameter set for a section.

    ``params`` may be raw dimensions or canonical parameters; they are
    normalized for the family first.
    """
    family = normalize_family_code(family_code)
    profile_name = f"STB_{family or family_code or 'UNKNOWN'}_{name or 'Custom'}"
    if family is None or family not in IFC_PROFILE_TYPES:
        logger.warning("No IFC mapping for family %r; using IfcRectangleProfileDef", family_code)
        return IfcProfile(
            ifc_type="IfcRectangleProfileDef",
            profile_name=profile_name,
            parameters={"XDim": 100.0, "YDim": 100.0},
        )
    canonical = normalize(family, params or {})
    return IfcProfile(
        ifc_type=IFC_PROFILE_TYPES[family],
        profile_name=profile_name,
        parameters=_ifc_parameters(family, canonical),
    )
