"""Dimension-name normalization.

Section data arrives with STB attribute names (``A``, ``B``, ``t1``, ``t2``),
snake_case reader output (``overall_depth``) and camelCase JSON keys
(``overallDepth``). Everything downstream works on one canonical camelCase
record per family, produced here from an ordered alias table.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# ─── Family codes ───────────────────────────────────────────────────────────

FAMILY_ALIASES: Dict[str, str] = {
    "H": "H",
    "I": "H",
    "IBEAM": "H",
    "I-BEAM": "H",
    "H-SECTION": "H",
    "WIDE_FLANGE": "H",
    "BOX": "BOX",
    "BOX-SECTION": "BOX",
    "SQUARE-SECTION": "BOX",
    "RHS": "BOX",
    "SHS": "BOX",
    "PIPE": "PIPE",
    "P": "PIPE",
    "PIPE-SECTION": "PIPE",
    "ROUND-SECTION": "PIPE",
    "HOLLOW": "PIPE",
    "TUBE": "PIPE",
    "CHS": "PIPE",
    "RECTANGLE": "RECTANGLE",
    "RECT": "RECTANGLE",
    "RECTANGULAR": "RECTANGLE",
    "RC-SECTION": "RECTANGLE",
    "SQUARE": "RECTANGLE",
    "SQ": "RECTANGLE",
    "CIRCLE": "CIRCLE",
    "CIRCULAR": "CIRCLE",
    "ROUND": "CIRCLE",
    "ROUNDBAR": "CIRCLE",
    "C": "C",
    "U": "C",
    "CHANNEL": "C",
    "U-SHAPE": "C",
    "L": "L",
    "L-SHAPE": "L",
    "ANGLE": "L",
    "T": "T",
    "T-SHAPE": "T",
    "TSHAPE": "T",
    "TEE": "T",
    "FB": "FB",
    "FLATBAR": "FB",
    "FLAT-BAR": "FB",
    "CROSS": "CROSS",
    "CROSS_H": "CROSS_H",
    "CROSS-H": "CROSS_H",
    "2L-BB": "2L-BB",
    "2L-FF": "2L-FF",
    "2C-BB": "2C-BB",
    "2C-FF": "2C-FF",
    "2L": "2L-BB",
    "2C": "2C-BB",
    # STB section element tags
    "STBSECCOLUMN_S": "H",
    "STBSECCOLUMN_RC": "RECTANGLE",
    "STBSECCOLUMN_SRC": "H",
    "STBSECBEAM_S": "H",
    "STBSECBEAM_RC": "RECTANGLE",
    "STBSECPILE_S": "PIPE",
    "STBSECPILE_RC": "CIRCLE",
    "STBSECPILEPRODUCT": "PIPE",
    "STBSECFOUNDATIONCOLUMN": "RECTANGLE",
    "EXTENDED_PILE": "CIRCLE",
}

# Prefix forms like "H-400x200x8x13" or "P-165.2x5"
_PREFIX_PATTERN = re.compile(r"^(2L|2C|CROSS_H|BOX|PIPE|H|I|P|C|L|T|FB)[-_ ]?\d")

# ─── Alias tables ───────────────────────────────────────────────────────────
# canonical key -> (aliases in precedence order, default)

AliasTable = Dict[str, Tuple[Sequence[str], float]]

_H_TABLE: AliasTable = {
    "overallDepth": (("overallDepth", "overall_depth", "A", "H", "height", "depth"), 450.0),
    "overallWidth": (("overallWidth", "overall_width", "B", "width", "flange_width"), 200.0),
    "webThickness": (("webThickness", "web_thickness", "t1", "tw"), 9.0),
    "flangeThickness": (("flangeThickness", "flange_thickness", "t2", "tf"), 14.0),
    "filletRadius": (("filletRadius", "fillet_radius", "r"), 13.0),
}

_BOX_TABLE: AliasTable = {
    "width": (("width", "outer_width", "outerWidth", "B"), 150.0),
    "height": (("height", "outer_height", "outerHeight", "A"), 150.0),
    "wallThickness": (("wallThickness", "wall_thickness", "thickness", "t"), 9.0),
}

_PIPE_TABLE: AliasTable = {
    "outerDiameter": (("outerDiameter", "outer_diameter", "diameter", "D", "A"), 150.0),
    "wallThickness": (("wallThickness", "wall_thickness", "thickness", "t"), 6.0),
}

_RECTANGLE_TABLE: AliasTable = {
    "width": (("width", "width_X", "B", "outer_width", "b"), 400.0),
    "height": (("height", "width_Y", "A", "outer_height", "depth", "D"), 400.0),
}

_C_TABLE: AliasTable = {
    "overallDepth": (("overallDepth", "overall_depth", "A", "H", "height", "depth"), 300.0),
    "flangeWidth": (("flangeWidth", "flange_width", "B", "width", "overall_width"), 90.0),
    "webThickness": (("webThickness", "web_thickness", "t1", "tw"), 9.0),
    "flangeThickness": (("flangeThickness", "flange_thickness", "t2", "tf"), 13.0),
}

_L_TABLE: AliasTable = {
    "depth": (("depth", "overall_depth", "A", "height"), 65.0),
    "width": (("width", "flange_width", "B", "overall_width"), 65.0),
    "thickness": (("thickness", "t", "t1", "web_thickness"), 6.0),
}

_T_TABLE: AliasTable = {
    "overallDepth": (("overallDepth", "overall_depth", "A", "H", "depth", "height"), 200.0),
    "flangeWidth": (("flangeWidth", "flange_width", "B", "width", "overall_width"), 150.0),
    "webThickness": (("webThickness", "web_thickness", "t1", "tw"), 8.0),
    "flangeThickness": (("flangeThickness", "flange_thickness", "t2", "tf"), 12.0),
}

_FB_TABLE: AliasTable = {
    "width": (("width", "B", "A"), 100.0),
    "thickness": (("thickness", "t", "t1"), 9.0),
}

_CROSS_TABLE: AliasTable = {
    "width": (("width", "B", "overall_width"), 200.0),
    "height": (("height", "A", "overall_depth"), 200.0),
    "thickness": (("thickness", "t", "t1"), 12.0),
}

_CROSS_H_TABLE: AliasTable = {
    "overallDepthX": (("overallDepthX", "overall_depth_X", "H_x", "A_X", "H", "A", "overall_depth"), 400.0),
    "overallWidthX": (("overallWidthX", "overall_width_X", "B_x", "B_X", "B", "overall_width"), 200.0),
    "webThicknessX": (("webThicknessX", "web_thickness_X", "t1_X", "t1", "web_thickness"), 9.0),
    "flangeThicknessX": (("flangeThicknessX", "flange_thickness_X", "t2_X", "t2", "flange_thickness"), 14.0),
}

# Y arm falls back to the resolved X arm
_CROSS_H_Y_ALIASES: Dict[str, Sequence[str]] = {
    "overallDepthY": ("overallDepthY", "overall_depth_Y", "H_y", "A_Y"),
    "overallWidthY": ("overallWidthY", "overall_width_Y", "B_y", "B_Y"),
    "webThicknessY": ("webThicknessY", "web_thickness_Y", "t1_Y"),
    "flangeThicknessY": ("flangeThicknessY", "flange_thickness_Y", "t2_Y"),
}

_GAP_ALIASES = ("gap", "spacing", "gap_width")

FAMILY_TABLES: Dict[str, AliasTable] = {
    "H": _H_TABLE,
    "BOX": _BOX_TABLE,
    "PIPE": _PIPE_TABLE,
    "RECTANGLE": _RECTANGLE_TABLE,
    "C": _C_TABLE,
    "L": _L_TABLE,
    "T": _T_TABLE,
    "FB": _FB_TABLE,
    "CROSS": _CROSS_TABLE,
    "CROSS_H": _CROSS_H_TABLE,
    "2L-BB": _L_TABLE,
    "2L-FF": _L_TABLE,
    "2C-BB": _C_TABLE,
    "2C-FF": _C_TABLE,
}

DEFAULT_SEGMENTS = 32


def normalize_family_code(code: Optional[str]) -> Optional[str]:
    """Canonical family id for a raw shape code, or None if unrecognized."""
    if code is None:
        return None
    key = str(code).strip().upper()
    if not key:
        return None
    if key in FAMILY_ALIASES:
        return FAMILY_ALIASES[key]
    key = key.replace(" ", "")
    if key in FAMILY_ALIASES:
        return FAMILY_ALIASES[key]
    match = _PREFIX_PATTERN.match(key)
    if match:
        return FAMILY_ALIASES.get(match.group(1), match.group(1))
    return None


def pick(
    raw: Mapping[str, Any], aliases: Sequence[str], default: Optional[float] = None
) -> Optional[float]:
    """First alias holding a positive finite number, else ``default``."""
    for name in aliases:
        if name not in raw:
            continue
        value = to_positive_float(raw[name])
        if value is not None:
            return value
    return default


def to_positive_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def normalize(family_code: Optional[str], raw_dimensions: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Canonical parameter record for ``family_code``.

    Never raises. Missing or invalid fields take the family default, and an
    unknown family is mapped as RECTANGLE.
    """
    raw = raw_dimensions or {}
    family = normalize_family_code(family_code)
    if family is None:
        logger.debug("No alias table for family %r, using RECTANGLE fields", family_code)
        family = "RECTANGLE"

    if family == "CIRCLE":
        return _normalize_circle(raw)

    params: Dict[str, float] = {}
    for key, (aliases, default) in FAMILY_TABLES[family].items():
        params[key] = pick(raw, aliases, default)

    if family == "PIPE":
        params["segments"] = _segments(raw)
    elif family == "CROSS_H":
        for key, aliases in _CROSS_H_Y_ALIASES.items():
            params[key] = pick(raw, aliases, params[key[:-1] + "X"])
    elif family in ("2L-BB", "2L-FF", "2C-BB", "2C-FF"):
        params["gap"] = _non_negative(raw, _GAP_ALIASES, 0.0)

    return params


def _normalize_circle(raw: Mapping[str, Any]) -> Dict[str, float]:
    radius = pick(raw, ("radius", "r", "R"))
    if radius is None:
        diameter = pick(raw, ("diameter", "D", "outer_diameter", "outerDiameter", "A"))
        radius = diameter / 2.0 if diameter is not None else 100.0
    return {"radius": radius, "segments": _segments(raw)}


def _segments(raw: Mapping[str, Any]) -> int:
    value = pick(raw, ("segments",))
    if value is None or value < 3:
        return DEFAULT_SEGMENTS
    return int(value)


def _non_negative(raw: Mapping[str, Any], aliases: Sequence[str], default: float) -> float:
    for name in aliases:
        if name not in raw:
            continue
        try:
            value = float(raw[name])
        except (TypeError, ValueError):
            continue
        if math.isfinite(value) and value >= 0:
            return value
    return default

