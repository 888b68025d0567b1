"""
Shared test fixtures for member geometry tests.
"""
import sys
from pathlib import Path

import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from member_geometry.config import CacheConfig, GeometryConfig
from member_geometry.contracts import BasePlateSpec, SectionSpec
from member_geometry.geometry_cache import GeometryCache
from member_geometry.orchestrator import BuildContext


@pytest.fixture
def nodes():
    """A 2-storey frame: four column lines, one beam line, pile heads."""
    return {
        "1": (0.0, 0.0, 0.0),
        "2": (0.0, 0.0, 3000.0),
        "3": (6000.0, 0.0, 3000.0),
        "4": (6000.0, 0.0, 0.0),
        "5": (0.0, 0.0, 6000.0),
        "10": (0.0, 0.0, -1000.0),
        "11": (0.0, 0.0, -11000.0),
    }


@pytest.fixture
def sections():
    return {
        "H400": SectionSpec(
            family_code="H",
            dimensions={"A": 400, "B": 200, "t1": 8, "t2": 13, "r": 16},
        ),
        "P150": SectionSpec(
            family_code="PIPE",
            dimensions={"outer_diameter": 150, "wall_thickness": 6},
        ),
        "BOX300": SectionSpec(
            family_code="BOX",
            dimensions={"outer_width": 300, "outer_height": 300, "wall_thickness": 12},
        ),
        "RC600": SectionSpec(
            family_code="StbSecColumn_RC",
            dimensions={"width_X": 600, "width_Y": 500},
        ),
        "SRC": SectionSpec(
            family_code="H",
            dimensions={"A": 400, "B": 200, "t1": 8, "t2": 13},
            concrete=SectionSpec(family_code="RECTANGLE", dimensions={"width_X": 800, "width_Y": 800}),
        ),
        "H_PLATE": SectionSpec(
            family_code="H",
            dimensions={"A": 300, "B": 150, "t1": 6.5, "t2": 9},
            base_plate=BasePlateSpec(width_x=400, width_y=500, thickness=25),
        ),
        "PILE_RC": SectionSpec(
            family_code="StbSecPile_RC",
            dimensions={"D": 1000},
        ),
        "PILE_FOOT": SectionSpec(
            family_code="EXTENDED_PILE",
            dimensions={
                "pile_type": "ExtendedFoot",
                "D_axial": 1000,
                "D_extended_foot": 1600,
                "length_extended_foot": 1000,
                "angle_extended_foot_taper": 12,
            },
        ),
    }


@pytest.fixture
def geometry_config():
    return GeometryConfig()


@pytest.fixture
def cache():
    return GeometryCache(CacheConfig(max_entries=50))


@pytest.fixture
def ctx(nodes, sections, cache, geometry_config):
    return BuildContext(nodes=nodes, sections=sections, cache=cache, config=geometry_config)
