"""Configuration for the member geometry core."""

from __future__ import annotations

from dataclasses import dataclass

from member_geometry.contracts import Vec3


@dataclass(frozen=True)
class GeometryConfig:
    """Numeric policy shared by calculators, builders and orchestrators."""

    circle_segments: int = 32
    length_tolerance_mm: float = 1e-6
    reference_axis: Vec3 = (0.0, 0.0, 1.0)
    # Axial gap used when a pile diameter changes without a taper angle
    step_epsilon_mm: float = 0.1
    # Pile length estimate when neither length_all nor length_pile is given
    pile_length_diameter_factor: float = 20.0
    build_solids: bool = True

    def __post_init__(self):
        if self.circle_segments < 3:
            raise ValueError("circle_segments must be >= 3")
        if self.length_tolerance_mm <= 0:
            raise ValueError("length_tolerance_mm must be > 0")
        if self.step_epsilon_mm <= 0:
            raise ValueError("step_epsilon_mm must be > 0")


@dataclass(frozen=True)
class CacheConfig:
    """Ceilings for the solid cache."""

    max_entries: int = 500
    max_bytes: int = 100 * 1024 * 1024
    enabled: bool = True
    min_entry_bytes: int = 1024
