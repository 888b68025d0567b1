"""Exception taxonomy for member geometry generation.

Per-member failures (missing nodes, missing sections, degenerate geometry)
are raised inside the pipeline and converted to ``MemberFailure`` records by
the orchestrator. The remaining errors are recovered locally with a fallback.
"""


class MemberGeometryError(Exception):
    """Base class for all geometry-core errors."""


class MissingNodeDataError(MemberGeometryError):
    """A member references a node id that is not in the node lookup."""


class MissingSectionDataError(MemberGeometryError):
    """A member references a section id that cannot be resolved."""


class DegenerateGeometryError(MemberGeometryError):
    """Adjusted member endpoints coincide (length below tolerance)."""


class UnsupportedProfileFamilyError(MemberGeometryError):
    """Family code has no calculator. Only raised by strict lookups."""


class InvalidDimensionsError(MemberGeometryError):
    """Dimensions are non-positive or physically inconsistent."""
