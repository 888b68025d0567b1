"""End-to-end tests for orchestrator.py: records in, member geometry out."""
import logging
import math

import numpy as np
import pytest

from member_geometry.config import CacheConfig, GeometryConfig
from member_geometry.contracts import (
    PLACEMENT_CENTER,
    FailureReason,
    MemberFailure,
    MemberGeometry,
    MemberKind,
    MemberRecord,
    SectionSpec,
    SectionVariant,
)
from member_geometry.geometry_cache import GeometryCache
from member_geometry.geometry_calculator import end_points, rotate_vector
from member_geometry.orchestrator import (
    BuildContext,
    build_member,
    build_members,
)


def _column(member_id, bottom, top, section, **kwargs):
    return MemberRecord(
        member_id=member_id, kind=MemberKind.COLUMN, section_id=section,
        start_node_id=bottom, end_node_id=top, **kwargs
    )


def _beam(member_id, start, end, section, kind=MemberKind.BEAM, **kwargs):
    return MemberRecord(
        member_id=member_id, kind=kind, section_id=section,
        start_node_id=start, end_node_id=end, **kwargs
    )


class TestColumns:
    def test_h_column(self, ctx):
        result = build_member(_column("C1", "1", "2", "H400"), ctx)
        assert isinstance(result, MemberGeometry)
        assert result.family == "H"
        assert len(result.profile.outer) == 12
        assert result.placement.center == pytest.approx((0.0, 0.0, 1500.0))
        assert result.placement.length == pytest.approx(3000.0)
        assert result.solid.is_watertight
        assert result.solid.volume == pytest.approx(result.profile.area * 3000.0, rel=1e-6)

    def test_rc_column_from_stb_tag(self, ctx):
        result = build_member(_column("C2", "4", "3", "RC600"), ctx)
        assert result.family == "RECTANGLE"
        assert result.profile.bounds() == (-300.0, -250.0, 300.0, 250.0)

    def test_offsets_and_roll(self, ctx):
        record = MemberRecord.from_stb_attributes(MemberKind.COLUMN, {
            "id": "C3", "id_section": "H400",
            "id_node_bottom": "1", "id_node_top": "2",
            "offset_bottom_X": 100, "offset_top_X": 100,
            "rotate": 90,
        })
        result = build_member(record, ctx)
        assert result.placement.center == pytest.approx((100.0, 0.0, 1500.0))
        np.testing.assert_allclose(
            rotate_vector(result.placement.rotation, (1, 0, 0)), (0, 1, 0), atol=1e-9
        )

    def test_not_reference_direction_adds_quarter_turn(self, ctx, sections):
        sections["H_ROT"] = SectionSpec(
            family_code="H", dimensions={"A": 400, "B": 200, "t1": 8, "t2": 13},
            is_reference_direction=False,
        )
        result = build_member(_column("C4", "1", "2", "H_ROT"), ctx)
        np.testing.assert_allclose(
            rotate_vector(result.placement.rotation, (1, 0, 0)), (0, 1, 0), atol=1e-9
        )

    def test_src_concrete_encasement(self, ctx):
        result = build_member(_column("C5", "1", "2", "SRC"), ctx)
        assert result.family == "H"
        assert len(result.secondary_profiles) == 1
        concrete = result.secondary_profiles[0]
        assert concrete.role == "concrete"
        assert concrete.family == "RECTANGLE"
        assert concrete.profile.area == pytest.approx(800 * 800)
        assert concrete.placement == result.placement
        assert concrete.solid.is_watertight

    def test_base_plate_under_column(self, ctx):
        result = build_member(_column("C6", "1", "2", "H_PLATE"), ctx)
        plate = result.secondary_profiles[0]
        assert plate.role == "base_plate"
        assert plate.placement.center == pytest.approx((0.0, 0.0, -12.5))
        assert plate.placement.length == pytest.approx(25.0)
        assert plate.profile.area == pytest.approx(400 * 500)
        assert plate.solid.volume == pytest.approx(400 * 500 * 25, rel=1e-6)

    def test_post_matches_column(self, ctx):
        column = build_member(_column("C7", "1", "2", "BOX300"), ctx)
        post = build_member(MemberRecord(
            member_id="P1", kind=MemberKind.POST, section_id="BOX300",
            start_node_id="1", end_node_id="2",
        ), ctx)
        assert post.placement == column.placement
        assert post.profile == column.profile
        assert len(post.profile.holes) == 1

    def test_explicit_points(self, ctx):
        record = MemberRecord(
            member_id="C8", kind=MemberKind.COLUMN, section_id="P150",
            start_point=(1000.0, 1000.0, 0.0), end_point=(1000.0, 1000.0, 4000.0),
        )
        result = build_member(record, ctx)
        assert result.placement.center == pytest.approx((1000.0, 1000.0, 2000.0))
        assert result.profile.meta.inner_radius == pytest.approx(69.0)


class TestBeams:
    def test_stb_beam_top_aligned(self, ctx):
        record = MemberRecord.from_stb_attributes(MemberKind.BEAM, {
            "id": "G1", "id_section": "H400", "id_node_start": "2", "id_node_end": "3",
        })
        result = build_member(record, ctx)
        assert result.placement.center == pytest.approx((3000.0, 0.0, 2800.0))
        assert result.placement.length == pytest.approx(6000.0)
        np.testing.assert_allclose(
            rotate_vector(result.placement.rotation, (0, 1, 0)), (0, 0, 1), atol=1e-9
        )

    def test_default_mode_is_top_aligned(self, ctx):
        result = build_member(_beam("G2", "2", "3", "H400"), ctx)
        assert result.placement.center[2] == pytest.approx(2800.0)

    @pytest.mark.parametrize("section, expected_z", [
        (SectionSpec(family_code="StbSecBeam_RC", dimensions={"width_X": 400, "width_Y": 700}), 2650.0),
        (SectionSpec(family_code="BOX", dimensions={"outerWidth": 250, "outerHeight": 500, "t": 12}), 2750.0),
        (SectionSpec(family_code="FB", dimensions={"width": 100, "thickness": 12}), 2994.0),
    ])
    def test_top_aligned_drop_follows_profile_depth(self, ctx, section, expected_z):
        ctx.sections["DEPTH"] = section
        result = build_member(_beam("G7", "2", "3", "DEPTH"), ctx)
        assert result.placement.center[2] == pytest.approx(expected_z)

    def test_z_offsets_place_by_centroid(self, ctx):
        record = MemberRecord.from_stb_attributes(MemberKind.BEAM, {
            "id": "G3", "id_section": "H400", "id_node_start": "2", "id_node_end": "3",
            "offset_start_Z": -100, "offset_end_Z": -100,
        })
        result = build_member(record, ctx)
        assert result.placement.center[2] == pytest.approx(2900.0)

    def test_center_mode(self, ctx):
        result = build_member(_beam("G4", "2", "3", "H400", placement_mode=PLACEMENT_CENTER), ctx)
        assert result.placement.center[2] == pytest.approx(3000.0)

    def test_unknown_mode_uses_default(self, ctx, caplog):
        with caplog.at_level(logging.WARNING, logger="member_geometry.orchestrator"):
            result = build_member(_beam("G5", "2", "3", "H400", placement_mode="bottom"), ctx)
        assert result.placement.center[2] == pytest.approx(2800.0)
        assert "unknown placement mode" in caplog.text

    def test_roll(self, ctx):
        result = build_member(_beam("G6", "2", "3", "H400", roll_degrees=90.0,
                                    placement_mode=PLACEMENT_CENTER), ctx)
        np.testing.assert_allclose(
            rotate_vector(result.placement.rotation, (0, 1, 0)), (0, -1, 0), atol=1e-9
        )

    def test_pipe_brace(self, ctx):
        result = build_member(_beam("B1", "1", "3", "P150", kind=MemberKind.BRACE), ctx)
        assert result.family == "PIPE"
        assert result.placement.center == pytest.approx((3000.0, 0.0, 1500.0))
        assert result.placement.length == pytest.approx(math.hypot(6000, 3000))
        start, end = end_points(result.placement)
        np.testing.assert_allclose(start, (0, 0, 0), atol=1e-9)
        np.testing.assert_allclose(end, (6000, 0, 3000), atol=1e-9)
        assert result.solid.is_watertight

    def test_multi_section_haunched_beam(self, ctx, sections):
        sections["H_HAUNCH"] = SectionSpec(
            family_code="H",
            dimensions={"B": 200, "t1": 9, "t2": 16},
            mode="multi",
            shapes=(
                SectionVariant("START", "H", {"A": 600}),
                SectionVariant("CENTER", "H", {"A": 400}),
                SectionVariant("END", "H", {"A": 600}),
            ),
            haunch_start=1000.0,
            haunch_end=1000.0,
        )
        result = build_member(_beam("G7", "2", "3", "H_HAUNCH"), ctx)
        assert result.tapered
        assert [s.offset for s in result.stations] == pytest.approx(
            [0.0, 999.9, 1000.0, 5000.0, 5000.1, 6000.0]
        )
        # deepest variant governs the top-aligned drop
        assert result.placement.center[2] == pytest.approx(2700.0)
        assert result.solid.is_watertight

    def test_dict_section(self, nodes):
        ctx = BuildContext(nodes=nodes, sections={
            "S1": {"section_type": "BOX", "dimensions": {"B": 200, "A": 200, "t": 9}},
        })
        result = build_member(_beam("G8", "2", "3", "S1"), ctx)
        assert result.family == "BOX"
        assert result.placement.center[2] == pytest.approx(2900.0)

    def test_cross_h_from_steel_shapes(self, nodes):
        ctx = BuildContext(
            nodes=nodes,
            sections={"XH": SectionSpec(
                family_code="CROSS_H",
                dimensions={"crossH_shapeX": "H-400x200", "crossH_shapeY": "H-300x150"},
            )},
            steel_shapes={
                "H-400x200": {"A": 400, "B": 200, "t1": 8, "t2": 13},
                "H-300x150": {"A": 300, "B": 150, "t1": 6.5, "t2": 9},
            },
        )
        result = build_member(_column("C9", "1", "2", "XH"), ctx)
        assert result.family == "CROSS_H"
        assert result.profile.area == pytest.approx(95000.0)

    def test_steel_shape_reference(self, nodes):
        ctx = BuildContext(
            nodes=nodes,
            sections={"G": {"section_type": "H", "steel_shape": "H-500x200"}},
            steel_shapes={"H-500x200": {"A": 500, "B": 200, "t1": 10, "t2": 16}},
        )
        result = build_member(_beam("G9", "2", "3", "G"), ctx)
        assert result.placement.center[2] == pytest.approx(2750.0)
        assert result.profile.bounds() == (-100.0, -250.0, 100.0, 250.0)


class TestPiles:
    def test_two_node_pile(self, ctx):
        record = MemberRecord(
            member_id="K1", kind=MemberKind.PILE, section_id="PILE_RC",
            start_node_id="11", end_node_id="10",
        )
        result = build_member(record, ctx)
        assert result.family == "CIRCLE"
        assert result.profile.meta.outer_radius == pytest.approx(500.0)
        assert result.placement.length == pytest.approx(10000.0)
        assert not result.tapered

    def test_single_node_pile(self, ctx):
        record = MemberRecord.from_stb_attributes(MemberKind.PILE, {
            "id": "K2", "id_section": "PILE_RC", "id_node": "10",
            "level_top": -500, "length_all": 8000,
        })
        result = build_member(record, ctx)
        assert result.placement.center == pytest.approx((0.0, 0.0, -4500.0))
        assert result.placement.length == pytest.approx(8000.0)

    def test_single_node_pile_offsets(self, ctx):
        record = MemberRecord.from_stb_attributes(MemberKind.PILE, {
            "id": "K3", "id_section": "PILE_RC", "id_node": "10",
            "length_all": 8000, "offset_X": 250, "offset_Y": -100,
        })
        result = build_member(record, ctx)
        assert result.placement.center == pytest.approx((250.0, -100.0, -5000.0))

    def test_length_estimated_from_diameter(self, ctx, caplog):
        record = MemberRecord(member_id="K4", kind=MemberKind.PILE, section_id="PILE_RC", node_id="10")
        with caplog.at_level(logging.WARNING, logger="member_geometry.orchestrator"):
            result = build_member(record, ctx)
        assert result.placement.length == pytest.approx(20000.0)
        assert "estimating" in caplog.text

    def test_extended_foot_lofted(self, ctx):
        record = MemberRecord(
            member_id="K5", kind=MemberKind.PILE, section_id="PILE_FOOT",
            start_node_id="11", end_node_id="10",
        )
        result = build_member(record, ctx)
        assert result.tapered
        assert result.family == "CIRCLE"
        assert [s.position for s in result.stations] == ["BOTTOM", "FOOT_END", "SHAFT_START", "TOP"]
        assert result.profile.meta.outer_radius == pytest.approx(500.0)
        assert result.solid.is_watertight
        # widest at the foot: the bottom end of the local frame
        bottom = result.solid.vertices[result.solid.vertices[:, 2] < -4999.0]
        assert np.abs(bottom[:, :2]).max() == pytest.approx(800.0)

    def test_short_extended_pile_falls_back(self, ctx, caplog):
        record = MemberRecord(
            member_id="K6", kind=MemberKind.PILE, section_id="PILE_FOOT",
            node_id="10", length_all=2000.0,
        )
        with caplog.at_level(logging.WARNING):
            result = build_member(record, ctx)
        assert not result.tapered
        assert result.family == "CIRCLE"
        assert result.profile.meta.outer_radius == pytest.approx(500.0)
        assert "extruding straight shaft" in caplog.text


class TestFoundationColumns:
    def test_fd_and_wr(self, ctx):
        record = MemberRecord.from_stb_attributes(MemberKind.FOUNDATION_COLUMN, {
            "id": "F1", "id_node": "1", "id_section_FD": "RC600", "id_section_WR": "RC600",
            "length_FD": 1000, "length_WR": 500,
        })
        result = build_member(record, ctx)
        assert result.placement.center == pytest.approx((0.0, 0.0, -1000.0))
        assert result.placement.length == pytest.approx(1000.0)
        wall_rise = result.secondary_profiles[0]
        assert wall_rise.role == "wall_rise"
        assert wall_rise.placement.center == pytest.approx((0.0, 0.0, -250.0))
        assert wall_rise.placement.length == pytest.approx(500.0)

    def test_without_wr_section(self, ctx):
        record = MemberRecord(
            member_id="F2", kind=MemberKind.FOUNDATION_COLUMN, section_id="RC600",
            node_id="1", length_fd=1000.0, length_wr=500.0,
        )
        result = build_member(record, ctx)
        assert result.secondary_profiles == ()
        assert result.placement.center == pytest.approx((0.0, 0.0, -750.0))
        assert result.placement.length == pytest.approx(1500.0)

    def test_no_length_is_degenerate(self, ctx):
        record = MemberRecord(
            member_id="F3", kind=MemberKind.FOUNDATION_COLUMN, section_id="RC600", node_id="1",
        )
        result = build_member(record, ctx)
        assert isinstance(result, MemberFailure)
        assert result.reason == FailureReason.DEGENERATE_GEOMETRY


class TestFailures:
    def test_missing_node(self, ctx):
        result = build_member(_column("X1", "1", "99", "H400"), ctx)
        assert isinstance(result, MemberFailure)
        assert result.reason == FailureReason.MISSING_NODE_DATA
        assert "99" in result.message

    def test_missing_section(self, ctx):
        result = build_member(_column("X2", "1", "2", "NOPE"), ctx)
        assert result.reason == FailureReason.MISSING_SECTION_DATA

    def test_no_section_id(self, ctx):
        result = build_member(_column("X3", "1", "2", None), ctx)
        assert result.reason == FailureReason.MISSING_SECTION_DATA

    def test_degenerate(self, ctx):
        result = build_member(_column("X4", "1", "1", "H400"), ctx)
        assert result.reason == FailureReason.DEGENERATE_GEOMETRY


class TestBatch:
    def _records(self):
        return [
            _column("C1", "1", "2", "H400"),
            _column("C2", "4", "3", "H400"),
            _column("C3", "2", "5", "BOX300"),
            _beam("G1", "2", "3", "H400"),
            _beam("B1", "1", "3", "P150", kind=MemberKind.BRACE),
            _column("X1", "1", "99", "H400"),
            _column("X2", "1", "2", "NOPE"),
        ]

    def test_failures_do_not_stop_batch(self, nodes, sections, cache):
        batch = build_members(self._records(), nodes, sections, cache=cache)
        assert [r.member_id for r in batch.results] == ["C1", "C2", "C3", "G1", "B1"]
        assert batch.summary() == {
            "total": 7,
            "succeeded": 5,
            "failed": 2,
            "failures_by_reason": {"missing_node_data": 1, "missing_section_data": 1},
        }

    def test_identical_members_share_solid(self, nodes, sections, cache):
        batch = build_members(self._records(), nodes, sections, cache=cache)
        c1, c2 = batch.results[0], batch.results[1]
        assert c1.solid is c2.solid
        assert cache.stats()["hits"] >= 1

    def test_deterministic(self, nodes, sections):
        a = build_members(self._records(), nodes, sections)
        b = build_members(self._records(), nodes, sections)
        for ra, rb in zip(a.results, b.results):
            assert ra.profile == rb.profile
            assert ra.placement == rb.placement
            np.testing.assert_array_equal(ra.solid.vertices, rb.solid.vertices)

    def test_thread_pool_keeps_order(self, nodes, sections, cache):
        serial = build_members(self._records(), nodes, sections)
        pooled = build_members(self._records(), nodes, sections, cache=cache, max_workers=4)
        assert [r.member_id for r in pooled.results] == [r.member_id for r in serial.results]
        assert [r.placement for r in pooled.results] == [r.placement for r in serial.results]

    def test_build_solids_disabled(self, nodes, sections):
        batch = build_members(
            self._records(), nodes, sections, config=GeometryConfig(build_solids=False)
        )
        assert all(r.solid is None for r in batch.results)
        assert len(batch.results) == 5


class TestCacheLifetime:
    def _rc_sections(self, count):
        return {
            f"RC{i}": SectionSpec(
                family_code="StbSecColumn_RC",
                dimensions={"width_X": 400 + 10 * i, "width_Y": 500},
            )
            for i in range(count)
        }

    def test_results_carry_cache_keys(self, nodes, sections, cache):
        batch = build_members(
            [_column("C1", "1", "2", "SRC"), _column("C2", "1", "2", "H_PLATE")],
            nodes, sections, cache=cache,
        )
        for result in batch.results:
            assert result.cache_key in cache
            for secondary in result.secondary_profiles:
                assert secondary.cache_key in cache

    def test_no_cache_no_keys(self, nodes, sections):
        batch = build_members([_column("C1", "1", "2", "SRC")], nodes, sections)
        result = batch.results[0]
        assert result.solid is not None
        assert result.cache_key is None
        assert all(s.cache_key is None for s in result.secondary_profiles)

    def test_released_batch_fits_ceiling(self, nodes):
        sections = self._rc_sections(20)
        records = []
        for i in range(20):
            records.append(_column(f"C{i}a", "1", "2", f"RC{i}"))
            records.append(_column(f"C{i}b", "1", "2", f"RC{i}"))
        cache = GeometryCache(CacheConfig(max_entries=5))

        batch = build_members(records, nodes, sections, cache=cache)
        assert len(batch.results) == 40
        assert len(cache) == 20
        for result in batch.results:
            cache.release_result(result)
        assert len(cache) <= 5

    def test_rebuild_after_eviction_identical(self, nodes, sections):
        ctx = BuildContext(
            nodes=nodes, sections=sections, cache=GeometryCache(CacheConfig(max_entries=1))
        )
        first = build_member(_column("C1", "1", "2", "H400"), ctx)
        build_member(_column("C2", "1", "2", "BOX300"), ctx)
        assert first.cache_key not in ctx.cache

        again = build_member(_column("C1", "1", "2", "H400"), ctx)
        assert again.solid is not first.solid
        assert again.cache_key == first.cache_key
        np.testing.assert_array_equal(again.solid.vertices, first.solid.vertices)
        np.testing.assert_array_equal(again.solid.faces, first.solid.faces)

    def test_dimension_order_shares_entry(self, nodes, cache):
        sections = {
            "RC_A": SectionSpec(
                family_code="StbSecColumn_RC", dimensions={"width_X": 600, "width_Y": 500}
            ),
            "RC_B": SectionSpec(
                family_code="StbSecColumn_RC", dimensions={"width_Y": 500, "width_X": 600}
            ),
        }
        batch = build_members(
            [_column("C1", "1", "2", "RC_A"), _column("C2", "1", "2", "RC_B")],
            nodes, sections, cache=cache,
        )
        a, b = batch.results
        assert a.cache_key == b.cache_key
        assert a.solid is b.solid
        assert cache.stats()["hits"] == 1
        assert len(cache) == 1
