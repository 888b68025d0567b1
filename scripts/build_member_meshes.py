#!/usr/bin/env python3
"""
Build member solids from a parsed ST-Bridge model dump.

The input JSON holds the lookups the geometry core expects:

    {
      "nodes": {"1": [0, 0, 0], ...},
      "sections": {"S1": {"section_type": "H", "dimensions": {...}}, ...},
      "steel_shapes": {"H-400x200x8x13": {"A": 400, ...}, ...},
      "members": [{"kind": "column", "id": "C1", "id_section": "S1", ...}, ...]
    }

Member entries carry STB attribute names (id_node_bottom, offset_start_X,
rotate, ...). Each solid is moved to world coordinates and written out.

Usage:
    python scripts/build_member_meshes.py --input model.json
    python scripts/build_member_meshes.py --input model.json --format glb --output out/
    python scripts/build_member_meshes.py --input model.json --workers 4 --no-cache
"""
import sys
import os
import json
import argparse
import logging
from pathlib import Path

import trimesh

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from member_geometry import (
    CacheConfig,
    GeometryCache,
    GeometryConfig,
    MemberKind,
    MemberRecord,
    build_members,
)
from member_geometry.geometry_calculator import placement_matrix


def load_records(members):
    """MemberRecords from STB attribute dictionaries tagged with ``kind``."""
    records = []
    for attrs in members:
        kind = MemberKind(attrs["kind"])
        records.append(MemberRecord.from_stb_attributes(kind, attrs))
    return records


def world_mesh(solid, placement):
    mesh = solid.copy()
    mesh.apply_transform(placement_matrix(placement))
    return mesh


def main():
    parser = argparse.ArgumentParser(
        description="Build structural member solids from an ST-Bridge model dump.",
    )
    parser.add_argument("--input", required=True, help="Path to model JSON")
    parser.add_argument(
        "--output", default=None,
        help="Output directory (default: <input_dir>/<input_stem>_members/)",
    )
    parser.add_argument(
        "--format", default="stl", choices=["stl", "glb"],
        help="stl writes one file per member, glb one scene (default: stl)",
    )
    parser.add_argument(
        "--segments", type=int, default=32,
        help="Circle tessellation for round sections (default: 32)",
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="Thread pool size (default: 1)",
    )
    parser.add_argument("--no-cache", action="store_true", help="Disable the solid cache")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    input_path = os.path.abspath(args.input)
    if not os.path.isfile(input_path):
        parser.error(f"Input file not found: {input_path}")

    if args.output:
        output_dir = os.path.abspath(args.output)
    else:
        stem = Path(input_path).stem
        output_dir = os.path.join(os.path.dirname(input_path), f"{stem}_members")
    os.makedirs(output_dir, exist_ok=True)

    with open(input_path) as f:
        model = json.load(f)

    nodes = {str(k): tuple(v) for k, v in model.get("nodes", {}).items()}
    records = load_records(model.get("members", []))
    cache = GeometryCache(CacheConfig(enabled=not args.no_cache))

    batch = build_members(
        records,
        nodes,
        model.get("sections", {}),
        steel_shapes=model.get("steel_shapes", {}),
        cache=cache,
        config=GeometryConfig(circle_segments=args.segments),
        max_workers=args.workers,
    )

    scene = trimesh.Scene()
    written = 0
    for result in batch.results:
        parts = [(result.member_id, result.solid, result.placement)]
        parts += [
            (f"{result.member_id}_{s.role}", s.solid, s.placement)
            for s in result.secondary_profiles
        ]
        for name, solid, placement in parts:
            if solid is None:
                continue
            mesh = world_mesh(solid, placement)
            if args.format == "glb":
                scene.add_geometry(mesh, node_name=name, geom_name=name)
            else:
                mesh.export(os.path.join(output_dir, f"{name}.stl"))
            written += 1

    if args.format == "glb" and written:
        scene.export(os.path.join(output_dir, "members.glb"))

    summary = batch.summary()
    summary["failures"] = [
        {"member_id": f.member_id, "kind": f.kind.value, "reason": f.reason.value, "message": f.message}
        for f in batch.failures
    ]
    summary["cache"] = cache.stats()
    summary_path = os.path.join(output_dir, "summary.json")
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)

    print(f"Built {summary['succeeded']}/{summary['total']} members, {written} solids")
    for failure in batch.failures:
        print(f"  {failure.member_id}: {failure.reason.value} ({failure.message})")
    print(f"Summary saved to {summary_path}")


if __name__ == "__main__":
    main()
