from pathlib import Path

from pg2gbf.domain.naming import (
    base_path,
    chunk_offset,
    chunk_path,
    converted_path,
    discover_chunks,
    merged_path,
)


def test_base_path_strips_geojson_extension():
    assert base_path("out/layer.geojson") == Path("out/layer")
    assert base_path("out/layer.GeoJSON") == Path("out/layer")
    assert base_path("out/layer") == Path("out/layer")


def test_file_names_derived_from_base():
    base = Path("out/layer")
    assert chunk_path(base, 0) == Path("out/layer_0.geojson")
    assert chunk_path(base, 1000, "gbf") == Path("out/layer_1000.gbf")
    assert merged_path(base) == Path("out/layer.geojson")
    assert converted_path(merged_path(base)) == Path("out/layer.gbf")


def test_chunk_offset_parses_only_matching_names():
    base = Path("layer")
    assert chunk_offset(Path("layer_2000.geojson"), base) == 2000
    assert chunk_offset(Path("layer_2000.gbf"), base) is None
    assert chunk_offset(Path("layer_extra_2000.geojson"), base) is None
    assert chunk_offset(Path("layer.geojson"), base) is None


def test_discover_chunks_sorts_numerically(tmp_path):
    base = tmp_path / "layer"
    for offset in (10, 0, 2, 100):
        chunk_path(base, offset).write_text("{}")
    (tmp_path / "layer.geojson").write_text("{}")
    (tmp_path / "layer_notes.geojson").write_text("{}")
    (tmp_path / "other_5.geojson").write_text("{}")

    found = discover_chunks(base)

    assert [p.name for p in found] == [
        "layer_0.geojson", "layer_2.geojson", "layer_10.geojson", "layer_100.geojson",
    ]


def test_discover_chunks_missing_directory(tmp_path):
    assert discover_chunks(tmp_path / "missing" / "layer") == []
