import json
import subprocess
from unittest.mock import patch

import geopandas as gpd
import pyogrio.errors
import pytest
import shapely.errors

from conftest import FakeSource, feature_collection, point
from pg2gbf.domain.enums import ChunkFormat, ExportStrategy
from pg2gbf.domain.models import ChunkSpec
from pg2gbf.pipeline.export import ChunkExporter
from pg2gbf.types import ChunkExportError, QueryExecutionError


def test_sql_export_writes_one_file_per_chunk(tmp_path, table):
    source = FakeSource(
        results=[
            feature_collection(point(0, 0, name="a"), point(1, 1, name="b"), point(2, 2, name="c"), point(3, 3, name="d")),
            feature_collection(point(4, 4, name="e"), point(5, 5, name="f"), point(6, 6, name="g"), point(7, 7, name="h")),
            feature_collection(point(8, 8, name="i"), point(9, 9, name="j")),
        ],
        count=10,
    )
    exporter = ChunkExporter(source, table, chunk_size=4, strategy=ExportStrategy.SQL)

    chunks = exporter.export(tmp_path / "layer")

    assert [c.path.name for c in chunks] == ["layer_0.geojson", "layer_4.geojson", "layer_8.geojson"]
    assert [c.spec.offset for c in chunks] == [0, 4, 8]
    last = json.loads(chunks[-1].path.read_text(encoding="utf-8"))
    assert len(last["features"]) == 2
    assert 'LIMIT 4 OFFSET 8' in source.statements[-1]


def test_exact_multiple_exports_trailing_empty_chunk(tmp_path, table):
    source = FakeSource(
        results=[
            feature_collection(point(0, 0), point(1, 1)),
            feature_collection(point(2, 2), point(3, 3)),
            feature_collection(),
        ],
        count=4,
    )
    chunks = ChunkExporter(source, table, chunk_size=2, strategy=ExportStrategy.SQL).export(tmp_path / "layer")

    assert [c.spec.offset for c in chunks] == [0, 2, 4]
    assert json.loads(chunks[-1].path.read_text(encoding="utf-8"))["features"] == []


def test_failure_aborts_and_keeps_earlier_chunks(tmp_path, table):
    source = FakeSource(
        results=[
            feature_collection(point(0, 0), point(1, 1)),
            QueryExecutionError("SELECT ...", "canceling statement due to statement timeout"),
        ],
        count=9,
    )
    exporter = ChunkExporter(source, table, chunk_size=2, strategy=ExportStrategy.SQL)
    assert len(exporter.plan()) == 5

    with pytest.raises(ChunkExportError) as exc_info:
        exporter.export(tmp_path / "layer")

    assert exc_info.value.offset == 2
    assert "statement timeout" in str(exc_info.value)
    assert (tmp_path / "layer_0.geojson").exists()
    assert not (tmp_path / "layer_2.geojson").exists()
    assert len(source.statements) == 2


def test_invalid_chunk_content_is_export_error(tmp_path, table):
    source = FakeSource(results=['{"type": "Feature"}'], count=1)
    with pytest.raises(ChunkExportError) as exc_info:
        ChunkExporter(source, table, chunk_size=10, strategy=ExportStrategy.SQL).export(tmp_path / "layer")
    assert exc_info.value.offset == 0


def test_stale_chunk_is_replaced(tmp_path, table):
    stale = tmp_path / "layer_0.geojson"
    stale.write_text("stale", encoding="utf-8")
    source = FakeSource(results=[feature_collection(point(0, 0))], count=1)

    ChunkExporter(source, table, chunk_size=10, strategy=ExportStrategy.SQL).export(tmp_path / "layer")

    assert json.loads(stale.read_text(encoding="utf-8"))["type"] == "FeatureCollection"


def test_geobuf_chunks_written_as_raw_bytes(tmp_path, table):
    source = FakeSource(results=["0a0b0c", None], count=3)
    exporter = ChunkExporter(
        source, table, chunk_size=3, strategy=ExportStrategy.SQL, chunk_format=ChunkFormat.GEOBUF
    )

    chunks = exporter.export(tmp_path / "layer")

    assert [c.path.name for c in chunks] == ["layer_0.gbf", "layer_3.gbf"]
    assert chunks[0].path.read_bytes() == b"\x0a\x0b\x0c"
    assert chunks[1].path.read_bytes() == b""
    assert "ST_AsGeobuf" in source.statements[0]


def test_geobuf_chunks_require_sql_strategy(table):
    with pytest.raises(ValueError):
        ChunkExporter(FakeSource(), table, strategy=ExportStrategy.OGR, chunk_format=ChunkFormat.GEOBUF)


def test_properties_looked_up_once(tmp_path, table):
    source = FakeSource(results=[feature_collection(), feature_collection()], count=1)
    exporter = ChunkExporter(source, table, chunk_size=1, strategy=ExportStrategy.SQL)
    with patch.object(source, "property_columns", wraps=source.property_columns) as lookup:
        exporter.export(tmp_path / "layer")
    lookup.assert_called_once()


class TestOgrStrategy:
    def fake_ogr2ogr(self, returncode=0, stderr=""):
        def run(command, **kwargs):
            if returncode == 0:
                with open(command[5], "w", encoding="utf-8") as f:
                    f.write(feature_collection(point(0, 0, name="a")))
            return subprocess.CompletedProcess(command, returncode, stdout="", stderr=stderr)
        return run

    def test_invokes_ogr2ogr_with_bounded_query(self, tmp_path, table):
        source = FakeSource(count=1)
        exporter = ChunkExporter(source, table, chunk_size=5, strategy=ExportStrategy.OGR)

        with patch("pg2gbf.pipeline.export.subprocess.run", side_effect=self.fake_ogr2ogr()) as run:
            chunks = exporter.export(tmp_path / "layer")

        assert [c.path.name for c in chunks] == ["layer_0.geojson"]
        command = run.call_args[0][0]
        assert command[:5] == ["ogr2ogr", "-t_srs", "EPSG:4326", "-f", "GeoJSON"]
        assert command[6] == "PG:host=localhost port=5432 dbname=gis user=gis"
        assert not any("secret" in part for part in command)
        assert run.call_args.kwargs["env"]["PGPASSWORD"] == "secret"
        assert command[7] == "-sql"
        assert 'WHERE "id" IN (SELECT "id" FROM "parcels" ORDER BY "id" LIMIT 5 OFFSET 0)' in command[8]

    def test_nonzero_exit_is_export_error(self, tmp_path, table):
        exporter = ChunkExporter(FakeSource(count=1), table, chunk_size=5, strategy=ExportStrategy.OGR)
        with patch(
            "pg2gbf.pipeline.export.subprocess.run",
            side_effect=self.fake_ogr2ogr(returncode=1, stderr="ERROR 1: column \"geom\" does not exist"),
        ):
            with pytest.raises(ChunkExportError) as exc_info:
                exporter.export(tmp_path / "layer")
        assert "does not exist" in str(exc_info.value)
        assert "ORDER BY" in str(exc_info.value)

    def test_missing_binary_is_export_error(self, tmp_path, table):
        exporter = ChunkExporter(FakeSource(count=1), table, chunk_size=5, strategy=ExportStrategy.OGR)
        with patch("pg2gbf.pipeline.export.subprocess.run", side_effect=FileNotFoundError("ogr2ogr")):
            with pytest.raises(ChunkExportError, match="not found on PATH"):
                exporter.export(tmp_path / "layer")


class TestGeopandasStrategy:
    def test_writes_geojson_from_dataframe(self, tmp_path, table):
        frame = gpd.GeoDataFrame(
            {"name": ["a", "b"], "geom": gpd.points_from_xy([0, 1], [0, 1])},
            geometry="geom",
            crs="EPSG:4326",
        )
        exporter = ChunkExporter(FakeSource(count=2), table, chunk_size=5, strategy=ExportStrategy.GEOPANDAS)

        with patch("pg2gbf.pipeline.export.gpd.read_postgis", return_value=frame) as read:
            chunks = exporter.export(tmp_path / "layer")

        data = json.loads(chunks[0].path.read_text(encoding="utf-8"))
        assert data["type"] == "FeatureCollection"
        assert [f["properties"]["name"] for f in data["features"]] == ["a", "b"]
        assert read.call_args.kwargs["geom_col"] == "geom"
        assert "ST_Transform" in read.call_args[0][0]

    def test_empty_frame_writes_empty_collection(self, tmp_path, table):
        exporter = ChunkExporter(FakeSource(count=0), table, chunk_size=5, strategy=ExportStrategy.GEOPANDAS)
        empty = gpd.GeoDataFrame(geometry=gpd.GeoSeries([], crs="EPSG:4326"))

        with patch("pg2gbf.pipeline.export.gpd.read_postgis", return_value=empty):
            chunks = exporter.export(tmp_path / "layer")

        assert json.loads(chunks[0].path.read_text(encoding="utf-8")) == {"type": "FeatureCollection", "features": []}

    def test_write_failure_is_export_error(self, tmp_path, table):
        frame = gpd.GeoDataFrame(
            {"name": ["a"], "geom": gpd.points_from_xy([0], [0])},
            geometry="geom",
            crs="EPSG:4326",
        )
        exporter = ChunkExporter(FakeSource(count=1), table, chunk_size=5, strategy=ExportStrategy.GEOPANDAS)

        with patch("pg2gbf.pipeline.export.gpd.read_postgis", return_value=frame), \
                patch.object(gpd.GeoDataFrame, "to_file", side_effect=pyogrio.errors.DataSourceError("read-only file system")):
            with pytest.raises(ChunkExportError) as exc_info:
                exporter.export(tmp_path / "layer")

        assert exc_info.value.offset == 0
        assert str(exc_info.value).count("offset 0") == 1
        assert "read-only file system" in str(exc_info.value)
        assert not (tmp_path / "layer_0.geojson").exists()

    def test_unparseable_geometry_is_export_error(self, tmp_path, table):
        exporter = ChunkExporter(FakeSource(count=1), table, chunk_size=5, strategy=ExportStrategy.GEOPANDAS)
        with patch(
            "pg2gbf.pipeline.export.gpd.read_postgis",
            side_effect=shapely.errors.GEOSException("ParseException: Unexpected EOF parsing WKB"),
        ):
            with pytest.raises(ChunkExportError, match="WKB"):
                exporter.export(tmp_path / "layer")


def test_export_chunk_for_single_window(tmp_path, table):
    source = FakeSource(results=[feature_collection(point(0, 0))])
    exporter = ChunkExporter(source, table, chunk_size=10, strategy=ExportStrategy.SQL)
    chunk = exporter.export_chunk(ChunkSpec(offset=20, size=10), tmp_path / "layer", ["name"])
    assert chunk.path == tmp_path / "layer_20.geojson"
