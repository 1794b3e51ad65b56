import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from pg2gbf.config.settings import PostgresCredentials
from pg2gbf.domain.models import TableDescriptor
from pg2gbf.pipeline.source import PostgresSource

ENV_KEYS = [
    "ENVIRONMENT",
    "POSTGRES_HOST", "POSTGRES_PORT", "POSTGRES_DBNAME", "POSTGRES_USER", "POSTGRES_PASSWORD",
    "TABLE_NAME", "ID_COLUMN", "GEOM_COLUMN", "CHUNK_SIZE", "OUTPUT_PATH",
    "EXPORT_STRATEGY", "CHUNK_FORMAT", "TARGET_SRID", "GEOBUF_PRECISION", "KEEP_MERGED",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run every test in an empty directory with no pipeline variables set."""
    for key in ENV_KEYS:
        # setenv first so values loaded from .env files are undone after the test
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def database_env(monkeypatch):
    monkeypatch.setenv("POSTGRES_HOST", "localhost")
    monkeypatch.setenv("POSTGRES_DBNAME", "gis")
    monkeypatch.setenv("POSTGRES_USER", "gis")
    monkeypatch.setenv("POSTGRES_PASSWORD", "secret")


@pytest.fixture
def credentials():
    return PostgresCredentials(host="localhost", dbname="gis", user="gis", password="secret")


@pytest.fixture
def table():
    return TableDescriptor(name="parcels")


def point(x, y, **properties):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [x, y]},
        "properties": properties,
    }


def feature_collection(*features):
    return json.dumps({"type": "FeatureCollection", "features": list(features)})


def write_collection(path: Path, *features) -> Path:
    path.write_text(feature_collection(*features), encoding="utf-8")
    return path


class FakeSource(PostgresSource):
    """
    PostgresSource answering scalar queries from a queue.

    Queued exceptions are raised instead of returned. Statements are recorded
    as rendered SQL text.
    """

    def __init__(self, results=(), count=0, columns=("name", "kind")):
        super().__init__(
            PostgresCredentials(host="localhost", dbname="gis", user="gis", password="secret"),
            connection=MagicMock(),
        )
        self.results = list(results)
        self.count = count
        self.columns = list(columns)
        self.statements = []

    def fetch_scalar(self, statement, params=None):
        self.statements.append(self.render(statement))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def count_rows(self, table):
        return self.count

    def property_columns(self, table):
        return list(self.columns)
