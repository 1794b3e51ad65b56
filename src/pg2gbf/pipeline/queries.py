"""
SQL statements used by the pipeline.

All table and column names are composed with ``psycopg.sql.Identifier`` so
user-supplied names are quoted, never interpolated. Every chunk query pages
over the identifier column through a bounding subquery that carries the
``ORDER BY``, so consecutive LIMIT/OFFSET windows partition the table.
"""

from collections.abc import Sequence

from psycopg import sql

from ..domain.models import ChunkSpec, TableDescriptor


def table_identifier(table: TableDescriptor) -> sql.Identifier:
    return sql.Identifier(*table.name_parts)


def count_statement(table: TableDescriptor) -> sql.Composed:
    return sql.SQL("SELECT count(*) FROM {table}").format(table=table_identifier(table))


def columns_statement() -> sql.SQL:
    """Column names of a relation in ordinal order; takes the quoted relation name as parameter."""
    return sql.SQL(
        "SELECT attname FROM pg_attribute "
        "WHERE attrelid = %s::regclass AND attnum > 0 AND NOT attisdropped "
        "ORDER BY attnum"
    )


def bounded_ids(table: TableDescriptor, spec: ChunkSpec) -> sql.Composed:
    """Identifier values belonging to one chunk, selected in identifier order."""
    return sql.SQL(
        "SELECT {id} FROM {table} ORDER BY {id} LIMIT {limit} OFFSET {offset}"
    ).format(
        id=sql.Identifier(table.id_column),
        table=table_identifier(table),
        limit=sql.Literal(spec.size),
        offset=sql.Literal(spec.offset),
    )


def chunk_rows(
    table: TableDescriptor,
    spec: ChunkSpec,
    columns: Sequence[str],
) -> sql.Composed:
    """Rows of one chunk restricted to ``columns``."""
    return sql.SQL(
        "SELECT {columns} FROM {table} WHERE {id} IN ({ids})"
    ).format(
        columns=sql.SQL(", ").join(sql.Identifier(column) for column in columns),
        table=table_identifier(table),
        id=sql.Identifier(table.id_column),
        ids=bounded_ids(table, spec),
    )


def ogr_chunk_query(
    table: TableDescriptor,
    spec: ChunkSpec,
    properties: Sequence[str],
) -> sql.Composed:
    """Chunk query handed to ogr2ogr: geometry plus the property columns."""
    return chunk_rows(table, spec, [table.geom_column, *properties])


def geojson_chunk_statement(
    table: TableDescriptor,
    spec: ChunkSpec,
    properties: Sequence[str],
    target_srid: int = 4326,
) -> sql.Composed:
    """
    One chunk as a GeoJSON FeatureCollection built in the database.

    Geometry is re-projected inline; properties are the row minus the
    identifier and geometry columns. An empty chunk yields ``"features": []``.
    """
    rows = chunk_rows(table, spec, [table.id_column, table.geom_column, *properties])
    return sql.SQL("""
        SELECT jsonb_build_object(
            'type', 'FeatureCollection',
            'features', COALESCE(jsonb_agg(features.feature ORDER BY features.sort_key), '[]'::jsonb)
        )::text
        FROM (
            SELECT
                sq.{id} AS sort_key,
                jsonb_build_object(
                    'type', 'Feature',
                    'geometry', ST_AsGeoJSON(ST_Transform(sq.{geom}, {srid}))::jsonb,
                    'properties', to_jsonb(sq) - {geom_name} - {id_name}
                ) AS feature
            FROM ({rows}) AS sq
        ) AS features
    """).format(
        id=sql.Identifier(table.id_column),
        geom=sql.Identifier(table.geom_column),
        srid=sql.Literal(target_srid),
        geom_name=sql.Literal(table.geom_column),
        id_name=sql.Literal(table.id_column),
        rows=rows,
    )


def projected_chunk_rows(
    table: TableDescriptor,
    spec: ChunkSpec,
    properties: Sequence[str],
    target_srid: int = 4326,
) -> sql.Composed:
    """Rows of one chunk with the geometry re-projected, in identifier order."""
    selected = [
        sql.SQL("ST_Transform(sq.{geom}, {srid}) AS {geom}").format(
            geom=sql.Identifier(table.geom_column),
            srid=sql.Literal(target_srid),
        ),
        *(sql.SQL("sq.{}").format(sql.Identifier(column)) for column in properties),
    ]
    return sql.SQL("SELECT {selected} FROM ({rows}) AS sq ORDER BY sq.{id}").format(
        selected=sql.SQL(", ").join(selected),
        rows=chunk_rows(table, spec, [table.id_column, table.geom_column, *properties]),
        id=sql.Identifier(table.id_column),
    )


def geobuf_chunk_statement(
    table: TableDescriptor,
    spec: ChunkSpec,
    properties: Sequence[str],
    target_srid: int = 4326,
) -> sql.Composed:
    """One chunk encoded by ST_AsGeobuf and returned hex-encoded."""
    return sql.SQL(
        "SELECT encode(ST_AsGeobuf(features, {geom_name}), 'hex') FROM ({rows}) AS features"
    ).format(
        geom_name=sql.Literal(table.geom_column),
        rows=projected_chunk_rows(table, spec, properties, target_srid),
    )
