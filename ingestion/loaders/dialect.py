"""
Dialect-specific INSERT constructs for ON CONFLICT upserts, and the JSON
merge expressions used in their SET clauses.
"""

from sqlalchemy import func, literal_column
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from core.exceptions import UpsertError

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

# stored array merged with the incoming one; distinct, sorted
_ARRAY_UNION = {
    "postgresql": (
        "(SELECT coalesce(jsonb_agg(DISTINCT elem ORDER BY elem), '[]'::jsonb) "
        "FROM jsonb_array_elements({table}.{column} || excluded.{column}) AS merged(elem))"
    ),
    "sqlite": (
        "(SELECT json_group_array(value) FROM ("
        "SELECT value FROM json_each({table}.{column}) "
        "UNION SELECT value FROM json_each(excluded.{column}) ORDER BY value))"
    ),
}


def _dialect_name(db_session) -> str:
    return db_session.get_bind().dialect.name


def _unsupported(dialect: str, table_name: str) -> UpsertError:
    return UpsertError(
        f"Upserts are not supported on {dialect}",
        context={"dialect": dialect, "table_name": table_name},
    )


def dialect_insert(db_session, model):
    """INSERT for ``model`` that supports on_conflict_do_update/do_nothing."""
    dialect = _dialect_name(db_session)
    try:
        return _INSERTS[dialect](model)
    except KeyError:
        raise _unsupported(dialect, model.__tablename__) from None


def merge_object(db_session, stored, incoming):
    """
    SET expression merging two JSON objects in the database; keys of
    ``incoming`` win. Evaluated inside the upsert, so concurrent writers
    never drop each other's keys.
    """
    dialect = _dialect_name(db_session)
    if dialect == "postgresql":
        return stored.op("||")(incoming)
    if dialect == "sqlite":
        return func.json_patch(stored, incoming)
    raise _unsupported(dialect, stored.table.name)


def union_array(db_session, model, column_name: str):
    """SET expression for the distinct, sorted union of a stored and an incoming JSON array."""
    dialect = _dialect_name(db_session)
    try:
        template = _ARRAY_UNION[dialect]
    except KeyError:
        raise _unsupported(dialect, model.__tablename__) from None
    return literal_column(template.format(table=model.__tablename__, column=column_name))
