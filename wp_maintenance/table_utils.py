import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.sql import text

from wp_maintenance.errors import SchemaError

SHORT_TEXT = "short-text"
LONG_TEXT = "long-text"
BINARY = "binary"

# Declared types that can hold searchable text
_TEXT_TYPE = re.compile(r'^(varchar|char|tinytext|mediumtext|longtext|text|tinyblob|mediumblob|longblob|blob)')
_TYPE_LENGTH = re.compile(r'^(?:var)?char\s*\(\s*(\d+)\s*\)')

_CATEGORIES = {
    'varchar': SHORT_TEXT,
    'char': SHORT_TEXT,
    'tinytext': LONG_TEXT,
    'mediumtext': LONG_TEXT,
    'longtext': LONG_TEXT,
    'text': LONG_TEXT,
    'tinyblob': BINARY,
    'mediumblob': BINARY,
    'longblob': BINARY,
    'blob': BINARY,
}

MYSQL_DIALECTS = ("mysql", "mariadb")


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    category: str
    max_length: Optional[int] = None
    type_name: str = ""


def classify_column_type(type_name: str) -> Optional[Tuple[str, Optional[int]]]:
    """Map a declared column type such as 'varchar(20)' to (category, max_length).

    Returns None for types that are not searched (numbers, dates, ...).
    """
    declared = type_name.strip().lower()
    match = _TEXT_TYPE.match(declared)
    if not match:
        return None

    category = _CATEGORIES[match.group(1)]
    max_length = None
    if category == SHORT_TEXT:
        length_match = _TYPE_LENGTH.match(declared)
        if length_match:
            max_length = int(length_match.group(1))
    return category, max_length


def quote_identifier(connection, name: str) -> str:
    return connection.dialect.identifier_preparer.quote_identifier(name)


def _type_name(connection, column: Dict[str, Any]) -> str:
    column_type = column['type']
    try:
        return column_type.compile(dialect=connection.dialect)
    except SQLAlchemyError:
        return str(column_type)


def list_tables(connection) -> List[str]:
    return inspect(connection).get_table_names()


def get_text_columns(connection, table_name: str) -> List[ColumnDescriptor]:
    """List the textual and binary columns of a table in declaration order."""
    inspector = inspect(connection)
    try:
        columns = inspector.get_columns(table_name)
        if not columns and not inspector.has_table(table_name):
            raise NoSuchTableError(table_name)
    except NoSuchTableError:
        raise SchemaError(table_name, "table does not exist")
    except SQLAlchemyError as e:
        raise SchemaError(table_name, str(getattr(e, 'orig', None) or e))

    descriptors = []
    for col in columns:
        type_name = _type_name(connection, col)
        classified = classify_column_type(type_name)
        if classified is None:
            continue

        category, max_length = classified
        # Prefer the length SQLAlchemy reflected over the parsed one
        reflected_length = getattr(col['type'], 'length', None)
        if category == SHORT_TEXT and isinstance(reflected_length, int):
            max_length = reflected_length

        descriptors.append(ColumnDescriptor(col['name'], category, max_length, type_name))
    return descriptors


def contains_clause(connection, column_sql: str, search: str, param: str = "search") -> Tuple[str, Dict[str, str]]:
    """
    Build a case-sensitive, literal "column contains search" predicate.

    Returns the SQL fragment and its bind parameters.
    """
    dialect = connection.dialect.name
    if dialect in MYSQL_DIALECTS:
        return f"LOCATE(CAST(:{param} AS BINARY), CAST({column_sql} AS BINARY)) > 0", {param: search}
    if dialect == "sqlite":
        return f"instr({column_sql}, :{param}) > 0", {param: search}

    escaped = search.replace('!', '!!').replace('%', '!%').replace('_', '!_')
    return f"{column_sql} LIKE :{param} ESCAPE '!'", {param: f"%{escaped}%"}


def equals_clause(connection, column_sql: str, param: str = "old_value") -> str:
    """Exact (byte for byte on MySQL) comparison of a column with a bound value."""
    if connection.dialect.name in MYSQL_DIALECTS:
        return f"CAST({column_sql} AS BINARY) = CAST(:{param} AS BINARY)"
    return f"{column_sql} = :{param}"


def not_in_clause(connection, column_sql: str, param: str = "excluded") -> str:
    """Exact "column is none of these values" predicate. Bind `param` as an expanding parameter."""
    if connection.dialect.name in MYSQL_DIALECTS:
        return f"CAST({column_sql} AS BINARY) NOT IN :{param}"
    return f"{column_sql} NOT IN :{param}"


def count_matches(connection, table_name: str, column_name: str, search: str) -> int:
    """Count rows whose column contains the search text."""
    table_sql = quote_identifier(connection, table_name)
    column_sql = quote_identifier(connection, column_name)
    where_clause, params = contains_clause(connection, column_sql, search)

    query = text(f"SELECT COUNT(*) FROM {table_sql} WHERE {where_clause}")
    return int(connection.execute(query, params).scalar() or 0)


def fetch_matching_values(connection, table_name: str, column_name: str, search: str) -> List[Any]:
    """Fetch the raw column values of rows containing the search text."""
    table_sql = quote_identifier(connection, table_name)
    column_sql = quote_identifier(connection, column_name)
    where_clause, params = contains_clause(connection, column_sql, search)

    query = text(f"SELECT {column_sql} FROM {table_sql} WHERE {where_clause}")
    return list(connection.execute(query, params).scalars())
