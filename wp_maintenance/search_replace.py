from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from rich.console import Console
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import bindparam, text

from wp_maintenance.db_utils import connect_autocommit, db_error_code, describe_db_error
from wp_maintenance.errors import (
    DatabaseConnectionError,
    LengthConstraintError,
    SchemaError,
    SerializedParseError,
    WriteError,
)
from wp_maintenance.length_policy import SKIP, TRUNCATE, decide, validate_policy
from wp_maintenance.php_serialize import is_serialized, loads, replace_serialized
from wp_maintenance.run_log import RunLog
from wp_maintenance.table_utils import (
    ColumnDescriptor,
    contains_clause,
    count_matches,
    equals_clause,
    fetch_matching_values,
    get_text_columns,
    list_tables,
    not_in_clause,
    quote_identifier,
)

ALL_TABLES = "all"
REPLACE_LOG_TITLE = "Database Text Replacement Tool Log"
REPLACE_LOG_PREFIX = "text_replace_log"

# MySQL: ER_DATA_TOO_LONG
DATA_TOO_LONG = 1406


@dataclass(frozen=True)
class ReplacementJob:
    """What to replace, where, and how. Read-only once created."""
    search: str
    replace: str = ""
    tables: Union[str, Tuple[str, ...]] = ALL_TABLES
    handle_serialized: bool = True
    dry_run: bool = False
    length_policy: str = SKIP

    def __post_init__(self):
        if not self.search:
            raise ValueError("Please provide text to find.")
        if self.replace is None:
            object.__setattr__(self, "replace", "")
        if isinstance(self.tables, str):
            if self.tables != ALL_TABLES:
                object.__setattr__(self, "tables", (self.tables,))
        else:
            object.__setattr__(self, "tables", tuple(dict.fromkeys(self.tables)))
        object.__setattr__(self, "length_policy", validate_policy(self.length_policy))

    @property
    def all_tables(self) -> bool:
        return self.tables == ALL_TABLES


@dataclass
class RunStats:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    total_rows: int = 0
    truncated: int = 0
    tables_processed: int = 0
    tables_with_matches: int = 0
    tables_no_matches: int = 0
    tables_errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ProgressUpdate:
    processed: int
    total: int
    with_matches: int
    no_matches: int
    errors: int
    current: str

    @property
    def percent(self) -> int:
        if not self.total:
            return 100
        return round(self.processed / self.total * 100)


@dataclass
class ReplacementResult:
    log: RunLog
    stats: RunStats = field(default_factory=RunStats)
    dry_run: bool = False


ProgressCallback = Callable[[ProgressUpdate], None]


def classify_write_error(error: Exception) -> WriteError:
    """Turn a database error raised by an UPDATE into a WriteError."""
    message = describe_db_error(error)
    if db_error_code(error) == DATA_TOO_LONG or "Data too long" in message:
        return LengthConstraintError(message)
    return WriteError(message)


def _execute_write(connection, statement, params: Dict[str, Any]) -> int:
    if isinstance(statement, str):
        statement = text(statement)
    try:
        result = connection.execute(statement, params)
    except SQLAlchemyError as e:
        raise classify_write_error(e) from e
    return max(result.rowcount or 0, 0)


def _as_text(value) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


def _decodes(value: str) -> bool:
    try:
        loads(value.strip())
    except SerializedParseError:
        return False
    return True


def replace_serialized_rows(connection, table_name: str, column_name: str, search: str,
                            replace: str) -> Tuple[int, List[Any]]:
    """
    Rewrite every matching serialized value of a column.

    Rows are matched on their complete old value, so identical values are
    updated together. Values that look serialized but do not decode are
    left for the literal pass.

    Returns the number of rows changed and the values this pass owns: every
    decodable serialized value it saw plus every value it wrote.
    """
    table_sql = quote_identifier(connection, table_name)
    column_sql = quote_identifier(connection, column_name)
    statement = f"UPDATE {table_sql} SET {column_sql} = :new_value WHERE {equals_clause(connection, column_sql)}"

    affected = 0
    owned: List[Any] = []
    for raw_value in fetch_matching_values(connection, table_name, column_name, search):
        value = _as_text(raw_value)
        if value is None or not is_serialized(value) or not _decodes(value):
            continue

        owned.append(raw_value)
        new_value = replace_serialized(value, search, replace)
        if new_value == value:
            continue

        owned.append(new_value)
        affected += _execute_write(connection, statement, {"new_value": new_value, "old_value": raw_value})
    return affected, owned


def replace_literal(connection, table_name: str, column_name: str, search: str, replace: str,
                    exclude: Sequence[Any] = ()) -> int:
    """Substring replace across all rows containing the search text, except rows holding an
    excluded value. Returns rows changed."""
    table_sql = quote_identifier(connection, table_name)
    column_sql = quote_identifier(connection, column_name)
    where_clause, params = contains_clause(connection, column_sql, search, param="needle")
    params = dict(params, search=search, replace_with=replace)

    statement = (
        f"UPDATE {table_sql} SET {column_sql} = REPLACE({column_sql}, :search, :replace_with) "
        f"WHERE {where_clause}"
    )
    if not exclude:
        return _execute_write(connection, statement, params)

    excluded = list(dict.fromkeys(exclude))
    statement = text(f"{statement} AND {not_in_clause(connection, column_sql)}").bindparams(
        bindparam("excluded", expanding=True)
    )
    return _execute_write(connection, statement, dict(params, excluded=excluded))


def _process_column(connection, job: ReplacementJob, table_name: str, column: ColumnDescriptor,
                    run_log: RunLog, stats: RunStats) -> bool:
    """Apply the job to one column. Returns True if the column had matches."""
    field_name = f"`{table_name}`.`{column.name}`"
    type_label = column.type_name.upper()

    try:
        row_count = count_matches(connection, table_name, column.name, job.search)
    except SQLAlchemyError as e:
        run_log.error(f"Error in {field_name}: {describe_db_error(e)}")
        stats.failed += 1
        return False

    if row_count == 0:
        return False

    decision = decide(job.replace, column.max_length, job.length_policy)
    if decision.action == SKIP:
        run_log.warning(
            f"Skipped {field_name} - new text ({decision.original_length} chars) too long "
            f"for {type_label} field (max: {column.max_length} chars)"
        )
        stats.skipped += 1
        return True

    if decision.action == TRUNCATE:
        run_log.warning(
            f"Truncated {field_name} - new text ({decision.original_length} chars) truncated "
            f"to {column.max_length} chars for {type_label} field"
        )
        stats.truncated += 1

    if job.dry_run:
        run_log.info(f"[DRY RUN] Would update {field_name} (~{row_count} rows affected)")
        stats.success += 1
        return True

    try:
        serialized_values: List[Any] = []
        if job.handle_serialized:
            affected, serialized_values = replace_serialized_rows(
                connection, table_name, column.name, job.search, job.replace
            )
            if affected > 0:
                run_log.success(f"Updated {field_name} (serialized data, {affected} rows affected)")
                stats.success += 1
                stats.total_rows += affected

        # Plain values, and everything when serialized handling is off
        affected = replace_literal(
            connection, table_name, column.name, job.search, decision.text, exclude=serialized_values
        )
        if affected > 0:
            truncated_note = " (truncated)" if decision.action == TRUNCATE else ""
            run_log.success(f"Updated {field_name} ({affected} rows affected){truncated_note}")
            stats.success += 1
            stats.total_rows += affected
    except LengthConstraintError as e:
        run_log.error(f"Failed {field_name} - replacement text too long for {type_label} field. Original error: {e}")
        stats.failed += 1
    except WriteError as e:
        run_log.error(f"Error in {field_name}: {e}")
        stats.failed += 1
    except SQLAlchemyError as e:
        run_log.error(f"Error in {field_name}: {describe_db_error(e)}")
        stats.failed += 1

    return True


def _notify(on_progress: Optional[ProgressCallback], stats: RunStats, total: int, current: str):
    if on_progress is None:
        return
    on_progress(ProgressUpdate(
        processed=stats.tables_processed,
        total=total,
        with_matches=stats.tables_with_matches,
        no_matches=stats.tables_no_matches,
        errors=stats.tables_errors,
        current=current,
    ))


def resolve_tables(connection, job: ReplacementJob) -> List[str]:
    if job.all_tables:
        return list_tables(connection)
    return list(job.tables)


def replace_text(connection, job: ReplacementJob, run_log: Optional[RunLog] = None,
                 on_progress: Optional[ProgressCallback] = None,
                 tables: Optional[Sequence[str]] = None) -> ReplacementResult:
    """
    Run a replacement job over an open connection.

    Tables and their text columns are visited in order. Errors are isolated
    to the table or field they occur in and recorded in the log and stats;
    nothing is written in dry-run mode.
    """
    run_log = run_log if run_log is not None else RunLog(REPLACE_LOG_TITLE)
    stats = RunStats()
    tables = list(tables) if tables is not None else resolve_tables(connection, job)
    total_tables = len(tables)

    for table_name in tables:
        _notify(on_progress, stats, total_tables, f"Processing table: {table_name}")

        try:
            columns = get_text_columns(connection, table_name)
        except SchemaError as e:
            run_log.error(f"Error accessing table `{table_name}`: {e}")
            stats.failed += 1
            stats.tables_errors += 1
            stats.tables_processed += 1
            _notify(on_progress, stats, total_tables, f"Completed: {table_name}")
            continue

        table_has_matches = False
        for column in columns:
            if _process_column(connection, job, table_name, column, run_log, stats):
                table_has_matches = True

        # Update table statistics AFTER processing
        stats.tables_processed += 1
        if table_has_matches:
            stats.tables_with_matches += 1
        else:
            stats.tables_no_matches += 1
            if columns:
                run_log.info(f"No matching text found in `{table_name}`")
                stats.skipped += 1
            else:
                run_log.info(f"No text columns found in `{table_name}`")

        _notify(on_progress, stats, total_tables, f"Completed: {table_name}")

    _notify(on_progress, stats, total_tables, "All tables processed")
    return ReplacementResult(run_log, stats, job.dry_run)


def run_replacement(engine: Engine, job: ReplacementJob, console: Optional[Console] = None,
                    on_progress: Optional[ProgressCallback] = None,
                    run_log: Optional[RunLog] = None) -> ReplacementResult:
    """
    Open a connection, run the job, and release the connection.

    Raises DatabaseConnectionError (after logging it) when the database
    cannot be reached; no table is processed in that case.
    """
    run_log = run_log if run_log is not None else RunLog(REPLACE_LOG_TITLE, console=console)
    run_log.info(f"Starting text replacement from '{job.search}' to '{job.replace}'")
    if job.dry_run:
        run_log.info("DRY RUN MODE - No changes will be made")
    if job.handle_serialized:
        run_log.info("Serialized data handling enabled")
    run_log.info(f"Length policy: {job.length_policy}")

    try:
        with connect_autocommit(engine) as connection:
            run_log.info(f"Connected to database: {engine.url.database}")
            tables = resolve_tables(connection, job)
            run_log.info(f"Processing {len(tables)} table(s)")
            return replace_text(connection, job, run_log, on_progress, tables)
    except DatabaseConnectionError as e:
        run_log.error(str(e))
        raise
