"""
Table prefix changer.

Renames every table carrying the old prefix and, for WordPress databases,
the prefixed keys WordPress stores in its own tables (user roles in
options, capabilities in usermeta, ...), then rewrites $table_prefix in
wp-config.php.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple

from rich.console import Console
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from wp_maintenance.config import update_wp_config_prefix
from wp_maintenance.db_utils import connect_autocommit, describe_db_error
from wp_maintenance.errors import DatabaseConnectionError, PrefixError
from wp_maintenance.run_log import RunLog
from wp_maintenance.table_utils import MYSQL_DIALECTS, list_tables, quote_identifier

PREFIX_LOG_TITLE = "Database Prefix Change Tool Log"
PREFIX_LOG_PREFIX = "prefix_change_log"

CATEGORIES = ("tables", "options", "usermeta", "postmeta", "config")

_PREFIX_FORMAT = re.compile(r'^[a-z0-9_]+$', re.IGNORECASE)

ProgressCallback = Callable[[int, str], None]


@dataclass
class CategoryCounts:
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class PrefixChangeResult:
    log: RunLog
    old_prefix: str
    new_prefix: str
    counts: Dict[str, CategoryCounts] = field(default_factory=lambda: {name: CategoryCounts() for name in CATEGORIES})
    renamed_tables: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> Dict[str, str]:
        return {
            name: f"{c.success}/{c.total} succeeded, {c.failed} failed, {c.skipped} skipped"
            for name, c in self.counts.items()
        }


def normalize_prefix(prefix: str) -> str:
    """Ensure the prefix ends with exactly one underscore."""
    prefix = (prefix or "").strip()
    if not prefix.strip('_'):
        raise PrefixError("Prefix cannot be empty.")
    return prefix.rstrip('_') + '_'


def validate_prefixes(old_prefix: str, new_prefix: str) -> Tuple[str, str]:
    old_prefix = normalize_prefix(old_prefix)
    new_prefix = normalize_prefix(new_prefix)

    if not _PREFIX_FORMAT.match(old_prefix) or not _PREFIX_FORMAT.match(new_prefix):
        raise PrefixError("Invalid prefix format. Only letters, numbers and underscores allowed.")
    if old_prefix == new_prefix:
        raise PrefixError("Old and new prefixes cannot be the same.")
    return old_prefix, new_prefix


def detect_db_prefix(table_names: Iterable[str], is_wordpress: bool = True) -> Optional[str]:
    """
    Guess the table prefix from a list of table names.

    WordPress databases are recognised by their options table; otherwise every
    table must share the same text up to its first underscore.
    """
    table_names = list(table_names)

    if is_wordpress:
        options_tables = sorted((name for name in table_names if name.endswith('options') and '_' in name), key=len)
        if options_tables:
            name = options_tables[0]
            return name[:name.rindex('_') + 1]

    prefix = None
    for name in table_names:
        if '_' not in name:
            return None
        table_prefix = name[:name.index('_') + 1]
        if prefix is None:
            prefix = table_prefix
        elif prefix != table_prefix:
            return None
    return prefix


def rename_table(connection, old_name: str, new_name: str):
    old_sql = quote_identifier(connection, old_name)
    new_sql = quote_identifier(connection, new_name)
    if connection.dialect.name in MYSQL_DIALECTS:
        connection.execute(text(f"RENAME TABLE {old_sql} TO {new_sql}"))
    else:
        connection.execute(text(f"ALTER TABLE {old_sql} RENAME TO {new_sql}"))


def _like_prefix(prefix: str) -> str:
    return prefix.replace('!', '!!').replace('%', '!%').replace('_', '!_') + '%'


def _rename_prefixed_keys(connection, table_name: str, key_column: str, id_column: str, label: str,
                          old_prefix: str, new_prefix: str, counts: CategoryCounts, run_log: RunLog):
    table_sql = quote_identifier(connection, table_name)
    key_sql = quote_identifier(connection, key_column)
    id_sql = quote_identifier(connection, id_column)

    try:
        rows = connection.execute(
            text(f"SELECT {id_sql}, {key_sql} FROM {table_sql} WHERE {key_sql} LIKE :pattern ESCAPE '!'"),
            {"pattern": _like_prefix(old_prefix)},
        ).all()
    except SQLAlchemyError as e:
        run_log.error(f"Cannot read {label} from `{table_name}`: {describe_db_error(e)}")
        counts.failed += 1
        return

    # LIKE may ignore case
    rows = [(row_id, key) for row_id, key in rows if key and key.startswith(old_prefix)]
    if not rows:
        run_log.info(f"No prefixed {label} found in `{table_name}`")
        counts.skipped += 1
        return

    update = text(f"UPDATE {table_sql} SET {key_sql} = :new_key WHERE {id_sql} = :row_id")
    for row_id, key in rows:
        new_key = new_prefix + key[len(old_prefix):]
        counts.total += 1
        try:
            connection.execute(update, {"new_key": new_key, "row_id": row_id})
        except SQLAlchemyError as e:
            run_log.error(f"Failed to update {label}: {key} - {describe_db_error(e)}")
            counts.failed += 1
        else:
            run_log.success(f"Updated {label}: {key} → {new_key}")
            counts.success += 1


def change_prefix(connection, old_prefix: str, new_prefix: str, is_wordpress: bool = True,
                  wp_config_path=None, run_log: Optional[RunLog] = None,
                  on_progress: Optional[ProgressCallback] = None) -> PrefixChangeResult:
    """Change the table prefix over an open connection."""
    old_prefix, new_prefix = validate_prefixes(old_prefix, new_prefix)
    run_log = run_log if run_log is not None else RunLog(PREFIX_LOG_TITLE)
    result = PrefixChangeResult(run_log, old_prefix, new_prefix)

    run_log.info(f"Starting prefix change from '{old_prefix}' to '{new_prefix}'")
    run_log.info(f"Connection mode: {'WordPress' if is_wordpress else 'Custom Database'}")

    tables = [name for name in list_tables(connection) if name.startswith(old_prefix)]
    if not tables:
        raise PrefixError(f"No tables found with prefix '{old_prefix}'")

    table_counts = result.counts["tables"]
    for index, old_name in enumerate(tables, 1):
        new_name = new_prefix + old_name[len(old_prefix):]
        if on_progress is not None:
            on_progress(round(index / len(tables) * 100), f"Renaming table: {old_name}")

        table_counts.total += 1
        try:
            rename_table(connection, old_name, new_name)
        except SQLAlchemyError as e:
            run_log.error(f"Failed to rename table: {old_name} - {describe_db_error(e)}")
            table_counts.failed += 1
        else:
            run_log.success(f"Renamed table: {old_name} → {new_name}")
            table_counts.success += 1
            result.renamed_tables[old_name] = new_name

    if not is_wordpress:
        return result

    # (category, table suffix, key column, row id column, label)
    key_tables = (
        ("options", "options", "option_name", "option_name", "option"),
        ("usermeta", "usermeta", "meta_key", "umeta_id", "usermeta"),
        ("postmeta", "postmeta", "meta_key", "meta_id", "postmeta"),
    )
    for category, suffix, key_column, id_column, label in key_tables:
        if on_progress is not None:
            on_progress(90, f"Updating {category}")
        _rename_prefixed_keys(connection, new_prefix + suffix, key_column, id_column, label,
                              old_prefix, new_prefix, result.counts[category], run_log)

    if on_progress is not None:
        on_progress(95, "Updating wp-config.php")
    _update_config(wp_config_path, old_prefix, new_prefix, result.counts["config"], run_log)

    return result


def _update_config(wp_config_path, old_prefix: str, new_prefix: str, counts: CategoryCounts, run_log: RunLog):
    counts.total += 1
    manual_hint = f"Set $table_prefix = '{new_prefix}'; in wp-config.php manually"

    if wp_config_path is None:
        run_log.warning(f"wp-config.php not found. {manual_hint}")
        counts.skipped += 1
        return

    try:
        updated = update_wp_config_prefix(wp_config_path, old_prefix, new_prefix)
    except OSError as e:
        run_log.error(f"wp-config.php is not writable ({e}). {manual_hint}")
        counts.failed += 1
        return

    if updated:
        run_log.success("Successfully updated wp-config.php")
        counts.success += 1
    else:
        run_log.error(f"Failed to update wp-config.php: no $table_prefix = '{old_prefix}' assignment found. {manual_hint}")
        counts.failed += 1


def run_prefix_change(engine: Engine, old_prefix: str, new_prefix: str, is_wordpress: bool = True,
                      wp_config_path=None, console: Optional[Console] = None,
                      on_progress: Optional[ProgressCallback] = None) -> PrefixChangeResult:
    """Open a connection, change the prefix, and release the connection."""
    run_log = RunLog(PREFIX_LOG_TITLE, console=console)
    try:
        with connect_autocommit(engine) as connection:
            run_log.info(f"Connected to database: {engine.url.database}")
            return change_prefix(connection, old_prefix, new_prefix, is_wordpress,
                                 wp_config_path, run_log, on_progress)
    except DatabaseConnectionError as e:
        run_log.error(str(e))
        raise
