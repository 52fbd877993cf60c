import inquirer
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from wp_maintenance.config import MODE_WORDPRESS
from wp_maintenance.db_utils import (
    check_db_connection_with_friendly_error,
    connect_autocommit,
    describe_db_error,
    get_db_engine,
    get_db_settings,
    reset_db_engine,
)
from wp_maintenance.errors import DatabaseConnectionError, PrefixError
from wp_maintenance.prefix_change import (
    PREFIX_LOG_PREFIX,
    PrefixChangeResult,
    detect_db_prefix,
    normalize_prefix,
    run_prefix_change,
)
from wp_maintenance.table_utils import list_tables

console = Console()


def change_prefix_menu():
    """Interactive table prefix change"""
    console.print("\n🏷️  Table Prefix Changer", style="bold blue")
    console.print("Renames prefixed tables and updates prefixed option and meta keys.", style="dim")

    if not check_db_connection_with_friendly_error():
        return

    settings = get_db_settings()
    try:
        with connect_autocommit(get_db_engine()) as connection:
            tables = list_tables(connection)
    except (DatabaseConnectionError, SQLAlchemyError) as e:
        console.print(f"❌ Error listing tables: {describe_db_error(e)}", style="bold red")
        return

    has_options_table = any(name.endswith("options") for name in tables)
    answers = inquirer.prompt([
        inquirer.Confirm(
            "is_wordpress",
            message="Is this a WordPress database?",
            default=settings.mode == MODE_WORDPRESS or has_options_table,
        )
    ])
    if not answers:
        return
    is_wordpress = answers["is_wordpress"]

    detected = detect_db_prefix(tables, is_wordpress)
    if settings.table_prefix:
        console.print(f"  Configured prefix: '{settings.table_prefix}'", style="dim")
    console.print(f"  Detected database prefix: '{detected or 'none'}'", style="dim")
    if detected and settings.table_prefix and detected != settings.table_prefix:
        console.print("⚠️  The configured prefix does not match the tables in the database!", style="bold yellow")

    try:
        default_old = detected or settings.table_prefix
        prompt = "Current prefix" + (f" [default: {default_old}]" if default_old else "") + ": "
        old_prefix = console.input(prompt).strip() or default_old
        new_prefix = console.input("New prefix: ").strip()
    except (KeyboardInterrupt, EOFError):
        console.print("\n❌ Operation cancelled by user", style="bold yellow")
        return

    try:
        old_prefix = normalize_prefix(old_prefix)
        new_prefix = normalize_prefix(new_prefix)
    except PrefixError as e:
        console.print(f"❌ {e}", style="bold red")
        return

    affected = [name for name in tables if name.startswith(old_prefix)]
    console.print(f"\n📊 {len(affected)} tables will be renamed from '{old_prefix}' to '{new_prefix}'", style="bold blue")
    if is_wordpress:
        config_path = settings.wp_config_path
        console.print(f"  wp-config.php: {config_path or 'not found (update it manually)'}", style="dim")

    console.print("\n⚠️  WARNING: Back up your database before changing the prefix!", style="bold red")
    answers = inquirer.prompt([
        inquirer.Confirm("confirm", message="Are you absolutely sure you want to proceed?", default=False)
    ])
    if not answers or not answers["confirm"]:
        console.print("❌ Operation cancelled by user.", style="yellow")
        return

    try:
        result = run_prefix_change(
            get_db_engine(),
            old_prefix,
            new_prefix,
            is_wordpress=is_wordpress,
            wp_config_path=settings.wp_config_path if is_wordpress else None,
            console=console,
        )
    except (PrefixError, DatabaseConnectionError) as e:
        console.print(f"❌ {e}", style="bold red")
        return

    show_prefix_results(result)
    # Table names and possibly wp-config.php changed
    reset_db_engine()


def show_prefix_results(result: PrefixChangeResult):
    summary_table = Table(title="Prefix Change Summary", expand=True, show_lines=True)
    summary_table.add_column("Category", style="cyan")
    summary_table.add_column("Total", justify="center")
    summary_table.add_column("Success", style="green", justify="center")
    summary_table.add_column("Failed", style="red", justify="center")
    summary_table.add_column("Skipped", style="yellow", justify="center")

    for name, counts in result.counts.items():
        summary_table.add_row(name, str(counts.total), str(counts.success), str(counts.failed), str(counts.skipped))

    console.print(summary_table)

    try:
        log_file = result.log.save(PREFIX_LOG_PREFIX, summary=result.summary())
        console.print(f"📁 Detailed log saved to: {log_file}", style="green")
    except OSError as e:
        console.print(f"⚠️  Could not save log file: {e}", style="yellow")

    failed = sum(counts.failed for counts in result.counts.values())
    if failed:
        console.print(f"\n⚠️  Prefix change completed with {failed} error(s). See the log for details.", style="bold yellow")
    else:
        console.print(f"\n✅ Prefix changed from '{result.old_prefix}' to '{result.new_prefix}'.", style="bold green")
