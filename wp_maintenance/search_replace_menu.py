from typing import List, Optional, Union

import inquirer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from wp_maintenance.db_utils import (
    check_db_connection_with_friendly_error,
    connect_autocommit,
    describe_db_error,
    get_db_engine,
    get_db_settings,
)
from wp_maintenance.errors import DatabaseConnectionError
from wp_maintenance.length_policy import SKIP
from wp_maintenance.run_log import RunLog
from wp_maintenance.search_replace import (
    ALL_TABLES,
    REPLACE_LOG_PREFIX,
    REPLACE_LOG_TITLE,
    ProgressUpdate,
    ReplacementJob,
    ReplacementResult,
    run_replacement,
)
from wp_maintenance.table_utils import list_tables

console = Console()

ALL_TABLES_CHOICE = "All Tables"

POLICY_CHOICES = [
    ("Skip fields that are too short (safest)", "skip"),
    ("Truncate the replacement text to fit", "truncate"),
    ("Try anyway and report failures", "try"),
]


def search_and_replace_menu():
    """Main search and replace menu function"""
    console.print("\n🔄 Search and Replace Tool", style="bold blue")
    console.print("Replace text across database tables, including inside WordPress serialized data.", style="dim")
    console.print("⚠️  This is a powerful tool - use with caution!", style="bold yellow")

    if not check_db_connection_with_friendly_error():
        return

    search_term = _prompt_text("Enter the text to search for", required=True)
    if search_term is None:
        return

    replace_term = _prompt_text("Enter the replacement text")
    if replace_term is None:
        return

    tables = _select_tables()
    if not tables:
        return

    options = _prompt_options()
    if options is None:
        return

    try:
        job = ReplacementJob(
            search=search_term,
            replace=replace_term,
            tables=tables,
            handle_serialized=options["handle_serialized"],
            dry_run=options["dry_run"],
            length_policy=options["length_policy"],
        )
    except ValueError as e:
        console.print(f"❌ {e}", style="bold red")
        return

    _show_job_summary(job)

    if not job.dry_run:
        if not job.replace:
            console.print("⚠️  Replacement text is empty. This will remove the found text.", style="yellow")
        console.print("\n⚠️  WARNING: This operation will modify your database and cannot be undone!", style="bold red")
        answers = inquirer.prompt([
            inquirer.Confirm("confirm", message="Are you absolutely sure you want to proceed?", default=False)
        ])
        if not answers or not answers["confirm"]:
            console.print("❌ Operation cancelled by user.", style="yellow")
            return

    result = execute_job(job)
    if result is not None:
        show_results(result)


def _prompt_text(label: str, required: bool = False) -> Optional[str]:
    """Prompt for free text. Returns None if cancelled or a required value is empty."""
    try:
        value = console.input(f"{label}: ")
    except (KeyboardInterrupt, EOFError):
        console.print("\n❌ Operation cancelled by user", style="bold yellow")
        return None

    if required and not value.strip():
        console.print("❌ Search term cannot be empty!", style="bold red")
        return None
    return value


def _select_tables() -> Optional[Union[str, List[str]]]:
    """Allow user to select tables for search and replace"""
    try:
        with connect_autocommit(get_db_engine()) as connection:
            all_tables = list_tables(connection)
    except (DatabaseConnectionError, SQLAlchemyError) as e:
        console.print(f"❌ Error listing tables: {describe_db_error(e)}", style="bold red")
        return None

    if not all_tables:
        console.print("❌ No tables found in database!", style="bold red")
        return None

    # Offer the configured prefix's tables first
    table_prefix = get_db_settings().table_prefix
    if table_prefix:
        all_tables = sorted(all_tables, key=lambda name: (not name.startswith(table_prefix), name))

    answers = inquirer.prompt([
        inquirer.Checkbox(
            "tables",
            message="Select tables to process (use SPACE to select, ENTER to confirm)",
            choices=[ALL_TABLES_CHOICE] + all_tables,
        )
    ])
    if not answers:
        return None

    selected = answers["tables"]
    if ALL_TABLES_CHOICE in selected:
        return ALL_TABLES
    if not selected:
        console.print("❌ Please select at least one table.", style="bold red")
        return None

    console.print(f"✅ Selected {len(selected)} tables", style="bold green")
    return selected


def _prompt_options():
    answers = inquirer.prompt([
        inquirer.Confirm("handle_serialized", message="Handle WordPress serialized data?", default=True),
        inquirer.Confirm("dry_run", message="Dry run (preview only, no changes)?", default=False),
        inquirer.List(
            "length_policy",
            message="When the replacement is longer than a VARCHAR/CHAR column allows",
            choices=POLICY_CHOICES,
            default=SKIP,
        ),
    ])
    return answers


def _show_job_summary(job: ReplacementJob):
    console.print(f"\n📊 {'DRY RUN - ' if job.dry_run else ''}Search and Replace Summary:", style="bold blue")
    console.print(f"  Search Term: '{job.search}'", style="dim")
    console.print(f"  Replace With: '{job.replace}'", style="dim")
    tables = "All tables" if job.all_tables else ", ".join(job.tables)
    console.print(f"  Tables: {tables}", style="dim")
    console.print(f"  Serialized Data Handling: {'On' if job.handle_serialized else 'Off'}", style="dim")
    console.print(f"  Length Policy: {job.length_policy}", style="dim")


def execute_job(job: ReplacementJob) -> Optional[ReplacementResult]:
    """Run the job with a live progress bar. Returns None if the database is unreachable."""
    console.print(f"\n{'[DRY RUN] ' if job.dry_run else ''}Processing...", style="bold")
    run_log = RunLog(REPLACE_LOG_TITLE, console=console)

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=None)

        def on_progress(update: ProgressUpdate):
            progress.update(task, completed=update.processed, total=update.total, description=update.current)

        try:
            return run_replacement(get_db_engine(), job, on_progress=on_progress, run_log=run_log)
        except DatabaseConnectionError as e:
            console.print("❌ Connection Error", style="bold red")
            console.print(f"   {e}", style="red")
            console.print("   Please check your database credentials and try again.", style="yellow")
            return None


def show_results(result: ReplacementResult):
    stats = result.stats

    summary_table = Table(title="Operation Statistics", expand=True, show_lines=True)
    summary_table.add_column("Outcome", style="cyan")
    summary_table.add_column("Count", justify="center")

    rows = [
        ("Fields would update" if result.dry_run else "Fields updated", stats.success, "green"),
        ("Fields failed", stats.failed, "red"),
        ("Fields skipped", stats.skipped, "yellow"),
        ("Fields truncated", stats.truncated, "yellow"),
        ("Rows affected", stats.total_rows, "green"),
        ("Tables processed", stats.tables_processed, "cyan"),
        ("Tables with matches", stats.tables_with_matches, "cyan"),
        ("Tables without matches", stats.tables_no_matches, "dim"),
        ("Tables with errors", stats.tables_errors, "red"),
    ]
    for label, value, style in rows:
        summary_table.add_row(label, str(value), style=style if value else "dim")

    console.print(summary_table)

    try:
        log_file = result.log.save(REPLACE_LOG_PREFIX, summary=stats.as_dict())
        console.print(f"📁 Detailed log saved to: {log_file}", style="green")
    except OSError as e:
        console.print(f"⚠️  Could not save log file: {e}", style="yellow")

    if result.dry_run:
        console.print("\n✅ Dry run completed! No changes were made.", style="bold green")
    elif stats.failed:
        console.print(f"\n⚠️  Completed with {stats.failed} failed field(s). See the log for details.", style="bold yellow")
    else:
        console.print(f"\n✅ Search and replace completed! {stats.total_rows} rows changed.", style="bold green")
