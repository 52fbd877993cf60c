from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from rich.console import Console
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.sql import text  # Import text for raw SQL queries

from wp_maintenance.config import DatabaseSettings, load_db_settings
from wp_maintenance.errors import ConfigError, DatabaseConnectionError

console = Console()

# Global variables for lazy database connection
_engine = None
_settings = None
_connection_status = None
_connection_error = None


@dataclass
class ConnectionReport:
    """Result of a connection test."""
    success: bool
    message: str
    database: str = ""
    host: str = ""
    port: Optional[int] = None
    tables: int = 0
    version: str = "Unknown"
    mode: str = ""

    def to_dict(self):
        if not self.success:
            return {"success": False, "error": self.message}
        return {
            "success": True,
            "message": self.message,
            "database": self.database,
            "host": self.host,
            "port": self.port,
            "tables": self.tables,
            "version": self.version,
            "mode": self.mode,
        }


def build_db_url(settings: DatabaseSettings) -> URL:
    return URL.create(
        "mysql+pymysql",
        username=settings.user,
        password=settings.password,
        host=settings.host,
        port=settings.port,
        database=settings.name,
        query={"charset": "utf8mb4"},
    )


def create_db_engine(settings_or_url) -> Engine:
    """Create an engine from DatabaseSettings or any SQLAlchemy URL."""
    if isinstance(settings_or_url, DatabaseSettings):
        return create_engine(build_db_url(settings_or_url), pool_pre_ping=True)
    return create_engine(settings_or_url)


def get_db_settings() -> DatabaseSettings:
    """Get the configured settings, resolving them on first use."""
    global _settings, _connection_status, _connection_error

    if _settings is None:
        try:
            _settings = load_db_settings()
        except ConfigError as e:
            _connection_status = "config_error"
            _connection_error = str(e)
            raise
    return _settings


def get_db_engine():
    """Get database engine with lazy initialization and error handling."""
    global _engine, _connection_status, _connection_error

    if _engine is not None:
        return _engine

    settings = get_db_settings()
    try:
        _engine = create_db_engine(settings)
        return _engine
    except Exception as e:
        _connection_status = "engine_error"
        _connection_error = str(e)
        raise


def reset_db_engine():
    """Forget the cached engine and settings, e.g. after the configuration changed."""
    global _engine, _settings
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _settings = None


@contextmanager
def connect_autocommit(engine: Engine):
    """
    Open a connection whose statements are committed immediately.

    Failures while connecting become DatabaseConnectionError; the connection
    is always closed when the block exits.
    """
    try:
        connection = engine.connect().execution_options(isolation_level="AUTOCOMMIT")
    except SQLAlchemyError as e:
        raise DatabaseConnectionError(f"Database connection failed: {describe_db_error(e)}") from e

    try:
        yield connection
    finally:
        connection.close()


def describe_db_error(error: Exception) -> str:
    """Prefer the driver's message over SQLAlchemy's wrapper text."""
    if isinstance(error, DBAPIError) and error.orig is not None:
        return str(error.orig)
    return str(error)


def db_error_code(error: Exception) -> Optional[int]:
    orig = getattr(error, 'orig', None)
    args = getattr(orig, 'args', ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _friendly_connection_message(error: Exception, settings: DatabaseSettings) -> str:
    code = db_error_code(error)
    if code == 2003 or code == 2002:
        return (f"Connection failed: Cannot connect to MySQL server at '{settings.host}'. "
                "Make sure MySQL server is running and accessible.")
    if code == 1045:
        return f"Connection failed: Access denied for user '{settings.user}'. Check your username and password."
    if code == 1049:
        return f"Connection failed: Unknown database '{settings.name}'. Make sure the database exists."
    if code is not None:
        return f"Connection failed: {describe_db_error(error)} (Error Code: {code})"
    return f"Connection failed: {describe_db_error(error)}"


def inspect_connection(engine: Engine, settings: Optional[DatabaseSettings] = None) -> ConnectionReport:
    """Connect once and report table count and server version."""
    with connect_autocommit(engine) as connection:
        connection.execute(text("SELECT 1"))
        tables = inspect(connection).get_table_names()
        version_info = connection.dialect.server_version_info
        version = ".".join(str(part) for part in version_info) if version_info else "Unknown"

    url = engine.url
    return ConnectionReport(
        success=True,
        message="Database connection successful!",
        database=settings.name if settings else (url.database or ""),
        host=settings.host if settings else (url.host or ""),
        port=settings.port if settings else url.port,
        tables=len(tables),
        version=version,
        mode=settings.mode if settings else "",
    )


def test_db_connection(settings: Optional[DatabaseSettings] = None, engine: Optional[Engine] = None) -> ConnectionReport:
    """Test database connection and return status."""
    global _connection_status, _connection_error

    owns_engine = engine is None
    try:
        if settings is None and engine is None:
            settings = get_db_settings()
        if engine is None:
            engine = create_db_engine(settings)

        report = inspect_connection(engine, settings)
        _connection_status = "connected"
        _connection_error = None
        return report
    except ConfigError as e:
        _connection_status = "config_error"
        _connection_error = str(e)
        return ConnectionReport(success=False, message=str(e))
    except DatabaseConnectionError as e:
        cause = e.__cause__ or e
        message = _friendly_connection_message(cause, settings) if settings else str(e)
        _connection_status = "failed"
        _connection_error = message
        return ConnectionReport(success=False, message=message)
    except SQLAlchemyError as e:
        _connection_status = "failed"
        _connection_error = describe_db_error(e)
        return ConnectionReport(success=False, message=f"Connection failed: {describe_db_error(e)}")
    finally:
        if owns_engine and engine is not None:
            engine.dispose()


def get_connection_status():
    """Get current database connection status without attempting connection."""
    return _connection_status, _connection_error


def print_connection_report(report: ConnectionReport):
    if report.success:
        console.print("✅ Database connection successful!", style="bold green")
        console.print(f"   Mode: {report.mode}", style="dim")
        console.print(f"   Database: {report.database} @ {report.host}:{report.port}", style="dim")
        console.print(f"   Tables: {report.tables}", style="dim")
        console.print(f"   Server version: {report.version}", style="dim")
    else:
        console.print(f"❌ Database connection failed: {report.message}", style="bold red")


def check_db_connection_with_friendly_error():
    """Check database connection and display user-friendly error messages."""
    try:
        settings = get_db_settings()
    except ConfigError as e:
        console.print("❌ Database Configuration Error", style="bold red")
        console.print(f"   {e}", style="red")
        console.print("   Please check your .env file or wp-config.php and ensure all database credentials are set.", style="yellow")
        return False

    report = test_db_connection(settings)
    if report.success:
        print_connection_report(report)
        return True

    console.print("❌ Database Connection Error", style="bold red")
    error = report.message

    # Provide more specific error messages
    if "nodename nor servname provided" in error or "Name or service not known" in error:
        console.print("   Cannot resolve database hostname. Please check:", style="red")
        console.print(f"   - DB_HOST is correct: {settings.host}", style="yellow")
        console.print("   - Network connectivity to the database server", style="yellow")
        console.print("   - Hosting provider allows remote connections from your IP", style="yellow")
    elif "Access denied" in error:
        console.print("   Database authentication failed. Please check:", style="red")
        console.print(f"   - DB_USER: {settings.user}", style="yellow")
        console.print("   - DB_PASSWORD is correct", style="yellow")
    elif "Unknown database" in error:
        console.print("   Database does not exist. Please check:", style="red")
        console.print(f"   - DB_NAME: {settings.name}", style="yellow")
    elif "Cannot connect" in error or "Connection refused" in error:
        console.print("   Cannot connect to database server. Please check:", style="red")
        console.print(f"   - DB_HOST: {settings.host}", style="yellow")
        console.print(f"   - DB_PORT: {settings.port}", style="yellow")
        console.print("   - Database server is running", style="yellow")
    else:
        console.print(f"   {error}", style="red")

    console.print("\n   💡 Tip: Use 'Test DB Connection' from the main menu to retry", style="cyan")
    return False
