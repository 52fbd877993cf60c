"""Exception types shared by the maintenance tools."""


class MaintenanceError(Exception):
    """Base class for all toolkit errors."""


class ConfigError(MaintenanceError):
    """Database configuration is missing or invalid."""


class DatabaseConnectionError(MaintenanceError):
    """The database could not be reached. Fatal to a whole run."""


class SchemaError(MaintenanceError):
    """A table could not be inspected. Fatal to that table only."""

    def __init__(self, table: str, message: str):
        super().__init__(f"Cannot get columns for table `{table}`: {message}")
        self.table = table


class SerializedParseError(ValueError, MaintenanceError):
    """Malformed PHP serialized data."""

    def __init__(self, message: str, position: int = 0):
        super().__init__(f"{message} (at byte {position})")
        self.position = position


class WriteError(MaintenanceError):
    """The database rejected an update."""


class LengthConstraintError(WriteError):
    """The database rejected an update because the value is too long for the column."""


class PrefixError(MaintenanceError):
    """Invalid table prefix change request."""
