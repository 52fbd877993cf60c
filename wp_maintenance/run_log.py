import datetime
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape

from wp_maintenance.config import get_logs_dir

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"

LEVELS = (INFO, SUCCESS, WARNING, ERROR)

LEVEL_STYLES = {
    INFO: "dim",
    SUCCESS: "green",
    WARNING: "yellow",
    ERROR: "red",
}

LEVEL_ICONS = {
    INFO: "ℹ️ ",
    SUCCESS: "✅",
    WARNING: "⚠️ ",
    ERROR: "❌",
}


@dataclass
class LogEntry:
    level: str
    message: str
    timestamp: datetime.datetime = field(default_factory=datetime.datetime.now)

    def format(self) -> str:
        return f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] [{self.level}] {self.message}"


class RunLog:
    """Timestamped, leveled log of one run, optionally echoed to a rich console"""

    def __init__(self, title: str, console: Optional[Console] = None):
        self.title = title
        self.console = console
        self.entries: List[LogEntry] = []
        self.started_at = datetime.datetime.now()

    def add(self, message: str, level: str = INFO) -> LogEntry:
        if level not in LEVELS:
            raise ValueError(f"Unknown log level '{level}'")

        entry = LogEntry(level, message)
        self.entries.append(entry)

        if self.console is not None:
            self.console.print(f"  {LEVEL_ICONS[level]} {escape(message)}", style=LEVEL_STYLES[level])
        return entry

    def info(self, message: str) -> LogEntry:
        return self.add(message, INFO)

    def success(self, message: str) -> LogEntry:
        return self.add(message, SUCCESS)

    def warning(self, message: str) -> LogEntry:
        return self.add(message, WARNING)

    def error(self, message: str) -> LogEntry:
        return self.add(message, ERROR)

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [entry.message for entry in self.entries if level is None or entry.level == level]

    def count(self, level: str) -> int:
        return sum(1 for entry in self.entries if entry.level == level)

    def render(self, summary: Optional[Dict[str, Any]] = None) -> str:
        """Render the log as the text of a downloadable log file"""
        lines = [
            self.title,
            "=" * len(self.title),
            f"Date: {self.started_at:%Y-%m-%d %H:%M:%S}",
            f"Python Version: {platform.python_version()}",
            "",
        ]
        lines.extend(entry.format() for entry in self.entries)

        if summary:
            lines.append("")
            lines.append("Summary")
            lines.append("-------")
            for key, value in summary.items():
                lines.append(f"{key}: {value}")

        return "\n".join(lines) + "\n"

    def save(self, prefix: str, directory=None, summary: Optional[Dict[str, Any]] = None) -> Path:
        """Write the log to <directory>/<prefix>_<timestamp>.txt and return the path"""
        directory = Path(directory) if directory is not None else get_logs_dir()
        directory.mkdir(parents=True, exist_ok=True)

        log_file = directory / f"{prefix}_{self.started_at:%Y-%m-%d_%H%M%S}.txt"
        log_file.write_text(self.render(summary), encoding="utf-8")
        return log_file
