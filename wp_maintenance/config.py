import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv  # Import dotenv

from wp_maintenance.errors import ConfigError

# Load environment variables from the .env file with override enabled
load_dotenv(override=True)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3306
WP_CONFIG_FILENAME = "wp-config.php"

MODE_ENV = "Custom Database (.env)"
MODE_WORDPRESS = "WordPress (wp-config.php)"


@dataclass
class DatabaseSettings:
    """Connection parameters for one database."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    user: str = ""
    password: str = ""
    name: str = ""
    table_prefix: str = ""
    mode: str = MODE_ENV
    wp_config_path: Optional[Path] = None


@dataclass
class WPConfig:
    """Values extracted from a wp-config.php file."""
    path: Path
    db_name: str
    db_user: str
    db_password: str = ""
    db_host: str = DEFAULT_HOST
    table_prefix: Optional[str] = None


def get_logs_dir() -> Path:
    return Path(os.getenv('LOGS_DIR', 'logs'))


def parse_db_host(db_host: Optional[str]) -> Tuple[str, int]:
    """Split a 'host:port' string, falling back to localhost:3306."""
    if not db_host or not db_host.strip():
        return DEFAULT_HOST, DEFAULT_PORT

    if ':' in db_host:
        host, port = db_host.split(':', 1)
        port = port.strip()
        return host.strip(), int(port) if port.isdigit() else DEFAULT_PORT

    return db_host.strip(), DEFAULT_PORT


def validate_db_config():
    """Validate that all required database configuration is present."""
    required_vars = ['DB_HOST', 'DB_USER', 'DB_NAME']
    missing_vars = []

    for var in required_vars:
        value = os.getenv(var)
        if not value or value.strip() == '':
            missing_vars.append(var)

    if missing_vars:
        return False, f"Missing required environment variables: {', '.join(missing_vars)}"

    return True, None


def settings_from_env() -> DatabaseSettings:
    """Build settings from DB_* environment variables."""
    config_valid, config_error = validate_db_config()
    if not config_valid:
        raise ConfigError(config_error)

    host, port = parse_db_host(os.getenv('DB_HOST'))
    if os.getenv('DB_PORT', '').strip():
        try:
            port = int(os.getenv('DB_PORT'))
        except ValueError:
            raise ConfigError(f"DB_PORT must be a number, got '{os.getenv('DB_PORT')}'")

    wp_config_path = os.getenv('WP_CONFIG_PATH')
    return DatabaseSettings(
        host=host,
        port=port,
        user=os.getenv('DB_USER', ''),
        password=os.getenv('DB_PASSWORD', ''),
        name=os.getenv('DB_NAME', ''),
        table_prefix=os.getenv('TABLE_PREFIX', ''),
        mode=MODE_ENV,
        wp_config_path=Path(wp_config_path) if wp_config_path else None,
    )


# wp-config.php parsing. Commented-out lines (// or #) are ignored.
_DEFINE_PATTERN = r"^[^#/\n]*define\s*\(\s*['\"]{name}['\"]\s*,\s*['\"](.*?)['\"]\s*\)\s*;"
_TABLE_PREFIX_PATTERN = re.compile(r"^[^#/\n]*\$table_prefix\s*=\s*['\"](.*?)['\"]\s*;", re.MULTILINE | re.IGNORECASE)


def _extract_define(content: str, name: str) -> Optional[str]:
    pattern = re.compile(_DEFINE_PATTERN.format(name=name), re.MULTILINE | re.IGNORECASE)
    match = pattern.search(content)
    return match.group(1) if match else None


def find_wp_config(path=None) -> Optional[Path]:
    """Locate wp-config.php: explicit path, WP_CONFIG_PATH, current directory, then its parent."""
    candidates = []
    if path:
        path = Path(path)
        candidates.append(path / WP_CONFIG_FILENAME if path.is_dir() else path)
    else:
        if os.getenv('WP_CONFIG_PATH'):
            candidates.append(Path(os.getenv('WP_CONFIG_PATH')))
        cwd = Path.cwd()
        candidates.append(cwd / WP_CONFIG_FILENAME)
        candidates.append(cwd.parent / WP_CONFIG_FILENAME)

    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def read_wp_config(path=None) -> Optional[WPConfig]:
    """
    Extract database credentials and the table prefix from wp-config.php
    without executing it.

    Returns None when the file cannot be found or does not define both
    DB_NAME and DB_USER.
    """
    config_file = find_wp_config(path)
    if config_file is None:
        return None

    content = config_file.read_text(encoding='utf-8', errors='replace')

    db_name = _extract_define(content, 'DB_NAME')
    db_user = _extract_define(content, 'DB_USER')
    if not db_name or not db_user:
        return None

    prefix_match = _TABLE_PREFIX_PATTERN.search(content)
    return WPConfig(
        path=config_file,
        db_name=db_name,
        db_user=db_user,
        db_password=_extract_define(content, 'DB_PASSWORD') or '',
        db_host=_extract_define(content, 'DB_HOST') or DEFAULT_HOST,
        table_prefix=prefix_match.group(1) if prefix_match else None,
    )


def settings_from_wp_config(wp_config: WPConfig) -> DatabaseSettings:
    host, port = parse_db_host(wp_config.db_host)
    return DatabaseSettings(
        host=host,
        port=port,
        user=wp_config.db_user,
        password=wp_config.db_password,
        name=wp_config.db_name,
        table_prefix=wp_config.table_prefix or '',
        mode=MODE_WORDPRESS,
        wp_config_path=wp_config.path,
    )


def load_db_settings(use_wp_config: Optional[bool] = None) -> DatabaseSettings:
    """
    Resolve connection settings.

    With use_wp_config=None the .env variables win and wp-config.php is the
    fallback; True forces wp-config.php, False forces the environment.
    """
    if use_wp_config is not True:
        config_valid, config_error = validate_db_config()
        if config_valid:
            settings = settings_from_env()
            if settings.wp_config_path is None:
                settings.wp_config_path = find_wp_config()
            return settings
        if use_wp_config is False:
            raise ConfigError(config_error)

    wp_config = read_wp_config()
    if wp_config is None:
        raise ConfigError(
            "No database configuration found. Set DB_HOST, DB_USER and DB_NAME in .env "
            f"or run the tool next to {WP_CONFIG_FILENAME}."
        )
    return settings_from_wp_config(wp_config)


def update_wp_config_prefix(path, old_prefix: str, new_prefix: str) -> bool:
    """Rewrite the $table_prefix assignment. Returns False if nothing was changed."""
    config_file = Path(path)
    if not config_file.is_file():
        return False

    content = config_file.read_text(encoding='utf-8')
    pattern = re.compile(r"^(\s*)\$table_prefix\s*=\s*['\"]" + re.escape(old_prefix) + r"['\"]\s*;", re.MULTILINE)
    new_content, count = pattern.subn(lambda m: f"{m.group(1)}$table_prefix = '{new_prefix}';", content)

    if count == 0:
        return False

    config_file.write_text(new_content, encoding='utf-8')
    return True
