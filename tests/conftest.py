"""
Pytest configuration and shared fixtures for WordPress DB Maintenance tests
"""

import pytest
import sys
import os
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.sql import text

# Add the repository root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

@pytest.fixture
def mock_db_engine():
    """Mock database engine for testing"""
    mock_engine = MagicMock()
    mock_connection = MagicMock()
    mock_engine.connect.return_value.execution_options.return_value = mock_connection
    return mock_engine, mock_connection

@pytest.fixture
def sqlite_engine(tmp_path):
    """Throwaway file-backed SQLite database"""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    yield engine
    engine.dispose()

@pytest.fixture
def make_table(sqlite_engine):
    """Create a table and insert rows: make_table('t', 'id integer primary key, v text', [{'v': 'x'}])"""
    def _make(name, columns, rows=()):
        with sqlite_engine.begin() as conn:
            conn.execute(text(f'CREATE TABLE "{name}" ({columns})'))
            for row in rows:
                keys = ", ".join(row)
                values = ", ".join(f":{key}" for key in row)
                conn.execute(text(f'INSERT INTO "{name}" ({keys}) VALUES ({values})'), row)
    return _make

@pytest.fixture
def fetch_column(sqlite_engine):
    """Read one column of a table, ordered by rowid"""
    def _fetch(table, column):
        with sqlite_engine.connect() as conn:
            return list(conn.execute(text(f'SELECT "{column}" FROM "{table}" ORDER BY rowid')).scalars())
    return _fetch

@pytest.fixture
def wp_config_file(tmp_path):
    """Write a wp-config.php into tmp_path and return its path"""
    def _write(table_prefix="wp_", extra=""):
        content = f"""<?php
// ** Database settings ** //
define( 'DB_NAME', 'wordpress' );
define( 'DB_USER', 'wp_user' );
define( 'DB_PASSWORD', 's3cret' );
define( 'DB_HOST', 'db.example.com:3307' );
{extra}
$table_prefix = '{table_prefix}';

require_once ABSPATH . 'wp-settings.php';
"""
        path = tmp_path / "wp-config.php"
        path.write_text(content, encoding="utf-8")
        return path
    return _write

@pytest.fixture
def sample_php_serialized_data():
    """Sample PHP serialized data for testing"""
    return {
        'simple_string': 's:11:"Hello World";',
        'simple_array': 'a:2:{s:4:"name";s:4:"John";s:3:"age";i:30;}',
        'nested_array': 'a:1:{s:7:"widgets";a:1:{i:0;a:2:{s:5:"title";s:6:"Search";s:4:"size";s:6:"medium";}}}',
        'object': 'O:8:"stdClass":2:{s:3:"url";s:18:"http://example.com";s:5:"count";i:3;}',
        'boolean_true': 'b:1;',
        'boolean_false': 'b:0;',
        'integer': 'i:42;',
        'float': 'd:0.5;',
        'null': 'N;'
    }
