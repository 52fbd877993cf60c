"""
Test module for the Search and Replace functionality
This module tests various aspects of the search and replace feature including:
- Serialized data handling
- Regular string replacement
- Length policy handling for VARCHAR/CHAR columns
- Dry runs, progress reporting and error handling
"""

import pytest
from unittest.mock import patch

from wp_maintenance import search_replace
from wp_maintenance.db_utils import connect_autocommit
from wp_maintenance.errors import DatabaseConnectionError, LengthConstraintError, WriteError
from wp_maintenance.php_serialize import PhpArray, PhpString, loads
from wp_maintenance.run_log import RunLog
from wp_maintenance.search_replace import (
    ALL_TABLES,
    ProgressUpdate,
    ReplacementJob,
    RunStats,
    replace_text,
    run_replacement,
)


def run_job(engine, **job_args):
    job = ReplacementJob(**job_args)
    with connect_autocommit(engine) as connection:
        return replace_text(connection, job)


class TestReplacementJob:
    """Test cases for job validation"""

    @pytest.mark.unit
    def test_defaults(self):
        job = ReplacementJob(search="old")
        assert job.replace == ""
        assert job.all_tables
        assert job.handle_serialized
        assert not job.dry_run
        assert job.length_policy == "skip"

    @pytest.mark.unit
    def test_empty_search(self):
        with pytest.raises(ValueError, match="Please provide text to find"):
            ReplacementJob(search="")

    @pytest.mark.unit
    def test_table_selection(self):
        assert ReplacementJob(search="a", tables="wp_posts").tables == ("wp_posts",)
        assert ReplacementJob(search="a", tables=["b", "a", "b"]).tables == ("b", "a")
        assert ReplacementJob(search="a", tables=ALL_TABLES).all_tables
        assert ReplacementJob(search="a", replace=None).replace == ""

    @pytest.mark.unit
    def test_unknown_length_policy(self):
        with pytest.raises(ValueError):
            ReplacementJob(search="a", length_policy="ignore")

    @pytest.mark.unit
    def test_progress_percent(self):
        assert ProgressUpdate(1, 4, 1, 0, 0, "t").percent == 25
        assert ProgressUpdate(0, 0, 0, 0, 0, "t").percent == 100

    @pytest.mark.unit
    def test_stats_as_dict(self):
        stats = RunStats(success=2, failed=1)
        assert stats.as_dict()["success"] == 2
        assert set(stats.as_dict()) >= {"skipped", "total_rows", "truncated", "tables_errors"}


class TestSerializedReplacement:
    """End-to-end replacement in serialized values"""

    @pytest.mark.integration
    def test_serialized_option_value(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, opt_value varchar(20)", [{"opt_value": 's:3:"abc";'}])

        result = run_job(sqlite_engine, search="abc", replace="xyz")

        assert fetch_column("t1", "opt_value") == ['s:3:"xyz";']
        assert result.stats.total_rows == 1
        assert result.stats.success == 1
        assert result.stats.failed == 0

    @pytest.mark.integration
    def test_length_prefixes_are_fixed(self, sqlite_engine, make_table, fetch_column):
        make_table("wp_options", "option_id integer primary key, option_value longtext", [
            {"option_value": 'a:2:{s:4:"home";s:18:"http://example.com";s:5:"count";i:3;}'},
            {"option_value": "Visit http://example.com today"},
        ])

        result = run_job(sqlite_engine, search="http://example.com", replace="https://example.org")

        assert fetch_column("wp_options", "option_value") == [
            'a:2:{s:4:"home";s:19:"https://example.org";s:5:"count";i:3;}',
            "Visit https://example.org today",
        ]
        assert result.stats.total_rows == 2
        # One success for the serialized pass, one for the literal pass
        assert result.stats.success == 2

    @pytest.mark.integration
    def test_identical_serialized_rows(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": 's:3:"abc";'}, {"v": 's:3:"abc";'}])

        result = run_job(sqlite_engine, search="abc", replace="wxyz")

        assert fetch_column("t1", "v") == ['s:4:"wxyz";', 's:4:"wxyz";']
        assert result.stats.total_rows == 2

    @pytest.mark.integration
    def test_malformed_serialized_value(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": 's:10:"hello";'}])

        run_job(sqlite_engine, search="hello", replace="bye")

        # Not decodable, so only the literal pass touches it
        assert fetch_column("t1", "v") == ['s:10:"bye";']

    @pytest.mark.integration
    def test_replacement_containing_search_text(self, sqlite_engine, make_table, fetch_column):
        make_table("wp_options", "option_id integer primary key, option_value longtext", [
            {"option_value": 'a:1:{s:4:"home";s:11:"example.com";}'},
            {"option_value": "see example.com"},
        ])

        result = run_job(sqlite_engine, search="example.com", replace="www.example.com")

        values = fetch_column("wp_options", "option_value")
        assert values == ['a:1:{s:4:"home";s:15:"www.example.com";}', "see www.example.com"]
        assert loads(values[0]) == PhpArray((('home', PhpString('www.example.com')),))
        assert result.stats.total_rows == 2
        assert result.stats.failed == 0

    @pytest.mark.integration
    def test_match_only_in_length_prefix(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": 'a:1:{i:0;s:5:"hello";}'}])

        result = run_job(sqlite_engine, search="5", replace="6")

        assert fetch_column("t1", "v") == ['a:1:{i:0;s:5:"hello";}']
        assert result.stats.success == 0
        assert result.stats.failed == 0

    @pytest.mark.integration
    def test_serialized_value_with_trailing_newline(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": 's:3:"abc";\n'}])

        result = run_job(sqlite_engine, search="abc", replace="wxyz")

        assert fetch_column("t1", "v") == ['s:4:"wxyz";\n']
        assert result.stats.total_rows == 1
        assert result.stats.success == 1

    @pytest.mark.integration
    def test_serialized_handling_disabled(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": 's:5:"hello";'}])

        result = run_job(sqlite_engine, search="hello", replace="goodbye", handle_serialized=False)

        assert fetch_column("t1", "v") == ['s:5:"goodbye";']
        assert result.stats.success == 1


class TestLiteralReplacement:
    """End-to-end replacement in plain values"""

    @pytest.mark.integration
    def test_all_occurrences_case_sensitive(self, sqlite_engine, make_table, fetch_column):
        make_table("wp_posts", "ID integer primary key, post_content longtext", [
            {"post_content": "Hello World, hello World"},
            {"post_content": "hello world"},
        ])

        result = run_job(sqlite_engine, search="World", replace="Universe")

        assert fetch_column("wp_posts", "post_content") == ["Hello Universe, hello Universe", "hello world"]
        assert result.stats.total_rows == 1

    @pytest.mark.integration
    def test_search_text_is_literal(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": "save 50% now"}, {"v": "save 500 now"}])

        run_job(sqlite_engine, search="50%", replace="60%")

        assert fetch_column("t1", "v") == ["save 60% now", "save 500 now"]

    @pytest.mark.integration
    def test_non_text_columns_are_ignored(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, n integer, v text", [{"n": 123, "v": "abc 123"}])

        run_job(sqlite_engine, search="123", replace="456")

        assert fetch_column("t1", "n") == [123]
        assert fetch_column("t1", "v") == ["abc 456"]

    @pytest.mark.integration
    def test_empty_replacement_removes_text(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": "remove-me please"}])

        run_job(sqlite_engine, search="remove-me ", replace="")

        assert fetch_column("t1", "v") == ["please"]


class TestLengthPolicy:
    """Replacement text longer than a VARCHAR column"""

    @pytest.fixture
    def short_table(self, make_table):
        make_table("t2", "id integer primary key, title varchar(5), body text", [
            {"title": "abc", "body": "abc in the body"},
        ])

    @pytest.mark.integration
    def test_skip(self, sqlite_engine, short_table, fetch_column):
        result = run_job(sqlite_engine, search="abc", replace="goodbye", length_policy="skip")

        assert fetch_column("t2", "title") == ["abc"]
        assert fetch_column("t2", "body") == ["goodbye in the body"]
        assert result.stats.skipped == 1
        assert result.stats.success == 1
        assert any("Skipped `t2`.`title`" in message for message in result.log.messages("warning"))

    @pytest.mark.integration
    def test_truncate(self, sqlite_engine, short_table, fetch_column):
        result = run_job(sqlite_engine, search="abc", replace="goodbye", length_policy="truncate")

        assert fetch_column("t2", "title") == ["goodb"]
        assert fetch_column("t2", "body") == ["goodbye in the body"]
        assert result.stats.truncated == 1
        assert result.stats.success == 2

    @pytest.mark.integration
    def test_try(self, sqlite_engine, short_table, fetch_column):
        # SQLite does not enforce VARCHAR lengths, so the full text is stored
        result = run_job(sqlite_engine, search="abc", replace="goodbye", length_policy="try")

        assert fetch_column("t2", "title") == ["goodbye"]
        assert result.stats.success == 2
        assert result.stats.failed == 0

    @pytest.mark.integration
    def test_try_rejected_by_database(self, sqlite_engine, short_table, fetch_column):
        rejection = LengthConstraintError("Data too long for column 'title' at row 1")
        original = search_replace.replace_literal

        def reject_title(connection, table_name, column_name, search, replace, **kwargs):
            if column_name == "title":
                raise rejection
            return original(connection, table_name, column_name, search, replace, **kwargs)

        with patch("wp_maintenance.search_replace.replace_literal", side_effect=reject_title):
            result = run_job(sqlite_engine, search="abc", replace="goodbye", length_policy="try")

        assert fetch_column("t2", "title") == ["abc"]
        assert result.stats.failed == 1
        assert result.stats.success == 1
        assert any("too long for VARCHAR(5) field" in message for message in result.log.messages("error"))


class TestRunBehaviour:
    """Dry runs, statistics and error isolation"""

    @pytest.mark.integration
    def test_dry_run_writes_nothing(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": 's:3:"abc";'}, {"v": "abc"}])

        with patch("wp_maintenance.search_replace._execute_write") as execute_write:
            result = run_job(sqlite_engine, search="abc", replace="xyz", dry_run=True)

        execute_write.assert_not_called()
        assert fetch_column("t1", "v") == ['s:3:"abc";', "abc"]
        assert result.dry_run
        assert result.stats.success == 1
        assert result.stats.total_rows == 0
        assert any("[DRY RUN] Would update `t1`.`v` (~2 rows affected)" in m for m in result.log.messages("info"))

    @pytest.mark.integration
    def test_table_statistics(self, sqlite_engine, make_table):
        make_table("a_match", "id integer primary key, v text", [{"v": "needle"}])
        make_table("b_nomatch", "id integer primary key, v text", [{"v": "hay"}])
        make_table("c_numbers", "id integer primary key, n integer", [{"n": 1}])

        result = run_job(sqlite_engine, search="needle", replace="pin")

        stats = result.stats
        assert stats.tables_processed == 3
        assert stats.tables_with_matches == 1
        assert stats.tables_no_matches == 2
        assert stats.skipped == 1
        assert "No matching text found in `b_nomatch`" in result.log.messages("info")
        assert "No text columns found in `c_numbers`" in result.log.messages("info")

    @pytest.mark.integration
    def test_missing_table_is_isolated(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": "abc"}])

        result = run_job(sqlite_engine, search="abc", replace="xyz", tables=["missing", "t1"])

        assert result.stats.tables_errors == 1
        assert result.stats.failed == 1
        assert result.stats.tables_processed == 2
        assert fetch_column("t1", "v") == ["xyz"]
        assert any("Cannot get columns for table `missing`" in m for m in result.log.messages("error"))

    @pytest.mark.integration
    def test_write_error_is_counted(self, sqlite_engine, make_table, fetch_column):
        make_table("t1", "id integer primary key, v text", [{"v": "abc"}])
        make_table("t2", "id integer primary key, v text", [{"v": "abc"}])

        with patch("wp_maintenance.search_replace._execute_write", side_effect=WriteError("disk full")):
            result = run_job(sqlite_engine, search="abc", replace="xyz")

        assert result.stats.failed == 2
        assert result.stats.success == 0
        assert result.stats.tables_processed == 2
        assert result.log.messages("error") == ["Error in `t1`.`v`: disk full", "Error in `t2`.`v`: disk full"]

    @pytest.mark.integration
    def test_progress_updates(self, sqlite_engine, make_table):
        make_table("t1", "id integer primary key, v text", [{"v": "abc"}])
        make_table("t2", "id integer primary key, v text", [{"v": "def"}])
        updates = []

        job = ReplacementJob(search="abc", replace="xyz")
        with connect_autocommit(sqlite_engine) as connection:
            replace_text(connection, job, on_progress=updates.append)

        assert updates[0].processed == 0
        assert updates[0].current == "Processing table: t1"
        last = updates[-1]
        assert last.current == "All tables processed"
        assert (last.processed, last.total, last.with_matches, last.no_matches) == (2, 2, 1, 1)
        assert last.percent == 100


class TestRunReplacement:
    """Test cases for run_replacement"""

    @pytest.mark.integration
    def test_logs_job_and_connection(self, sqlite_engine, make_table):
        make_table("t1", "id integer primary key, v text", [{"v": "abc"}])

        result = run_replacement(sqlite_engine, ReplacementJob(search="abc", replace="xyz", dry_run=True))

        messages = result.log.messages("info")
        assert messages[0] == "Starting text replacement from 'abc' to 'xyz'"
        assert "DRY RUN MODE - No changes will be made" in messages
        assert "Processing 1 table(s)" in messages

    @pytest.mark.integration
    def test_unreachable_database(self, tmp_path):
        from sqlalchemy import create_engine

        engine = create_engine(f"sqlite:///{tmp_path / 'missing_dir' / 'x.db'}")
        run_log = RunLog("test")

        with pytest.raises(DatabaseConnectionError, match="Database connection failed"):
            run_replacement(engine, ReplacementJob(search="abc"), run_log=run_log)

        assert run_log.count("error") == 1
        engine.dispose()
