"""Tests for the PostgreSQL loader, with psycopg2 mocked out."""

from unittest import mock

import psycopg2
import psycopg2.errors
import pytest

from stashpg.errors import (
    DestinationConnectionError,
    LoadExecutionError,
    OperationTimeout,
    StatementBuildError,
)
from stashpg.loaders.postgres_loader import PostgresLoader
from stashpg.models.record import Batch


@pytest.fixture
def connection():
    conn = mock.MagicMock(name="connection")
    conn.get_dsn_parameters.return_value = {"host": "db", "port": "5432", "dbname": "stash"}
    return conn


@pytest.fixture
def cursor(connection):
    cur = connection.cursor.return_value.__enter__.return_value
    cur.fetchone.return_value = (1,)
    return cur


@pytest.fixture
def connect(connection):
    with mock.patch("stashpg.loaders.postgres_loader.psycopg2.connect", return_value=connection) as patched:
        yield patched


@pytest.fixture
def execute_values():
    with mock.patch("stashpg.loaders.postgres_loader.execute_values") as patched:
        yield patched


def executed(cursor):
    return [c.args[0] for c in cursor.execute.call_args_list]


class TestSession:

    def test_open_disables_foreign_keys(self, connect, connection, cursor):
        loader = PostgresLoader("postgresql://u@db/stash")
        loader.open()

        connect.assert_called_once_with("postgresql://u@db/stash")
        assert "SET session_replication_role = replica" in executed(cursor)
        connection.commit.assert_called_once()

    def test_statement_timeout(self, connect, cursor):
        loader = PostgresLoader("dbname=stash", statement_timeout_ms=30000)
        loader.open()
        cursor.execute.assert_any_call("SET statement_timeout = %s", (30000,))

    def test_foreign_keys_can_stay_on(self, connect, cursor):
        loader = PostgresLoader("dbname=stash", disable_foreign_keys=False)
        loader.open()
        assert executed(cursor) == []

    def test_connect_failure(self):
        with mock.patch(
            "stashpg.loaders.postgres_loader.psycopg2.connect",
            side_effect=psycopg2.OperationalError("could not connect to server"),
        ):
            with pytest.raises(DestinationConnectionError) as exc_info:
                PostgresLoader("dbname=stash").open()
        assert "could not connect" in str(exc_info.value)

    def test_session_setup_failure_closes(self, connect, connection, cursor):
        cursor.execute.side_effect = psycopg2.ProgrammingError("permission denied")
        loader = PostgresLoader("dbname=stash")
        with pytest.raises(DestinationConnectionError):
            loader.open()
        connection.close.assert_called_once()
        assert loader.connection is None

    def test_connection_info_failure_closes(self, connect, connection, cursor):
        connection.get_dsn_parameters.side_effect = psycopg2.InterfaceError("connection already closed")
        loader = PostgresLoader("dbname=stash")
        with pytest.raises(DestinationConnectionError):
            loader.open()
        connection.close.assert_called_once()
        assert loader.connection is None

    def test_use_before_open(self):
        loader = PostgresLoader("dbname=stash")
        with pytest.raises(DestinationConnectionError):
            loader.reset_sequence("files")


class TestInsert:

    def test_batch_is_one_statement(self, connect, connection, cursor, execute_values):
        loader = PostgresLoader("dbname=stash")
        loader.open()
        connection.commit.reset_mock()

        batch = Batch(table="tags", offset=0, rows=[
            {"id": 1, "name": "a"},
            {"id": 2, "name": "b"},
            {"id": 3, "name": "c"},
        ])
        result = loader.load_batch(batch)

        assert result.total_written == 3
        execute_values.assert_called_once()
        args, kwargs = execute_values.call_args
        assert args[1] == 'INSERT INTO "tags" ("id", "name") VALUES %s'
        assert args[2] == [(1, "a"), (2, "b"), (3, "c")]
        assert kwargs["page_size"] == 3
        connection.commit.assert_called_once()
        connection.rollback.assert_not_called()

    def test_identifiers_are_quoted(self, connect, cursor, execute_values):
        loader = PostgresLoader("dbname=stash")
        loader.open()
        loader.insert_rows("groups", ["id", "desc"], [(1, "x")])
        assert execute_values.call_args.args[1] == 'INSERT INTO "groups" ("id", "desc") VALUES %s'

    def test_empty_batch_is_not_written(self, connect, connection, execute_values):
        loader = PostgresLoader("dbname=stash")
        loader.open()
        connection.commit.reset_mock()

        result = loader.load_batch(Batch(table="tags", offset=0))
        assert result.total_written == 0
        execute_values.assert_not_called()
        connection.commit.assert_not_called()

    def test_failure_rolls_back(self, connect, connection, cursor, execute_values):
        execute_values.side_effect = psycopg2.IntegrityError("duplicate key value")
        loader = PostgresLoader("dbname=stash")
        loader.open()
        connection.commit.reset_mock()

        with pytest.raises(LoadExecutionError) as exc_info:
            loader.load_batch(Batch(table="tags", offset=0, rows=[{"id": 1}]))

        assert 'INSERT INTO "tags"' in exc_info.value.statement
        assert exc_info.value.params == [(1,)]
        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()

    def test_timeout_is_distinct(self, connect, connection, cursor, execute_values):
        execute_values.side_effect = psycopg2.errors.QueryCanceled("canceling statement due to statement timeout")
        loader = PostgresLoader("dbname=stash", statement_timeout_ms=10)
        loader.open()
        with pytest.raises(OperationTimeout):
            loader.load_batch(Batch(table="tags", offset=0, rows=[{"id": 1}]))

    def test_programming_error_is_a_build_error(self, connect, cursor, execute_values):
        execute_values.side_effect = psycopg2.ProgrammingError('column "nope" does not exist')
        loader = PostgresLoader("dbname=stash")
        loader.open()
        with pytest.raises(StatementBuildError):
            loader.load_batch(Batch(table="tags", offset=0, rows=[{"nope": 1}]))

    def test_ragged_batch_is_a_build_error(self, connect, execute_values):
        loader = PostgresLoader("dbname=stash")
        loader.open()
        batch = Batch(table="tags", offset=0, rows=[{"id": 1, "name": "a"}, {"id": 2}])
        with pytest.raises(StatementBuildError) as exc_info:
            loader.load_batch(batch)
        assert "name" in str(exc_info.value)
        execute_values.assert_not_called()

    def test_dry_run_writes_nothing(self, connect, connection, execute_values):
        loader = PostgresLoader("dbname=stash", dry_run=True)
        loader.open()
        result = loader.load_batch(Batch(table="tags", offset=0, rows=[{"id": 1}, {"id": 2}]))
        assert result.total_written == 0
        assert result.total_skipped == 2
        execute_values.assert_not_called()


class TestSequences:

    def test_reset_sequence(self, connect, cursor):
        cursor.fetchone.return_value = (13,)
        loader = PostgresLoader("dbname=stash")
        loader.open()
        cursor.execute.reset_mock()

        assert loader.reset_sequence("scenes") == 13
        statement, params = cursor.execute.call_args.args
        assert "setval(pg_get_serial_sequence(%s, 'id')" in statement
        assert "COALESCE(MAX(id) + 1, 1)" in statement
        assert 'FROM "scenes"' in statement
        assert params == ('"scenes"',)

    def test_missing_sequence(self, connect, cursor):
        cursor.fetchone.return_value = (None,)
        loader = PostgresLoader("dbname=stash")
        loader.open()
        with pytest.raises(LoadExecutionError):
            loader.reset_sequence("blobs")

    def test_dry_run_only_reads(self, connect, cursor):
        cursor.fetchone.return_value = (1,)
        loader = PostgresLoader("dbname=stash", dry_run=True)
        loader.open()
        cursor.execute.reset_mock()

        assert loader.reset_sequence("tags") == 1
        statement = cursor.execute.call_args.args[0]
        assert "setval" not in statement


class TestTransaction:

    def test_commit_failure(self, connect, connection):
        loader = PostgresLoader("dbname=stash")
        loader.open()
        connection.commit.side_effect = psycopg2.OperationalError("server closed the connection")
        with pytest.raises(LoadExecutionError):
            with loader.transaction():
                pass

    def test_close(self, connect, connection):
        loader = PostgresLoader("dbname=stash")
        with loader:
            pass
        connection.close.assert_called_once()
        assert loader.connection is None
