"""Unit tests for the counter-backed identity generator on PostgreSQL."""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.elements import TextClause

from specimens.adapters.identity import SqlCounterIdentityGenerator
from specimens.domain.exceptions import OperationTimeoutError


def postgres_connection():
    """Session whose autocommit connection reports the postgresql dialect."""
    session = MagicMock()
    engine = session.get_bind.return_value.execution_options.return_value
    conn = engine.connect.return_value.__enter__.return_value
    conn.dialect.name = "postgresql"
    return session, conn


def executed_sql(conn):
    return [str(call.args[0]) for call in conn.execute.call_args_list if isinstance(call.args[0], TextClause)]


class TestStatementTimeout:

    def test_increment_runs_under_statement_timeout(self):
        """Test that the timeout is set before the increment and reset afterwards."""
        session, conn = postgres_connection()
        conn.execute.return_value.scalar.return_value = 7

        value = SqlCounterIdentityGenerator(session, timeout=2)._next_value("specimenId")

        assert value == 7
        assert executed_sql(conn) == ["SET statement_timeout = 2000", "RESET statement_timeout"]

    def test_no_timeout_leaves_the_connection_alone(self):
        session, conn = postgres_connection()
        conn.execute.return_value.scalar.return_value = 3

        assert SqlCounterIdentityGenerator(session)._next_value("barcode") == 3
        assert executed_sql(conn) == []

    def test_cancelled_increment_raises_timeout(self):
        """Test that a statement cancelled by the server surfaces as a timeout."""
        session, conn = postgres_connection()
        cancelled = MagicMock(pgcode="57014")

        def execute(statement):
            if isinstance(statement, TextClause):
                return MagicMock()
            raise OperationalError("UPDATE counters", {}, cancelled)

        conn.execute.side_effect = execute

        with pytest.raises(OperationTimeoutError, match="no specimen was created"):
            SqlCounterIdentityGenerator(session, timeout=0.5)._next_value("specimenId")

        assert executed_sql(conn)[-1] == "RESET statement_timeout"

