"""Unit tests for the SQL Server gateway's statement building.

No SQL Server is needed: the connection is an ``AsyncMock`` and the tests
assert on the T-SQL text handed to it.

Covers:
- identifier and literal quoting
- CREATE DATABASE ... AS SNAPSHOT OF with one file clause per data file
- RESTORE ... FROM DATABASE_SNAPSHOT
- DBAPIError wrapped as EngineCommandError with the engine message
- EngineConfig URL construction
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr, ValidationError
from sqlalchemy.exc import DBAPIError

from rewind_core.engine.base import SnapshotFile
from rewind_core.engine.config import EngineConfig
from rewind_core.engine.sqlserver import SqlServerSession, quote_identifier, quote_literal
from rewind_core.errors import EngineCommandError


def _session() -> tuple[SqlServerSession, AsyncMock]:
    result = MagicMock()
    result.returns_rows = False
    conn = AsyncMock()
    conn.execute.return_value = result
    return SqlServerSession(conn, EngineConfig()), conn


def _sql(conn: AsyncMock, call: int = -1) -> str:
    return str(conn.execute.call_args_list[call].args[0])


class TestQuoting:
    def test_identifier(self) -> None:
        assert quote_identifier("Orders") == "[Orders]"
        assert quote_identifier("we]ird") == "[we]]ird]"

    def test_literal(self) -> None:
        assert quote_literal("O'Brien") == "N'O''Brien'"


class TestStatements:
    @pytest.mark.asyncio
    async def test_create_snapshot(self) -> None:
        session, conn = _session()
        await session.create_snapshot(
            "s_0123abcd_Orders",
            "Orders",
            [
                SnapshotFile("Orders", "/s/s_0123abcd_Orders_Orders.ss"),
                SnapshotFile("Orders_2", "/s/s_0123abcd_Orders_Orders_2.ss"),
            ],
        )
        sql = _sql(conn)
        assert sql.startswith("CREATE DATABASE [s_0123abcd_Orders] ON ")
        assert "(NAME = N'Orders', FILENAME = N'/s/s_0123abcd_Orders_Orders.ss')" in sql
        assert "(NAME = N'Orders_2'" in sql
        assert sql.endswith("AS SNAPSHOT OF [Orders]")

    @pytest.mark.asyncio
    async def test_restore(self) -> None:
        session, conn = _session()
        await session.restore_from_snapshot("Orders", "s_0123abcd_Orders")
        assert _sql(conn) == "RESTORE DATABASE [Orders] FROM DATABASE_SNAPSHOT = N's_0123abcd_Orders'"

    @pytest.mark.asyncio
    async def test_single_user(self) -> None:
        session, conn = _session()
        await session.set_single_user("Orders")
        assert _sql(conn) == "ALTER DATABASE [Orders] SET SINGLE_USER WITH ROLLBACK IMMEDIATE"

    @pytest.mark.asyncio
    async def test_drop_is_idempotent(self) -> None:
        session, conn = _session()
        await session.drop_snapshot("s_0123abcd_Orders")
        assert _sql(conn) == "DROP DATABASE IF EXISTS [s_0123abcd_Orders]"

    @pytest.mark.asyncio
    async def test_dbapi_error_wrapped(self) -> None:
        session, conn = _session()
        orig = Exception("42000", "Database 'x' cannot be opened.")
        conn.execute.side_effect = DBAPIError("SELECT", {}, orig)
        with pytest.raises(EngineCommandError) as exc_info:
            await session.probe_snapshot("x")
        assert exc_info.value.message == "Database 'x' cannot be opened."
        assert exc_info.value.command == "SELECT"


class TestEngineConfig:
    def test_url(self) -> None:
        config = EngineConfig(host="db01", port=1444, username="ops", password=SecretStr("pw"))
        url = config.to_url()
        assert url.drivername == "mssql+aioodbc"
        assert url.host == "db01"
        assert url.port == 1444
        assert url.database == "master"
        assert url.query["TrustServerCertificate"] == "yes"

    def test_frozen(self) -> None:
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.host = "other"  # type: ignore[misc]
