from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable
import logging
import re

import aiosqlite

try:
    import asyncpg  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    asyncpg = None

from .config import Settings


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
_ID_RETURNING_TABLES = {
    "users",
    "refresh_tokens",
    "webhook_events",
    "meetings",
}

_INSERT_RE = re.compile(r"^\s*INSERT\s+INTO\s+([a-zA-Z_][a-zA-Z0-9_]*)", re.I)
_INSERT_IGNORE_RE = re.compile(r"^\s*INSERT\s+OR\s+IGNORE\s+INTO\s+", re.I)

_SCHEMA_TEMPLATE = [
    """
    CREATE TABLE IF NOT EXISTS meta (
      key TEXT PRIMARY KEY,
      value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
      id {pk},
      email TEXT NOT NULL UNIQUE,
      name TEXT NOT NULL,
      password_hash TEXT NOT NULL,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_tokens (
      id {pk},
      user_id {int} NOT NULL,
      token_hash TEXT NOT NULL UNIQUE,
      jti TEXT NOT NULL UNIQUE,
      expires_at TEXT NOT NULL,
      revoked_at TEXT NULL,
      replaced_by TEXT NULL,
      device_id TEXT NULL,
      device_info TEXT NULL,
      user_agent TEXT NULL,
      ip TEXT NULL,
      created_at TEXT NOT NULL,
      FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS token_blacklist (
      jti TEXT PRIMARY KEY,
      scope TEXT NOT NULL,
      expires_at TEXT NULL,
      created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS webhook_events (
      id {pk},
      platform TEXT NOT NULL,
      event_type TEXT NOT NULL,
      external_id TEXT NOT NULL,
      status TEXT NOT NULL DEFAULT 'received',
      error TEXT NULL,
      payload TEXT NOT NULL,
      received_at TEXT NOT NULL,
      processed_at TEXT NULL,
      UNIQUE(platform, external_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meetings (
      id {pk},
      platform TEXT NOT NULL,
      meeting_id TEXT NOT NULL,
      sub_meeting_id TEXT NOT NULL DEFAULT '',
      meeting_code TEXT NOT NULL DEFAULT '',
      subject TEXT NOT NULL DEFAULT '',
      creator_id TEXT NOT NULL DEFAULT '',
      creator_name TEXT NOT NULL DEFAULT '',
      status TEXT NOT NULL DEFAULT 'scheduled',
      start_time TEXT NULL,
      end_time TEXT NULL,
      started_at TEXT NULL,
      ended_at TEXT NULL,
      recording_file_ids TEXT NOT NULL DEFAULT '[]',
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      UNIQUE(platform, meeting_id, sub_meeting_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meeting_participants (
      meeting_pk {int} NOT NULL,
      user_key TEXT NOT NULL,
      user_name TEXT NOT NULL DEFAULT '',
      instance_type {int} NULL,
      joined_at TEXT NULL,
      left_at TEXT NULL,
      PRIMARY KEY (meeting_pk, user_key),
      FOREIGN KEY (meeting_pk) REFERENCES meetings(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_refresh_tokens_user_id ON refresh_tokens(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_refresh_tokens_user_device ON refresh_tokens(user_id, device_id)",
    "CREATE INDEX IF NOT EXISTS idx_webhook_events_status ON webhook_events(platform, status)",
    "CREATE INDEX IF NOT EXISTS idx_meetings_platform_meeting ON meetings(platform, meeting_id)",
]


def schema_statements(kind: str) -> list[str]:
    """DDL for `kind` ("sqlite" or "postgres"); shared by init_db and the alembic baseline."""
    if kind == "postgres":
        pk, int_type = "BIGSERIAL PRIMARY KEY", "BIGINT"
    else:
        pk, int_type = "INTEGER PRIMARY KEY AUTOINCREMENT", "INTEGER"
    return [stmt.format(pk=pk, int=int_type).strip() for stmt in _SCHEMA_TEMPLATE]


class DbCursor:
    rowcount: int = 0
    lastrowid: int | None = None

    async def fetchone(self) -> Any | None:  # noqa: ANN401
        raise NotImplementedError

    async def fetchall(self) -> list[Any]:  # noqa: ANN401
        raise NotImplementedError

    async def close(self) -> None:
        return None


class SqliteCursor(DbCursor):
    def __init__(self, cursor: aiosqlite.Cursor):
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return int(getattr(self._cursor, "rowcount", 0) or 0)

    @property
    def lastrowid(self) -> int | None:
        value = getattr(self._cursor, "lastrowid", None)
        return int(value) if value is not None else None

    async def fetchone(self) -> aiosqlite.Row | None:
        return await self._cursor.fetchone()

    async def fetchall(self) -> list[aiosqlite.Row]:
        return list(await self._cursor.fetchall())

    async def close(self) -> None:
        await self._cursor.close()


class PgCursor(DbCursor):
    def __init__(self, rows: Iterable[Any] | None, *, rowcount: int = 0, lastrowid: int | None = None) -> None:
        self._rows = list(rows or [])
        self._index = 0
        self._rowcount = int(rowcount)
        self._lastrowid = lastrowid

    @property
    def rowcount(self) -> int:
        return self._rowcount

    @property
    def lastrowid(self) -> int | None:
        return self._lastrowid

    async def fetchone(self) -> Any | None:  # noqa: ANN401
        if self._index >= len(self._rows):
            return None
        row = self._rows[self._index]
        self._index += 1
        return row

    async def fetchall(self) -> list[Any]:  # noqa: ANN401
        if self._index >= len(self._rows):
            return []
        out = self._rows[self._index :]
        self._index = len(self._rows)
        return list(out)


class DbConnection:
    kind: str = "sqlite"

    async def execute(self, sql: str, params: tuple | list | None = None) -> DbCursor:
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError

    async def rollback(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


def _translate_placeholders(sql: str) -> str:
    out: list[str] = []
    idx = 1
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch == "'" and not in_double:
            if in_single and i + 1 < len(sql) and sql[i + 1] == "'":
                out.append("''")
                i += 2
                continue
            in_single = not in_single
            out.append(ch)
            i += 1
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            out.append(ch)
            i += 1
            continue
        if ch == "?" and not in_single and not in_double:
            out.append(f"${idx}")
            idx += 1
            i += 1
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _append_on_conflict_do_nothing(sql: str) -> str:
    if "on conflict" in sql.lower():
        return sql
    suffix = ""
    stripped = sql.rstrip()
    if stripped.endswith(";"):
        suffix = ";"
        stripped = stripped[:-1]
    return f"{stripped} ON CONFLICT DO NOTHING{suffix}"


def _rewrite_insert_or_ignore(sql: str) -> str:
    if not _INSERT_IGNORE_RE.match(sql):
        return sql
    rewritten = _INSERT_IGNORE_RE.sub("INSERT INTO ", sql, count=1)
    return _append_on_conflict_do_nothing(rewritten)


def _should_return_id(sql: str) -> bool:
    m = _INSERT_RE.match(sql)
    if not m:
        return False
    table = m.group(1).lower()
    if table not in _ID_RETURNING_TABLES:
        return False
    lowered = sql.lower()
    if "returning" in lowered:
        return False
    if "insert or" in lowered:
        return False
    return True


def _returns_rows(sql: str) -> bool:
    lowered = sql.lstrip().lower()
    return lowered.startswith("select") or lowered.startswith("with") or "returning" in lowered


def _parse_rowcount(status: str) -> int:
    if not status:
        return 0
    for token in reversed(status.split()):
        if token.isdigit():
            return int(token)
    return 0


class SqliteConnection(DbConnection):
    kind = "sqlite"

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, sql: str, params: tuple | list | None = None) -> DbCursor:
        cur = await self._conn.execute(sql, params or ())
        return SqliteCursor(cur)

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()

    async def close(self) -> None:
        await self._conn.close()


class PostgresConnection(DbConnection):
    kind = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn
        self._in_tx = False

    async def execute(self, sql: str, params: tuple | list | None = None) -> DbCursor:
        raw = (sql or "").strip()
        if not raw:
            return PgCursor([])
        upper = raw.upper()
        if upper == "BEGIN":
            self._in_tx = True
            await self._conn.execute("BEGIN")
            return PgCursor([])
        if upper == "COMMIT":
            self._in_tx = False
            await self._conn.execute("COMMIT")
            return PgCursor([])
        if upper == "ROLLBACK":
            self._in_tx = False
            await self._conn.execute("ROLLBACK")
            return PgCursor([])

        sql = _rewrite_insert_or_ignore(raw)
        if _should_return_id(sql):
            sql = f"{sql} RETURNING id"
        sql = _translate_placeholders(sql)

        params_list = list(params or [])
        if _returns_rows(sql):
            rows = await self._conn.fetch(sql, *params_list)
            lastrowid = None
            if "returning id" in sql.lower() and rows:
                lastrowid = int(rows[0]["id"])
            return PgCursor(rows, rowcount=len(rows), lastrowid=lastrowid)

        status = await self._conn.execute(sql, *params_list)
        return PgCursor([], rowcount=_parse_rowcount(str(status)))

    async def commit(self) -> None:
        if self._in_tx:
            self._in_tx = False
            await self._conn.execute("COMMIT")

    async def rollback(self) -> None:
        if self._in_tx:
            self._in_tx = False
            await self._conn.execute("ROLLBACK")

    async def close(self) -> None:
        await self._conn.close()


async def fetchone(db: DbConnection, sql: str, params: tuple | list | None = None) -> Any | None:  # noqa: ANN401
    cur = await db.execute(sql, params or ())
    try:
        return await cur.fetchone()
    finally:
        await cur.close()


async def fetchall(db: DbConnection, sql: str, params: tuple | list | None = None) -> list[Any]:  # noqa: ANN401
    cur = await db.execute(sql, params or ())
    try:
        return list(await cur.fetchall())
    finally:
        await cur.close()


@asynccontextmanager
async def open_db(settings: Settings) -> AsyncIterator[DbConnection]:
    if settings.db_url and str(settings.db_url).lower().startswith("postgres"):
        if asyncpg is None:
            raise RuntimeError("PostgreSQL support is not installed (pip install asyncpg)")
        conn = await asyncpg.connect(str(settings.db_url))
        db = PostgresConnection(conn)
        try:
            yield db
        finally:
            await db.close()
        return

    db_path = settings.db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    raw = await aiosqlite.connect(db_path)
    raw.row_factory = aiosqlite.Row
    await raw.execute("PRAGMA foreign_keys = ON")
    db = SqliteConnection(raw)
    try:
        yield db
    finally:
        await db.close()


async def init_db(settings: Settings) -> None:
    async with open_db(settings) as db:
        for stmt in schema_statements(db.kind):
            await db.execute(stmt)

        await db.execute("INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)", ("schema_version", "0"))
        row = await fetchone(db, "SELECT value FROM meta WHERE key = ?", ("schema_version",))
        current = int((row_to_dict(row) or {}).get("value") or 0)
        if current < SCHEMA_VERSION:
            await db.execute("UPDATE meta SET value = ? WHERE key = ?", (str(SCHEMA_VERSION), "schema_version"))
            logger.info("database schema upgraded %s -> %s (%s)", current, SCHEMA_VERSION, db.kind)
        await db.commit()


def row_to_dict(row: Any | None) -> dict[str, Any] | None:  # noqa: ANN401
    if row is None:
        return None
    if isinstance(row, dict):
        return dict(row)
    keys = getattr(row, "keys", None)
    if callable(keys):
        return {k: row[k] for k in row.keys()}
    return dict(row)


def rows_to_dicts(rows: list[Any]) -> list[dict[str, Any]]:  # noqa: ANN401
    out: list[dict[str, Any]] = []
    for r in rows:
        item = row_to_dict(r)
        if item is not None:
            out.append(item)
    return out
