"""
gigmatch/database.py — SQL document stores for the match/chat core
- SQLite (aiosqlite) by default
- Postgres (asyncpg pool) when USE_POSTGRES=1
Tables (auto-created):
  users(user_id PK, role, doc)
  favorites(owner_id, target_id) PK(owner_id, target_id)
  matches(match_id PK, user_a, user_b, matched_at)          user_a < user_b
  messages(seq PK, message_id UNIQUE, match_id, sender_id, kind, text, ts)
Live message feeds poll on messages.seq; appends to one match are serialized
so seq order equals (ts, seq) order.
"""
import asyncio
import contextlib
import json
import logging
import os
import time
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import aiosqlite
import asyncpg

from .errors import StoreError, TransientStoreError
from .models import to_utc
from .retry import RetryPolicy, call_with_retry
from .store import start_of_day, utcnow

log = logging.getLogger("gigmatch.db")

SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
      user_id    TEXT PRIMARY KEY,
      role       TEXT,
      doc        TEXT NOT NULL DEFAULT '{}',
      updated_at REAL
    )""",
    """
    CREATE TABLE IF NOT EXISTS favorites (
      owner_id   TEXT NOT NULL,
      target_id  TEXT NOT NULL,
      created_at REAL,
      PRIMARY KEY (owner_id, target_id)
    )""",
    """
    CREATE TABLE IF NOT EXISTS matches (
      match_id   TEXT PRIMARY KEY,
      user_a     TEXT NOT NULL,
      user_b     TEXT NOT NULL,
      matched_at REAL NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_matches_a ON matches(user_a)",
    "CREATE INDEX IF NOT EXISTS idx_matches_b ON matches(user_b)",
    """
    CREATE TABLE IF NOT EXISTS messages (
      seq        INTEGER PRIMARY KEY AUTOINCREMENT,
      message_id TEXT NOT NULL UNIQUE,
      match_id   TEXT NOT NULL,
      sender_id  TEXT NOT NULL,
      kind       TEXT NOT NULL,
      text       TEXT NOT NULL,
      ts         REAL NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_messages_match ON messages(match_id, seq)",
]

PG_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
      user_id    TEXT PRIMARY KEY,
      role       TEXT,
      doc        JSONB NOT NULL DEFAULT '{}'::jsonb,
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    """
    CREATE TABLE IF NOT EXISTS favorites (
      owner_id   TEXT NOT NULL,
      target_id  TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      PRIMARY KEY (owner_id, target_id)
    )""",
    """
    CREATE TABLE IF NOT EXISTS matches (
      match_id   TEXT PRIMARY KEY,
      user_a     TEXT NOT NULL,
      user_b     TEXT NOT NULL,
      matched_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    "CREATE INDEX IF NOT EXISTS idx_matches_a ON matches(user_a)",
    "CREATE INDEX IF NOT EXISTS idx_matches_b ON matches(user_b)",
    """
    CREATE TABLE IF NOT EXISTS messages (
      seq        BIGSERIAL PRIMARY KEY,
      message_id TEXT NOT NULL UNIQUE,
      match_id   TEXT NOT NULL,
      sender_id  TEXT NOT NULL,
      kind       TEXT NOT NULL,
      text       TEXT NOT NULL,
      ts         TIMESTAMPTZ NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_messages_match ON messages(match_id, seq)",
]


def _match_doc(match_id: str, user_a: str, user_b: str, matched_at: Any) -> Dict[str, Any]:
    return {"id": match_id, "users": [user_a, user_b], "matchedAt": to_utc(matched_at)}


def _message_doc(seq: int, message_id: str, sender_id: str, kind: str, text: str, ts: Any) -> Dict[str, Any]:
    return {"id": message_id, "senderId": sender_id, "kind": kind, "text": text,
            "timestamp": to_utc(ts), "seq": int(seq)}


def _profile_doc(user_id: str, role: Optional[str], raw: Any) -> Dict[str, Any]:
    doc = json.loads(raw) if isinstance(raw, str) else dict(raw or {})
    doc["id"] = user_id
    if role is not None:
        doc["role"] = role
    return doc


class _SQLBase:
    poll_interval: float = 0.5

    async def _messages_after(self, match_id: str, after_seq: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def list_messages(self, match_id: str) -> List[Dict[str, Any]]:
        return await self._messages_after(match_id, 0)

    async def listen_messages(self, match_id: str) -> AsyncIterator[Dict[str, Any]]:
        last = 0
        while True:
            for doc in await self._messages_after(match_id, last):
                last = doc["seq"]
                yield doc
            await asyncio.sleep(self.poll_interval)


# --- SQLite ---
@contextlib.contextmanager
def _sqlite_errors(op: str):
    try:
        yield
    except aiosqlite.OperationalError as e:
        # locked / busy / I/O
        raise TransientStoreError(f"{op}: {e}") from e
    except aiosqlite.Error as e:
        raise StoreError(f"{op}: {e}") from e


class SQLiteStore(_SQLBase):
    def __init__(self, path: str, *, poll_interval: float = 0.5, timeout: float = 5.0):
        self.path = path
        self.poll_interval = poll_interval
        self.timeout = timeout

    def _connect(self):
        return aiosqlite.connect(self.path, timeout=self.timeout)

    async def init(self, reset: bool = False) -> "SQLiteStore":
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        if reset and os.path.exists(self.path):
            os.remove(self.path)
        with _sqlite_errors("init"):
            async with self._connect() as db:
                for sql in SQLITE_SCHEMA:
                    await db.execute(sql)
                await db.commit()
        log.info("[db] sqlite ready → %s", self.path)
        return self

    # users
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with _sqlite_errors("get_profile"):
            async with self._connect() as db:
                cur = await db.execute("SELECT role, doc FROM users WHERE user_id=?", (user_id,))
                row = await cur.fetchone()
        return _profile_doc(user_id, row[0], row[1]) if row else None

    async def list_profiles(self) -> List[Dict[str, Any]]:
        with _sqlite_errors("list_profiles"):
            async with self._connect() as db:
                cur = await db.execute("SELECT user_id, role, doc FROM users ORDER BY user_id")
                rows = await cur.fetchall()
        return [_profile_doc(uid, role, raw) for uid, role, raw in rows]

    async def put_profile(self, user_id: str, data: Dict[str, Any]) -> None:
        doc = {k: v for k, v in data.items() if k != "id"}
        with _sqlite_errors("put_profile"):
            async with self._connect() as db:
                await db.execute("""
                  INSERT INTO users (user_id, role, doc, updated_at) VALUES (?, ?, ?, ?)
                  ON CONFLICT(user_id) DO UPDATE SET role=excluded.role, doc=excluded.doc, updated_at=excluded.updated_at
                """, (user_id, doc.get("role"), json.dumps(doc, default=str), time.time()))
                await db.commit()

    # favorites
    async def get_favorites(self, owner_id: str) -> Dict[str, bool]:
        with _sqlite_errors("get_favorites"):
            async with self._connect() as db:
                cur = await db.execute("SELECT target_id FROM favorites WHERE owner_id=? ORDER BY created_at, rowid", (owner_id,))
                rows = await cur.fetchall()
        return {r[0]: True for r in rows}

    async def merge_favorite(self, owner_id: str, target_id: str) -> None:
        with _sqlite_errors("merge_favorite"):
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO favorites (owner_id, target_id, created_at) VALUES (?,?,?) ON CONFLICT DO NOTHING",
                    (owner_id, target_id, time.time()))
                await db.commit()

    async def delete_favorite(self, owner_id: str, target_id: str) -> None:
        with _sqlite_errors("delete_favorite"):
            async with self._connect() as db:
                await db.execute("DELETE FROM favorites WHERE owner_id=? AND target_id=?", (owner_id, target_id))
                await db.commit()

    # matches
    async def create_match_if_absent(self, match_id: str, users: Sequence[str]) -> Tuple[Dict[str, Any], bool]:
        a, b = sorted(users)
        with _sqlite_errors("create_match_if_absent"):
            async with self._connect() as db:
                cur = await db.execute(
                    "INSERT INTO matches (match_id, user_a, user_b, matched_at) VALUES (?,?,?,?) ON CONFLICT(match_id) DO NOTHING",
                    (match_id, a, b, time.time()))
                created = cur.rowcount == 1
                await db.commit()
                cur = await db.execute("SELECT user_a, user_b, matched_at FROM matches WHERE match_id=?", (match_id,))
                row = await cur.fetchone()
        return _match_doc(match_id, *row), created

    async def get_match(self, match_id: str) -> Optional[Dict[str, Any]]:
        with _sqlite_errors("get_match"):
            async with self._connect() as db:
                cur = await db.execute("SELECT user_a, user_b, matched_at FROM matches WHERE match_id=?", (match_id,))
                row = await cur.fetchone()
        return _match_doc(match_id, *row) if row else None

    async def list_matches_for(self, user_id: str) -> List[Dict[str, Any]]:
        with _sqlite_errors("list_matches_for"):
            async with self._connect() as db:
                cur = await db.execute(
                    "SELECT match_id, user_a, user_b, matched_at FROM matches WHERE user_a=? OR user_b=?",
                    (user_id, user_id))
                rows = await cur.fetchall()
        return [_match_doc(*r) for r in rows]

    # messages
    async def append_message(self, match_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        message_id = data.get("id") or uuid.uuid4().hex
        with _sqlite_errors("append_message"):
            async with self._connect() as db:
                # a retried append carries the same message_id and is a no-op
                await db.execute("""
                  INSERT INTO messages (message_id, match_id, sender_id, kind, text, ts)
                  VALUES (?, ?, ?, ?, ?, MAX(?, COALESCE((SELECT MAX(ts) FROM messages WHERE match_id=?), 0)))
                  ON CONFLICT(message_id) DO NOTHING
                """, (message_id, match_id, data["senderId"], data["kind"], data["text"], time.time(), match_id))
                await db.commit()
                cur = await db.execute("""
                  SELECT seq, message_id, sender_id, kind, text, ts FROM messages
                   WHERE message_id=? AND match_id=?
                """, (message_id, match_id))
                row = await cur.fetchone()
        if row is None:
            raise StoreError(f"append_message: id {message_id!r} already used in another match")
        return _message_doc(*row)

    async def _messages_after(self, match_id: str, after_seq: int) -> List[Dict[str, Any]]:
        with _sqlite_errors("list_messages"):
            async with self._connect() as db:
                cur = await db.execute("""
                  SELECT seq, message_id, sender_id, kind, text, ts FROM messages
                   WHERE match_id=? AND seq>? ORDER BY ts, seq
                """, (match_id, after_seq))
                rows = await cur.fetchall()
        return [_message_doc(*r) for r in rows]

    async def stats(self) -> Dict[str, int]:
        today = start_of_day(utcnow()).timestamp()
        with _sqlite_errors("stats"):
            async with self._connect() as db:
                out = {}
                for key, sql, params in (
                    ("profiles_total", "SELECT COUNT(*) FROM users", ()),
                    ("favorites_total", "SELECT COUNT(*) FROM favorites", ()),
                    ("matches_total", "SELECT COUNT(*) FROM matches", ()),
                    ("matches_today", "SELECT COUNT(*) FROM matches WHERE matched_at >= ?", (today,)),
                    ("messages_total", "SELECT COUNT(*) FROM messages", ()),
                ):
                    cur = await db.execute(sql, params)
                    out[key] = int((await cur.fetchone())[0])
        return out

    async def close(self) -> None:
        return None


# --- Postgres ---
_PG_TRANSIENT = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.InterfaceError,
    asyncio.TimeoutError,
    ConnectionResetError,
    OSError,
)


@contextlib.contextmanager
def _pg_errors(op: str):
    try:
        yield
    except _PG_TRANSIENT as e:
        raise TransientStoreError(f"{op}: {e}") from e
    except asyncpg.exceptions.PostgresError as e:
        raise StoreError(f"{op}: {e}") from e


class PostgresStore(_SQLBase):
    def __init__(self, dsn: str, *, pool_min: int = 1, pool_max: int = 10, timeout: float = 10.0,
                 poll_interval: float = 0.5, policy: Optional[RetryPolicy] = None):
        self.dsn = dsn
        self.pool_min = pool_min
        self.pool_max = pool_max
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.policy = policy or RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=5.0)
        self.pool: Optional[asyncpg.Pool] = None

    async def _create_pool(self) -> asyncpg.Pool:
        with _pg_errors("connect"):
            pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.pool_min,
                max_size=self.pool_max,
                timeout=self.timeout,
                command_timeout=60,
            )
            try:
                async with pool.acquire() as conn:
                    await conn.execute("SELECT 1;")
            except BaseException:
                pool.terminate()
                raise
        return pool

    async def init(self, reset: bool = False) -> "PostgresStore":
        self.pool = await call_with_retry(self.policy, "pg connect", self._create_pool)
        with _pg_errors("init"):
            async with self.pool.acquire() as conn:
                if reset:
                    await conn.execute("DROP TABLE IF EXISTS messages, matches, favorites, users")
                for sql in PG_SCHEMA:
                    await conn.execute(sql)
        log.info("[db] pool ready → %s", self.dsn.split("@")[-1])
        return self

    def _acquire(self):
        if self.pool is None:
            raise StoreError("PostgresStore.init() was not awaited")
        return self.pool.acquire()

    # users
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        with _pg_errors("get_profile"):
            async with self._acquire() as conn:
                row = await conn.fetchrow("SELECT role, doc FROM users WHERE user_id=$1", user_id)
        return _profile_doc(user_id, row["role"], row["doc"]) if row else None

    async def list_profiles(self) -> List[Dict[str, Any]]:
        with _pg_errors("list_profiles"):
            async with self._acquire() as conn:
                rows = await conn.fetch("SELECT user_id, role, doc FROM users ORDER BY user_id")
        return [_profile_doc(r["user_id"], r["role"], r["doc"]) for r in rows]

    async def put_profile(self, user_id: str, data: Dict[str, Any]) -> None:
        doc = {k: v for k, v in data.items() if k != "id"}
        with _pg_errors("put_profile"):
            async with self._acquire() as conn:
                await conn.execute("""
                  INSERT INTO users (user_id, role, doc, updated_at) VALUES ($1, $2, $3::jsonb, now())
                  ON CONFLICT (user_id) DO UPDATE SET role=EXCLUDED.role, doc=EXCLUDED.doc, updated_at=now()
                """, user_id, doc.get("role"), json.dumps(doc, default=str))

    # favorites
    async def get_favorites(self, owner_id: str) -> Dict[str, bool]:
        with _pg_errors("get_favorites"):
            async with self._acquire() as conn:
                rows = await conn.fetch("SELECT target_id FROM favorites WHERE owner_id=$1 ORDER BY created_at, target_id", owner_id)
        return {r["target_id"]: True for r in rows}

    async def merge_favorite(self, owner_id: str, target_id: str) -> None:
        with _pg_errors("merge_favorite"):
            async with self._acquire() as conn:
                await conn.execute(
                    "INSERT INTO favorites (owner_id, target_id) VALUES ($1,$2) ON CONFLICT DO NOTHING",
                    owner_id, target_id)

    async def delete_favorite(self, owner_id: str, target_id: str) -> None:
        with _pg_errors("delete_favorite"):
            async with self._acquire() as conn:
                await conn.execute("DELETE FROM favorites WHERE owner_id=$1 AND target_id=$2", owner_id, target_id)

    # matches
    async def create_match_if_absent(self, match_id: str, users: Sequence[str]) -> Tuple[Dict[str, Any], bool]:
        a, b = sorted(users)
        with _pg_errors("create_match_if_absent"):
            async with self._acquire() as conn:
                inserted = await conn.fetchval("""
                  INSERT INTO matches (match_id, user_a, user_b) VALUES ($1,$2,$3)
                  ON CONFLICT (match_id) DO NOTHING RETURNING match_id
                """, match_id, a, b)
                row = await conn.fetchrow("SELECT user_a, user_b, matched_at FROM matches WHERE match_id=$1", match_id)
        return _match_doc(match_id, row["user_a"], row["user_b"], row["matched_at"]), inserted is not None

    async def get_match(self, match_id: str) -> Optional[Dict[str, Any]]:
        with _pg_errors("get_match"):
            async with self._acquire() as conn:
                row = await conn.fetchrow("SELECT user_a, user_b, matched_at FROM matches WHERE match_id=$1", match_id)
        return _match_doc(match_id, row["user_a"], row["user_b"], row["matched_at"]) if row else None

    async def list_matches_for(self, user_id: str) -> List[Dict[str, Any]]:
        with _pg_errors("list_matches_for"):
            async with self._acquire() as conn:
                rows = await conn.fetch(
                    "SELECT match_id, user_a, user_b, matched_at FROM matches WHERE user_a=$1 OR user_b=$1", user_id)
        return [_match_doc(r["match_id"], r["user_a"], r["user_b"], r["matched_at"]) for r in rows]

    # messages
    async def append_message(self, match_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        message_id = data.get("id") or uuid.uuid4().hex
        with _pg_errors("append_message"):
            async with self._acquire() as conn:
                async with conn.transaction():
                    # one writer per match at a time: seq order == commit order
                    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", match_id)
                    await conn.execute("""
                      INSERT INTO messages (message_id, match_id, sender_id, kind, text, ts)
                      VALUES ($1, $2, $3, $4, $5, GREATEST(clock_timestamp(),
                              COALESCE((SELECT max(ts) FROM messages WHERE match_id=$2), clock_timestamp())))
                      ON CONFLICT (message_id) DO NOTHING
                    """, message_id, match_id, data["senderId"], data["kind"], data["text"])
                    row = await conn.fetchrow("""
                      SELECT seq, message_id, sender_id, kind, text, ts FROM messages
                       WHERE message_id=$1 AND match_id=$2
                    """, message_id, match_id)
        if row is None:
            raise StoreError(f"append_message: id {message_id!r} already used in another match")
        return _message_doc(row["seq"], row["message_id"], row["sender_id"], row["kind"], row["text"], row["ts"])

    async def _messages_after(self, match_id: str, after_seq: int) -> List[Dict[str, Any]]:
        with _pg_errors("list_messages"):
            async with self._acquire() as conn:
                rows = await conn.fetch("""
                  SELECT seq, message_id, sender_id, kind, text, ts FROM messages
                   WHERE match_id=$1 AND seq>$2 ORDER BY ts, seq
                """, match_id, after_seq)
        return [_message_doc(r["seq"], r["message_id"], r["sender_id"], r["kind"], r["text"], r["ts"]) for r in rows]

    async def stats(self) -> Dict[str, int]:
        today = start_of_day(utcnow())
        with _pg_errors("stats"):
            async with self._acquire() as conn:
                row = await conn.fetchrow("""
                  SELECT (SELECT COUNT(*) FROM users)                          AS profiles_total,
                         (SELECT COUNT(*) FROM favorites)                      AS favorites_total,
                         (SELECT COUNT(*) FROM matches)                        AS matches_total,
                         (SELECT COUNT(*) FROM matches WHERE matched_at >= $1) AS matches_today,
                         (SELECT COUNT(*) FROM messages)                       AS messages_total
                """, today)
        return {k: int(v) for k, v in dict(row).items()}

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None


async def open_store(reset: bool = False):
    """Pick the backend from config (USE_POSTGRES) and initialise its schema."""
    import config

    if config.USE_POSTGRES:
        store = PostgresStore(
            config.PG_DSN,
            pool_min=config.PG_POOL_MIN,
            pool_max=config.PG_POOL_MAX,
            timeout=config.PG_TIMEOUT,
            poll_interval=config.CHAT_POLL_INTERVAL,
        )
    else:
        store = SQLiteStore(config.SQLITE_PATH, poll_interval=config.CHAT_POLL_INTERVAL)
    return await store.init(reset)
