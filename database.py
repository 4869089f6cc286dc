#!/usr/bin/env python3
"""
RoomChat – database helpers (PostgreSQL version)

• Optional: the server runs fully in memory when no DSN is configured
• ThreadedConnectionPool shared by socket handlers and background tasks
• Schema: rooms, messages, audit_log (idempotent CREATE IF NOT EXISTS)
• Public helpers used by stores.py:
    insert_room, fetch_rooms, fetch_room, fetch_room_by_name, add_room_member,
    insert_message, fetch_room_messages, update_message, delete_message,
    insert_audit_event

Helpers raise psycopg2 errors to the caller; stores.py turns them into
StorageUnavailable.
"""

import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from constants import get_db_connection_string, sanitize_postgres_dsn, redact_postgres_dsn


# ----------------------------------------------------------------------
# Connection helpers
# ----------------------------------------------------------------------

# Optional global connection pool. Enabled by calling init_db_pool().
_POOL: ThreadedConnectionPool | None = None
_DSN: str | None = None


def init_db_pool(minconn: int = 1, maxconn: int = 10, dsn: str | None = None) -> None:
    """Initialise a global ThreadedConnectionPool.

    Safe to call multiple times (no-op after first init). If the pool cannot be
    created the helpers fall back to direct connects against the same DSN.
    """
    global _POOL, _DSN
    if _POOL is not None:
        return

    _DSN = sanitize_postgres_dsn(dsn or get_db_connection_string())
    if not _DSN:
        logging.info("No database configured; running with in-memory storage")
        return

    try:
        _POOL = ThreadedConnectionPool(minconn=int(minconn), maxconn=int(maxconn), dsn=_DSN)
        logging.info("✅  Postgres connection pool ready (min=%s max=%s)", minconn, maxconn)
    except psycopg2.Error as e:
        _POOL = None
        logging.warning("⚠️  Could not initialise Postgres pool; falling back to direct connects: %s", e)


def is_configured() -> bool:
    return bool(_DSN)


def _acquire_conn():
    """Acquire a connection either from the pool or by direct connect.

    Returns (conn, from_pool: bool)
    """
    if _POOL is not None:
        return _POOL.getconn(), True
    if not _DSN:
        raise psycopg2.OperationalError("database not configured")
    return psycopg2.connect(_DSN), False


def _release_conn(conn, from_pool: bool) -> None:
    if conn is None:
        return
    if _POOL is not None and from_pool:
        try:
            # Ensure a clean connection is returned to the pool.
            conn.rollback()
        except psycopg2.Error:
            pass
        _POOL.putconn(conn)
    else:
        conn.close()


@contextmanager
def db_cursor():
    """Yield a cursor on a pooled connection; commit on success, roll back on error."""
    conn, from_pool = _acquire_conn()
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        try:
            conn.rollback()
        except psycopg2.Error:
            pass
        raise
    finally:
        _release_conn(conn, from_pool)


# ----------------------------------------------------------------------
# Schema
# ----------------------------------------------------------------------

def _create_schema() -> None:
    with db_cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS rooms (
                id          SERIAL PRIMARY KEY,
                name        TEXT UNIQUE NOT NULL,
                created_by  TEXT NOT NULL,
                members     TEXT[] NOT NULL DEFAULT '{}',
                created_at  TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS messages (
                id             SERIAL PRIMARY KEY,
                client_id      TEXT UNIQUE,
                room_id        TEXT NOT NULL,
                username       TEXT NOT NULL,
                text           TEXT NOT NULL,
                user_color     TEXT NOT NULL DEFAULT '#4B5563',
                is_pinned      BOOLEAN NOT NULL DEFAULT FALSE,
                is_deleted     BOOLEAN NOT NULL DEFAULT FALSE,
                edited_at      TIMESTAMP WITH TIME ZONE,
                original_text  TEXT,
                timestamp      TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS messages_room_ts_idx
                ON messages (room_id, timestamp);

            CREATE TABLE IF NOT EXISTS audit_log (
                id         SERIAL PRIMARY KEY,
                actor      TEXT NOT NULL,
                action     TEXT NOT NULL,
                target     TEXT,
                details    TEXT,
                timestamp  TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
            );
            """
        )


def init_database() -> None:
    """Create the schema. Called once at application startup."""
    logging.info("🔧  Initialising DB…")
    _create_schema()
    logging.info("✅  DB ready at %s", redact_postgres_dsn(_DSN))


def get_db_identity() -> dict:
    """Return runtime identity information for the current DB connection.

    Helps detect 'wrong database / wrong role' mistakes quickly.
    """
    out = {"current_user": None, "current_database": None, "server_addr": None, "server_port": None}
    try:
        with db_cursor() as cur:
            cur.execute("SELECT current_user, current_database(), inet_server_addr(), inet_server_port();")
            row = cur.fetchone()
        if row:
            out["current_user"] = row[0]
            out["current_database"] = row[1]
            out["server_addr"] = str(row[2]) if row[2] is not None else None
            out["server_port"] = int(row[3]) if row[3] is not None else None
    except psycopg2.Error as exc:
        out["error"] = str(exc)
    return out


# ----------------------------------------------------------------------
# Rooms
# ----------------------------------------------------------------------

_ROOM_COLUMNS = "id, name, created_by, created_at, members"


def insert_room(name: str, created_by: str) -> tuple:
    with db_cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO rooms (name, created_by, members)
            VALUES (%s, %s, ARRAY[%s])
            RETURNING {_ROOM_COLUMNS};
            """,
            (name, created_by, created_by),
        )
        return cur.fetchone()


def fetch_rooms() -> list[tuple]:
    with db_cursor() as cur:
        cur.execute(f"SELECT {_ROOM_COLUMNS} FROM rooms ORDER BY created_at DESC, id DESC;")
        return cur.fetchall() or []


def fetch_room(room_id: int) -> tuple | None:
    with db_cursor() as cur:
        cur.execute(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE id = %s;", (room_id,))
        return cur.fetchone()


def fetch_room_by_name(name: str) -> tuple | None:
    with db_cursor() as cur:
        cur.execute(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE name = %s;", (name,))
        return cur.fetchone()


def add_room_member(room_id: int, username: str) -> tuple | None:
    """Append username to rooms.members unless already present."""
    with db_cursor() as cur:
        cur.execute(
            f"""
            UPDATE rooms
               SET members = CASE
                                 WHEN %s = ANY(members) THEN members
                                 ELSE array_append(members, %s)
                             END
             WHERE id = %s
         RETURNING {_ROOM_COLUMNS};
            """,
            (username, username, room_id),
        )
        return cur.fetchone()


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------

_MESSAGE_COLUMNS = (
    "id, room_id, username, text, timestamp, user_color, is_pinned, "
    "is_deleted, edited_at, original_text, client_id"
)


def insert_message(
    room_id: str,
    username: str,
    text: str,
    user_color: str,
    timestamp,
    client_id: str | None = None,
    is_pinned: bool = False,
    edited_at=None,
    original_text: str | None = None,
) -> int:
    """Insert a message row and return its id (the canonical message id)."""
    with db_cursor() as cur:
        cur.execute(
            """
            INSERT INTO messages
                   (room_id, username, text, user_color, timestamp, client_id,
                    is_pinned, edited_at, original_text)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (room_id, username, text, user_color, timestamp, client_id, is_pinned, edited_at, original_text),
        )
        row = cur.fetchone()
    return int(row[0])


def fetch_room_messages(room_id: str, limit: int) -> list[tuple]:
    """Most recent `limit` live messages for a room, oldest first."""
    with db_cursor() as cur:
        cur.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
              FROM messages
             WHERE room_id = %s
               AND is_deleted = FALSE
             ORDER BY timestamp DESC, id DESC
             LIMIT %s;
            """,
            (room_id, int(limit)),
        )
        rows = cur.fetchall() or []
    rows.reverse()
    return rows


def update_message(message_id: int, text: str, is_pinned: bool, edited_at, original_text: str | None) -> int:
    with db_cursor() as cur:
        cur.execute(
            """
            UPDATE messages
               SET text = %s,
                   is_pinned = %s,
                   edited_at = %s,
                   original_text = %s
             WHERE id = %s;
            """,
            (text, is_pinned, edited_at, original_text, message_id),
        )
        return int(cur.rowcount or 0)


def delete_message(message_id: int) -> int:
    with db_cursor() as cur:
        cur.execute("DELETE FROM messages WHERE id = %s;", (message_id,))
        return int(cur.rowcount or 0)


# ----------------------------------------------------------------------
# Audit
# ----------------------------------------------------------------------

def insert_audit_event(actor: str, action: str, target: str | None = None, details: str | None = None) -> None:
    with db_cursor() as cur:
        cur.execute(
            """
            INSERT INTO audit_log (actor, action, target, details)
            VALUES (%s, %s, %s, %s);
            """,
            (actor, action, target, details),
        )
