"""SQLite-backed metadata store for indexed FRP configs and their tags."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)

ENV_DATA_DIR = "FRPFLEET_DATA_DIR"
DEFAULT_DATA_DIR = Path(
    os.environ.get(ENV_DATA_DIR) or Path(os.path.expanduser("~")) / ".frpfleet"
)
DATA_DIR = DEFAULT_DATA_DIR
_DATA_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "frpfleet_data_dir_override",
    default=None,
)
SCHEMA_VERSION = 1
DB_FILENAME = "index.db"


class IndexUnavailableError(RuntimeError):
    """Raised when the index database cannot be opened or read."""


@dataclass(slots=True)
class ConfigEntry:
    file_path: str
    content_hash: str
    kind: str
    server_address: str | None = None
    server_port: int | None = None
    bind_address: str | None = None
    bind_port: int | None = None
    auth_token_hash: str | None = None
    proxy_count: int = 0
    last_modified: float = 0.0
    last_indexed: float = 0.0

    @property
    def name(self) -> str:
        return Path(self.file_path).name

    def to_dict(self) -> dict[str, object]:
        return {
            "file_path": self.file_path,
            "content_hash": self.content_hash,
            "kind": self.kind,
            "server_address": self.server_address,
            "server_port": self.server_port,
            "bind_address": self.bind_address,
            "bind_port": self.bind_port,
            "proxy_count": self.proxy_count,
            "last_modified": self.last_modified,
            "last_indexed": self.last_indexed,
        }


@dataclass(slots=True)
class TagRecord:
    config_id: int
    key: str
    value: str


@dataclass(slots=True)
class IndexAggregate:
    total: int = 0
    servers: int = 0
    clients: int = 0
    total_proxies: int = 0
    last_sync: float | None = None


def _resolve_data_dir() -> Path:
    override = _DATA_DIR_OVERRIDE.get()
    return override if override is not None else DATA_DIR


@contextmanager
def data_dir_context(path: Path | str | None):
    """Temporarily override the data directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _DATA_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _DATA_DIR_OVERRIDE.reset(token)


def ensure_data_dir() -> Path:
    data_dir = _resolve_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def set_data_dir(path: Path | str | None) -> None:
    global DATA_DIR
    if path is None:
        DATA_DIR = DEFAULT_DATA_DIR
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    DATA_DIR = dir_path


def index_db_path() -> Path:
    """Return the absolute path to the shared SQLite index database."""

    return ensure_data_dir() / DB_FILENAME


def _connect(db_path: Path, *, query_only: bool = False) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    if query_only:
        conn.execute("PRAGMA query_only = ON;")
    return conn


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def _schema_needs_reset(conn: sqlite3.Connection) -> bool:
    if not _table_exists(conn, "index_meta"):
        return False
    row = conn.execute(
        "SELECT value FROM index_meta WHERE key = 'schema_version'"
    ).fetchone()
    return row is not None and row["value"] != str(SCHEMA_VERSION)


def _reset_schema(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = OFF;")
    conn.executescript(
        """
        DROP TABLE IF EXISTS config_tag;
        DROP TABLE IF EXISTS config_entry;
        DROP TABLE IF EXISTS index_meta;
        """
    )
    conn.execute("PRAGMA foreign_keys = ON;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    if _schema_needs_reset(conn):
        logger.info("Index schema changed; resetting %s", DB_FILENAME)
        _reset_schema(conn)
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS config_entry (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            file_path TEXT NOT NULL UNIQUE,
            content_hash TEXT NOT NULL,
            kind TEXT NOT NULL,
            server_address TEXT,
            server_port INTEGER,
            bind_address TEXT,
            bind_port INTEGER,
            auth_token_hash TEXT,
            proxy_count INTEGER NOT NULL DEFAULT 0,
            last_modified REAL NOT NULL,
            last_indexed REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS config_tag (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            config_id INTEGER NOT NULL REFERENCES config_entry(id) ON DELETE CASCADE,
            tag_key TEXT NOT NULL,
            tag_value TEXT NOT NULL,
            UNIQUE(config_id, tag_key)
        );

        CREATE TABLE IF NOT EXISTS index_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_config_entry_kind ON config_entry(kind);
        CREATE INDEX IF NOT EXISTS idx_config_tag_key ON config_tag(tag_key, tag_value);
        """
    )
    conn.execute(
        "INSERT OR IGNORE INTO index_meta (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )


@contextmanager
def open_store(*, query_only: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a connection with the schema in place.

    Any SQLite failure is re-raised as :class:`IndexUnavailableError` so callers
    can fall back to scanning the filesystem.
    """

    db_path = index_db_path()
    try:
        conn = _connect(db_path)
        try:
            with conn:
                _ensure_schema(conn)
            if query_only:
                conn.execute("PRAGMA query_only = ON;")
        except BaseException:
            conn.close()
            raise
    except sqlite3.DatabaseError as exc:
        raise IndexUnavailableError(f"{db_path}: {exc}") from exc
    try:
        yield conn
    except sqlite3.DatabaseError as exc:
        raise IndexUnavailableError(f"{db_path}: {exc}") from exc
    finally:
        conn.close()


def _row_to_entry(row: sqlite3.Row) -> ConfigEntry:
    return ConfigEntry(
        file_path=row["file_path"],
        content_hash=row["content_hash"],
        kind=row["kind"],
        server_address=row["server_address"],
        server_port=row["server_port"],
        bind_address=row["bind_address"],
        bind_port=row["bind_port"],
        auth_token_hash=row["auth_token_hash"],
        proxy_count=int(row["proxy_count"] or 0),
        last_modified=float(row["last_modified"]),
        last_indexed=float(row["last_indexed"]),
    )


def upsert_entry(entry: ConfigEntry) -> int:
    """Insert or update *entry* keyed by its file path and return its row id."""

    with open_store() as conn:
        with conn:
            conn.execute("BEGIN IMMEDIATE;")
            conn.execute(
                """
                INSERT INTO config_entry (
                    file_path, content_hash, kind, server_address, server_port,
                    bind_address, bind_port, auth_token_hash, proxy_count,
                    last_modified, last_indexed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    content_hash = excluded.content_hash,
                    kind = excluded.kind,
                    server_address = excluded.server_address,
                    server_port = excluded.server_port,
                    bind_address = excluded.bind_address,
                    bind_port = excluded.bind_port,
                    auth_token_hash = excluded.auth_token_hash,
                    proxy_count = excluded.proxy_count,
                    last_modified = excluded.last_modified,
                    last_indexed = excluded.last_indexed
                """,
                (
                    entry.file_path,
                    entry.content_hash,
                    entry.kind,
                    entry.server_address,
                    entry.server_port,
                    entry.bind_address,
                    entry.bind_port,
                    entry.auth_token_hash,
                    entry.proxy_count,
                    entry.last_modified,
                    entry.last_indexed,
                ),
            )
            row = conn.execute(
                "SELECT id FROM config_entry WHERE file_path = ?",
                (entry.file_path,),
            ).fetchone()
    return int(row["id"])


def delete_missing_entries(keep_paths: Iterable[str]) -> int:
    """Delete every entry whose path is not in *keep_paths*; tags cascade."""

    keep = set(keep_paths)
    with open_store() as conn:
        rows = conn.execute("SELECT id, file_path FROM config_entry").fetchall()
        stale_ids = [(row["id"],) for row in rows if row["file_path"] not in keep]
        if not stale_ids:
            return 0
        with conn:
            conn.execute("BEGIN IMMEDIATE;")
            conn.executemany("DELETE FROM config_entry WHERE id = ?", stale_ids)
    return len(stale_ids)


def get_entry(file_path: str) -> ConfigEntry | None:
    with open_store(query_only=True) as conn:
        row = conn.execute(
            "SELECT * FROM config_entry WHERE file_path = ?",
            (file_path,),
        ).fetchone()
    return _row_to_entry(row) if row is not None else None


def entry_id(file_path: str) -> int | None:
    with open_store(query_only=True) as conn:
        row = conn.execute(
            "SELECT id FROM config_entry WHERE file_path = ?",
            (file_path,),
        ).fetchone()
    return int(row["id"]) if row is not None else None


def list_entries(kind: str | None = None) -> list[ConfigEntry]:
    """Return indexed entries ordered by path, optionally limited to *kind*."""

    with open_store(query_only=True) as conn:
        if kind is None:
            rows = conn.execute(
                "SELECT * FROM config_entry ORDER BY file_path"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM config_entry WHERE kind = ? ORDER BY file_path",
                (kind,),
            ).fetchall()
    return [_row_to_entry(row) for row in rows]


def aggregate() -> IndexAggregate:
    with open_store(query_only=True) as conn:
        row = conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN kind = 'server' THEN 1 ELSE 0 END), 0) AS servers,
                COALESCE(SUM(CASE WHEN kind = 'client' THEN 1 ELSE 0 END), 0) AS clients,
                COALESCE(SUM(proxy_count), 0) AS proxies
            FROM config_entry
            """
        ).fetchone()
        last_sync = _get_meta(conn, "last_sync")
    return IndexAggregate(
        total=int(row["total"]),
        servers=int(row["servers"]),
        clients=int(row["clients"]),
        total_proxies=int(row["proxies"]),
        last_sync=float(last_sync) if last_sync is not None else None,
    )


def _get_meta(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM index_meta WHERE key = ?", (key,)).fetchone()
    return row["value"] if row is not None else None


def get_meta(key: str) -> str | None:
    with open_store(query_only=True) as conn:
        return _get_meta(conn, key)


def set_meta(values: Mapping[str, str]) -> None:
    with open_store() as conn:
        with conn:
            conn.execute("BEGIN IMMEDIATE;")
            conn.executemany(
                "INSERT INTO index_meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                list(values.items()),
            )


def upsert_tag(config_id: int, key: str, value: str) -> None:
    with open_store() as conn:
        with conn:
            conn.execute("BEGIN IMMEDIATE;")
            conn.execute(
                "INSERT INTO config_tag (config_id, tag_key, tag_value) VALUES (?, ?, ?) "
                "ON CONFLICT(config_id, tag_key) DO UPDATE SET tag_value = excluded.tag_value",
                (config_id, key, value),
            )


def delete_tag(config_id: int, key: str) -> bool:
    with open_store() as conn:
        with conn:
            conn.execute("BEGIN IMMEDIATE;")
            cursor = conn.execute(
                "DELETE FROM config_tag WHERE config_id = ? AND tag_key = ?",
                (config_id, key),
            )
    return cursor.rowcount > 0


def tags_for(config_id: int) -> list[TagRecord]:
    with open_store(query_only=True) as conn:
        rows = conn.execute(
            "SELECT config_id, tag_key, tag_value FROM config_tag "
            "WHERE config_id = ? ORDER BY tag_key",
            (config_id,),
        ).fetchall()
    return [TagRecord(row["config_id"], row["tag_key"], row["tag_value"]) for row in rows]


def paths_with_tag(key: str, value: str | None = None) -> list[str]:
    with open_store(query_only=True) as conn:
        if value is None:
            rows = conn.execute(
                "SELECT e.file_path FROM config_tag t "
                "JOIN config_entry e ON e.id = t.config_id "
                "WHERE t.tag_key = ? ORDER BY e.file_path",
                (key,),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT e.file_path FROM config_tag t "
                "JOIN config_entry e ON e.id = t.config_id "
                "WHERE t.tag_key = ? AND t.tag_value = ? ORDER BY e.file_path",
                (key, value),
            ).fetchall()
    return [row["file_path"] for row in rows]


def tag_counts() -> list[tuple[str, str, int]]:
    with open_store(query_only=True) as conn:
        rows = conn.execute(
            "SELECT tag_key, tag_value, COUNT(*) AS n FROM config_tag "
            "GROUP BY tag_key, tag_value ORDER BY tag_key, tag_value"
        ).fetchall()
    return [(row["tag_key"], row["tag_value"], int(row["n"])) for row in rows]


def clear_store() -> bool:
    """Delete the index database files. Config files are never touched."""

    db_path = _resolve_data_dir() / DB_FILENAME
    removed = False
    for suffix in ("", "-wal", "-shm"):
        candidate = db_path.with_name(f"{DB_FILENAME}{suffix}")
        if candidate.exists():
            candidate.unlink()
            removed = True
    return removed
