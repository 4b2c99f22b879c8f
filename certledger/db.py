"""
Database module for certledger.

SQLite persistence for ledger snapshots. The ledger itself lives in
memory; the service writes a snapshot after every state-changing request
and restores the latest one at startup.

Tables mirror the ledger's maps: meta, categories, slots, hash_slots,
records, roles, nonces and events.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional, Union

DB_PATH = Path("data/certledger.db")

TABLES = ["meta", "categories", "slots", "hash_slots", "records", "roles", "nonces", "events"]

# Thread-local storage for connection pooling
_local = threading.local()


def configure(path: Union[str, Path]) -> None:
    """Point the module at a different database file."""
    global DB_PATH
    close_connection()
    DB_PATH = Path(path)


def _get_connection() -> sqlite3.Connection:
    """
    Get a thread-local database connection.
    Connections are reused within the same thread, and reopened when the
    configured path changes.
    """
    conn = getattr(_local, 'conn', None)
    if conn is not None and getattr(_local, 'path', None) != DB_PATH:
        conn.close()
        conn = None
    if conn is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
        _local.path = DB_PATH
    return conn


@contextmanager
def _transaction():
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on failure.
    """
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    with _transaction() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS categories (
            category_key TEXT PRIMARY KEY,
            name TEXT
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS slots (
            slot_id INTEGER PRIMARY KEY,
            owner TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_slots_owner
        ON slots(owner);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS hash_slots (
            content_hash TEXT PRIMARY KEY,
            slot_id INTEGER NOT NULL
        );""")

        # One record per (slot, category)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS records (
            slot_id INTEGER NOT NULL,
            category_key TEXT NOT NULL,
            content_hash TEXT NOT NULL,
            status TEXT NOT NULL,
            record_json TEXT NOT NULL,
            PRIMARY KEY (slot_id, category_key)
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_records_hash
        ON records(content_hash);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS roles (
            role TEXT NOT NULL,
            identity TEXT NOT NULL,
            PRIMARY KEY (role, identity)
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS nonces (
            identity TEXT PRIMARY KEY,
            nonce INTEGER NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS events (
            seq INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            fields_json TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_events_name
        ON events(name);""")


def save_snapshot(snapshot: Dict[str, Any]) -> None:
    """
    Replace the stored ledger state with snapshot (as produced by
    Ledger.snapshot()) in a single transaction.
    """
    with _transaction() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")

        meta = {
            "version": snapshot["version"],
            "name": snapshot["name"],
            "symbol": snapshot["symbol"],
            "domain": snapshot["domain"],
            "policy": snapshot["policy"],
            "next_slot": snapshot["slots"]["next_slot"],
        }
        conn.executemany(
            "INSERT INTO meta(key, value) VALUES(?,?)",
            [(k, json.dumps(v, sort_keys=True)) for k, v in meta.items()]
        )

        names = snapshot["categories"].get("names", {})
        conn.executemany(
            "INSERT INTO categories(category_key, name) VALUES(?,?)",
            [(key, names.get(key)) for key in snapshot["categories"]["approved"]]
        )
        conn.executemany(
            "INSERT INTO slots(slot_id, owner) VALUES(?,?)",
            [(int(slot_id), owner) for slot_id, owner in snapshot["slots"]["owners"].items()]
        )
        conn.executemany(
            "INSERT INTO hash_slots(content_hash, slot_id) VALUES(?,?)",
            list(snapshot["hash_slots"].items())
        )
        conn.executemany(
            "INSERT INTO records(slot_id, category_key, content_hash, status, record_json) VALUES(?,?,?,?,?)",
            [
                (r["slot_id"], r["category"], r["content_hash"], r["status"], json.dumps(r, sort_keys=True))
                for r in snapshot["records"]
            ]
        )
        conn.executemany(
            "INSERT INTO roles(role, identity) VALUES(?,?)",
            [(role, identity) for role, members in snapshot["roles"].items() for identity in members]
        )
        conn.executemany(
            "INSERT INTO nonces(identity, nonce) VALUES(?,?)",
            list(snapshot["nonces"].items())
        )
        conn.executemany(
            "INSERT INTO events(seq, name, fields_json) VALUES(?,?,?)",
            [(e["seq"], e["name"], json.dumps(e["fields"], sort_keys=True)) for e in snapshot["events"]]
        )


def load_snapshot() -> Optional[Dict[str, Any]]:
    """
    Load the stored ledger state.

    Returns:
        Snapshot dict for Ledger.restore(), or None if nothing was saved
    """
    conn = _get_connection()
    meta = {
        row['key']: json.loads(row['value'])
        for row in conn.execute("SELECT key, value FROM meta")
    }
    if not meta:
        return None

    categories = conn.execute("SELECT category_key, name FROM categories ORDER BY category_key").fetchall()
    roles: Dict[str, list] = {}
    for row in conn.execute("SELECT role, identity FROM roles ORDER BY role, identity"):
        roles.setdefault(row['role'], []).append(row['identity'])

    return {
        "version": meta["version"],
        "name": meta["name"],
        "symbol": meta["symbol"],
        "domain": meta["domain"],
        "policy": meta["policy"],
        "categories": {
            "approved": [row['category_key'] for row in categories],
            "names": {row['category_key']: row['name'] for row in categories if row['name']},
        },
        "slots": {
            "next_slot": meta["next_slot"],
            "owners": {
                str(row['slot_id']): row['owner']
                for row in conn.execute("SELECT slot_id, owner FROM slots ORDER BY slot_id")
            },
        },
        "hash_slots": {
            row['content_hash']: row['slot_id']
            for row in conn.execute("SELECT content_hash, slot_id FROM hash_slots")
        },
        "records": [
            json.loads(row['record_json'])
            for row in conn.execute("SELECT record_json FROM records ORDER BY slot_id, category_key")
        ],
        "roles": roles,
        "nonces": {
            row['identity']: row['nonce']
            for row in conn.execute("SELECT identity, nonce FROM nonces")
        },
        "events": [
            {"seq": row['seq'], "name": row['name'], "fields": json.loads(row['fields_json'])}
            for row in conn.execute("SELECT seq, name, fields_json FROM events ORDER BY seq ASC")
        ],
    }


# ============================================================
# Metrics and Health
# ============================================================

def get_db_stats() -> Dict[str, int]:
    """Get database statistics for monitoring."""
    conn = _get_connection()
    stats = {}
    for table in TABLES:
        cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
        stats[f"{table}_count"] = cur.fetchone()['cnt']
    return stats


# ============================================================
# Test Support: Database Reset
# ============================================================

def reset_db() -> None:
    """
    Reset the database for test isolation.
    Clears all tables but preserves schema.
    """
    with _transaction() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")


def close_connection() -> None:
    """Close the thread-local connection (for cleanup)."""
    if getattr(_local, 'conn', None) is not None:
        _local.conn.close()
        _local.conn = None
