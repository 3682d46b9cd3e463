from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from content_migrator.config import settings

DB_PATH = settings.db_path


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    conn = _connect()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                root_url TEXT,
                urls_json TEXT,
                selected_json TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS results (
                session_id TEXT PRIMARY KEY,
                schema_json TEXT,
                records_json TEXT,
                completed INTEGER,
                strategy TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.commit()
    finally:
        conn.close()


def save_sitemap(session_id: str, root_url: str, urls: List[str], selected: List[str]) -> None:
    conn = _connect()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO sessions(session_id, root_url, urls_json, selected_json)
            VALUES(?,?,?,?)
            ON CONFLICT(session_id) DO UPDATE SET
                root_url=excluded.root_url,
                urls_json=excluded.urls_json,
                selected_json=excluded.selected_json,
                updated_at=CURRENT_TIMESTAMP
            """,
            (session_id, root_url, json.dumps(urls), json.dumps(selected)),
        )
        conn.commit()
    finally:
        conn.close()


def load_sitemap(session_id: str) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        cur = conn.cursor()
        cur.execute(
            "SELECT root_url, urls_json, selected_json, updated_at FROM sessions WHERE session_id=?",
            (session_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return {
            "root_url": row[0],
            "urls": json.loads(row[1]) if row[1] else [],
            "selected": json.loads(row[2]) if row[2] else [],
            "updated_at": row[3],
        }
    finally:
        conn.close()


def save_results(session_id: str, schema: Dict[str, Any], records: List[Dict[str, Any]], completed: int, strategy: str) -> None:
    conn = _connect()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO results(session_id, schema_json, records_json, completed, strategy)
            VALUES(?,?,?,?,?)
            ON CONFLICT(session_id) DO UPDATE SET
                schema_json=excluded.schema_json,
                records_json=excluded.records_json,
                completed=excluded.completed,
                strategy=excluded.strategy,
                updated_at=CURRENT_TIMESTAMP
            """,
            (session_id, json.dumps(schema), json.dumps(records), completed, strategy),
        )
        conn.commit()
    finally:
        conn.close()


def get_results(session_id: str) -> Optional[Dict[str, Any]]:
    conn = _connect()
    try:
        cur = conn.cursor()
        cur.execute(
            "SELECT schema_json, records_json, completed, strategy, updated_at FROM results WHERE session_id=?",
            (session_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return {
            "schema": json.loads(row[0]) if row[0] else {},
            "records": json.loads(row[1]) if row[1] else [],
            "completed": row[2],
            "strategy": row[3],
            "updated_at": row[4],
        }
    finally:
        conn.close()
