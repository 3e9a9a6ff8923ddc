import json
import logging
import os
import sqlite3
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

# ----------------------------
# SQLite config
# ----------------------------
DB_PATH = os.getenv("MILLENNION_DB_PATH", str(BASE_DIR / "millennion.sqlite3"))

PLANS = ("free", "essential", "forjador", "visionario")


def _now_iso() -> str:
    return datetime.utcnow().isoformat()


def _yyyymm_utc() -> str:
    return datetime.utcnow().strftime("%Y%m")


def normalize_plan(plan: Optional[str]) -> str:
    p = (plan or "free").strip().lower()
    return p if p in PLANS else "free"


def db_conn():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        DB_PATH,
        timeout=30,
        check_same_thread=False,
        isolation_level=None,  # autocommit
    )
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn


def db_init():
    with db_conn() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            user_name TEXT,
            plan TEXT NOT NULL DEFAULT 'free',
            created_at TEXT NOT NULL,
            last_seen_at TEXT
        )
        """)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS anonymous_users (
            anonymous_id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            last_seen_at TEXT
        )
        """)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS usage_monthly (
            user_key TEXT NOT NULL,
            yyyymm TEXT NOT NULL,
            module TEXT NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (user_key, yyyymm, module)
        )
        """)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS chat_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            module TEXT NOT NULL,
            user_key TEXT NOT NULL,
            user_name TEXT,
            prompt TEXT NOT NULL,
            response TEXT NOT NULL,
            conversation_json TEXT NOT NULL DEFAULT '[]',
            model TEXT,
            created_at TEXT NOT NULL
        )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_chat_entries_user ON chat_entries(user_key, module)")


# ----------------------------
# Users
# ----------------------------
def db_get_user(user_id: str) -> Optional[Dict[str, Any]]:
    with db_conn() as conn:
        row = conn.execute(
            "SELECT user_id, user_name, plan FROM users WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            return None
        return {"user_id": row[0], "user_name": row[1], "plan": normalize_plan(row[2])}


def db_upsert_user(user_id: str, user_name: Optional[str], plan: Optional[str]) -> Dict[str, Any]:
    """
    Crea la fila si no existe (plan sembrado desde el token).
    Si ya existe, el plan de DB es la fuente de verdad y no se toca.
    """
    with db_conn() as conn:
        conn.execute(
            """
            INSERT INTO users(user_id, user_name, plan, created_at, last_seen_at)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                user_name = COALESCE(excluded.user_name, users.user_name),
                last_seen_at = excluded.last_seen_at
            """,
            (user_id, user_name, normalize_plan(plan), _now_iso(), _now_iso()),
        )
    return db_get_user(user_id)


def db_set_plan(user_id: str, plan: str) -> bool:
    with db_conn() as conn:
        cur = conn.execute(
            "UPDATE users SET plan = ? WHERE user_id = ?",
            (normalize_plan(plan), user_id),
        )
        return cur.rowcount > 0


# ----------------------------
# Anonymous users
# ----------------------------
def db_anonymous_exists(anonymous_id: str) -> bool:
    with db_conn() as conn:
        row = conn.execute(
            "SELECT 1 FROM anonymous_users WHERE anonymous_id = ?",
            (anonymous_id,),
        ).fetchone()
    if row:
        db_touch_anonymous(anonymous_id)
    return row is not None


def db_touch_anonymous(anonymous_id: str) -> None:
    try:
        with db_conn() as conn:
            conn.execute(
                "UPDATE anonymous_users SET last_seen_at = ? WHERE anonymous_id = ?",
                (_now_iso(), anonymous_id),
            )
    except sqlite3.Error:
        logger.exception("No se pudo actualizar last_seen_at de %s", anonymous_id)


def new_anonymous_id() -> str:
    return "anon_" + uuid.uuid4().hex


def db_create_anonymous(anonymous_id: Optional[str] = None) -> str:
    anonymous_id = anonymous_id or new_anonymous_id()
    with db_conn() as conn:
        conn.execute(
            "INSERT INTO anonymous_users(anonymous_id, created_at, last_seen_at) VALUES(?, ?, ?)",
            (anonymous_id, _now_iso(), _now_iso()),
        )
    return anonymous_id


# ----------------------------
# Monthly usage
# ----------------------------
def db_get_monthly_count(user_key: str, module: str, yyyymm: Optional[str] = None) -> int:
    with db_conn() as conn:
        row = conn.execute(
            "SELECT count FROM usage_monthly WHERE user_key=? AND yyyymm=? AND module=?",
            (user_key, yyyymm or _yyyymm_utc(), module),
        ).fetchone()
        return int(row[0]) if row else 0


def db_inc_monthly_count(user_key: str, module: str) -> int:
    retries = 6
    backoff = 0.05  # 50ms
    yyyymm = _yyyymm_utc()

    for attempt in range(retries):
        try:
            with db_conn() as conn:
                conn.execute(
                    """
                    INSERT INTO usage_monthly(user_key, yyyymm, module, count)
                    VALUES(?, ?, ?, 1)
                    ON CONFLICT(user_key, yyyymm, module)
                    DO UPDATE SET count = count + 1
                    """,
                    (user_key, yyyymm, module),
                )
            return db_get_monthly_count(user_key, module, yyyymm)
        except sqlite3.OperationalError as e:
            if "locked" in str(e).lower() and attempt < retries - 1:
                time.sleep(backoff)
                backoff *= 2
                continue
            raise
    return db_get_monthly_count(user_key, module, yyyymm)


def db_purge_old_usage(yyyymm: Optional[str] = None) -> int:
    with db_conn() as conn:
        cur = conn.execute(
            "DELETE FROM usage_monthly WHERE yyyymm < ?",
            (yyyymm or _yyyymm_utc(),),
        )
        return cur.rowcount


# ----------------------------
# Chat log
# ----------------------------
def db_log_chat(
    module: str,
    user_key: str,
    user_name: Optional[str],
    prompt: str,
    response: str,
    conversation: List[Dict[str, str]],
    model: Optional[str],
) -> None:
    # El log es best-effort: si falla, la respuesta al usuario no se pierde
    try:
        with db_conn() as conn:
            conn.execute(
                """
                INSERT INTO chat_entries(
                    module, user_key, user_name, prompt, response, conversation_json, model, created_at
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    module,
                    user_key,
                    user_name,
                    prompt,
                    response,
                    json.dumps(conversation, ensure_ascii=False),
                    model,
                    _now_iso(),
                ),
            )
    except sqlite3.Error:
        logger.exception("db_log_chat failed (module=%s user=%s)", module, user_key)


def db_list_chats(user_key: str, module: str, limit: int = 20) -> List[Dict[str, Any]]:
    with db_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, prompt, response, model, created_at
            FROM chat_entries
            WHERE user_key = ? AND module = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_key, module, int(limit)),
        ).fetchall()
    return [
        {"id": r[0], "prompt": r[1], "response": r[2], "model": r[3], "created_at": r[4]}
        for r in rows
    ]
