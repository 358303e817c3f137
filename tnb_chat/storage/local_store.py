# tnb_chat/storage/local_store.py
import sqlite3
import threading
from typing import List, Optional

from tnb_chat import config
from tnb_chat.models.call import CallLog, CallType
from tnb_chat.utils.logger import log_event

DB_FILE = config.LOCAL_DB_FILE

_initialized_files = set()
_db_lock = threading.Lock()


def _get_db_connection(db_file: str) -> sqlite3.Connection:
    try:
        return sqlite3.connect(db_file, timeout=10, check_same_thread=False)
    except sqlite3.Error as e:
        log_event(f"[ERROR][STORAGE] Could not connect to SQLite database '{db_file}': {e}")
        raise


def init_storage(db_file: Optional[str] = None) -> bool:
    """Create the call_logs table if needed. Safe to call repeatedly."""
    db_file = db_file or DB_FILE
    if db_file in _initialized_files:
        return True

    log_event(f"[STORAGE] Initializing local storage at '{db_file}'...")
    conn = None
    with _db_lock:
        try:
            conn = _get_db_connection(db_file)
            cursor = conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS call_logs (
                    id TEXT PRIMARY KEY,
                    owner_uid TEXT NOT NULL,       -- account that made/received the call
                    type TEXT NOT NULL,            -- voice | video | missed
                    peer_id TEXT NOT NULL,
                    duration INTEGER NOT NULL DEFAULT 0,
                    timestamp INTEGER NOT NULL     -- epoch ms
                );
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_call_logs_owner_ts ON call_logs (owner_uid, timestamp);")
            conn.commit()
            _initialized_files.add(db_file)
            log_event("[STORAGE] Database tables checked/created successfully.")
            return True
        except sqlite3.Error as e:
            log_event(f"[ERROR][STORAGE] Failed to initialize database tables: {e}")
            if conn:
                conn.rollback()
            return False
        finally:
            if conn:
                conn.close()


def add_call_log(owner_uid: str, log: CallLog, db_file: Optional[str] = None) -> bool:
    db_file = db_file or DB_FILE
    if db_file not in _initialized_files:
        log_event("[ERROR][STORAGE] Storage not initialized. Cannot add call log.")
        return False

    sql = """
        INSERT OR REPLACE INTO call_logs (id, owner_uid, type, peer_id, duration, timestamp)
        VALUES (?, ?, ?, ?, ?, ?);
    """
    params = (log.id, owner_uid, log.type.value, log.peer_id, log.duration, log.timestamp)
    conn = None
    with _db_lock:
        try:
            conn = _get_db_connection(db_file)
            conn.execute(sql, params)
            conn.commit()
            log_event(f"[STORAGE] Call log '{log.id}' ({log.type.value} with {log.peer_id}) stored.")
            return True
        except sqlite3.Error as e:
            log_event(f"[ERROR][STORAGE] Failed to add call log '{log.id}': {e}")
            if conn:
                conn.rollback()
            return False
        finally:
            if conn:
                conn.close()


def get_call_logs(owner_uid: str, limit: int = 100, db_file: Optional[str] = None) -> List[CallLog]:
    """Call history for one account, newest first."""
    db_file = db_file or DB_FILE
    if db_file not in _initialized_files:
        log_event("[ERROR][STORAGE] Storage not initialized. Cannot get call logs.")
        return []

    sql = """
        SELECT id, type, peer_id, duration, timestamp
        FROM call_logs
        WHERE owner_uid = ?
        ORDER BY timestamp DESC, rowid DESC
        LIMIT ?;
    """
    logs: List[CallLog] = []
    conn = None
    with _db_lock:
        try:
            conn = _get_db_connection(db_file)
            rows = conn.execute(sql, (owner_uid, limit)).fetchall()
        except sqlite3.Error as e:
            log_event(f"[ERROR][STORAGE] Failed to get call logs for {owner_uid}: {e}")
            return []
        finally:
            if conn:
                conn.close()

    for log_id, call_type, peer_id, duration, timestamp in rows:
        try:
            logs.append(CallLog(id=log_id, type=CallType(call_type), peer_id=peer_id,
                                duration=duration, timestamp=timestamp))
        except ValueError:
            log_event(f"[WARN][STORAGE] Skipping call log '{log_id}' with unknown type '{call_type}'.")
    log_event(f"[STORAGE] Fetched {len(logs)} call logs for {owner_uid}.")
    return logs
