# tnb_chat/utils/logger.py
import datetime
import os
import threading
import traceback

from tnb_chat import config

log_file_path = config.LOG_FILE
_max_log_lines = config.LOG_MAX_RECORDS
_log_lock = threading.Lock()


def set_log_file(path: str):
    """Redirect subsequent log lines to another file (tests, alternate profiles)."""
    global log_file_path
    with _log_lock:
        log_file_path = path


def check_log_size():
    """Trim the log file to its newest half once it grows past LOG_MAX_RECORDS lines."""
    with _log_lock:
        try:
            if not os.path.exists(log_file_path):
                return
            with open(log_file_path, "r", encoding="utf-8") as f:
                all_lines = f.readlines()
            if len(all_lines) <= _max_log_lines:
                return
            kept_lines = all_lines[-(_max_log_lines // 2):]
            with open(log_file_path, "w", encoding="utf-8") as f:
                f.write(f"--- Log trimmed at {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')} ---\n")
                f.writelines(kept_lines)
        except OSError as e:
            print(f"[ERROR][LOGGER] Failed to check/trim log file size: {e}")


def log_event(message: str, exc_info: bool = False):
    """
    Append one event line to the client log file.
    With exc_info=True the traceback of the exception being handled is appended too.
    """
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    log_entry = f"[{timestamp}] {message}\n"

    if exc_info:
        tb_str = traceback.format_exc()
        if tb_str and tb_str != 'NoneType: None\n':
            log_entry += tb_str

    with _log_lock:
        try:
            with open(log_file_path, "a", encoding="utf-8") as f:
                f.write(log_entry)
        except OSError as e:
            # Never let logging break the caller
            print(f"[CRITICAL][LOGGER] Failed to write log: {e}")
            print(f"[CRITICAL][LOGGER] Original log entry was: {log_entry.strip()}")
