# tnb_chat/storage/local_storage_service.py
from typing import List, Optional

from tnb_chat.models.call import CallLog
from tnb_chat.storage import local_store
from tnb_chat.utils.logger import log_event


class LocalStorageService:
    """Thin wrapper over local_store bound to one database file."""

    def __init__(self, db_file: Optional[str] = None):
        self.db_file = db_file or local_store.DB_FILE
        self.ready = local_store.init_storage(self.db_file)
        if not self.ready:
            log_event(f"[ERROR][STORAGE_SVC] Local storage unavailable at '{self.db_file}'; call history will not persist.")

    def add_call_log(self, owner_uid: str, log: CallLog) -> bool:
        if not self.ready:
            return False
        return local_store.add_call_log(owner_uid, log, db_file=self.db_file)

    def get_call_logs(self, owner_uid: str, limit: int = 100) -> List[CallLog]:
        if not self.ready:
            return []
        return local_store.get_call_logs(owner_uid, limit, db_file=self.db_file)
