# tnb_chat/api/paths.py
# Collections of the remote store
DIRECTORY = "directory"
THREADS = "threads"
GROUPS = "groups"
REQUESTS = "requests"
TYPING = "typing"
CALLS = "calls"
CALL_SESSIONS = "callSessions"


def user_path(uid: str) -> str:
    return f"{DIRECTORY}/{uid}"


def status_path(uid: str) -> str:
    return f"{DIRECTORY}/{uid}/status"


def login_history_path(uid: str) -> str:
    return f"{DIRECTORY}/{uid}/loginHistory"


def thread_path(thread_id: str) -> str:
    return f"{THREADS}/{thread_id}"


def group_path(group_id: str) -> str:
    return f"{GROUPS}/{group_id}"


def request_path(request_id: str) -> str:
    return f"{REQUESTS}/{request_id}"


def typing_path(chat_id: str) -> str:
    return f"{TYPING}/{chat_id}"


def call_slot_path(uid: str) -> str:
    return f"{CALLS}/{uid}"


def call_session_path(caller_uid: str) -> str:
    return f"{CALL_SESSIONS}/{caller_uid}"
