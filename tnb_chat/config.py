# tnb_chat/config.py
import os

# Supabase project (remote store + identity provider)
SUPABASE_URL = os.environ.get("TNB_SUPABASE_URL", "YOUR_SUPABASE_URL_DEFAULT")
SUPABASE_KEY = os.environ.get("TNB_SUPABASE_KEY", "YOUR_SUPABASE_ANON_KEY_DEFAULT")

# Table holding the store nodes and the table holding pre-registered disconnect writes
STORE_TABLE = os.environ.get("TNB_STORE_TABLE", "store_nodes")
INTENTS_TABLE = os.environ.get("TNB_INTENTS_TABLE", "disconnect_intents")
# Database function that applies a batch of writes in one transaction (supabase/migrations)
STORE_APPLY_FUNCTION = os.environ.get("TNB_STORE_APPLY_FUNCTION", "store_apply")

_BASE_DIR = os.path.dirname(os.path.abspath(__file__))

LOG_FILE = os.environ.get("TNB_LOG_FILE", os.path.join(_BASE_DIR, "client.log"))
LOG_MAX_RECORDS = int(os.environ.get("TNB_LOG_MAX_RECORDS", "5000"))

LOCAL_DB_FILE = os.environ.get("TNB_LOCAL_DB", os.path.join(_BASE_DIR, "local_storage.db"))

# Inactivity window after the last keystroke before the typing marker is removed
TYPING_IDLE_SECONDS = float(os.environ.get("TNB_TYPING_IDLE_SECONDS", "2.5"))

LOOKUP_TIMEOUT_SECONDS = float(os.environ.get("TNB_LOOKUP_TIMEOUT_SECONDS", "5"))
IP_LOOKUP_URL = os.environ.get("TNB_IP_LOOKUP_URL", "https://api.ipify.org?format=json")
GEO_LOOKUP_URL = os.environ.get("TNB_GEO_LOOKUP_URL", "https://ipapi.co/json/")
