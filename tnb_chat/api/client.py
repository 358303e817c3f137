# tnb_chat/api/client.py
from typing import Optional

from supabase.client import AsyncClient

from tnb_chat import config
from tnb_chat.utils.logger import log_event

_supabase_client: Optional[AsyncClient] = None


def init_supabase_client() -> Optional[AsyncClient]:
    """
    Create the shared Supabase AsyncClient (this function itself is sync).
    Should be called once at startup; later calls return the existing client.
    """
    global _supabase_client
    if _supabase_client is not None:
        return _supabase_client

    url: str = config.SUPABASE_URL
    key: str = config.SUPABASE_KEY
    if not url or url == "YOUR_SUPABASE_URL_DEFAULT" or not key or key == "YOUR_SUPABASE_ANON_KEY_DEFAULT":
        log_event("[ERROR][API_CLIENT] Supabase URL or key missing; set TNB_SUPABASE_URL and TNB_SUPABASE_KEY.")
        return None

    try:
        log_event("[API_CLIENT] Initializing Supabase AsyncClient...")
        _supabase_client = AsyncClient(url, key)
        log_event("[API_CLIENT] Supabase AsyncClient instance created successfully.")
    except Exception as e:
        log_event(f"[ERROR][API_CLIENT] Failed to initialize Supabase AsyncClient: {e}", exc_info=True)
        _supabase_client = None
    return _supabase_client


def get_supabase_client() -> Optional[AsyncClient]:
    """The client created by init_supabase_client(), or None if it has not been created."""
    if _supabase_client is None:
        log_event("[WARN][API_CLIENT] get_supabase_client called before client was initialized!")
    return _supabase_client
