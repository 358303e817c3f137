# tnb_chat/api/auth.py
from typing import Optional

from supabase_auth.errors import AuthApiError

from tnb_chat.api.client import get_supabase_client
from tnb_chat.api.errors import AuthenticationError
from tnb_chat.models.user import Identity
from tnb_chat.utils.logger import log_event


def _require_client():
    supabase = get_supabase_client()
    if not supabase:
        raise AuthenticationError("Supabase client is not initialized")
    return supabase


def _friendly_message(e: AuthApiError) -> str:
    message = e.message or ""
    if e.status == 400:
        if "Invalid login credentials" in message:
            return "Wrong email or password."
        if "Email not confirmed" in message:
            return "Email not confirmed yet. Check your inbox."
        if "already registered" in message.lower():
            return "This email is already registered."
        if "Password should be at least" in message:
            return "Password is too short."
        return f"Invalid data: {message}"
    if e.status == 429:
        return "Too many requests, try again later."
    return f"API error ({e.status}): {message}"


async def sign_up(email: str, password: str) -> Identity:
    """Create an account. Raises AuthenticationError when the provider refuses."""
    supabase = _require_client()
    log_event(f"[API_AUTH][sign_up] Attempting sign up for {email}")
    try:
        res = await supabase.auth.sign_up({"email": email, "password": password})
    except AuthApiError as e:
        log_event(f"[ERROR][API_AUTH][sign_up] AuthApiError for {email}. Status: {e.status}, Message: {e.message}")
        raise AuthenticationError(_friendly_message(e), status=e.status) from e
    except Exception as e:
        log_event(f"[ERROR][API_AUTH][sign_up] Unexpected error for {email}: {type(e).__name__} - {e}", exc_info=True)
        raise AuthenticationError(f"Unexpected error: {type(e).__name__} - {e}") from e

    if not res or not getattr(res, "user", None):
        log_event(f"[WARN][API_AUTH][sign_up] Unexpected response for {email}: {repr(res)}")
        raise AuthenticationError("Unexpected sign up response")
    if not getattr(res, "session", None):
        log_event(f"[API_AUTH][sign_up] Sign up for {email} requires email verification. User ID: {res.user.id}")
    log_event(f"[API_AUTH][sign_up] Sign up successful for {email}. User ID: {res.user.id}")
    return Identity(uid=res.user.id, email=getattr(res.user, "email", email))


async def sign_in(email: str, password: str) -> Identity:
    """Password sign-in. Raises AuthenticationError with a readable cause on failure."""
    supabase = _require_client()
    log_event(f"[API_AUTH][sign_in] Attempting sign in for {email}")
    try:
        res = await supabase.auth.sign_in_with_password({"email": email, "password": password})
    except AuthApiError as e:
        log_event(f"[ERROR][API_AUTH][sign_in] AuthApiError for {email}. Status: {e.status}, Message: {e.message}")
        raise AuthenticationError(_friendly_message(e), status=e.status) from e
    except Exception as e:
        log_event(f"[ERROR][API_AUTH][sign_in] Unexpected error for {email}: {type(e).__name__} - {e}", exc_info=True)
        raise AuthenticationError(f"Unexpected error: {type(e).__name__} - {e}") from e

    if not res or not getattr(res, "user", None) or not getattr(res, "session", None):
        log_event(f"[WARN][API_AUTH][sign_in] Sign in for {email} returned unexpected result: {repr(res)}")
        raise AuthenticationError("Unexpected sign in response or missing session")
    log_event(f"[API_AUTH][sign_in] Sign in successful for user {res.user.id}.")
    return Identity(uid=res.user.id, email=getattr(res.user, "email", email))


async def sign_out() -> bool:
    supabase = get_supabase_client()
    if not supabase:
        return False
    try:
        await supabase.auth.sign_out()
        log_event("[API_AUTH][sign_out] Sign out successful.")
        return True
    except AuthApiError as e:
        log_event(f"[ERROR][API_AUTH][sign_out] AuthApiError during sign out. Status: {e.status}, Message: {e.message}")
        return False
    except Exception as e:
        log_event(f"[ERROR][API_AUTH][sign_out] Unexpected error during sign out: {e}", exc_info=True)
        return False


async def get_current_session_user() -> Optional[Identity]:
    """Identity of the session the client library restored at startup, if any."""
    supabase = get_supabase_client()
    if not supabase:
        return None
    try:
        session_info = await supabase.auth.get_session()
    except AuthApiError as e:
        log_event(f"[ERROR][API_AUTH][get_current_session_user] AuthApiError getting session. Status: {e.status}, Message: {e.message}")
        return None
    except Exception as e:
        log_event(f"[ERROR][API_AUTH][get_current_session_user] Unexpected error getting session: {e}", exc_info=True)
        return None

    user = getattr(session_info, "user", None) if session_info else None
    if not user or not getattr(user, "id", None):
        log_event("[API_AUTH][get_current_session_user] No active session found.")
        return None
    log_event(f"[API_AUTH][get_current_session_user] Active session found for user {user.id}")
    return Identity(uid=user.id, email=getattr(user, "email", None))
