# tnb_chat/utils/helpers.py
import base64
import html
import secrets
import string
import time

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds (the store's timestamp unit)."""
    return int(time.time() * 1000)


def generate_id(length: int = 9) -> str:
    """Short random id for groups, friend requests and call logs."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def emoji_avatar(content: str) -> str:
    """Default avatar reference: a data URI of an SVG tile showing the first two characters."""
    display_content = html.escape(content[:2])
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" width="100" height="100" viewBox="0 0 100 100">'
        '<rect width="100" height="100" fill="#1e1e1e"/>'
        '<text x="50%" y="54%" dominant-baseline="middle" text-anchor="middle" '
        'font-size="50" fill="white" font-family="Arial, sans-serif">'
        f'{display_content}'
        '</text></svg>'
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def normalize_handle(handle: str) -> str:
    handle = handle.strip()
    return handle if handle.startswith("@") else f"@{handle}"
