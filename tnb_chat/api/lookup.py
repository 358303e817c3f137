# tnb_chat/api/lookup.py
import asyncio
from typing import Optional

import aiohttp

from tnb_chat import config
from tnb_chat.utils.logger import log_event

FALLBACK_IP = "127.0.0.1"
FALLBACK_LOCATION = "Unknown Location"


async def _get_json(url: str, session: Optional[aiohttp.ClientSession] = None) -> dict:
    timeout = aiohttp.ClientTimeout(total=config.LOOKUP_TIMEOUT_SECONDS)
    if session is not None:
        async with session.get(url, timeout=timeout) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)
    async with aiohttp.ClientSession(timeout=timeout) as own_session:
        async with own_session.get(url) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)


async def fetch_ip(session: Optional[aiohttp.ClientSession] = None) -> str:
    """Public address of this client; FALLBACK_IP when the lookup fails."""
    try:
        data = await _get_json(config.IP_LOOKUP_URL, session)
        ip = data.get("ip") if isinstance(data, dict) else None
        if ip:
            return str(ip)
        log_event(f"[WARN][LOOKUP] IP lookup returned no address: {data}")
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log_event(f"[WARN][LOOKUP] IP lookup failed: {e}. Using fallback {FALLBACK_IP}.")
    return FALLBACK_IP


async def fetch_location(session: Optional[aiohttp.ClientSession] = None) -> str:
    """Coarse position as "lat, lon" with two decimals; FALLBACK_LOCATION on failure or timeout."""
    try:
        data = await _get_json(config.GEO_LOOKUP_URL, session)
        lat = data.get("latitude") if isinstance(data, dict) else None
        lon = data.get("longitude") if isinstance(data, dict) else None
        if lat is not None and lon is not None:
            return f"{float(lat):.2f}, {float(lon):.2f}"
        log_event(f"[WARN][LOOKUP] Geolocation returned no coordinates: {data}")
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, TypeError) as e:
        log_event(f"[WARN][LOOKUP] Geolocation failed: {e}. Using fallback.")
    return FALLBACK_LOCATION
