# tnb_chat/api/push_keys.py
import random
from typing import Callable, List, Optional

from tnb_chat.utils.helpers import now_ms

# Characters in ASCII order so plain string comparison matches generation order
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


class PushKeyGenerator:
    """
    Generates 20-character write-order keys: 8 characters of millisecond time
    followed by 12 characters of randomness. Two keys generated in the same
    millisecond reuse the random part incremented by one, so keys from one
    generator always sort in the order they were produced.
    """

    def __init__(self, now_func: Callable[[], int] = now_ms, rng: Optional[random.Random] = None):
        self._now = now_func
        self._rng = rng or random.SystemRandom()
        self._last_time = -1
        self._last_rand: List[int] = [0] * 12

    def next_key(self) -> str:
        now = self._now()
        same_ms = now <= self._last_time
        if not same_ms:
            self._last_time = now
            self._last_rand = [self._rng.randrange(64) for _ in range(12)]
        else:
            # Clock did not advance (or went backwards): keep the last time, bump the random part
            now = self._last_time
            i = 11
            while i >= 0 and self._last_rand[i] == 63:
                self._last_rand[i] = 0
                i -= 1
            if i < 0:
                # 64**12 keys in one millisecond; move to the next millisecond instead
                self._last_time += 1
                now = self._last_time
            else:
                self._last_rand[i] += 1

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        key = "".join(reversed(time_chars))
        return key + "".join(PUSH_CHARS[r] for r in self._last_rand)
