# cart_session/utils/clock.py
import time


def now() -> int:
    """Aktualny czas jako unix timestamp (sekundy)."""
    return int(time.time())
