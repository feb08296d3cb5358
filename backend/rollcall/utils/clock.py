"""Injectable wall-clock time sources."""
from datetime import datetime, timedelta
from flask import current_app

class SystemClock:
    """Naive local wall-clock time."""
    
    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)

class FixedClock:
    """Settable clock for deterministic tests and replays."""
    
    def __init__(self, instant: datetime):
        self._instant = instant
    
    def now(self) -> datetime:
        return self._instant
    
    def set(self, instant: datetime) -> None:
        self._instant = instant
    
    def advance(self, **kwargs) -> datetime:
        """Move forward by ``timedelta(**kwargs)`` and return the new instant."""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant

def get_clock():
    """Clock installed on the current application."""
    return current_app.extensions['clock']

def now() -> datetime:
    return get_clock().now()
