"""
Session state and its durable persistence.

`SessionProvider` is the only place that reads or writes the session; every
other module goes through it.
"""

from .models import Session
from .session_store import FileSessionStorage, SessionProvider

__all__ = ["Session", "FileSessionStorage", "SessionProvider"]
