"""
Common backend access utilities.

Modules:
- errors: error taxonomy shared by every layer
- config: settings from environment / SSM
- credentials: anonymous vs. user bearer credential, session refresh
- rest: REST operation model and the raw fallback client
- client: managed primary client
- fetcher: primary-vs-deadline race with REST fallback and 401 policy
- retry: bounded exponential backoff for notification delivery
- notifications: notification relay client
- auth: password sign-up / sign-in / sign-out, guest-order linking
- backend: wires everything together
"""

__all__ = [
    "errors",
    "config",
    "credentials",
    "rest",
    "client",
    "fetcher",
    "retry",
    "notifications",
    "auth",
    "backend",
]
