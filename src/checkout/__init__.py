"""
Order persistence and the checkout submission flow.

Modules:
- orders: order reads/writes through the dual-path fetcher
- flow: form validation, order composition and purchase notification
"""

__all__ = [
    "orders",
    "flow",
]
