"""
Typed backend records and the in-memory stores that keep them.

Modules:
- models: per-table record schemas, decoded at the REST boundary
- store: generic read-through entity store
- stores: one store per collection (age groups, page content, testimonials,
  payment methods, general settings, programs)
"""

__all__ = [
    "models",
    "store",
    "stores",
]
