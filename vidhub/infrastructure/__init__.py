"""Infrastructure Layer — database, cache, media, security and logging adapters.

Invariants:
    - Library exceptions mapped to core/errors.py types at this boundary
    - Per-process resources: nothing here is shared between worker processes
"""
