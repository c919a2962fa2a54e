"""
Core utilities shared across the vote persistence layer.

This package hosts:
- configuration helpers (env vars, backend selection, table names)
- logging setup
- the error taxonomy raised by the query side

Backends and services depend on these primitives instead of reading
os.environ or defining their own exceptions.
"""
