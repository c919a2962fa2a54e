"""
Errors raised by the persistence core.

Only lookups by natural key raise here. Driver failures (SQLAlchemy, botocore)
propagate unchanged and duplicate-name races are not guarded at this layer.
"""

from __future__ import annotations


class PersistenceError(Exception):
    """Base class for errors raised by the persistence core."""


class NotFoundError(PersistenceError):
    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key
