"""Persistence backends and the capability protocols they implement."""

from .factory import create_repositories
from .interfaces import CommandModel, EventLog, QueryModel, RepositorySet

__all__ = ["CommandModel", "EventLog", "QueryModel", "RepositorySet", "create_repositories"]
