"""Services built on top of the repositories."""

from .synchronizer import Synchronizer

__all__ = ["Synchronizer"]
