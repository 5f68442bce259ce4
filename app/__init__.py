"""Core utilities for the Userdesk user and activity-log service."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_path


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the SQLite-backed application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


def create_demo_app(*args: Any, **kwargs: Any):
    """Factory function for the in-memory demo application."""

    from .demo import create_demo_app as _create_demo_app

    return _create_demo_app(*args, **kwargs)


__all__ = [
    "Database",
    "resolve_database_path",
    "create_app",
    "create_demo_app",
]
