"""ChorePoints web API package.

``chorepoints.webapp:app`` is built on first access from the environment so
that ``uvicorn chorepoints.webapp:app`` works without touching the database
at import time.
"""
from __future__ import annotations

from typing import Any, List, Optional

from fastapi import FastAPI

from .application import as_json, build_service, create_app
from .config import Settings, load_settings
from .persistence import DocumentRecord, SqlDocumentStore, build_engine

_APP: Optional[FastAPI] = None

__all__: List[str] = [
    "DocumentRecord",
    "Settings",
    "SqlDocumentStore",
    "as_json",
    "build_engine",
    "build_service",
    "create_app",
    "load_settings",
]


def __getattr__(name: str) -> Any:
    global _APP
    if name == "app":
        if _APP is None:
            _APP = create_app()
        return _APP
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
