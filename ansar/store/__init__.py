"""Document store adapters and factory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from ansar.config import config

from .base import GRADE_COLORS, GRADE_RANK, DocumentStore
from .sqlite_store import SQLiteDocumentStore

if TYPE_CHECKING:
    from pathlib import Path

StoreBackend = Literal["sqlite"]


def get_document_store(
    store: StoreBackend | None = None,
    *,
    db_path: Path | None = None,
) -> DocumentStore:
    """Return a configured document store instance.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    backend = (store or config.DOCUMENT_STORE_BACKEND).lower()
    if db_path is None:
        db_path = config.DOCUMENT_STORE_DB_PATH

    if backend == "sqlite":
        return SQLiteDocumentStore(db_path=db_path)

    msg = f"Unsupported document store backend: {store}"
    raise ValueError(msg)


__all__ = [
    "GRADE_COLORS",
    "GRADE_RANK",
    "DocumentStore",
    "SQLiteDocumentStore",
    "StoreBackend",
    "get_document_store",
]
