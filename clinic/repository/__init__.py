"""Ledger store backends."""
from __future__ import annotations

from .base import Repository
from .memory import MemoryRepository
from .sql import SqlRepository

__all__ = ["Repository", "MemoryRepository", "SqlRepository", "build_repository"]


def build_repository(config) -> Repository:
    """Pick the backend named by ``STORAGE_BACKEND``."""
    backend = (config.get("STORAGE_BACKEND") or "sql").lower()
    if backend == "memory":
        return MemoryRepository()
    if backend == "sql":
        return SqlRepository()
    raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}; expected 'sql' or 'memory'")
