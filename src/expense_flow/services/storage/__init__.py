from .base import ExpenseStoreBase
from .memory import InMemoryExpenseStore
from .sqlite import SQLiteExpenseStore

_default_store: ExpenseStoreBase | None = None


def get_store() -> ExpenseStoreBase:
    """
    Get the process-wide store configured by STORAGE_BACKEND.

    Returns:
        InMemoryExpenseStore (default) or SQLiteExpenseStore
    """
    global _default_store
    if _default_store is None:
        from ...core.config import settings

        if settings.storage_backend == "sqlite":
            _default_store = SQLiteExpenseStore(settings.sqlite_path)
        else:
            _default_store = InMemoryExpenseStore()
    return _default_store


def set_store(store: ExpenseStoreBase | None) -> None:
    """Override the process-wide store (tests, alternative wiring)"""
    global _default_store
    _default_store = store
