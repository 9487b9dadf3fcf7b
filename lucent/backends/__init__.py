"""
数据库引擎

每种引擎提供一个 StorageBackend 子类与对应的 SQLDialect，
通过 BackendRegistry 按名称查找。目前内置 sqlite（aiosqlite）。
"""

from .base import BackendTransaction, ExecuteResult, Executor, SQLDialect, StorageBackend
from .backend_sqlite import SqliteBackend
from .registry import BackendRegistry, get_available_engines, get_backend

__all__ = [
    'StorageBackend',
    'BackendTransaction',
    'Executor',
    'ExecuteResult',
    'SQLDialect',
    'SqliteBackend',
    'BackendRegistry',
    'get_backend',
    'get_available_engines',
]
