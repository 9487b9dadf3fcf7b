"""
Lucent 核心模块

包含模型、关联、数据库与事务管理、事件钩子等核心功能
"""

from .database import Database
from .transaction import QueryClient, QueryInfo, TransactionClient
from .orm import (
    Column,
    Computed,
    Scope,
    BaseModel,
    computed,
    scope,
    declarative_base,
)
from .relations import (
    Relation,
    HasOne,
    HasMany,
    BelongsTo,
    ManyToMany,
    HasManyThrough,
)
from .prefetch import preload
from .event import event, EventManager
from .registry import ModelRegistry

__all__ = [
    # Database
    'Database',
    'QueryClient',
    'QueryInfo',
    'TransactionClient',
    # ORM
    'Column',
    'Computed',
    'Scope',
    'BaseModel',
    'computed',
    'scope',
    'declarative_base',
    'ModelRegistry',
    # Relations
    'Relation',
    'HasOne',
    'HasMany',
    'BelongsTo',
    'ManyToMany',
    'HasManyThrough',
    'preload',
    # Events
    'event',
    'EventManager',
]
