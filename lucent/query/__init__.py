"""
Lucent 查询子系统

包含表级查询构建器、模型查询、结果集合与 SQL 编译器
"""

from .builder import QueryBuilder
from .model_query import ModelQuery
from .result import ModelCollection, Paginator
from .compiler import QueryCompiler, CompiledQuery, Raw, SubSelect, WhereClause, JoinClause

__all__ = [
    # Builder
    'QueryBuilder',
    'ModelQuery',
    # Result
    'ModelCollection',
    'Paginator',
    # Compiler
    'QueryCompiler',
    'CompiledQuery',
    'Raw',
    'SubSelect',
    'WhereClause',
    'JoinClause',
]
