"""
按模型列定义生成建表语句
"""

from typing import List, Type, TYPE_CHECKING

from .types import TypeRegistry
from ..backends.base import SQLDialect

if TYPE_CHECKING:
    from .orm import BaseModel


def create_table_sql(model: Type['BaseModel'], dialect: SQLDialect) -> str:
    """
    生成 ``CREATE TABLE IF NOT EXISTS`` 语句

    自增整数主键生成 ``INTEGER PRIMARY KEY AUTOINCREMENT``。

    Args:
        model: 模型类
        dialect: SQL 方言

    Returns:
        建表 SQL
    """
    parts: List[str] = []
    for column in model.__columns__.values():
        piece = f"{dialect.quote(column.name)} {TypeRegistry.sql_type(column.col_type)}"
        if column.primary_key:
            piece += ' PRIMARY KEY'
            if model.__options__.incrementing and column.col_type is int:
                piece += ' AUTOINCREMENT'
        else:
            if not column.nullable:
                piece += ' NOT NULL'
            if column.unique:
                piece += ' UNIQUE'
        parts.append(piece)
    return f"CREATE TABLE IF NOT EXISTS {dialect.quote(model.__tablename__)} ({', '.join(parts)})"
