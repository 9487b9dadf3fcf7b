"""
Lucent 异常定义
"""

from typing import Any, Dict, Optional


class LucentException(Exception):
    """Lucent 基础异常类"""


class RecordNotFoundError(LucentException):
    """记录不存在异常（find_or_fail / find_by_or_fail / first_or_fail）"""
    def __init__(self, table_name: str, pk: Any = None, lookup: Optional[Dict[str, Any]] = None):
        self.table_name = table_name
        self.pk = pk
        self.lookup = lookup or {}
        if self.lookup:
            condition = ', '.join(f"{k}={v!r}" for k, v in self.lookup.items())
            message = f"Record matching ({condition}) not found in table '{table_name}'"
        elif pk is not None:
            message = f"Record with primary key '{pk}' not found in table '{table_name}'"
        else:
            message = f"No record found in table '{table_name}'"
        super().__init__(message)


class FrozenInstanceError(LucentException):
    """实例已删除（冻结）后仍被修改"""
    def __init__(self, model_name: str, field: Optional[str] = None):
        self.model_name = model_name
        self.field = field
        if field:
            message = f"Cannot set '{field}' on deleted {model_name} instance"
        else:
            message = f"Cannot write deleted {model_name} instance"
        super().__init__(message)


class PrimaryKeyError(LucentException):
    """已持久化实例的主键被修改"""
    def __init__(self, model_name: str, pk: Any):
        self.model_name = model_name
        self.pk = pk
        super().__init__(f"Primary key of persisted {model_name} '{pk}' cannot be changed")


class ColumnNotFoundError(LucentException):
    """列不存在异常"""
    def __init__(self, table_name: str, column_name: str):
        self.table_name = table_name
        self.column_name = column_name
        super().__init__(f"Column '{column_name}' not found in table '{table_name}'")


class RelationNotFoundError(LucentException):
    """模型上不存在该关联"""
    def __init__(self, model_name: str, relation_name: str):
        self.model_name = model_name
        self.relation_name = relation_name
        super().__init__(f"'{model_name}' has no relation '{relation_name}'")


class RelationNotLoadedError(LucentException):
    """访问尚未加载的关联"""
    def __init__(self, model_name: str, relation_name: str):
        self.model_name = model_name
        self.relation_name = relation_name
        super().__init__(
            f"Relation '{relation_name}' of {model_name} is not loaded. "
            f"Use preload() or await instance.load('{relation_name}') first"
        )


class ModelNotFoundError(LucentException):
    """模型名称未注册"""
    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model '{model_name}' is not registered")


class QueryError(LucentException):
    """查询构建/执行异常"""


class TransactionError(LucentException):
    """事务异常"""


class ConfigurationError(LucentException):
    """配置异常"""


class DatabaseConnectionError(LucentException):
    """数据库连接异常"""
