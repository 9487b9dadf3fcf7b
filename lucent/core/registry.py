"""
模型注册表

每个 declarative_base() 拥有独立的注册表，关联目标可按类名或表名延迟解析。
"""

from typing import Dict, List, Type, TYPE_CHECKING

from ..common.exceptions import ModelNotFoundError

if TYPE_CHECKING:
    from .orm import BaseModel


class ModelRegistry:
    """类名 / 表名 -> 模型类"""

    def __init__(self) -> None:
        self._by_name: Dict[str, Type['BaseModel']] = {}
        self._by_table: Dict[str, Type['BaseModel']] = {}

    def register(self, model: Type['BaseModel']) -> None:
        # 同名模型重新定义时覆盖旧定义
        self._by_name[model.__name__] = model
        self._by_table[model.__tablename__] = model

    def get(self, name: str) -> Type['BaseModel']:
        """
        按类名（优先）或表名查找模型

        Raises:
            ModelNotFoundError: 未注册
        """
        model = self._by_name.get(name) or self._by_table.get(name)
        if model is None:
            raise ModelNotFoundError(name)
        return model

    def models(self) -> List[Type['BaseModel']]:
        return list(self._by_name.values())

    def __contains__(self, name: str) -> bool:
        return name in self._by_name or name in self._by_table
