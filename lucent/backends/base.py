"""
Lucent 存储后端抽象

后端只负责连接、参数化语句执行与事务开启/提交/回滚；
SQL 方言（标识符引用、占位符）由后端声明，查询编译器据此生成语句。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..common.options import ConnectorOptions


@dataclass(slots=True)
class ExecuteResult:
    """写语句执行结果"""
    rowcount: int = 0
    lastrowid: Optional[Any] = None


class SQLDialect:
    """SQL 方言（默认 ANSI 双引号 + 问号占位符）"""

    name = 'ansi'
    placeholder = '?'

    def quote(self, identifier: str) -> str:
        """
        引用标识符，支持 ``table.column`` 与 ``*``

        Args:
            identifier: 标识符

        Returns:
            引用后的标识符
        """
        parts = []
        for part in identifier.split('.'):
            if part == '*':
                parts.append(part)
            else:
                parts.append('"' + part.replace('"', '""') + '"')
        return '.'.join(parts)

    def placeholders(self, count: int) -> str:
        return ', '.join([self.placeholder] * count)


class Executor(ABC):
    """可执行语句的对象（连接或事务）"""

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """执行写语句"""

    @abstractmethod
    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """执行查询并返回字典行"""


class BackendTransaction(Executor):
    """后端事务：持有独立连接"""

    @abstractmethod
    async def commit(self) -> None:
        """提交"""

    @abstractmethod
    async def rollback(self) -> None:
        """回滚"""


class StorageBackend(Executor):
    """存储后端抽象基类"""

    ENGINE_NAME: str = ''
    REQUIRED_DEPENDENCIES: List[str] = []
    DIALECT: SQLDialect = SQLDialect()

    def __init__(self, options: ConnectorOptions):
        self.options = options

    @property
    def dialect(self) -> SQLDialect:
        return self.DIALECT

    @abstractmethod
    async def connect(self) -> None:
        """建立连接（重复调用无副作用）"""

    @abstractmethod
    async def close(self) -> None:
        """关闭连接"""

    @abstractmethod
    async def begin(self) -> BackendTransaction:
        """开启事务，返回持有独立连接的事务对象"""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """是否已连接"""
