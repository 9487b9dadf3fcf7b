"""
Lucent 数据库管理

管理命名连接（按需连接），提供原生语句、表级查询构建器与事务入口。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type, TypeVar, TYPE_CHECKING

from .transaction import QueryClient, TransactionClient
from ..backends.base import ExecuteResult, StorageBackend
from ..backends.registry import get_backend
from ..common.exceptions import ConfigurationError
from ..common.options import DatabaseConfig

if TYPE_CHECKING:
    from .orm import BaseModel
    from ..query.builder import QueryBuilder

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Database:
    """
    数据库

    Example:
        db = Database()  # 默认：名为 'primary' 的内存 SQLite
        db = Database(DatabaseConfig.from_dict({...}))

        rows = await db.table('users').where('age', '>', 18).fetch()
        await db.close()
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """
        初始化数据库

        Args:
            config: 数据库配置（None 表示默认内存 SQLite）
        """
        self.config = config or DatabaseConfig()
        self._backends: Dict[str, StorageBackend] = {}
        self._clients: Dict[str, QueryClient] = {}
        self._connect_locks: Dict[str, asyncio.Lock] = {}

    @property
    def default_connection(self) -> str:
        return self.config.connection

    def _resolve_name(self, name: Optional[str]) -> str:
        name = name or self.config.connection
        if name not in self.config.connections:
            raise ConfigurationError(f"Connection '{name}' is not defined")
        return name

    async def connect(self, name: Optional[str] = None) -> QueryClient:
        """
        建立（或复用）命名连接

        Args:
            name: 连接名（None 表示默认连接）

        Returns:
            该连接的 QueryClient
        """
        name = self._resolve_name(name)
        client = self._clients.get(name)
        if client is not None:
            return client

        # 并发的首次连接只建立一个后端
        async with self._connect_locks.setdefault(name, asyncio.Lock()):
            client = self._clients.get(name)
            if client is not None:
                return client
            conn_config = self.config.connections[name]
            backend = get_backend(conn_config.engine, conn_config.options)
            await backend.connect()
            client = QueryClient(self, name, backend, backend.dialect)
            self._backends[name] = backend
            self._clients[name] = client
        logger.debug("connection '%s' ready (%s)", name, conn_config.engine)
        return client

    async def client(self, name: Optional[str] = None) -> QueryClient:
        return await self.connect(name)

    async def transaction(
        self,
        callback: Optional[Callable[[TransactionClient], Awaitable[T]]] = None,
        connection: Optional[str] = None,
    ) -> Any:
        """
        开启事务

        无 callback 时返回 TransactionClient，由调用方提交或回滚；
        有 callback 时以事务客户端调用它，成功则提交并返回其结果，异常则回滚并重新抛出。

        Args:
            callback: 在事务中执行的协程函数
            connection: 连接名

        Returns:
            TransactionClient 或 callback 的返回值
        """
        name = self._resolve_name(connection)
        await self.connect(name)
        backend = self._backends[name]
        trx = TransactionClient(self, name, await backend.begin(), backend.dialect)
        logger.debug("[%s:trx] begin", name)

        if callback is None:
            return trx

        try:
            result = await callback(trx)
        except Exception:
            if not trx.is_completed:
                await trx.rollback()
            raise
        if not trx.is_completed:
            await trx.commit()
        return result

    async def raw(self, sql: str, params: Sequence[Any] = (), connection: Optional[str] = None) -> ExecuteResult:
        """执行原生写语句"""
        client = await self.connect(connection)
        return await client.execute(sql, params)

    async def raw_query(self, sql: str, params: Sequence[Any] = (),
                        connection: Optional[str] = None) -> List[Dict[str, Any]]:
        """执行原生查询，返回字典行"""
        client = await self.connect(connection)
        return await client.fetch_all(sql, params)

    def table(self, name: str, connection: Optional[str] = None) -> 'QueryBuilder':
        """
        表级查询构建器（返回字典行，不经过模型）

        Args:
            name: 表名
            connection: 连接名
        """
        from ..query.builder import QueryBuilder
        return QueryBuilder(self, name, connection=connection)

    async def create_table(self, model: Type['BaseModel']) -> None:
        """按模型的列定义建表（已存在则跳过）"""
        from .schema import create_table_sql
        model.boot_if_not_booted()
        client = await self.connect(model.__options__.connection)
        await client.execute(create_table_sql(model, client.dialect))

    async def close(self, name: Optional[str] = None) -> None:
        """关闭连接（None 表示全部）"""
        names = [name] if name else list(self._backends)
        for conn_name in names:
            backend = self._backends.pop(conn_name, None)
            self._clients.pop(conn_name, None)
            if backend is not None:
                await backend.close()

    async def __aenter__(self) -> 'Database':
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"Database(connection='{self.config.connection}', open={sorted(self._backends)})"
