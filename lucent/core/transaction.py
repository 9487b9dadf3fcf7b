"""
Lucent 查询客户端与事务

QueryClient 包装后端执行器：记录日志并分发 Database 级 ``query`` 事件。
TransactionClient 持有独立连接，必须显式传递给参与事务的操作。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from .event import event
from ..backends.base import BackendTransaction, ExecuteResult, Executor, SQLDialect
from ..common.exceptions import TransactionError

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueryInfo:
    """``query`` 事件数据"""
    sql: str
    params: List[Any] = field(default_factory=list)
    connection: str = ''
    in_transaction: bool = False


class QueryClient:
    """绑定到命名连接的语句执行器"""

    is_transaction = False

    def __init__(self, database: 'Database', connection_name: str, executor: Executor, dialect: SQLDialect):
        self.database = database
        self.connection_name = connection_name
        self.dialect = dialect
        self._executor = executor

    def _report(self, sql: str, params: Sequence[Any]) -> None:
        logger.debug("[%s%s] %s %r", self.connection_name,
                     ':trx' if self.is_transaction else '', sql, list(params))
        event.dispatch_database(self.database, 'query', QueryInfo(
            sql=sql,
            params=list(params),
            connection=self.connection_name,
            in_transaction=self.is_transaction,
        ))

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        self._report(sql, params)
        return await self._executor.execute(sql, params)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self._report(sql, params)
        return await self._executor.fetch_all(sql, params)

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None


class TransactionClient(QueryClient):
    """
    事务客户端

    提交与回滚由调用方决定；也可作为异步上下文管理器使用，
    正常退出时提交，异常退出时回滚并重新抛出异常。

    Example:
        trx = await db.transaction()
        try:
            await user.save(trx)
            await Profile.create({'user_id': user.id}, trx=trx)
            await trx.commit()
        except Exception:
            await trx.rollback()
            raise

        async with await db.transaction() as trx:
            await user.save(trx)
    """

    is_transaction = True

    def __init__(self, database: 'Database', connection_name: str,
                 transaction: BackendTransaction, dialect: SQLDialect):
        super().__init__(database, connection_name, transaction, dialect)
        self._transaction = transaction
        self._completed = False

    @property
    def is_completed(self) -> bool:
        return self._completed

    def _ensure_open(self) -> None:
        if self._completed:
            raise TransactionError("Transaction is already committed or rolled back")

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        self._ensure_open()
        return await super().execute(sql, params)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self._ensure_open()
        return await super().fetch_all(sql, params)

    async def commit(self) -> None:
        self._ensure_open()
        self._completed = True
        await self._transaction.commit()
        logger.debug("[%s:trx] committed", self.connection_name)

    async def rollback(self) -> None:
        self._ensure_open()
        self._completed = True
        await self._transaction.rollback()
        logger.debug("[%s:trx] rolled back", self.connection_name)

    async def __aenter__(self) -> 'TransactionClient':
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._completed:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()
