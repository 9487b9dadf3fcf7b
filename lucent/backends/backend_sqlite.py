"""
Lucent SQLite 存储引擎

基于 aiosqlite 的异步实现。事务在独立连接上运行；':memory:' 由一个私有临时文件承载并开启 WAL，
使事务外的读取看到已提交数据而不会被事务的写锁阻塞，关闭时删除该文件。
"""

import logging
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from .base import BackendTransaction, ExecuteResult, SQLDialect, StorageBackend
from ..common.exceptions import DatabaseConnectionError
from ..common.options import SqliteConnectorOptions

logger = logging.getLogger(__name__)


class SqliteDialect(SQLDialect):
    """SQLite 方言"""
    name = 'sqlite'


async def _execute(conn: aiosqlite.Connection, sql: str, params: Sequence[Any]) -> ExecuteResult:
    cursor = await conn.execute(sql, tuple(params))
    try:
        return ExecuteResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
    finally:
        await cursor.close()


async def _fetch_all(conn: aiosqlite.Connection, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
    async with conn.execute(sql, tuple(params)) as cursor:
        rows = await cursor.fetchall()
    return [dict(row) for row in rows]


class SqliteTransaction(BackendTransaction):
    """SQLite 事务（独立连接，BEGIN 已执行）"""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        return await _execute(self._conn, sql, params)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await _fetch_all(self._conn, sql, params)

    async def commit(self) -> None:
        try:
            await self._conn.execute('COMMIT')
        finally:
            await self._conn.close()

    async def rollback(self) -> None:
        try:
            await self._conn.execute('ROLLBACK')
        finally:
            await self._conn.close()


class SqliteBackend(StorageBackend):
    """SQLite format storage engine (aiosqlite)"""

    ENGINE_NAME = 'sqlite'
    REQUIRED_DEPENDENCIES = ['aiosqlite']
    DIALECT = SqliteDialect()

    def __init__(self, options: SqliteConnectorOptions):
        """
        初始化 SQLite 后端

        Args:
            options: SQLite 连接器配置选项
        """
        assert isinstance(options, SqliteConnectorOptions), "options must be an instance of SqliteConnectorOptions"
        super().__init__(options)
        self.options: SqliteConnectorOptions = options
        self._conn: Optional[aiosqlite.Connection] = None
        self._scratch_dir: Optional[str] = None
        self._database = options.database
        self._uri = options.database.startswith('file:')

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def _open(self) -> aiosqlite.Connection:
        try:
            conn = await aiosqlite.connect(
                self._database,
                uri=self._uri,
                timeout=self.options.timeout,
                isolation_level=self.options.isolation_level,
            )
        except Exception as e:
            raise DatabaseConnectionError(f"Cannot open SQLite database '{self.options.database}': {e}") from e
        conn.row_factory = aiosqlite.Row
        for pragma, value in self.options.pragmas.items():
            await conn.execute(f'PRAGMA {pragma} = {value}')
        return conn

    async def connect(self) -> None:
        if self._conn is not None:
            return
        if self.options.database == ':memory:':
            self._scratch_dir = tempfile.mkdtemp(prefix='lucent-')
            self._database = f'{self._scratch_dir}/memory.db'
        self._conn = await self._open()
        if self._scratch_dir is not None:
            await self._conn.execute('PRAGMA journal_mode = WAL')
            await self._conn.execute('PRAGMA synchronous = OFF')
        logger.debug("sqlite connection opened: %s", self.options.database)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        if self._scratch_dir is not None:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
            self._scratch_dir = None
        logger.debug("sqlite connection closed: %s", self.options.database)

    def _require_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise DatabaseConnectionError("SQLite backend is not connected")
        return self._conn

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        return await _execute(self._require_connection(), sql, params)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await _fetch_all(self._require_connection(), sql, params)

    async def begin(self) -> SqliteTransaction:
        self._require_connection()
        conn = await self._open()
        await conn.execute('BEGIN')
        return SqliteTransaction(conn)
