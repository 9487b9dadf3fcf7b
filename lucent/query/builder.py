"""
Lucent 查询构建器

链式累积约束（返回 self），终结方法异步执行。
查询执行后被冻结：继续修改会抛出 QueryError，需要变体时使用 clone()。
"""

import copy
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from .compiler import (
    CompiledQuery, JoinClause, QueryCompiler, Raw, SubSelect, WhereClause,
    normalize_operator,
)
from ..backends.base import ExecuteResult
from ..common.exceptions import QueryError

if TYPE_CHECKING:
    from ..core.database import Database
    from ..core.transaction import QueryClient, TransactionClient

_MISSING = object()

ColumnRef = Union[str, Raw, SubSelect]


class QueryBuilder:
    """
    表级查询构建器

    Example:
        rows = await (db.table('users')
                      .where('age', '>=', 18)
                      .where(lambda q: q.where('role', 'admin').or_where('role', 'owner'))
                      .order_by('name')
                      .limit(10)
                      .fetch())
    """

    def __init__(self, database: 'Database', table: Optional[str] = None,
                 connection: Optional[str] = None, alias: Optional[str] = None):
        self.database = database
        self.table_name = table
        self.alias = alias
        self.connection_name = connection
        self.trx: Optional['TransactionClient'] = None

        self.columns: List[ColumnRef] = []
        self.is_distinct = False
        self.wheres: List[WhereClause] = []
        self.joins: List[JoinClause] = []
        self.orders: List[Tuple[Union[str, Raw], str]] = []
        self.groups: List[str] = []
        self.havings: List[Raw] = []
        self.limit_value: Optional[int] = None
        self.offset_value: Optional[int] = None
        self._executed = False

    # ------------------------------------------------------------------
    # 基础
    # ------------------------------------------------------------------

    @property
    def table_ref(self) -> str:
        """列限定时使用的表名（别名优先）"""
        return self.alias or self.table_name or ''

    def _mutate(self) -> None:
        if self._executed:
            raise QueryError("Query has already been executed and cannot be modified. Use clone() first")

    def _new_nested(self) -> 'QueryBuilder':
        return QueryBuilder(self.database, self.table_name, self.connection_name, self.alias)

    def clone(self) -> 'QueryBuilder':
        """复制为可修改的新查询"""
        cloned = copy.copy(self)
        cloned.columns = list(self.columns)
        cloned.wheres = list(self.wheres)
        cloned.joins = list(self.joins)
        cloned.orders = list(self.orders)
        cloned.groups = list(self.groups)
        cloned.havings = list(self.havings)
        cloned._executed = False
        return cloned

    def compile_ready(self) -> 'QueryBuilder':
        """编译前的最终形态（子类在此追加全局约束）"""
        return self

    def from_(self, table: str, alias: Optional[str] = None) -> 'QueryBuilder':
        self._mutate()
        self.table_name = table
        self.alias = alias
        return self

    def as_(self, alias: str) -> 'QueryBuilder':
        self._mutate()
        self.alias = alias
        return self

    def use_transaction(self, trx: Optional['TransactionClient']) -> 'QueryBuilder':
        """在给定事务中执行（None 表示不使用事务）"""
        self._mutate()
        self.trx = trx
        return self

    # ------------------------------------------------------------------
    # SELECT / 排序 / 分页
    # ------------------------------------------------------------------

    def select(self, *columns: Union[str, Raw]) -> 'QueryBuilder':
        self._mutate()
        for col in columns:
            if isinstance(col, (list, tuple)):
                self.columns.extend(col)
            else:
                self.columns.append(col)
        return self

    def select_raw(self, sql: str, params: Sequence[Any] = ()) -> 'QueryBuilder':
        self._mutate()
        self.columns.append(Raw(sql, list(params)))
        return self

    def distinct(self) -> 'QueryBuilder':
        self._mutate()
        self.is_distinct = True
        return self

    def order_by(self, column: str, direction: str = 'asc') -> 'QueryBuilder':
        self._mutate()
        direction = direction.upper()
        if direction not in ('ASC', 'DESC'):
            raise QueryError(f"Invalid order direction '{direction}'")
        self.orders.append((column, direction))
        return self

    def order_by_raw(self, sql: str, params: Sequence[Any] = ()) -> 'QueryBuilder':
        self._mutate()
        self.orders.append((Raw(sql, list(params)), ''))
        return self

    def group_by(self, *columns: str) -> 'QueryBuilder':
        self._mutate()
        self.groups.extend(columns)
        return self

    def having_raw(self, sql: str, params: Sequence[Any] = ()) -> 'QueryBuilder':
        self._mutate()
        self.havings.append(Raw(sql, list(params)))
        return self

    def limit(self, value: Optional[int]) -> 'QueryBuilder':
        self._mutate()
        self.limit_value = value
        return self

    def offset(self, value: Optional[int]) -> 'QueryBuilder':
        self._mutate()
        self.offset_value = value
        return self

    def for_page(self, page: int, per_page: int = 20) -> 'QueryBuilder':
        """按页码设置 limit/offset（页码从 1 开始）"""
        page = max(int(page), 1)
        return self.offset((page - 1) * per_page).limit(per_page)

    # ------------------------------------------------------------------
    # JOIN
    # ------------------------------------------------------------------

    def join(self, table: str, first: str, operator: str, second: Optional[str] = None) -> 'QueryBuilder':
        return self._join('INNER', table, first, operator, second)

    def inner_join(self, table: str, first: str, operator: str, second: Optional[str] = None) -> 'QueryBuilder':
        return self._join('INNER', table, first, operator, second)

    def left_join(self, table: str, first: str, operator: str, second: Optional[str] = None) -> 'QueryBuilder':
        return self._join('LEFT', table, first, operator, second)

    def _join(self, kind: str, table: str, first: str, operator: str, second: Optional[str]) -> 'QueryBuilder':
        self._mutate()
        if second is None:
            operator, second = '=', operator
        self.joins.append(JoinClause(kind, table, first, normalize_operator(operator), second))
        return self

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def _add_where(self, clause: WhereClause) -> 'QueryBuilder':
        self._mutate()
        self.wheres.append(clause)
        return self

    def _where(self, boolean: str, negate: bool, column: Any, operator: Any, value: Any) -> 'QueryBuilder':
        if callable(column):
            nested = self._new_nested()
            column(nested)
            return self._add_where(WhereClause(boolean, 'group', clauses=nested.wheres, negate=negate))

        if isinstance(column, dict):
            nested = self._new_nested()
            for key, val in column.items():
                nested.where(key, val)
            return self._add_where(WhereClause(boolean, 'group', clauses=nested.wheres, negate=negate))

        if operator is _MISSING:
            raise QueryError(f"where('{column}') requires a value")
        if value is _MISSING:
            operator, value = '=', operator

        op = normalize_operator(operator)
        if value is None and op in ('=', 'IS'):
            return self._add_where(WhereClause(boolean, 'null', column=column, negate=negate))
        if value is None and op in ('!=', '<>', 'IS NOT'):
            return self._add_where(WhereClause(boolean, 'null', column=column, negate=not negate))
        return self._add_where(WhereClause(boolean, 'basic', column=column, operator=op, value=value, negate=negate))

    def where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> 'QueryBuilder':
        """
        添加 AND 条件

        支持 ``where('age', 18)``、``where('age', '>', 18)``、``where({'age': 18})``
        以及 ``where(lambda q: ...)``（括号分组）。
        """
        return self._where('AND', False, column, operator, value)

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> 'QueryBuilder':
        return self._where('OR', False, column, operator, value)

    def where_not(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> 'QueryBuilder':
        return self._where('AND', True, column, operator, value)

    def or_where_not(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> 'QueryBuilder':
        return self._where('OR', True, column, operator, value)

    def where_in(self, column: str, values: Sequence[Any]) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'in', column=column, value=list(values)))

    def or_where_in(self, column: str, values: Sequence[Any]) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'in', column=column, value=list(values)))

    def where_not_in(self, column: str, values: Sequence[Any]) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'in', column=column, value=list(values), negate=True))

    def or_where_not_in(self, column: str, values: Sequence[Any]) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'in', column=column, value=list(values), negate=True))

    def where_null(self, column: str) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'null', column=column))

    def or_where_null(self, column: str) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'null', column=column))

    def where_not_null(self, column: str) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'null', column=column, negate=True))

    def or_where_not_null(self, column: str) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'null', column=column, negate=True))

    def where_between(self, column: str, values: Sequence[Any]) -> 'QueryBuilder':
        low, high = values
        return self._add_where(WhereClause('AND', 'between', column=column, value=(low, high)))

    def where_not_between(self, column: str, values: Sequence[Any]) -> 'QueryBuilder':
        low, high = values
        return self._add_where(WhereClause('AND', 'between', column=column, value=(low, high), negate=True))

    def where_like(self, column: str, pattern: str) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'basic', column=column, operator='LIKE', value=pattern))

    def where_column(self, column: str, operator: str, other: Optional[str] = None) -> 'QueryBuilder':
        if other is None:
            operator, other = '=', operator
        return self._add_where(WhereClause('AND', 'column', column=column,
                                           operator=normalize_operator(operator), value=other))

    def where_raw(self, sql: str, params: Sequence[Any] = ()) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'raw', value=Raw(sql, list(params))))

    def or_where_raw(self, sql: str, params: Sequence[Any] = ()) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'raw', value=Raw(sql, list(params))))

    def _subquery(self, query: Union['QueryBuilder', Callable[['QueryBuilder'], Any]]) -> 'QueryBuilder':
        if isinstance(query, QueryBuilder):
            return query
        sub = QueryBuilder(self.database, connection=self.connection_name)
        query(sub)
        return sub

    def where_exists(self, query: Union['QueryBuilder', Callable[['QueryBuilder'], Any]]) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'exists', query=self._subquery(query)))

    def or_where_exists(self, query: Union['QueryBuilder', Callable[['QueryBuilder'], Any]]) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'exists', query=self._subquery(query)))

    def where_not_exists(self, query: Union['QueryBuilder', Callable[['QueryBuilder'], Any]]) -> 'QueryBuilder':
        return self._add_where(WhereClause('AND', 'exists', query=self._subquery(query), negate=True))

    def or_where_not_exists(self, query: Union['QueryBuilder', Callable[['QueryBuilder'], Any]]) -> 'QueryBuilder':
        return self._add_where(WhereClause('OR', 'exists', query=self._subquery(query), negate=True))

    def where_sub(self, query: 'QueryBuilder', operator: str, value: Any, boolean: str = 'AND') -> 'QueryBuilder':
        """(subquery) operator value"""
        return self._add_where(WhereClause(boolean, 'sub', operator=normalize_operator(operator),
                                           value=value, query=query))

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------

    async def _client(self) -> 'QueryClient':
        if self.trx is not None:
            return self.trx
        return await self.database.client(self.connection_name)

    async def _compiler(self) -> Tuple['QueryClient', QueryCompiler]:
        client = await self._client()
        return client, QueryCompiler(client.dialect)

    def _mark_executed(self) -> None:
        self._executed = True

    async def to_sql(self) -> CompiledQuery:
        """编译为 (sql, params) 而不执行"""
        _, compiler = await self._compiler()
        return compiler.compile_select(self)

    async def _fetch_rows(self) -> List[Dict[str, Any]]:
        client, compiler = await self._compiler()
        compiled = compiler.compile_select(self)
        self._mark_executed()
        return await client.fetch_all(compiled.sql, compiled.params)

    async def fetch(self) -> Any:
        """执行查询，返回字典行列表"""
        return await self._fetch_rows()

    async def first(self) -> Any:
        query = self.clone().limit(1)
        rows = await query._fetch_rows()
        self._mark_executed()
        return rows[0] if rows else None

    async def _aggregate(self, function: str, column: str = '*', distinct: bool = False) -> Any:
        client, compiler = await self._compiler()
        compiled = compiler.compile_aggregate(self, function, column, distinct)
        self._mark_executed()
        rows = await client.fetch_all(compiled.sql, compiled.params)
        return rows[0]['aggregate'] if rows else None

    async def count(self, column: str = '*') -> int:
        return int(await self._aggregate('COUNT', column) or 0)

    async def count_distinct(self, column: str) -> int:
        return int(await self._aggregate('COUNT', column, distinct=True) or 0)

    async def sum(self, column: str) -> Any:
        return await self._aggregate('SUM', column)

    async def sum_distinct(self, column: str) -> Any:
        return await self._aggregate('SUM', column, distinct=True)

    async def avg(self, column: str) -> Any:
        return await self._aggregate('AVG', column)

    async def avg_distinct(self, column: str) -> Any:
        return await self._aggregate('AVG', column, distinct=True)

    async def min(self, column: str) -> Any:
        return await self._aggregate('MIN', column)

    async def max(self, column: str) -> Any:
        return await self._aggregate('MAX', column)

    async def exists(self) -> bool:
        # 只取原始行，跳过模型实例化与钩子
        rows = await self.clone().limit(1)._fetch_rows()
        return bool(rows)

    async def pluck(self, column: str) -> List[Any]:
        """单列值列表"""
        query = self.clone()
        query.columns = [column]
        rows = await query._fetch_rows()
        self._mark_executed()
        key = column.split('.')[-1]
        return [row[key] for row in rows]

    async def pair(self, lhs: str, rhs: str) -> Dict[Any, Any]:
        """
        {lhs 值: rhs 值}，顺序与结果行一致

        Args:
            lhs: 作为键的列
            rhs: 作为值的列
        """
        query = self.clone()
        query.columns = [lhs, rhs]
        rows = await query._fetch_rows()
        self._mark_executed()
        lkey, rkey = lhs.split('.')[-1], rhs.split('.')[-1]
        return {row[lkey]: row[rkey] for row in rows}

    async def insert(self, values: Dict[str, Any]) -> ExecuteResult:
        client, compiler = await self._compiler()
        compiled = compiler.compile_insert(self.table_name, values)
        self._mark_executed()
        return await client.execute(compiled.sql, compiled.params)

    async def multi_insert(self, rows: Sequence[Dict[str, Any]]) -> ExecuteResult:
        client, compiler = await self._compiler()
        compiled = compiler.compile_multi_insert(self.table_name, rows)
        self._mark_executed()
        return await client.execute(compiled.sql, compiled.params)

    async def update(self, values: Dict[str, Any]) -> int:
        """批量更新，返回受影响行数"""
        client, compiler = await self._compiler()
        compiled = compiler.compile_update(self, values)
        self._mark_executed()
        result = await client.execute(compiled.sql, compiled.params)
        return result.rowcount

    async def increment(self, column: str, amount: Union[int, float] = 1) -> int:
        return await self._adjust(column, '+', amount)

    async def decrement(self, column: str, amount: Union[int, float] = 1) -> int:
        return await self._adjust(column, '-', amount)

    async def _adjust(self, column: str, sign: str, amount: Union[int, float]) -> int:
        dialect = (await self._client()).dialect
        return await self.update({column: Raw(f"{dialect.quote(column)} {sign} {dialect.placeholder}", [amount])})

    async def delete(self) -> int:
        """批量删除，返回受影响行数"""
        client, compiler = await self._compiler()
        compiled = compiler.compile_delete(self)
        self._mark_executed()
        result = await client.execute(compiled.sql, compiled.params)
        return result.rowcount

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table='{self.table_name}', wheres={len(self.wheres)})"
