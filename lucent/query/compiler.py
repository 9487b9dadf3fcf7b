"""
Lucent SQL 编译器

将查询描述（QueryBuilder 累积的约束）编译为参数化 SQL。
方言（标识符引用、占位符）由后端提供。
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..backends.base import SQLDialect
from ..common.exceptions import QueryError
from ..core.types import DATE_FORMAT, DATETIME_FORMAT

if TYPE_CHECKING:
    from .builder import QueryBuilder


@dataclass(slots=True)
class CompiledQuery:
    """编译结果"""
    sql: str
    params: List[Any] = field(default_factory=list)

    def __iter__(self):
        # 支持 sql, params = compiled
        yield self.sql
        yield self.params


@dataclass(slots=True)
class Raw:
    """原生 SQL 片段"""
    sql: str
    params: List[Any] = field(default_factory=list)


@dataclass(slots=True)
class SubSelect:
    """作为列输出的子查询：(subquery) AS alias"""
    query: 'QueryBuilder'
    alias: str


@dataclass(slots=True)
class WhereClause:
    """
    WHERE 子句

    kind:
        basic   -- column operator value
        in      -- column IN (values)
        null    -- column IS NULL
        between -- column BETWEEN a AND b
        column  -- column operator other_column
        group   -- (nested clauses)
        exists  -- EXISTS (subquery)
        sub     -- (subquery) operator value
        raw     -- 原生片段
    """
    boolean: str
    kind: str
    column: Optional[str] = None
    operator: str = '='
    value: Any = None
    negate: bool = False
    query: Optional['QueryBuilder'] = None
    clauses: Optional[List['WhereClause']] = None


@dataclass(slots=True)
class JoinClause:
    kind: str
    table: str
    first: str
    operator: str
    second: str


VALID_OPERATORS = {
    '=', '!=', '<>', '<', '<=', '>', '>=',
    'like', 'not like', 'is', 'is not',
}

AGGREGATE_FUNCTIONS = {'COUNT', 'SUM', 'AVG', 'MIN', 'MAX'}


def normalize_operator(operator: str) -> str:
    op = operator.strip().lower()
    if op not in VALID_OPERATORS:
        raise QueryError(f"Invalid operator '{operator}'. Valid operators: {', '.join(sorted(VALID_OPERATORS))}")
    return op.upper() if op[0].isalpha() else op


def to_param(value: Any) -> Any:
    """Python 值 -> 绑定参数"""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    return value


class QueryCompiler:
    """查询编译器"""

    def __init__(self, dialect: SQLDialect):
        self.dialect = dialect

    # ------------------------------------------------------------------
    # 标识符
    # ------------------------------------------------------------------

    def column(self, name: str) -> str:
        """引用列名，支持 ``col as alias``"""
        lowered = name.lower()
        if ' as ' in lowered:
            idx = lowered.index(' as ')
            return f"{self.dialect.quote(name[:idx].strip())} AS {self.dialect.quote(name[idx + 4:].strip())}"
        return self.dialect.quote(name)

    def table(self, query: 'QueryBuilder') -> str:
        if query.table_name is None:
            raise QueryError("Query has no table. Call from_() first")
        sql = self.dialect.quote(query.table_name)
        if query.alias:
            sql += f" AS {self.dialect.quote(query.alias)}"
        return sql

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def compile_select(self, query: 'QueryBuilder') -> CompiledQuery:
        """
        编译 SELECT

        Args:
            query: 查询构建器

        Returns:
            CompiledQuery
        """
        query = query.compile_ready()
        params: List[Any] = []

        columns: List[str] = []
        for col in query.columns or ['*']:
            if isinstance(col, Raw):
                columns.append(col.sql)
                params.extend(col.params)
            elif isinstance(col, SubSelect):
                sub = self.compile_select(col.query)
                columns.append(f"({sub.sql}) AS {self.dialect.quote(col.alias)}")
                params.extend(sub.params)
            else:
                columns.append(self.column(col))

        sql = 'SELECT ' + ('DISTINCT ' if query.is_distinct else '') + ', '.join(columns)
        sql += ' FROM ' + self.table(query)
        sql += self._compile_joins(query.joins)

        where_sql, where_params = self.compile_wheres(query.wheres)
        if where_sql:
            sql += ' WHERE ' + where_sql
            params.extend(where_params)

        if query.groups:
            sql += ' GROUP BY ' + ', '.join(self.column(g) for g in query.groups)
        if query.havings:
            sql += ' HAVING ' + ' AND '.join(h.sql for h in query.havings)
            for h in query.havings:
                params.extend(h.params)

        if query.orders:
            parts = []
            for col, direction in query.orders:
                if isinstance(col, Raw):
                    parts.append(col.sql)
                    params.extend(col.params)
                else:
                    parts.append(f"{self.column(col)} {direction}")
            sql += ' ORDER BY ' + ', '.join(parts)

        sql += self._compile_paging(query.limit_value, query.offset_value)
        return CompiledQuery(sql, params)

    def compile_aggregate(self, query: 'QueryBuilder', function: str,
                          column: str = '*', distinct: bool = False) -> CompiledQuery:
        """
        编译聚合查询（忽略排序与分页）

        Args:
            query: 查询构建器
            function: COUNT / SUM / AVG / MIN / MAX
            column: 聚合列
            distinct: 是否 DISTINCT
        """
        function = function.upper()
        if function not in AGGREGATE_FUNCTIONS:
            raise QueryError(f"Unknown aggregate function '{function}'")
        query = query.compile_ready()
        target = '*' if column == '*' else self.column(column)
        if distinct:
            if column == '*':
                raise QueryError(f"{function} DISTINCT requires a column")
            target = 'DISTINCT ' + target

        sql = f"SELECT {function}({target}) AS {self.dialect.quote('aggregate')} FROM {self.table(query)}"
        sql += self._compile_joins(query.joins)
        params: List[Any] = []
        where_sql, where_params = self.compile_wheres(query.wheres)
        if where_sql:
            sql += ' WHERE ' + where_sql
            params.extend(where_params)
        return CompiledQuery(sql, params)

    # ------------------------------------------------------------------
    # 写语句
    # ------------------------------------------------------------------

    def compile_insert(self, table: str, values: Dict[str, Any]) -> CompiledQuery:
        if not values:
            return CompiledQuery(f"INSERT INTO {self.dialect.quote(table)} DEFAULT VALUES", [])
        cols = ', '.join(self.dialect.quote(c) for c in values)
        sql = (f"INSERT INTO {self.dialect.quote(table)} ({cols}) "
               f"VALUES ({self.dialect.placeholders(len(values))})")
        return CompiledQuery(sql, [to_param(v) for v in values.values()])

    def compile_multi_insert(self, table: str, rows: Sequence[Dict[str, Any]]) -> CompiledQuery:
        if not rows:
            raise QueryError("multi_insert requires at least one row")
        columns = list(rows[0].keys())
        for row in rows[1:]:
            if list(row.keys()) != columns:
                raise QueryError("All rows of multi_insert must have the same columns")
        cols = ', '.join(self.dialect.quote(c) for c in columns)
        group = f"({self.dialect.placeholders(len(columns))})"
        sql = f"INSERT INTO {self.dialect.quote(table)} ({cols}) VALUES " + ', '.join([group] * len(rows))
        params = [to_param(row[c]) for row in rows for c in columns]
        return CompiledQuery(sql, params)

    def compile_update(self, query: 'QueryBuilder', values: Dict[str, Any]) -> CompiledQuery:
        if not values:
            raise QueryError("update requires at least one column")
        query = query.compile_ready()
        sets: List[str] = []
        params: List[Any] = []
        for col, value in values.items():
            if isinstance(value, Raw):
                sets.append(f"{self.dialect.quote(col)} = {value.sql}")
                params.extend(value.params)
            else:
                sets.append(f"{self.dialect.quote(col)} = {self.dialect.placeholder}")
                params.append(to_param(value))
        sql = f"UPDATE {self.dialect.quote(query.table_name)} SET {', '.join(sets)}"
        where_sql, where_params = self.compile_wheres(query.wheres)
        if where_sql:
            sql += ' WHERE ' + where_sql
            params.extend(where_params)
        return CompiledQuery(sql, params)

    def compile_delete(self, query: 'QueryBuilder') -> CompiledQuery:
        query = query.compile_ready()
        sql = f"DELETE FROM {self.dialect.quote(query.table_name)}"
        params: List[Any] = []
        where_sql, where_params = self.compile_wheres(query.wheres)
        if where_sql:
            sql += ' WHERE ' + where_sql
            params.extend(where_params)
        return CompiledQuery(sql, params)

    # ------------------------------------------------------------------
    # 子句
    # ------------------------------------------------------------------

    def _compile_joins(self, joins: List[JoinClause]) -> str:
        sql = ''
        for join in joins:
            sql += (f" {join.kind} JOIN {self.dialect.quote(join.table)} ON "
                    f"{self.column(join.first)} {join.operator} {self.column(join.second)}")
        return sql

    def _compile_paging(self, limit: Optional[int], offset: Optional[int]) -> str:
        sql = ''
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        if offset:
            if limit is None:
                sql += ' LIMIT -1'
            sql += f" OFFSET {int(offset)}"
        return sql

    def compile_wheres(self, clauses: Sequence[WhereClause]) -> Tuple[str, List[Any]]:
        """
        编译 WHERE 子句列表

        Returns:
            (sql, params)，无子句时 sql 为空字符串
        """
        parts: List[str] = []
        params: List[Any] = []
        for clause in clauses:
            sql, clause_params = self._compile_where(clause)
            if parts:
                parts.append(clause.boolean)
            parts.append(sql)
            params.extend(clause_params)
        return ' '.join(parts), params

    def _compile_where(self, clause: WhereClause) -> Tuple[str, List[Any]]:
        ph = self.dialect.placeholder
        not_ = 'NOT ' if clause.negate else ''

        if clause.kind == 'basic':
            sql = f"{self.column(clause.column)} {clause.operator} {ph}"
            return (f"NOT ({sql})" if clause.negate else sql), [to_param(clause.value)]

        if clause.kind == 'in':
            values = list(clause.value)
            if not values:
                # 空集合：IN 恒假，NOT IN 恒真
                return ('1 = 1' if clause.negate else '1 = 0'), []
            sql = f"{self.column(clause.column)} {not_}IN ({self.dialect.placeholders(len(values))})"
            return sql, [to_param(v) for v in values]

        if clause.kind == 'null':
            return f"{self.column(clause.column)} IS {not_}NULL", []

        if clause.kind == 'between':
            low, high = clause.value
            return f"{self.column(clause.column)} {not_}BETWEEN {ph} AND {ph}", [to_param(low), to_param(high)]

        if clause.kind == 'column':
            sql = f"{self.column(clause.column)} {clause.operator} {self.column(clause.value)}"
            return (f"NOT ({sql})" if clause.negate else sql), []

        if clause.kind == 'group':
            sql, params = self.compile_wheres(clause.clauses or [])
            if not sql:
                return '1 = 1', []
            return f"{not_}({sql})", params

        if clause.kind == 'exists':
            sub = self.compile_select(clause.query)
            return f"{not_}EXISTS ({sub.sql})", sub.params

        if clause.kind == 'sub':
            sub = self.compile_select(clause.query)
            return f"({sub.sql}) {clause.operator} {ph}", sub.params + [to_param(clause.value)]

        if clause.kind == 'raw':
            raw: Raw = clause.value
            return f"{not_}({raw.sql})", list(raw.params)

        raise QueryError(f"Unknown where clause kind '{clause.kind}'")
