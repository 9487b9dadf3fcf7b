"""
Lucent 模型查询

在 QueryBuilder 之上增加：行到模型实例的转换、查询作用域、全局作用域、
关联预加载（preload）、关联存在性条件（has / where_has）与分页。
"""

from typing import Any, Callable, Dict, List, Optional, Set, Type, TYPE_CHECKING

from .builder import QueryBuilder
from .compiler import Raw, SubSelect, WhereClause
from .result import ModelCollection, Paginator
from ..common.exceptions import ConfigurationError, QueryError, RecordNotFoundError
from ..common.utils import canonical_scope_name
from ..core.event import event
from ..core.prefetch import PreloadNode, add_preload, preload_tree

if TYPE_CHECKING:
    from ..core.orm import BaseModel
    from ..core.transaction import TransactionClient


class ModelQuery(QueryBuilder):
    """
    模型查询构建器

    Example:
        posts = await (Post.query()
                       .where('published', True)
                       .where_has('comments', lambda q: q.where('approved', True))
                       .preload('author')
                       .preload('comments', lambda q: q.order_by('id', 'desc'))
                       .fetch())
    """

    def __init__(self, model: Type['BaseModel'], trx: Optional['TransactionClient'] = None):
        model.boot_if_not_booted()
        database = model.__database__
        if database is None:
            raise ConfigurationError(f"Model '{model.__name__}' is not bound to a Database")
        super().__init__(database, model.__tablename__, connection=model.__options__.connection)
        self.model = model
        self.trx = trx
        self.preloads: Dict[str, PreloadNode] = {}
        self._ignored_scopes: Set[str] = set()
        self._ignore_all_scopes = False
        self._visible: Optional[List[str]] = None
        self._hidden: Optional[List[str]] = None

    def clone(self) -> 'ModelQuery':
        cloned = super().clone()
        cloned.preloads = dict(self.preloads)
        cloned._ignored_scopes = set(self._ignored_scopes)
        return cloned  # type: ignore[return-value]

    def compile_ready(self) -> 'ModelQuery':
        query = self.clone()
        if not self._ignore_all_scopes:
            for name, fn in self.model.__global_scopes__.items():
                if name not in self._ignored_scopes:
                    fn(query)
        if not query.columns:
            query.columns = [f'{query.table_ref}.*']
        return query

    # ------------------------------------------------------------------
    # 作用域
    # ------------------------------------------------------------------

    def apply(self, name: str, *args: Any, **kwargs: Any) -> 'ModelQuery':
        """
        应用已注册的查询作用域

        Args:
            name: 作用域名（按规范名称查找）
            *args: 传给作用域函数的额外参数
        """
        fn = self.model.__scopes__.get(canonical_scope_name(name))
        if fn is None:
            raise QueryError(f"'{self.model.__name__}' has no query scope '{name}'")
        self._mutate()
        fn(self, *args, **kwargs)
        return self

    def __getattr__(self, name: str) -> Callable[..., 'ModelQuery']:
        if name.startswith('_'):
            raise AttributeError(name)
        model = self.__dict__.get('model')
        if model is None or canonical_scope_name(name) not in model.__scopes__:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        def call_scope(*args: Any, **kwargs: Any) -> 'ModelQuery':
            return self.apply(name, *args, **kwargs)
        return call_scope

    def ignore_scopes(self, *names: str) -> 'ModelQuery':
        """忽略全局作用域（不传名称表示全部忽略）"""
        self._mutate()
        if names:
            self._ignored_scopes.update(names)
        else:
            self._ignore_all_scopes = True
        return self

    # ------------------------------------------------------------------
    # 序列化可见性
    # ------------------------------------------------------------------

    def set_visible(self, fields: List[str]) -> 'ModelQuery':
        self._mutate()
        self._visible = list(fields)
        return self

    def set_hidden(self, fields: List[str]) -> 'ModelQuery':
        self._mutate()
        self._hidden = list(fields)
        return self

    # ------------------------------------------------------------------
    # 关联
    # ------------------------------------------------------------------

    def preload(self, relation: str, callback: Optional[Callable[[Any], Any]] = None) -> 'ModelQuery':
        """
        预加载关联：每个关联对整批结果只执行一次查询

        Args:
            relation: 关联名，支持点号嵌套（'posts.comments'）
            callback: 对关联查询追加约束的回调
        """
        self._mutate()
        self.model.get_relation(relation.split('.', 1)[0])
        add_preload(self.preloads, relation, callback)
        return self

    def with_count(self, relation: str, callback: Optional[Callable[[Any], Any]] = None,
                   alias: Optional[str] = None) -> 'ModelQuery':
        """附加关联计数列 ``{relation}_count``（进入实例 extras）"""
        self._mutate()
        rel = self.model.get_relation(relation)
        sub = rel.count_subquery(self.table_ref)
        if callback is not None:
            callback(sub)
        if not self.columns:
            self.columns.append(f'{self.table_ref}.*')
        self.columns.append(SubSelect(sub, alias or f'{relation}_count'))
        return self

    def _has(self, relation: str, callback: Optional[Callable[[Any], Any]], operator: str,
             value: int, boolean: str, negate: bool) -> 'ModelQuery':
        rel = self.model.get_relation(relation)
        if negate or (operator == '>=' and value == 1):
            sub = rel.exists_subquery(self.table_ref)
            if callback is not None:
                callback(sub)
            self._add_where(WhereClause(boolean, 'exists', query=sub, negate=negate))
            return self
        sub = rel.count_subquery(self.table_ref)
        if callback is not None:
            callback(sub)
        self.where_sub(sub, operator, value, boolean)
        return self

    def has(self, relation: str, operator: str = '>=', value: int = 1) -> 'ModelQuery':
        return self._has(relation, None, operator, value, 'AND', False)

    def or_has(self, relation: str, operator: str = '>=', value: int = 1) -> 'ModelQuery':
        return self._has(relation, None, operator, value, 'OR', False)

    def where_has(self, relation: str, callback: Optional[Callable[[Any], Any]] = None,
                  operator: str = '>=', value: int = 1) -> 'ModelQuery':
        return self._has(relation, callback, operator, value, 'AND', False)

    def or_where_has(self, relation: str, callback: Optional[Callable[[Any], Any]] = None,
                     operator: str = '>=', value: int = 1) -> 'ModelQuery':
        return self._has(relation, callback, operator, value, 'OR', False)

    def doesnt_have(self, relation: str) -> 'ModelQuery':
        return self._has(relation, None, '>=', 1, 'AND', True)

    def or_doesnt_have(self, relation: str) -> 'ModelQuery':
        return self._has(relation, None, '>=', 1, 'OR', True)

    def where_doesnt_have(self, relation: str, callback: Optional[Callable[[Any], Any]] = None) -> 'ModelQuery':
        return self._has(relation, callback, '>=', 1, 'AND', True)

    def or_where_doesnt_have(self, relation: str,
                             callback: Optional[Callable[[Any], Any]] = None) -> 'ModelQuery':
        return self._has(relation, callback, '>=', 1, 'OR', True)

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------

    async def _hydrate(self, rows: List[Dict[str, Any]]) -> List['BaseModel']:
        instances = [self.model.hydrate(row) for row in rows]
        for instance in instances:
            if self._visible is not None:
                instance.set_visible(self._visible)
            if self._hidden is not None:
                instance.set_hidden(self._hidden)
        if self.preloads and instances:
            await preload_tree(instances, self.preloads, self.trx)
        return instances

    async def fetch(self) -> ModelCollection:
        """执行查询，返回 ModelCollection"""
        instances = await self._hydrate(await self._fetch_rows())
        await event.dispatch_model(self.model, 'after_fetch', instances)
        return ModelCollection(instances)

    async def first(self) -> Optional['BaseModel']:
        query = self.clone().limit(1)
        rows = await query._fetch_rows()
        self._mark_executed()
        if not rows:
            return None
        instance = (await query._hydrate(rows))[0]
        await event.dispatch_model(self.model, 'after_find', instance)
        return instance

    async def first_or_fail(self) -> 'BaseModel':
        instance = await self.first()
        if instance is None:
            raise RecordNotFoundError(self.model.__tablename__)
        return instance

    async def paginate(self, page: int = 1, per_page: int = 20) -> Paginator:
        """
        分页查询

        Args:
            page: 页码（从 1 开始）
            per_page: 每页条数

        Returns:
            Paginator
        """
        page = max(int(page), 1)
        count_query = self.clone()
        count_query.orders = []
        count_query.limit_value = None
        count_query.offset_value = None
        total = await count_query.count()

        data_query = self.clone().for_page(page, per_page)
        instances = await data_query._hydrate(await data_query._fetch_rows())
        self._mark_executed()

        paginator = Paginator(instances, total=total, per_page=per_page, page=page)
        await event.dispatch_model(self.model, 'after_paginate', instances, paginator)
        return paginator

    async def ids(self) -> List[Any]:
        """主键值列表"""
        return await self.pluck(f'{self.table_ref}.{self.model.primary_key_column()}')

    async def update(self, values: Dict[str, Any]) -> int:
        """批量更新（不触发钩子、不做脏检查）；键为属性名"""
        prepared: Dict[str, Any] = {}
        for key, value in values.items():
            if isinstance(value, Raw):
                prepared[self.model.column_name(key)] = value
            else:
                prepared.update(self.model.prepare_for_storage({key: value}))
        return await super().update(prepared)
