"""
Lucent 关联

关联描述符在类体中声明：

    class User(Base):
        profile = HasOne('Profile')
        posts = HasMany('Post')
        skills = ManyToMany('Skill', pivot_columns=['proficiency'])

    class Post(Base):
        author = BelongsTo('User', foreign_key='user_id')

键名按约定推导：
- HasOne / HasMany：外键 ``{owner 蛇形名}_id`` 位于目标表，本地键为 owner 主键
- BelongsTo：外键 ``{target 蛇形名}_id`` 位于 owner 表，对端键为目标主键
- ManyToMany：中间表为两个蛇形单数名排序后以 ``_`` 连接
- HasManyThrough：经由中间模型，两段外键分别按各自 owner 推导

实例访问 ``user.posts`` 返回已加载的值，未加载时抛出 RelationNotLoadedError。
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, Union, TYPE_CHECKING

from ..common.exceptions import ConfigurationError, QueryError
from ..common.utils import snake_case

if TYPE_CHECKING:
    from .orm import BaseModel
    from .transaction import TransactionClient
    from ..query.builder import QueryBuilder
    from ..query.model_query import ModelQuery

logger = logging.getLogger(__name__)

ModelRef = Union[str, Type['BaseModel'], Callable[[], Type['BaseModel']]]


class Relation(ABC):
    """关联描述符基类"""

    kind = ''
    many = False

    def __init__(self, target: ModelRef):
        self._target = target
        self.name: Optional[str] = None
        self.owner: Optional[Type['BaseModel']] = None

    def __set_name__(self, owner: Type['BaseModel'], name: str) -> None:
        self.name = name
        self.owner = owner

    def __get__(self, instance: Optional['BaseModel'], owner: Type['BaseModel']) -> Any:
        if instance is None:
            return self
        return instance.get_related(self.name)

    def __set__(self, instance: 'BaseModel', value: Any) -> None:
        instance.set_related(self.name, value)

    def bind(self, owner: Type['BaseModel'], name: str) -> 'Relation':
        self.__set_name__(owner, name)
        return self

    @property
    def target_model(self) -> Type['BaseModel']:
        """解析目标模型（字符串在 owner 的注册表中查找）"""
        target = self._target
        if isinstance(target, str):
            registry = getattr(self.owner, '__registry__', None)
            if registry is None:
                raise ConfigurationError(
                    f"Relation '{self.name}' of '{self._owner_name}' refers to '{target}' "
                    f"but the model has no registry"
                )
            return registry.get(target)
        if isinstance(target, type):
            return target
        return target()

    @property
    def _owner_name(self) -> str:
        return self.owner.__name__ if self.owner is not None else '?'

    # ------------------------------------------------------------------
    # 子类实现
    # ------------------------------------------------------------------

    @abstractmethod
    def parent_value(self, parent: 'BaseModel') -> Any:
        """parent 上用于匹配的键值"""

    @abstractmethod
    def constrain(self, query: 'ModelQuery', keys: List[Any]) -> None:
        """把目标查询约束到给定的 parent 键值集合"""

    @abstractmethod
    def match_value(self, related: 'BaseModel') -> Any:
        """related 上与 parent_value 对应的键值"""

    @abstractmethod
    def correlated_query(self, parent_ref: str) -> 'ModelQuery':
        """与外层查询关联的目标子查询（用于 EXISTS / COUNT）"""

    def client(self, parent: 'BaseModel') -> 'RelatedClient':
        return RelatedClient(self, parent)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def empty_value(self) -> Any:
        from ..query.result import ModelCollection
        return ModelCollection() if self.many else None

    def query_for(self, parent: 'BaseModel', trx: Optional['TransactionClient'] = None) -> 'ModelQuery':
        query = self.target_model.query(trx)
        self.constrain(query, [self.parent_value(parent)])
        return query

    async def eager_load(self, parents: List['BaseModel'], query: 'ModelQuery') -> None:
        """
        批量加载：一次查询（按 parent 键值集合过滤），结果按 parent 分组写回

        Args:
            parents: 同一模型的实例列表
            query: 已附加回调约束与下级预加载的目标查询
        """
        keys: List[Any] = []
        seen = set()
        for parent in parents:
            value = self.parent_value(parent)
            if value is not None and value not in seen:
                seen.add(value)
                keys.append(value)

        if not keys:
            for parent in parents:
                parent.set_related(self.name, self.empty_value())
            return

        from ..query.result import ModelCollection
        self.constrain(query, keys)
        related = await query.fetch()
        logger.debug("preloaded %s.%s: %d parents, %d rows",
                     self._owner_name, self.name, len(parents), len(related))

        grouped: Dict[Any, List['BaseModel']] = {}
        for item in related:
            grouped.setdefault(self.match_value(item), []).append(item)

        for parent in parents:
            matches = grouped.get(self.parent_value(parent), [])
            if self.many:
                # 每个 parent 持有各自的集合
                parent.set_related(self.name, ModelCollection(matches))
            else:
                parent.set_related(self.name, matches[0] if matches else None)

    def _alias(self) -> str:
        return f'lc_{self.name}'

    def exists_subquery(self, parent_ref: str) -> 'ModelQuery':
        return self.correlated_query(parent_ref)

    def count_subquery(self, parent_ref: str) -> 'ModelQuery':
        return self.correlated_query(parent_ref).select_raw('COUNT(*)')

    def __repr__(self) -> str:
        target = self._target if isinstance(self._target, str) else getattr(self._target, '__name__', '?')
        return f"{type(self).__name__}({target!r}, name={self.name!r})"


class HasOneOrMany(Relation):
    """目标表持有指向 owner 的外键"""

    def __init__(self, target: ModelRef, foreign_key: Optional[str] = None,
                 local_key: Optional[str] = None):
        super().__init__(target)
        self._foreign_key = foreign_key
        self._local_key = local_key

    @property
    def foreign_key(self) -> str:
        return self._foreign_key or f'{snake_case(self._owner_name)}_id'

    @property
    def local_key(self) -> str:
        return self._local_key or self.owner.__primary_key__

    def parent_value(self, parent: 'BaseModel') -> Any:
        return parent.get(self.local_key)

    def match_value(self, related: 'BaseModel') -> Any:
        return related.get(self.foreign_key)

    def constrain(self, query: 'ModelQuery', keys: List[Any]) -> None:
        target = self.target_model
        query.where_in(f'{query.table_ref}.{target.column_name(self.foreign_key)}', keys)

    def correlated_query(self, parent_ref: str) -> 'ModelQuery':
        target = self.target_model
        alias = self._alias()
        query = target.query().as_(alias)
        query.where_column(f'{alias}.{target.column_name(self.foreign_key)}',
                           f'{parent_ref}.{self.owner.column_name(self.local_key)}')
        return query

    def client(self, parent: 'BaseModel') -> 'HasOneOrManyClient':
        return HasOneOrManyClient(self, parent)


class HasOne(HasOneOrMany):
    kind = 'has_one'
    many = False


class HasMany(HasOneOrMany):
    kind = 'has_many'
    many = True


class BelongsTo(Relation):
    """owner 表持有指向目标的外键"""

    kind = 'belongs_to'
    many = False

    def __init__(self, target: ModelRef, foreign_key: Optional[str] = None,
                 owner_key: Optional[str] = None):
        super().__init__(target)
        self._foreign_key = foreign_key
        self._owner_key = owner_key

    @property
    def foreign_key(self) -> str:
        return self._foreign_key or f'{snake_case(self.target_model.__name__)}_id'

    @property
    def owner_key(self) -> str:
        return self._owner_key or self.target_model.__primary_key__

    def parent_value(self, parent: 'BaseModel') -> Any:
        return parent.get(self.foreign_key)

    def match_value(self, related: 'BaseModel') -> Any:
        return related.get(self.owner_key)

    def constrain(self, query: 'ModelQuery', keys: List[Any]) -> None:
        target = self.target_model
        query.where_in(f'{query.table_ref}.{target.column_name(self.owner_key)}', keys)

    def correlated_query(self, parent_ref: str) -> 'ModelQuery':
        target = self.target_model
        alias = self._alias()
        query = target.query().as_(alias)
        query.where_column(f'{alias}.{target.column_name(self.owner_key)}',
                           f'{parent_ref}.{self.owner.column_name(self.foreign_key)}')
        return query

    def client(self, parent: 'BaseModel') -> 'BelongsToClient':
        return BelongsToClient(self, parent)


class ManyToMany(Relation):
    """
    多对多（经由中间表）

    Args:
        target: 目标模型
        pivot_table: 中间表名
        local_key: owner 上被引用的键（默认主键）
        pivot_foreign_key: 中间表中指向 owner 的列
        related_key: 目标上被引用的键（默认主键）
        pivot_related_foreign_key: 中间表中指向目标的列
        pivot_columns: 额外读取的中间表列（以 ``pivot_<列名>`` 进入 extras）
        pivot_timestamps: attach 时是否写入 created_at / updated_at
    """

    kind = 'many_to_many'
    many = True

    def __init__(self, target: ModelRef, pivot_table: Optional[str] = None,
                 local_key: Optional[str] = None, pivot_foreign_key: Optional[str] = None,
                 related_key: Optional[str] = None, pivot_related_foreign_key: Optional[str] = None,
                 pivot_columns: Optional[List[str]] = None, pivot_timestamps: bool = False):
        super().__init__(target)
        self._pivot_table = pivot_table
        self._local_key = local_key
        self._pivot_foreign_key = pivot_foreign_key
        self._related_key = related_key
        self._pivot_related_foreign_key = pivot_related_foreign_key
        self.pivot_columns = list(pivot_columns or [])
        self.pivot_timestamps = pivot_timestamps

    @property
    def pivot_table(self) -> str:
        if self._pivot_table:
            return self._pivot_table
        names = sorted([snake_case(self._owner_name), snake_case(self.target_model.__name__)])
        return '_'.join(names)

    @property
    def local_key(self) -> str:
        return self._local_key or self.owner.__primary_key__

    @property
    def related_key(self) -> str:
        return self._related_key or self.target_model.__primary_key__

    @property
    def pivot_foreign_key(self) -> str:
        return self._pivot_foreign_key or f'{snake_case(self._owner_name)}_id'

    @property
    def pivot_related_foreign_key(self) -> str:
        return self._pivot_related_foreign_key or f'{snake_case(self.target_model.__name__)}_id'

    def parent_value(self, parent: 'BaseModel') -> Any:
        return parent.get(self.local_key)

    def match_value(self, related: 'BaseModel') -> Any:
        return related.extras.get(f'pivot_{self.pivot_foreign_key}')

    def constrain(self, query: 'ModelQuery', keys: List[Any]) -> None:
        target = self.target_model
        pivot = self.pivot_table
        ref = query.table_ref
        if not query.columns:
            query.select(f'{ref}.*')
        for column in [self.pivot_foreign_key] + self.pivot_columns:
            query.select(f'{pivot}.{column} as pivot_{column}')
        query.join(pivot, f'{pivot}.{self.pivot_related_foreign_key}', '=',
                   f'{ref}.{target.column_name(self.related_key)}')
        query.where_in(f'{pivot}.{self.pivot_foreign_key}', keys)

    def correlated_query(self, parent_ref: str) -> 'ModelQuery':
        target = self.target_model
        alias = self._alias()
        pivot = self.pivot_table
        query = target.query().as_(alias)
        query.join(pivot, f'{pivot}.{self.pivot_related_foreign_key}', '=',
                   f'{alias}.{target.column_name(self.related_key)}')
        query.where_column(f'{pivot}.{self.pivot_foreign_key}',
                           f'{parent_ref}.{self.owner.column_name(self.local_key)}')
        return query

    def client(self, parent: 'BaseModel') -> 'ManyToManyClient':
        return ManyToManyClient(self, parent)


class HasManyThrough(Relation):
    """
    经由中间模型的一对多

    Example:
        class Country(Base):
            posts = HasManyThrough('Post', through='User')

    Args:
        target: 目标模型
        through: 中间模型
        foreign_key: 中间模型上指向 owner 的外键（默认 ``{owner}_id``）
        local_key: owner 上被引用的键（默认主键）
        through_foreign_key: 目标上指向中间模型的外键（默认 ``{through}_id``）
        through_local_key: 中间模型上被引用的键（默认主键）
    """

    kind = 'has_many_through'
    many = True

    def __init__(self, target: ModelRef, through: ModelRef, foreign_key: Optional[str] = None,
                 local_key: Optional[str] = None, through_foreign_key: Optional[str] = None,
                 through_local_key: Optional[str] = None):
        super().__init__(target)
        self._through = through
        self._foreign_key = foreign_key
        self._local_key = local_key
        self._through_foreign_key = through_foreign_key
        self._through_local_key = through_local_key

    @property
    def through_model(self) -> Type['BaseModel']:
        through = self._through
        if isinstance(through, str):
            return self.owner.__registry__.get(through)
        if isinstance(through, type):
            return through
        return through()

    @property
    def foreign_key(self) -> str:
        return self._foreign_key or f'{snake_case(self._owner_name)}_id'

    @property
    def local_key(self) -> str:
        return self._local_key or self.owner.__primary_key__

    @property
    def through_foreign_key(self) -> str:
        return self._through_foreign_key or f'{snake_case(self.through_model.__name__)}_id'

    @property
    def through_local_key(self) -> str:
        return self._through_local_key or self.through_model.__primary_key__

    def parent_value(self, parent: 'BaseModel') -> Any:
        return parent.get(self.local_key)

    def match_value(self, related: 'BaseModel') -> Any:
        return related.extras.get(f'through_{self.foreign_key}')

    def _join_through(self, query: 'ModelQuery', ref: str) -> str:
        target = self.target_model
        through = self.through_model
        through_table = through.__tablename__
        query.join(through_table, f'{through_table}.{through.column_name(self.through_local_key)}', '=',
                   f'{ref}.{target.column_name(self.through_foreign_key)}')
        return through_table

    def constrain(self, query: 'ModelQuery', keys: List[Any]) -> None:
        ref = query.table_ref
        through_fk = self.through_model.column_name(self.foreign_key)
        if not query.columns:
            query.select(f'{ref}.*')
        through_table = self._join_through(query, ref)
        query.select(f'{through_table}.{through_fk} as through_{self.foreign_key}')
        query.where_in(f'{through_table}.{through_fk}', keys)

    def correlated_query(self, parent_ref: str) -> 'ModelQuery':
        alias = self._alias()
        query = self.target_model.query().as_(alias)
        through_table = self._join_through(query, alias)
        query.where_column(f'{through_table}.{self.through_model.column_name(self.foreign_key)}',
                           f'{parent_ref}.{self.owner.column_name(self.local_key)}')
        return query


# ----------------------------------------------------------------------
# 关联客户端（instance.related(name)）
# ----------------------------------------------------------------------

class RelatedClient:
    """只读关联客户端：构造与执行限定到单个 parent 的查询"""

    def __init__(self, relation: Relation, parent: 'BaseModel'):
        self.relation = relation
        self.parent = parent

    def _ensure_persisted(self) -> None:
        if not self.parent.is_persisted:
            raise QueryError(
                f"Cannot use relation '{self.relation.name}' of an unsaved {type(self.parent).__name__}"
            )

    def query(self, trx: Optional['TransactionClient'] = None) -> 'ModelQuery':
        return self.relation.query_for(self.parent, trx)

    async def fetch(self, trx: Optional['TransactionClient'] = None) -> Any:
        rows = await self.query(trx).fetch()
        if self.relation.many:
            return rows
        return rows.first()


class HasOneOrManyClient(RelatedClient):
    """HasOne / HasMany 写入：自动设置外键后保存"""

    relation: HasOneOrMany

    async def save(self, related: 'BaseModel', trx: Optional['TransactionClient'] = None) -> 'BaseModel':
        self._ensure_persisted()
        related.set(self.relation.foreign_key, self.relation.parent_value(self.parent))
        await related.save(trx)
        return related

    async def save_many(self, related: Iterable['BaseModel'],
                        trx: Optional['TransactionClient'] = None) -> List['BaseModel']:
        return [await self.save(item, trx) for item in related]

    async def create(self, values: Dict[str, Any], trx: Optional['TransactionClient'] = None) -> 'BaseModel':
        instance = self.relation.target_model()
        instance.merge(values)
        return await self.save(instance, trx)

    async def create_many(self, rows: Iterable[Dict[str, Any]],
                          trx: Optional['TransactionClient'] = None) -> List['BaseModel']:
        return [await self.create(values, trx) for values in rows]


class BelongsToClient(RelatedClient):
    """BelongsTo 写入：修改 owner 上的外键"""

    relation: BelongsTo

    async def associate(self, related: 'BaseModel', trx: Optional['TransactionClient'] = None) -> None:
        """
        关联到 related（related 未保存时先保存），随后保存 parent

        Args:
            related: 目标实例
            trx: 事务客户端
        """
        if not related.is_persisted:
            await related.save(trx)
        self.parent.set(self.relation.foreign_key, related.get(self.relation.owner_key))
        await self.parent.save(trx)
        self.parent.set_related(self.relation.name, related)

    async def dissociate(self, trx: Optional['TransactionClient'] = None) -> None:
        self.parent.set(self.relation.foreign_key, None)
        await self.parent.save(trx)
        self.parent.set_related(self.relation.name, None)


class ManyToManyClient(RelatedClient):
    """ManyToMany 写入：维护中间表"""

    relation: ManyToMany

    def _pivot(self, trx: Optional['TransactionClient']) -> 'QueryBuilder':
        owner = type(self.parent)
        return (owner.__database__.table(self.relation.pivot_table, connection=owner.__options__.connection)
                .use_transaction(trx))

    def _normalize(self, ids: Any) -> Dict[Any, Dict[str, Any]]:
        # [1, 2] / [instance, ...] / {1: {'proficiency': 'expert'}}
        if isinstance(ids, dict):
            return {self._related_id(k): dict(v or {}) for k, v in ids.items()}
        return {self._related_id(item): {} for item in ids}

    def _related_id(self, item: Any) -> Any:
        if hasattr(item, 'get') and hasattr(item, 'is_persisted'):
            return item.get(self.relation.related_key)
        return item

    async def attach(self, ids: Any, trx: Optional['TransactionClient'] = None) -> None:
        """
        写入中间表记录

        Args:
            ids: 目标键列表，或 {目标键: 额外中间表列}
            trx: 事务客户端
        """
        self._ensure_persisted()
        rel = self.relation
        parent_key = rel.parent_value(self.parent)
        rows: List[Dict[str, Any]] = []
        for related_id, extra in self._normalize(ids).items():
            row = {rel.pivot_foreign_key: parent_key, rel.pivot_related_foreign_key: related_id}
            row.update(extra)
            if rel.pivot_timestamps:
                now = datetime.now().replace(microsecond=0)
                row.setdefault('created_at', now)
                row.setdefault('updated_at', now)
            rows.append(row)
        if not rows:
            return
        if all(list(row) == list(rows[0]) for row in rows):
            await self._pivot(trx).multi_insert(rows)
        else:
            for row in rows:
                await self._pivot(trx).insert(row)

    async def detach(self, ids: Optional[Iterable[Any]] = None,
                     trx: Optional['TransactionClient'] = None) -> int:
        """删除中间表记录（ids 为 None 时删除该 parent 的全部记录）"""
        self._ensure_persisted()
        rel = self.relation
        query = self._pivot(trx).where(rel.pivot_foreign_key, rel.parent_value(self.parent))
        if ids is not None:
            query.where_in(rel.pivot_related_foreign_key, [self._related_id(i) for i in ids])
        return await query.delete()

    async def sync(self, ids: Any, detach: bool = True, trx: Optional['TransactionClient'] = None) -> None:
        """
        使中间表与给定集合一致：缺失的 attach，多余的 detach，已存在且带额外列的更新

        Args:
            ids: 目标键列表，或 {目标键: 额外中间表列}
            detach: 是否移除不在集合中的记录
            trx: 事务客户端
        """
        self._ensure_persisted()
        rel = self.relation
        parent_key = rel.parent_value(self.parent)
        wanted = self._normalize(ids)
        existing = await (self._pivot(trx)
                          .where(rel.pivot_foreign_key, parent_key)
                          .pluck(rel.pivot_related_foreign_key))

        if detach:
            stale = [i for i in existing if i not in wanted]
            if stale:
                await self.detach(stale, trx)

        for related_id in existing:
            extra = wanted.get(related_id)
            if extra:
                await (self._pivot(trx)
                       .where(rel.pivot_foreign_key, parent_key)
                       .where(rel.pivot_related_foreign_key, related_id)
                       .update(extra))

        missing = {i: extra for i, extra in wanted.items() if i not in existing}
        if missing:
            await self.attach(missing, trx)

    async def save(self, related: 'BaseModel', pivot_attributes: Optional[Dict[str, Any]] = None,
                   trx: Optional['TransactionClient'] = None) -> 'BaseModel':
        self._ensure_persisted()
        await related.save(trx)
        await self.attach({related.get(self.relation.related_key): pivot_attributes or {}}, trx)
        return related

    async def save_many(self, related: Iterable['BaseModel'],
                        trx: Optional['TransactionClient'] = None) -> List['BaseModel']:
        return [await self.save(item, trx=trx) for item in related]

    async def create(self, values: Dict[str, Any], pivot_attributes: Optional[Dict[str, Any]] = None,
                     trx: Optional['TransactionClient'] = None) -> 'BaseModel':
        instance = self.relation.target_model()
        instance.merge(values)
        return await self.save(instance, pivot_attributes, trx)

    async def create_many(self, rows: Iterable[Dict[str, Any]],
                          trx: Optional['TransactionClient'] = None) -> List['BaseModel']:
        return [await self.create(values, trx=trx) for values in rows]
