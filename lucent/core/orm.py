"""
Lucent ORM 核心

提供 Column 列描述符、计算字段、查询作用域与 Active Record 模型基类。

    db = Database()
    Base = declarative_base(db)

    class User(Base):
        id = Column(int, primary_key=True)
        email = Column(str, nullable=False, unique=True)
        password = Column(str)
        created_at = Column(datetime)
        updated_at = Column(datetime)

        __options__ = ModelOptions(hidden=['password'])

        posts = HasMany('Post')

        @scope
        def active(query):
            query.where('is_active', True)

    user = await User.create({'email': 'virk@example.com'})
    users = await User.query().active().preload('posts').fetch()
"""

import copy
import json
import logging
from datetime import date, datetime
from typing import (
    Any, Callable, ClassVar, Dict, Iterable, List, Optional, Type, TypeVar, Union, TYPE_CHECKING,
)

from .event import event
from .prefetch import preload
from .registry import ModelRegistry
from .relations import Relation, RelatedClient
from .serializer import serialize_instance
from .types import DATE_FORMAT, DATETIME_FORMAT, TypeRegistry, parse_datetime
from ..common.exceptions import (
    ColumnNotFoundError,
    ConfigurationError,
    FrozenInstanceError,
    PrimaryKeyError,
    QueryError,
    RecordNotFoundError,
    RelationNotFoundError,
    RelationNotLoadedError,
)
from ..common.options import ModelOptions
from ..common.utils import canonical_scope_name, pluralize, snake_case

if TYPE_CHECKING:
    from .database import Database
    from .transaction import TransactionClient
    from ..query.builder import QueryBuilder
    from ..query.model_query import ModelQuery
    from ..query.result import ModelCollection

logger = logging.getLogger(__name__)

T = TypeVar('T', bound='BaseModel')

_UNSET: Any = object()


class Column:
    """
    列描述符

    Args:
        name: 存储列名（默认与属性名相同），可作为第一个位置参数
        col_type: Python 类型（int / str / float / bool / datetime / date / dict / list / bytes）
        primary_key: 是否为主键
        nullable: 是否可为空（建表时使用）
        unique: 是否唯一（建表时使用）
        getter: 读取属性时对值的转换
        setter: 写入属性时对值的转换
        serialize_as: 序列化输出的键名，None 表示不输出
        serializer: 序列化输出时对值的转换
        comment: 注释

    Example:
        id = Column(int, primary_key=True)
        user_name = Column('username', str)
        email = Column(str, setter=lambda v: v.lower() if v else v)
    """

    def __init__(self, *args: Any,
                 name: Optional[str] = None,
                 primary_key: bool = False,
                 nullable: bool = True,
                 unique: bool = False,
                 getter: Optional[Callable[[Any], Any]] = None,
                 setter: Optional[Callable[[Any], Any]] = None,
                 serialize_as: Any = _UNSET,
                 serializer: Optional[Callable[[Any], Any]] = None,
                 comment: Optional[str] = None):
        col_type: Optional[type] = None
        for arg in args:
            if isinstance(arg, str):
                name = arg
            elif isinstance(arg, type):
                col_type = arg
            else:
                raise TypeError(f"Unexpected Column argument: {arg!r}")

        self.name = name
        self.attr_name: Optional[str] = None
        self.col_type = col_type
        self.caster = TypeRegistry.get_caster(col_type)
        self.primary_key = primary_key
        self.nullable = nullable and not primary_key
        self.unique = unique
        self.getter = getter
        self.setter = setter
        self.serialize_as = serialize_as
        self.serializer = serializer
        self.comment = comment

    def __set_name__(self, owner: type, name: str) -> None:
        self.attr_name = name
        if self.name is None:
            self.name = name

    def __get__(self, instance: Optional['BaseModel'], owner: type) -> Any:
        if instance is None:
            return self
        return instance.get(self.attr_name)

    def __set__(self, instance: 'BaseModel', value: Any) -> None:
        instance.set(self.attr_name, value)

    @property
    def is_date(self) -> bool:
        return self.col_type in (datetime, date)

    def prepare(self, value: Any) -> Any:
        """属性值 -> 存储值"""
        return self.caster.prepare(value)

    def consume(self, value: Any) -> Any:
        """存储值 -> 属性值"""
        if value is None:
            return None
        return self.caster.consume(value)

    def serialize_key(self, attr_name: str) -> Optional[str]:
        if self.serialize_as is _UNSET:
            return attr_name
        return self.serialize_as

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.col_type.__name__ if self.col_type else None,
            'primary_key': self.primary_key,
            'nullable': self.nullable,
            'unique': self.unique,
            'comment': self.comment,
        }

    def __repr__(self) -> str:
        type_name = self.col_type.__name__ if self.col_type else 'Any'
        return f"Column(name='{self.name}', type={type_name}, pk={self.primary_key})"


class Computed:
    """计算字段：只读属性，序列化时输出"""

    def __init__(self, fn: Callable[[Any], Any], serialize_as: Any = _UNSET):
        self.fn = fn
        self.name = fn.__name__
        self.serialize_as = serialize_as
        self.__doc__ = fn.__doc__

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Optional['BaseModel'], owner: type) -> Any:
        if instance is None:
            return self
        return self.fn(instance)

    def serialize_key(self, name: str) -> Optional[str]:
        if self.serialize_as is _UNSET:
            return name
        return self.serialize_as


def computed(fn: Optional[Callable[[Any], Any]] = None, *,
             serialize_as: Any = _UNSET) -> Any:
    """
    声明计算字段

    Example:
        @computed
        def full_name(self):
            return f'{self.first_name} {self.last_name}'

        @computed(serialize_as='postsCount')
        def posts_count(self):
            return self.extras.get('posts_count')
    """
    def wrap(func: Callable[[Any], Any]) -> Computed:
        return Computed(func, serialize_as)
    if fn is not None:
        return wrap(fn)
    return wrap


class Scope:
    """查询作用域：以查询为第一个参数的函数"""

    def __init__(self, fn: Callable[..., Any]):
        self.fn = fn
        self.name = fn.__name__

    def __call__(self, query: 'ModelQuery', *args: Any, **kwargs: Any) -> Any:
        return self.fn(query, *args, **kwargs)


def scope(fn: Callable[..., Any]) -> Scope:
    """
    在类体中声明查询作用域

    Example:
        @scope
        def published(query):
            query.where('is_published', True)

        await Post.query().published().fetch()
        await Post.query().apply('published').fetch()
    """
    return Scope(fn)


class BaseModel:
    """
    Active Record 模型基类

    实例状态：NEW -> PERSISTED -> FROZEN（删除后冻结）。
    属性值保存在 attributes 中，original 为最后一次持久化时的快照，
    二者的差异即 dirty。查询返回的非列值（如中间表列、``*_count``）保存在 extras。
    """

    __abstract__: ClassVar[bool] = True
    __tablename__: ClassVar[str]
    __database__: ClassVar[Optional['Database']] = None
    __registry__: ClassVar[Optional[ModelRegistry]] = None
    __options__: ClassVar[ModelOptions] = ModelOptions()
    __primary_key__: ClassVar[str] = 'id'

    __columns__: ClassVar[Dict[str, Column]] = {}
    __column_names__: ClassVar[Dict[str, str]] = {}
    __relationships__: ClassVar[Dict[str, Relation]] = {}
    __computed__: ClassVar[Dict[str, Computed]] = {}
    __scopes__: ClassVar[Dict[str, Callable[..., Any]]] = {}
    __global_scopes__: ClassVar[Dict[str, Callable[..., Any]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get('__abstract__', False):
            return

        columns: Dict[str, Column] = {}
        relationships: Dict[str, Relation] = {}
        computed_fields: Dict[str, Computed] = {}
        scopes: Dict[str, Callable[..., Any]] = {}
        for klass in reversed(cls.__mro__):
            for attr, value in vars(klass).items():
                if isinstance(value, Column):
                    columns[attr] = value
                elif isinstance(value, Relation):
                    relationships[attr] = value
                elif isinstance(value, Computed):
                    computed_fields[attr] = value
                elif isinstance(value, Scope):
                    scopes[canonical_scope_name(attr)] = value

        if '__tablename__' not in cls.__dict__:
            cls.__tablename__ = pluralize(snake_case(cls.__name__))

        primary_keys = [attr for attr, col in columns.items() if col.primary_key]
        if len(primary_keys) > 1:
            raise ConfigurationError(
                f"Model '{cls.__name__}' declares more than one primary key: {primary_keys}"
            )
        if not primary_keys:
            if 'id' in columns:
                raise ConfigurationError(f"Model '{cls.__name__}' declares 'id' without primary_key=True")
            pk_column = Column(int, primary_key=True)
            pk_column.__set_name__(cls, 'id')
            setattr(cls, 'id', pk_column)
            columns = {'id': pk_column, **columns}
            primary_keys = ['id']

        cls.__primary_key__ = primary_keys[0]
        cls.__columns__ = columns
        cls.__column_names__ = {col.name: attr for attr, col in columns.items()}
        cls.__relationships__ = relationships
        cls.__computed__ = computed_fields
        cls.__scopes__ = scopes
        cls.__global_scopes__ = {}

        registry = cls.__registry__
        if registry is not None:
            registry.register(cls)

    def __init__(self, **values: Any):
        self._attributes: Dict[str, Any] = {}
        self._original: Dict[str, Any] = {}
        self._extras: Dict[str, Any] = {}
        self._preloaded: Dict[str, Any] = {}
        self._persisted = False
        self._frozen = False
        self._visible: Optional[List[str]] = None
        self._hidden: Optional[List[str]] = None
        if values:
            self.merge(values)

    # ------------------------------------------------------------------
    # 类级元数据
    # ------------------------------------------------------------------

    @classmethod
    def boot(cls) -> None:
        """首次使用前调用一次，子类可覆盖以注册钩子与作用域"""

    @classmethod
    def boot_if_not_booted(cls) -> None:
        if cls.__dict__.get('_booted', False):
            return
        cls._booted = True
        try:
            cls.boot()
        except Exception:
            cls._booted = False
            raise

    @classmethod
    def column_name(cls, attr: str) -> str:
        """属性名 -> 存储列名（非列属性原样返回）"""
        column = cls.__columns__.get(attr)
        return column.name if column is not None else attr

    @classmethod
    def primary_key_column(cls) -> str:
        return cls.column_name(cls.__primary_key__)

    @classmethod
    def is_date_field(cls, attr: str) -> bool:
        column = cls.__columns__.get(attr)
        if column is not None and column.is_date:
            return True
        return attr in cls.__options__.dates

    @classmethod
    def format_date(cls, field: str, value: Any) -> Any:
        """
        写入前的日期格式化（可覆盖）

        Args:
            field: 属性名
            value: datetime / date / 已格式化的字符串

        Returns:
            ``%Y-%m-%d %H:%M:%S`` 或 ``%Y-%m-%d`` 字符串
        """
        column = cls.__columns__.get(field)
        if isinstance(value, datetime):
            if column is not None and column.col_type is date:
                return value.strftime(DATE_FORMAT)
            return value.strftime(DATETIME_FORMAT)
        if isinstance(value, date):
            return value.strftime(DATE_FORMAT)
        return value

    @classmethod
    def cast_date(cls, field: str, value: Any) -> Any:
        """序列化时的日期输出（可覆盖），默认 ISO-8601"""
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    @classmethod
    def consume_value(cls, attr: str, value: Any) -> Any:
        """存储值 -> 属性值"""
        if value is None:
            return None
        column = cls.__columns__[attr]
        if not column.is_date and attr in cls.__options__.dates:
            return parse_datetime(value)
        return column.consume(value)

    @classmethod
    def prepare_for_storage(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        属性字典 -> 存储列字典

        日期字段经 format_date，其它列经类型转换；非列键原样保留。
        """
        result: Dict[str, Any] = {}
        for attr, value in values.items():
            column = cls.__columns__.get(attr)
            if column is None:
                result[attr] = value
                continue
            if value is not None and cls.is_date_field(attr):
                value = cls.format_date(attr, value)
            else:
                value = column.prepare(value)
            result[column.name] = value
        return result

    @classmethod
    def hydrate(cls: Type[T], row: Dict[str, Any]) -> T:
        """从查询结果行构建已持久化实例（非列值进入 extras）"""
        instance = cls()
        for key, value in row.items():
            attr = cls.__column_names__.get(key)
            if attr is None:
                instance._extras[key] = value
            else:
                instance._attributes[attr] = cls.consume_value(attr, value)
        instance._persisted = True
        instance._sync_original()
        return instance

    # ------------------------------------------------------------------
    # 属性存取
    # ------------------------------------------------------------------

    def _column(self, field: str) -> Column:
        column = self.__columns__.get(field)
        if column is None:
            raise ColumnNotFoundError(self.__tablename__, field)
        return column

    def get(self, field: str) -> Any:
        column = self._column(field)
        value = self._attributes.get(field)
        if column.getter is not None:
            return column.getter(value)
        return value

    def set(self, field: str, value: Any) -> None:
        """
        设置属性

        Raises:
            FrozenInstanceError: 实例已删除
            ColumnNotFoundError: 列不存在
            PrimaryKeyError: 修改已持久化实例的主键
        """
        if self._frozen:
            raise FrozenInstanceError(type(self).__name__, field)
        column = self._column(field)
        if column.setter is not None:
            value = column.setter(value)
        if column.primary_key and self._persisted:
            current = self._original.get(field)
            if value != current:
                raise PrimaryKeyError(type(self).__name__, current)
        self._attributes[field] = value

    def fill(self, values: Dict[str, Any]) -> 'BaseModel':
        """
        替换全部属性（values 中不存在的字段读取为 None）

        已持久化实例保留主键。
        """
        if self._frozen:
            raise FrozenInstanceError(type(self).__name__)
        for field in values:
            self._column(field)
        pk = self.__primary_key__
        kept = {pk: self._attributes[pk]} if self._persisted and pk in self._attributes else {}
        self._attributes = kept
        for field, value in values.items():
            self.set(field, value)
        return self

    def merge(self, values: Dict[str, Any]) -> 'BaseModel':
        """只修改给定字段"""
        for field, value in values.items():
            self.set(field, value)
        return self

    @property
    def attributes(self) -> Dict[str, Any]:
        return dict(self._attributes)

    @property
    def original(self) -> Dict[str, Any]:
        return dict(self._original)

    @property
    def extras(self) -> Dict[str, Any]:
        return self._extras

    @property
    def is_persisted(self) -> bool:
        return self._persisted

    @property
    def is_new(self) -> bool:
        return not self._persisted

    @property
    def is_deleted(self) -> bool:
        return self._frozen

    @property
    def dirty(self) -> Dict[str, Any]:
        """与 original 不同的字段 -> 当前值"""
        changes: Dict[str, Any] = {}
        for field, value in self._attributes.items():
            if field not in self._original or self._original[field] != value:
                changes[field] = value
        if self._persisted:
            for field in self._original:
                if field not in self._attributes and self._original[field] is not None:
                    changes[field] = None
        return changes

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty)

    def _sync_original(self) -> None:
        self._original = copy.deepcopy(self._attributes)

    # ------------------------------------------------------------------
    # 持久化
    # ------------------------------------------------------------------

    @classmethod
    def _require_database(cls) -> 'Database':
        if cls.__database__ is None:
            raise ConfigurationError(f"Model '{cls.__name__}' is not bound to a Database")
        return cls.__database__

    @classmethod
    def _table_query(cls, trx: Optional['TransactionClient'] = None) -> 'QueryBuilder':
        # 按主键的写入不受全局作用域影响
        return (cls._require_database()
                .table(cls.__tablename__, connection=cls.__options__.connection)
                .use_transaction(trx))

    def _pk_value(self) -> Any:
        return self._original.get(self.__primary_key__, self._attributes.get(self.__primary_key__))

    async def save(self, trx: Optional['TransactionClient'] = None) -> bool:
        """
        保存实例：新实例执行 INSERT，已持久化且有修改时只 UPDATE 修改过的列

        Args:
            trx: 事务客户端

        Returns:
            是否执行了写入（无修改时为 False，不触发钩子）
        """
        cls = type(self)
        cls.boot_if_not_booted()
        if self._frozen:
            raise FrozenInstanceError(cls.__name__)
        if self._persisted and not self.is_dirty:
            return False

        await event.dispatch_model(cls, 'before_save', self)
        if self._persisted:
            await self._perform_update(trx)
        else:
            await self._perform_insert(trx)
        await event.dispatch_model(cls, 'after_save', self)
        return True

    def _now(self) -> datetime:
        return datetime.now().replace(microsecond=0)

    async def _perform_insert(self, trx: Optional['TransactionClient']) -> None:
        cls = type(self)
        await event.dispatch_model(cls, 'before_create', self)

        now = self._now()
        options = cls.__options__
        for field in (options.created_at_column, options.updated_at_column):
            if field and field in cls.__columns__ and self._attributes.get(field) is None:
                self._attributes[field] = now

        pk = cls.__primary_key__
        values = dict(self._attributes)
        if options.incrementing and values.get(pk) is None:
            values.pop(pk, None)

        result = await cls._table_query(trx).insert(cls.prepare_for_storage(values))
        if options.incrementing and self._attributes.get(pk) is None:
            self._attributes[pk] = result.lastrowid
        self._persisted = True
        self._sync_original()
        logger.debug("inserted %s %s=%r", cls.__name__, pk, self._attributes.get(pk))

        await event.dispatch_model(cls, 'after_create', self)

    async def _perform_update(self, trx: Optional['TransactionClient']) -> None:
        cls = type(self)
        await event.dispatch_model(cls, 'before_update', self)

        changes = self.dirty
        updated_at = cls.__options__.updated_at_column
        if updated_at and updated_at in cls.__columns__ and updated_at not in changes:
            self._attributes[updated_at] = self._now()
            changes[updated_at] = self._attributes[updated_at]
        changes.pop(cls.__primary_key__, None)

        if changes:
            pk_value = self._pk_value()
            await (cls._table_query(trx)
                   .where(cls.primary_key_column(), pk_value)
                   .update(cls.prepare_for_storage(changes)))
            logger.debug("updated %s %s=%r: %s", cls.__name__, cls.__primary_key__, pk_value, sorted(changes))
        self._sync_original()

        await event.dispatch_model(cls, 'after_update', self)

    async def delete(self, trx: Optional['TransactionClient'] = None) -> None:
        """
        删除实例，之后实例被冻结

        Raises:
            FrozenInstanceError: 已删除
            QueryError: 实例尚未保存
        """
        cls = type(self)
        cls.boot_if_not_booted()
        if self._frozen:
            raise FrozenInstanceError(cls.__name__)
        if not self._persisted:
            raise QueryError(f"Cannot delete an unsaved {cls.__name__} instance")

        await event.dispatch_model(cls, 'before_delete', self)
        pk_value = self._pk_value()
        await cls._table_query(trx).where(cls.primary_key_column(), pk_value).delete()
        self._frozen = True
        logger.debug("deleted %s %s=%r", cls.__name__, cls.__primary_key__, pk_value)
        await event.dispatch_model(cls, 'after_delete', self)

    async def refresh(self, trx: Optional['TransactionClient'] = None) -> 'BaseModel':
        """从存储重新读取属性（清空已加载的关联）"""
        cls = type(self)
        if not self._persisted:
            raise QueryError(f"Cannot refresh an unsaved {cls.__name__} instance")
        pk_value = self._pk_value()
        row = await cls._table_query(trx).where(cls.primary_key_column(), pk_value).first()
        if row is None:
            raise RecordNotFoundError(cls.__tablename__, pk=pk_value)
        fresh = cls.hydrate(row)
        self._attributes = fresh._attributes
        self._extras = fresh._extras
        self._preloaded = {}
        self._sync_original()
        return self

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    @classmethod
    def query(cls, trx: Optional['TransactionClient'] = None) -> 'ModelQuery':
        """模型查询构建器"""
        from ..query.model_query import ModelQuery
        return ModelQuery(cls, trx)

    @classmethod
    def _pk_ref(cls) -> str:
        return f'{cls.__tablename__}.{cls.primary_key_column()}'

    @classmethod
    async def find(cls: Type[T], value: Any, trx: Optional['TransactionClient'] = None) -> Optional[T]:
        """按主键查找"""
        return await cls.query(trx).where(cls._pk_ref(), value).first()

    @classmethod
    async def find_or_fail(cls: Type[T], value: Any, trx: Optional['TransactionClient'] = None) -> T:
        instance = await cls.find(value, trx)
        if instance is None:
            raise RecordNotFoundError(cls.__tablename__, pk=value)
        return instance

    @classmethod
    def _lookup(cls, key: Union[str, Dict[str, Any]], value: Any) -> Dict[str, Any]:
        if isinstance(key, dict):
            return dict(key)
        if value is _UNSET:
            raise QueryError(f"find_by('{key}') requires a value")
        return {key: value}

    @classmethod
    def _where_lookup(cls, query: 'ModelQuery', lookup: Dict[str, Any]) -> 'ModelQuery':
        for attr, val in cls.prepare_for_storage(lookup).items():
            query.where(f'{cls.__tablename__}.{attr}', val)
        return query

    @classmethod
    async def find_by(cls: Type[T], key: Union[str, Dict[str, Any]], value: Any = _UNSET,
                      trx: Optional['TransactionClient'] = None) -> Optional[T]:
        """
        按列值查找第一条

        Example:
            await User.find_by('email', 'virk@example.com')
            await User.find_by({'email': 'virk@example.com', 'is_active': True})
        """
        lookup = cls._lookup(key, value)
        return await cls._where_lookup(cls.query(trx), lookup).first()

    @classmethod
    async def find_by_or_fail(cls: Type[T], key: Union[str, Dict[str, Any]], value: Any = _UNSET,
                              trx: Optional['TransactionClient'] = None) -> T:
        lookup = cls._lookup(key, value)
        instance = await cls._where_lookup(cls.query(trx), lookup).first()
        if instance is None:
            raise RecordNotFoundError(cls.__tablename__, lookup=lookup)
        return instance

    @classmethod
    async def find_many(cls, values: Iterable[Any], trx: Optional['TransactionClient'] = None) -> 'ModelCollection':
        """按主键批量查找（主键升序）"""
        return await (cls.query(trx)
                      .where_in(cls._pk_ref(), list(values))
                      .order_by(cls._pk_ref(), 'asc')
                      .fetch())

    @classmethod
    async def first(cls: Type[T], trx: Optional['TransactionClient'] = None) -> Optional[T]:
        """主键最小的记录"""
        return await cls.query(trx).order_by(cls._pk_ref(), 'asc').first()

    @classmethod
    async def first_or_fail(cls: Type[T], trx: Optional['TransactionClient'] = None) -> T:
        return await cls.query(trx).order_by(cls._pk_ref(), 'asc').first_or_fail()

    @classmethod
    async def last(cls: Type[T], trx: Optional['TransactionClient'] = None) -> Optional[T]:
        """主键最大的记录"""
        return await cls.query(trx).order_by(cls._pk_ref(), 'desc').first()

    @classmethod
    async def all(cls, trx: Optional['TransactionClient'] = None) -> 'ModelCollection':
        """全部记录（存储顺序）"""
        return await cls.query(trx).fetch()

    @classmethod
    async def pick(cls, n: int = 1, trx: Optional['TransactionClient'] = None) -> 'ModelCollection':
        """主键升序的前 n 条"""
        return await cls.query(trx).order_by(cls._pk_ref(), 'asc').limit(n).fetch()

    @classmethod
    async def pick_inverse(cls, n: int = 1, trx: Optional['TransactionClient'] = None) -> 'ModelCollection':
        """主键降序的前 n 条"""
        return await cls.query(trx).order_by(cls._pk_ref(), 'desc').limit(n).fetch()

    @classmethod
    async def ids(cls, trx: Optional['TransactionClient'] = None) -> List[Any]:
        return await cls.query(trx).order_by(cls._pk_ref(), 'asc').ids()

    @classmethod
    async def pair(cls, lhs: str, rhs: str, trx: Optional['TransactionClient'] = None) -> Dict[Any, Any]:
        """
        {lhs 值: rhs 值}

        Example:
            await Country.pair('id', 'name')   # {1: 'ind', 2: 'uk'}

        两侧的值与实例属性一样经过类型转换（布尔、日期等）。
        """
        raw = await cls.query(trx).pair(cls.column_name(lhs), cls.column_name(rhs))

        def convert(attr: str, value: Any) -> Any:
            if attr not in cls.__columns__:
                return value
            return cls.consume_value(attr, value)

        return {convert(lhs, key): convert(rhs, value) for key, value in raw.items()}

    @classmethod
    async def get_count(cls, trx: Optional['TransactionClient'] = None) -> int:
        return await cls.query(trx).count()

    @classmethod
    async def create(cls: Type[T], values: Dict[str, Any], trx: Optional['TransactionClient'] = None) -> T:
        instance = cls()
        instance.merge(values)
        await instance.save(trx)
        return instance

    @classmethod
    async def create_many(cls: Type[T], rows: Iterable[Dict[str, Any]],
                          trx: Optional['TransactionClient'] = None) -> List[T]:
        """逐条 create（每条都触发钩子）"""
        return [await cls.create(values, trx) for values in rows]

    @classmethod
    async def find_or_new(cls: Type[T], search: Dict[str, Any], payload: Optional[Dict[str, Any]] = None,
                          trx: Optional['TransactionClient'] = None) -> T:
        """查找，不存在时返回未保存的新实例"""
        instance = await cls.find_by(search, trx=trx)
        if instance is not None:
            return instance
        instance = cls()
        instance.merge({**search, **(payload or {})})
        return instance

    @classmethod
    async def find_or_create(cls: Type[T], search: Dict[str, Any], payload: Optional[Dict[str, Any]] = None,
                             trx: Optional['TransactionClient'] = None) -> T:
        """查找，不存在时以 search + payload 创建"""
        instance = await cls.find_or_new(search, payload, trx)
        if instance.is_new:
            await instance.save(trx)
        return instance

    @classmethod
    async def update_or_create(cls: Type[T], search: Dict[str, Any], payload: Dict[str, Any],
                               trx: Optional['TransactionClient'] = None) -> T:
        """查找后用 payload 更新，不存在时创建"""
        instance = await cls.find_by(search, trx=trx)
        if instance is None:
            instance = cls()
            instance.merge(search)
        instance.merge(payload)
        await instance.save(trx)
        return instance

    @classmethod
    async def truncate(cls, trx: Optional['TransactionClient'] = None) -> int:
        """删除表中全部记录（不触发钩子）"""
        return await cls._table_query(trx).delete()

    # ------------------------------------------------------------------
    # 钩子 / 作用域 / 关联注册
    # ------------------------------------------------------------------

    @classmethod
    def add_hook(cls, event_name: str, fn: Callable[..., Any]) -> None:
        event.listen(cls, event_name, fn)

    @classmethod
    def add_scope(cls, name: str, fn: Callable[..., Any]) -> None:
        cls.__scopes__[canonical_scope_name(name)] = fn

    @classmethod
    def add_global_scope(cls, fn: Callable[..., Any], name: Optional[str] = None) -> None:
        """注册全局作用域（作用于所有读取、聚合与批量写入）"""
        cls.__global_scopes__[name or fn.__name__] = fn

    @classmethod
    def add_relation(cls, name: str, relation: Relation) -> Relation:
        relation.bind(cls, name)
        setattr(cls, name, relation)
        cls.__relationships__[name] = relation
        return relation

    @classmethod
    def get_relation(cls, name: str) -> Relation:
        relation = cls.__relationships__.get(name)
        if relation is None:
            raise RelationNotFoundError(cls.__name__, name)
        return relation

    # ------------------------------------------------------------------
    # 关联访问
    # ------------------------------------------------------------------

    def related(self, name: str) -> RelatedClient:
        """
        关联客户端

        Example:
            await user.related('posts').create({'title': 'Hello'})
            await user.related('skills').attach([1, 2])
            await post.related('author').associate(user)
        """
        return self.get_relation(name).client(self)

    def is_loaded(self, name: str) -> bool:
        return name in self._preloaded

    def get_related(self, name: str) -> Any:
        if name in self._preloaded:
            return self._preloaded[name]
        self.get_relation(name)
        raise RelationNotLoadedError(type(self).__name__, name)

    def set_related(self, name: str, value: Any) -> None:
        self._preloaded[name] = value

    async def load(self, name: str, callback: Optional[Callable[[Any], Any]] = None,
                   trx: Optional['TransactionClient'] = None) -> Any:
        """
        加载关联并缓存

        已加载且未提供 callback 时不再查询。支持点号路径（'posts.comments'），
        点号路径总是执行查询。

        Returns:
            路径第一段关联的值
        """
        head = name.split('.', 1)[0]
        if callback is None and '.' not in name and self.is_loaded(name):
            return self._preloaded[name]
        await preload([self], {name: callback}, trx=trx)
        return self._preloaded[head]

    async def load_many(self, *relations: Any, trx: Optional['TransactionClient'] = None) -> 'BaseModel':
        await preload([self], *relations, trx=trx)
        return self

    async def fetch_related(self, name: str, trx: Optional['TransactionClient'] = None) -> Any:
        """返回已缓存的关联值，未加载时查询一次"""
        if self.is_loaded(name):
            return self._preloaded[name]
        return await self.load(name, trx=trx)

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------

    def set_visible(self, fields: List[str]) -> 'BaseModel':
        self._visible = list(fields)
        return self

    def set_hidden(self, fields: List[str]) -> 'BaseModel':
        self._hidden = list(fields)
        return self

    def serialize(self) -> Dict[str, Any]:
        """序列化为字典（应用 hidden / visible、日期转换、计算字段与已加载关联）"""
        return serialize_instance(self)

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.serialize(), default=str, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """原始属性（不经过序列化规则）"""
        return dict(self._attributes)

    def __repr__(self) -> str:
        state = 'deleted' if self._frozen else ('persisted' if self._persisted else 'new')
        return f"<{type(self).__name__} {self.__primary_key__}={self._attributes.get(self.__primary_key__)!r} ({state})>"


def declarative_base(database: Optional['Database'] = None, name: str = 'Base') -> Type[BaseModel]:
    """
    创建声明式基类

    基类绑定 Database 并拥有独立的模型注册表，关联可按类名引用同一基类下的模型。

    Args:
        database: Database 实例
        name: 基类名称

    Returns:
        抽象模型基类

    Example:
        db = Database()
        Base = declarative_base(db)

        class User(Base):
            name = Column(str)
    """
    return type(name, (BaseModel,), {
        '__abstract__': True,
        '__database__': database,
        '__registry__': ModelRegistry(),
        '__module__': __name__,
    })
