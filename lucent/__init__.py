"""
Lucent - Async Active Record ORM

Model classes bound to relational tables, a fluent query builder,
batched relationship loading, lifecycle hooks and serialization.

    from lucent import Database, declarative_base, Column, HasMany

    db = Database()
    Base = declarative_base(db)

    class User(Base):
        email = Column(str)
        posts = HasMany('Post')

    class Post(Base):
        user_id = Column(int)
        title = Column(str)

    await db.create_table(User)
    await db.create_table(Post)
    user = await User.create({'email': 'virk@example.com'})
    await user.related('posts').create({'title': 'Hello'})
    users = await User.query().preload('posts').fetch()
"""

# core 必须先于 query 导入
from .core import (
    Database,
    QueryClient,
    QueryInfo,
    TransactionClient,
    Column,
    Computed,
    BaseModel,
    computed,
    scope,
    declarative_base,
    Relation,
    HasOne,
    HasMany,
    BelongsTo,
    ManyToMany,
    HasManyThrough,
    preload,
    event,
)
from .query import QueryBuilder, ModelQuery, ModelCollection, Paginator, Raw
from .common.options import (
    SqliteConnectorOptions,
    ConnectionConfig,
    DatabaseConfig,
    ModelOptions,
)
from .common.exceptions import (
    LucentException,
    RecordNotFoundError,
    FrozenInstanceError,
    PrimaryKeyError,
    ColumnNotFoundError,
    RelationNotFoundError,
    RelationNotLoadedError,
    ModelNotFoundError,
    QueryError,
    TransactionError,
    ConfigurationError,
    DatabaseConnectionError,
)

__version__ = '0.1.0'

__all__ = [
    # Database
    'Database',
    'QueryClient',
    'QueryInfo',
    'TransactionClient',
    # ORM
    'Column',
    'Computed',
    'BaseModel',
    'computed',
    'scope',
    'declarative_base',
    # Relations
    'Relation',
    'HasOne',
    'HasMany',
    'BelongsTo',
    'ManyToMany',
    'HasManyThrough',
    'preload',
    # Query
    'QueryBuilder',
    'ModelQuery',
    'ModelCollection',
    'Paginator',
    'Raw',
    # Events
    'event',
    # Options
    'SqliteConnectorOptions',
    'ConnectionConfig',
    'DatabaseConfig',
    'ModelOptions',
    # Exceptions
    'LucentException',
    'RecordNotFoundError',
    'FrozenInstanceError',
    'PrimaryKeyError',
    'ColumnNotFoundError',
    'RelationNotFoundError',
    'RelationNotLoadedError',
    'ModelNotFoundError',
    'QueryError',
    'TransactionError',
    'ConfigurationError',
    'DatabaseConnectionError',
]
