"""
Lucent 配置选项 dataclass 定义

数据库连接、连接器与模型的配置都以强类型 dataclass 表示，替代 **kwargs 参数。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .exceptions import ConfigurationError


@dataclass(slots=True)
class SqliteConnectorOptions:
    """SQLite 连接器配置选项"""
    database: str = ':memory:'  # 数据库文件路径，':memory:' 表示内存库
    timeout: float = 5.0  # 等待锁的超时时间（秒）
    isolation_level: Optional[str] = None  # None = 自动提交，事务由 BEGIN/COMMIT 显式控制
    pragmas: Dict[str, Any] = field(default_factory=dict)  # 连接建立后执行的 PRAGMA


# Connector 选项联合类型
ConnectorOptions = Union[SqliteConnectorOptions]


# 引擎名 -> 选项类
_CONNECTOR_OPTION_TYPES: Dict[str, type] = {
    'sqlite': SqliteConnectorOptions,
}


@dataclass(slots=True)
class ConnectionConfig:
    """单个命名连接的配置"""
    engine: str = 'sqlite'
    options: ConnectorOptions = field(default_factory=SqliteConnectorOptions)


@dataclass(slots=True)
class DatabaseConfig:
    """
    数据库配置

    Example:
        config = DatabaseConfig.from_dict({
            'connection': 'primary',
            'connections': {
                'primary': {'engine': 'sqlite', 'database': 'app.db'},
            },
        })
    """
    connection: str = 'primary'  # 默认连接名
    connections: Dict[str, ConnectionConfig] = field(
        default_factory=lambda: {'primary': ConnectionConfig()}
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseConfig':
        """
        从字典构建配置

        Args:
            data: {'connection': 默认连接名, 'connections': {名称: {'engine': ..., 其余为连接器选项}}}

        Returns:
            DatabaseConfig 实例

        Raises:
            ConfigurationError: 引擎未知或默认连接未定义
        """
        connections: Dict[str, ConnectionConfig] = {}
        for name, raw in (data.get('connections') or {}).items():
            raw = dict(raw)
            engine = raw.pop('engine', 'sqlite')
            option_type = _CONNECTOR_OPTION_TYPES.get(engine)
            if option_type is None:
                raise ConfigurationError(f"Unknown engine '{engine}' for connection '{name}'")
            try:
                options = option_type(**raw)
            except TypeError as e:
                raise ConfigurationError(f"Invalid options for connection '{name}': {e}") from e
            connections[name] = ConnectionConfig(engine=engine, options=options)

        if not connections:
            connections = {'primary': ConnectionConfig()}

        default = data.get('connection') or next(iter(connections))
        if default not in connections:
            raise ConfigurationError(f"Default connection '{default}' is not defined")
        return cls(connection=default, connections=connections)


@dataclass(slots=True)
class ModelOptions:
    """
    模型配置

    在模型类上通过 ``__options__ = ModelOptions(...)`` 提供。
    hidden 与 visible 互斥：设置了 visible 时只输出其中字段。
    """
    connection: Optional[str] = None  # 连接名，None 使用默认连接
    hidden: List[str] = field(default_factory=list)  # 序列化时隐藏的字段
    visible: Optional[List[str]] = None  # 序列化时的字段白名单
    dates: List[str] = field(default_factory=list)  # 额外的日期字段
    created_at_column: Optional[str] = 'created_at'  # None 表示不自动写入
    updated_at_column: Optional[str] = 'updated_at'  # None 表示不自动写入
    incrementing: bool = True  # 主键是否由数据库自增生成
    serialize_extras: bool = False  # 序列化时是否以 meta 输出 extras

    def __post_init__(self) -> None:
        if self.visible is not None and self.hidden:
            raise ConfigurationError("ModelOptions.hidden and ModelOptions.visible are mutually exclusive")
