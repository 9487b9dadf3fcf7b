"""
后端注册表

按引擎名查找并实例化存储后端。
"""

from typing import Dict, List, Type

from .base import StorageBackend
from .backend_sqlite import SqliteBackend
from ..common.exceptions import ConfigurationError
from ..common.options import ConnectorOptions


class BackendRegistry:
    """引擎名 -> 后端类"""

    _backends: Dict[str, Type[StorageBackend]] = {}

    @classmethod
    def register(cls, backend_class: Type[StorageBackend]) -> None:
        if not backend_class.ENGINE_NAME:
            raise ConfigurationError(f"{backend_class.__name__} has no ENGINE_NAME")
        cls._backends[backend_class.ENGINE_NAME] = backend_class

    @classmethod
    def get(cls, engine: str) -> Type[StorageBackend]:
        if engine not in cls._backends:
            raise ConfigurationError(
                f"Unknown engine: '{engine}'. Available engines: {', '.join(sorted(cls._backends))}"
            )
        return cls._backends[engine]

    @classmethod
    def available_engines(cls) -> List[str]:
        return sorted(cls._backends)


BackendRegistry.register(SqliteBackend)


def get_backend(engine: str, options: ConnectorOptions) -> StorageBackend:
    """
    实例化后端

    Args:
        engine: 引擎名称
        options: 连接器配置选项

    Returns:
        未连接的后端实例
    """
    backend_class = BackendRegistry.get(engine)
    return backend_class(options)


def get_available_engines() -> List[str]:
    return BackendRegistry.available_engines()
