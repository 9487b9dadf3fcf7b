"""
Lucent 类型系统

定义 Python 值与存储值之间的转换：写入前 prepare，读取后 consume。
"""

import json
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Optional, Type

DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'
DATE_FORMAT = '%Y-%m-%d'


class TypeCaster(ABC):
    """类型转换器抽象基类"""

    @abstractmethod
    def prepare(self, value: Any) -> Any:
        """Python 值 -> 存储值"""

    @abstractmethod
    def consume(self, value: Any) -> Any:
        """存储值 -> Python 值"""


class PassthroughCaster(TypeCaster):
    """原样传递"""

    def prepare(self, value: Any) -> Any:
        return value

    def consume(self, value: Any) -> Any:
        return value


class BoolCaster(TypeCaster):
    """布尔：存储为 0/1"""

    def prepare(self, value: Any) -> Any:
        if value is None:
            return None
        return 1 if value else 0

    def consume(self, value: Any) -> Any:
        if value is None:
            return None
        return bool(value)


class DateTimeCaster(TypeCaster):
    """日期时间：存储为规范字符串"""

    def prepare(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.strftime(DATETIME_FORMAT)
        return value

    def consume(self, value: Any) -> Any:
        return parse_datetime(value)


class DateCaster(TypeCaster):
    """日期：存储为 YYYY-MM-DD"""

    def prepare(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date().strftime(DATE_FORMAT)
        if isinstance(value, date):
            return value.strftime(DATE_FORMAT)
        return value

    def consume(self, value: Any) -> Any:
        if isinstance(value, str):
            return datetime.strptime(value[:10], DATE_FORMAT).date()
        if isinstance(value, datetime):
            return value.date()
        return value


class JsonCaster(TypeCaster):
    """dict / list：存储为 JSON 文本"""

    def prepare(self, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    def consume(self, value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            return json.loads(value)
        return value


def parse_datetime(value: Any) -> Any:
    """
    解析存储中的日期时间

    支持 ``YYYY-MM-DD HH:MM:SS``、ISO-8601 与仅日期字符串；其它值原样返回。
    """
    if not isinstance(value, str):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return datetime.strptime(value, DATETIME_FORMAT)


class TypeRegistry:
    """Python 类型 -> 转换器"""

    _casters: Dict[type, TypeCaster] = {
        bool: BoolCaster(),
        datetime: DateTimeCaster(),
        date: DateCaster(),
        dict: JsonCaster(),
        list: JsonCaster(),
    }
    _default = PassthroughCaster()

    @classmethod
    def register(cls, py_type: type, caster: TypeCaster) -> None:
        cls._casters[py_type] = caster

    @classmethod
    def get_caster(cls, py_type: Optional[Type[Any]]) -> TypeCaster:
        if py_type is None:
            return cls._default
        return cls._casters.get(py_type, cls._default)

    @classmethod
    def sql_type(cls, py_type: Optional[Type[Any]]) -> str:
        """建表时使用的列类型"""
        mapping = {
            int: 'INTEGER',
            bool: 'INTEGER',
            float: 'REAL',
            str: 'TEXT',
            bytes: 'BLOB',
            datetime: 'TEXT',
            date: 'TEXT',
            dict: 'TEXT',
            list: 'TEXT',
        }
        if py_type is None:
            return 'TEXT'
        return mapping.get(py_type, 'TEXT')
