"""
Lucent 序列化

模型实例 -> dict。顺序：
1. hidden 移除 / visible 白名单（实例级设置优先于 ModelOptions）
2. 日期字段经 cast_date 转换
3. 列的 serializer 与 serialize_as（None 表示不输出）
4. 计算字段（@computed）
5. 已加载的关联，按各自模型的规则递归序列化
"""

from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .orm import BaseModel


def _field_filter(instance: 'BaseModel') -> Callable[[str], bool]:
    options = type(instance).__options__
    visible: Optional[List[str]] = instance._visible if instance._visible is not None else options.visible
    hidden: List[str] = instance._hidden if instance._hidden is not None else options.hidden

    def allowed(name: str) -> bool:
        if visible is not None:
            return name in visible
        return name not in hidden
    return allowed


def serialize_value(value: Any) -> Any:
    """序列化关联值（实例、实例列表或 None）"""
    if value is None:
        return None
    if isinstance(value, list):
        return [serialize_value(item) for item in value]
    if hasattr(value, 'serialize'):
        return value.serialize()
    return value


def serialize_instance(instance: 'BaseModel') -> Dict[str, Any]:
    """
    序列化单个实例

    Args:
        instance: 模型实例

    Returns:
        可直接 JSON 编码的字典（日期已转为字符串）
    """
    model = type(instance)
    allowed = _field_filter(instance)
    result: Dict[str, Any] = {}

    for attr, column in model.__columns__.items():
        if not allowed(attr):
            continue
        key = column.serialize_key(attr)
        if key is None:
            continue
        value = instance.get(attr)
        if value is not None and model.is_date_field(attr):
            value = model.cast_date(attr, value)
        if column.serializer is not None:
            value = column.serializer(value)
        result[key] = value

    for name, prop in model.__computed__.items():
        if not allowed(name):
            continue
        key = prop.serialize_key(name)
        if key is not None:
            result[key] = prop.fn(instance)

    for name, value in instance._preloaded.items():
        if allowed(name):
            result[name] = serialize_value(value)

    if model.__options__.serialize_extras and instance.extras:
        result['meta'] = dict(instance.extras)
    return result
