"""
Lucent 生命周期钩子

模型钩子（回调可以是普通函数，也可以是协程函数）：

    before_save / after_save        create 与 update 两条路径都会触发
    before_create / after_create
    before_update / after_update
    before_delete / after_delete
    after_find                      参数为单个实例
    after_fetch                     参数为实例列表
    after_paginate                  参数为实例列表与分页器

数据库钩子（只接受同步回调）：

    query                           每条语句发往驱动前触发，参数为 QueryInfo

示例::

    from lucent import event

    @event.listens_for(User, 'before_save')
    async def hash_password(user):
        if 'password' in user.dirty:
            user.password = await hasher.make(user.password)

    event.listen(db, 'query', lambda info: logger.debug(info.sql))

回调按注册顺序串行执行。任一回调抛出异常时，其余回调不再执行，异常原样传给触发钩子的操作。
监听器绑定在具体的类上，子类不会继承父类的监听器。
"""

import inspect
from typing import Any, Callable, Dict, Hashable, List, Set, Tuple


Listener = Callable[..., Any]

MODEL_EVENTS: Set[str] = {
    'before_save', 'after_save',
    'before_create', 'after_create',
    'before_update', 'after_update',
    'before_delete', 'after_delete',
    'after_find', 'after_fetch', 'after_paginate',
}
DATABASE_EVENTS: Set[str] = {'query'}
ALL_EVENTS: Set[str] = MODEL_EVENTS | DATABASE_EVENTS


def _target_key(target: Any) -> Hashable:
    # 模型类直接作键；Database 实例按 id 区分，引用另存于 _pinned
    return target if isinstance(target, type) else id(target)


class EventManager:
    """钩子注册表，`lucent.event` 是它的进程级实例"""

    def __init__(self) -> None:
        self._listeners: Dict[Tuple[Hashable, str], List[Listener]] = {}
        self._pinned: Dict[int, Any] = {}

    def _check(self, target: Any, event_name: str) -> None:
        if event_name not in ALL_EVENTS:
            valid = ', '.join(sorted(ALL_EVENTS))
            raise ValueError(f"Unknown event: '{event_name}'. Valid events: {valid}")
        if event_name in MODEL_EVENTS and not isinstance(target, type):
            raise ValueError(f"Model event '{event_name}' requires a model class as target")

    def listen(self, target: Any, event_name: str, fn: Listener) -> None:
        """
        为 target 挂上一个回调

        Args:
            target: 模型钩子传模型类，query 钩子传 Database 实例
            event_name: 钩子名称，必须在 ALL_EVENTS 中
            fn: 回调
        """
        self._check(target, event_name)
        key = _target_key(target)
        if not isinstance(target, type):
            self._pinned[key] = target
        self._listeners.setdefault((key, event_name), []).append(fn)

    def listens_for(self, target: Any, event_name: str) -> Callable[[Listener], Listener]:
        """listen 的装饰器写法，被装饰函数原样返回"""
        def register(fn: Listener) -> Listener:
            self.listen(target, event_name, fn)
            return fn
        return register

    def remove(self, target: Any, event_name: str, fn: Listener) -> None:
        """撤销一次 listen；回调未注册时静默返回"""
        bucket = self._listeners.get((_target_key(target), event_name))
        if bucket and fn in bucket:
            bucket.remove(fn)

    def has_listeners(self, model_class: type, event_name: str) -> bool:
        return bool(self._listeners.get((model_class, event_name)))

    async def dispatch_model(self, model_class: type, event_name: str, *args: Any) -> None:
        """
        触发模型钩子

        只查找 model_class 自身的监听器。协程回调会被 await，
        回调执行期间对注册表的修改留到下一次触发才生效。
        """
        for fn in tuple(self._listeners.get((model_class, event_name), ())):
            outcome = fn(*args)
            if inspect.isawaitable(outcome):
                await outcome

    def dispatch_database(self, database: Any, event_name: str, payload: Any) -> None:
        for fn in tuple(self._listeners.get((id(database), event_name), ())):
            fn(payload)

    def clear(self, target: Any = None) -> None:
        """
        清空监听器

        target 为 None 时清空全部，否则只清空该模型类或 Database 实例名下的回调。
        """
        if target is None:
            self._listeners.clear()
            self._pinned.clear()
            return
        key = _target_key(target)
        for stale in [k for k in self._listeners if k[0] == key]:
            del self._listeners[stale]
        if not isinstance(target, type):
            self._pinned.pop(key, None)


event = EventManager()
