"""
Lucent 关联预加载

解决关联访问的 N+1 查询问题：每个关联对整批 parent 只执行一次查询。

两种使用方式：

1. 查询选项（集成到 ModelQuery 链式调用）：
    users = await User.query().preload('posts').preload('posts.comments').fetch()

2. 独立函数（对已获取的实例列表批量加载）：
    from lucent import preload

    users = await User.all()
    await preload(users, 'posts')                       # 单次查询加载所有用户的 posts
    await preload(users, {'posts': lambda q: q.where('published', True)})
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from .orm import BaseModel
    from .transaction import TransactionClient

PreloadCallback = Callable[[Any], Any]
PreloadSpec = Union[str, Dict[str, Optional[PreloadCallback]]]


@dataclass
class PreloadNode:
    """预加载树节点：一个关联的约束回调与下级关联"""
    name: str
    callbacks: List[PreloadCallback] = field(default_factory=list)
    children: Dict[str, 'PreloadNode'] = field(default_factory=dict)


def add_preload(tree: Dict[str, PreloadNode], path: str,
                callback: Optional[PreloadCallback] = None) -> None:
    """
    向预加载树加入一条路径

    ``'posts.comments'`` 会创建（或复用）posts 节点与其下的 comments 节点，
    回调只作用于路径的最后一段。

    Args:
        tree: 预加载树（就地修改）
        path: 关联路径
        callback: 约束回调
    """
    parts = path.split('.')
    nodes = tree
    node: Optional[PreloadNode] = None
    for part in parts:
        node = nodes.get(part)
        if node is None:
            node = PreloadNode(part)
            nodes[part] = node
        nodes = node.children
    if callback is not None and node is not None:
        node.callbacks.append(callback)


async def preload_tree(instances: Sequence['BaseModel'], tree: Dict[str, PreloadNode],
                       trx: Optional['TransactionClient'] = None) -> None:
    """
    按预加载树批量加载

    Args:
        instances: 同一模型的实例列表
        tree: 预加载树
        trx: 事务客户端
    """
    if not instances:
        return
    owner = type(instances[0])
    for name, node in tree.items():
        rel = owner.get_relation(name)
        query = rel.target_model.query(trx)
        for callback in node.callbacks:
            callback(query)
        for child_name, child in node.children.items():
            query.preloads[child_name] = child
        await rel.eager_load(list(instances), query)


async def preload(instances: Sequence['BaseModel'], *relations: PreloadSpec,
                  trx: Optional['TransactionClient'] = None) -> None:
    """
    为已获取的实例批量加载关联

    Args:
        instances: 模型实例列表（必须为同一模型类）
        *relations: 关联路径，或 {关联路径: 约束回调}
        trx: 事务客户端

    Example:
        await preload(users, 'posts', 'profile')
        await preload(users, {'posts': lambda q: q.order_by('id', 'desc')})
    """
    if not relations:
        raise ValueError(
            "preload() requires at least one relation name. "
            "Usage: await preload(instances, 'rel_name1', 'rel_name2', ...)"
        )
    tree: Dict[str, PreloadNode] = {}
    for spec in relations:
        if isinstance(spec, str):
            add_preload(tree, spec)
        elif isinstance(spec, dict):
            for path, callback in spec.items():
                add_preload(tree, path, callback)
        else:
            raise TypeError(f"Relation name must be str or dict, got {type(spec).__name__}")
    await preload_tree(instances, tree, trx)
