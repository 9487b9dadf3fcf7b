"""
Lucent 查询结果

ModelCollection 是 fetch() 的返回类型：行为同 list，并可序列化。
Paginator 在其基础上附加分页信息。
"""

import json
import math
from typing import Any, Callable, Dict, Iterable, List, Optional, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.orm import BaseModel
    from ..core.transaction import TransactionClient


class ModelCollection(list):
    """
    模型实例集合

    Example:
        users = await User.query().fetch()
        users.first()
        users.serialize()   # [{...}, {...}]
        await users.load('posts')
    """

    @property
    def rows(self) -> List['BaseModel']:
        return list(self)

    def size(self) -> int:
        return len(self)

    def first(self) -> Optional['BaseModel']:
        return self[0] if self else None

    def last(self) -> Optional['BaseModel']:
        return self[-1] if self else None

    def nth(self, index: int) -> Optional['BaseModel']:
        if -len(self) <= index < len(self):
            return self[index]
        return None

    async def load(self, *relations: Union[str, Dict[str, Callable[..., Any]]],
                   trx: Optional['TransactionClient'] = None) -> 'ModelCollection':
        """
        为集合中的所有实例批量加载关联（每个关联一次查询）

        Args:
            relations: 关联名（可用点号嵌套），或 {关联名: 约束回调}
            trx: 事务客户端
        """
        from ..core.prefetch import preload
        await preload(self, *relations, trx=trx)
        return self

    def serialize(self) -> List[Dict[str, Any]]:
        return [instance.serialize() for instance in self]

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.serialize(), default=str, **kwargs)


class Paginator(ModelCollection):
    """
    分页结果

    serialize() 输出 ``{'total', 'perPage', 'lastPage', 'page', 'data'}``。
    """

    def __init__(self, rows: Iterable['BaseModel'], total: int, per_page: int, page: int):
        super().__init__(rows)
        self.total = int(total)
        self.per_page = int(per_page)
        self.page = int(page)

    @property
    def last_page(self) -> int:
        if self.per_page <= 0:
            return 1
        return max(math.ceil(self.total / self.per_page), 1)

    @property
    def has_more_pages(self) -> bool:
        return self.page < self.last_page

    @property
    def next_page(self) -> Optional[int]:
        return self.page + 1 if self.has_more_pages else None

    @property
    def previous_page(self) -> Optional[int]:
        return self.page - 1 if self.page > 1 else None

    @property
    def pages(self) -> Dict[str, int]:
        return {
            'total': self.total,
            'perPage': self.per_page,
            'lastPage': self.last_page,
            'page': self.page,
        }

    def serialize(self) -> Dict[str, Any]:  # type: ignore[override]
        result: Dict[str, Any] = dict(self.pages)
        result['data'] = super().serialize()
        return result

    def __repr__(self) -> str:
        return f"Paginator(page={self.page}/{self.last_page}, total={self.total}, rows={len(self)})"
