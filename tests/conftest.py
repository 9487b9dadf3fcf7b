"""
共享 fixtures

异步用例以 unittest.IsolatedAsyncioTestCase 编写，同样由 pytest 收集；
autouse fixture 对两类用例都生效。
"""
import sys
from pathlib import Path
from typing import Iterator

import pytest

# 未安装时直接从仓库根目录导入
sys.path.insert(0, str(Path(__file__).parent.parent))

from lucent import event  # noqa: E402


@pytest.fixture(autouse=True)
def clear_events() -> Iterator[None]:
    """全局 event 是进程级单例，用例之间不共享监听器"""
    event.clear()
    yield
    event.clear()
