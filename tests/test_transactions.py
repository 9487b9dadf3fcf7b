"""
Lucent 事务测试

事务客户端持有独立连接：显式提交 / 回滚、回调形式、上下文管理器形式。
"""

import unittest
from typing import Any, List

import pytest

from lucent import (
    Column,
    Database,
    HasMany,
    QueryInfo,
    TransactionClient,
    TransactionError,
    declarative_base,
    event,
)


class TransactionTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.db = Database()
        Base = declarative_base(self.db)

        class User(Base):
            username = Column(str)
            posts = HasMany('Post')

        class Post(Base):
            user_id = Column(int)
            title = Column(str)

        self.User, self.Post = User, Post
        await self.db.create_table(User)
        await self.db.create_table(Post)

        self.queries: List[QueryInfo] = []
        event.listen(self.db, 'query', self.queries.append)

    async def asyncTearDown(self) -> None:
        await self.db.close()


class TestManualTransaction(TransactionTestCase):

    async def test_commit(self) -> None:
        trx = await self.db.transaction()
        assert isinstance(trx, TransactionClient)
        user = await self.User.create({'username': 'virk'}, trx)
        await user.related('posts').create({'title': 'Adonis 101'}, trx)
        await trx.commit()

        assert trx.is_completed
        assert await self.User.get_count() == 1
        assert await self.Post.get_count() == 1

    async def test_rollback(self) -> None:
        trx = await self.db.transaction()
        await self.User.create({'username': 'virk'}, trx)
        await self.User.create({'username': 'romain'}, trx)
        await trx.rollback()

        assert await self.User.get_count() == 0

    async def test_reads_inside_transaction_see_own_writes(self) -> None:
        trx = await self.db.transaction()
        try:
            await self.User.create({'username': 'virk'}, trx)
            assert await self.User.get_count(trx) == 1
            assert (await self.User.find_by('username', 'virk', trx=trx)).id == 1
        finally:
            await trx.rollback()

    async def test_reads_outside_transaction_see_committed_state(self) -> None:
        await self.User.create({'username': 'virk'})
        trx = await self.db.transaction()
        await self.User.create({'username': 'romain'}, trx)

        # 事务持有写锁时，事务外的读取不受影响，只看到已提交的数据
        assert [u.username for u in await self.User.all()] == ['virk']
        assert await self.User.find_by('username', 'romain') is None
        assert await self.db.table('users').count() == 1

        await trx.commit()
        assert await self.User.get_count() == 2

    async def test_completed_transaction_rejects_statements(self) -> None:
        trx = await self.db.transaction()
        await trx.commit()

        with pytest.raises(TransactionError):
            await trx.commit()
        with pytest.raises(TransactionError):
            await trx.rollback()
        with pytest.raises(TransactionError):
            await self.User.create({'username': 'virk'}, trx)

    async def test_queries_report_transaction_flag(self) -> None:
        await self.User.create({'username': 'outside'})
        trx = await self.db.transaction()
        await self.User.create({'username': 'inside'}, trx)
        await trx.commit()

        assert [info.in_transaction for info in self.queries] == [False, True]
        assert all(info.connection == 'primary' for info in self.queries)

    async def test_update_and_delete_in_transaction(self) -> None:
        user = await self.User.create({'username': 'virk'})
        trx = await self.db.transaction()
        user.username = 'romain'
        await user.save(trx)
        await trx.rollback()
        assert (await self.User.find(user.id)).username == 'virk'

        trx = await self.db.transaction()
        await user.delete(trx)
        await trx.commit()
        assert await self.User.find(user.id) is None


class TestCallbackTransaction(TransactionTestCase):

    async def test_commits_and_returns_result(self) -> None:
        async def work(trx: TransactionClient) -> Any:
            user = await self.User.create({'username': 'virk'}, trx)
            return user.id

        assert await self.db.transaction(work) == 1
        assert await self.User.get_count() == 1

    async def test_rolls_back_on_error(self) -> None:
        async def work(trx: TransactionClient) -> None:
            await self.User.create({'username': 'virk'}, trx)
            raise RuntimeError('boom')

        with pytest.raises(RuntimeError):
            await self.db.transaction(work)
        assert await self.User.get_count() == 0

    async def test_callback_may_complete_transaction_itself(self) -> None:
        async def work(trx: TransactionClient) -> None:
            await self.User.create({'username': 'virk'}, trx)
            await trx.rollback()

        await self.db.transaction(work)
        assert await self.User.get_count() == 0


class TestContextManagerTransaction(TransactionTestCase):

    async def test_commits_on_exit(self) -> None:
        async with await self.db.transaction() as trx:
            await self.User.create({'username': 'virk'}, trx)
        assert trx.is_completed
        assert await self.User.get_count() == 1

    async def test_rolls_back_on_exception(self) -> None:
        with pytest.raises(ValueError):
            async with await self.db.transaction() as trx:
                await self.User.create({'username': 'virk'}, trx)
                raise ValueError('abort')
        assert await self.User.get_count() == 0

    async def test_table_query_in_transaction(self) -> None:
        async with await self.db.transaction() as trx:
            await self.db.table('users').use_transaction(trx).insert({'username': 'virk'})
            rows = await self.db.table('users').use_transaction(trx).fetch()
            assert rows == [{'id': 1, 'username': 'virk'}]
        assert await self.db.table('users').count() == 1
