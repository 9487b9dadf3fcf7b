"""
Lucent 持久化测试

save / delete / refresh、生命周期钩子顺序、时间戳与便捷创建方法。
"""

import unittest
from datetime import datetime
from typing import Any, List

import pytest

from lucent import (
    Column,
    Database,
    ModelOptions,
    QueryError,
    QueryInfo,
    RecordNotFoundError,
    declarative_base,
    event,
)


class PersistenceTestCase(unittest.IsolatedAsyncioTestCase):
    """内存数据库 + User / Article 模型"""

    async def asyncSetUp(self) -> None:
        self.db = Database()
        Base = declarative_base(self.db)

        class User(Base):
            id = Column(int, primary_key=True)
            username = Column(str, nullable=False)
            email = Column(str, unique=True)
            points = Column(int)

        class Article(Base):
            title = Column(str)
            body = Column(str)
            created_at = Column(datetime)
            updated_at = Column(datetime)

        self.User = User
        self.Article = Article
        await self.db.create_table(User)
        await self.db.create_table(Article)

        self.queries: List[QueryInfo] = []
        event.listen(self.db, 'query', self.queries.append)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def sql(self) -> List[str]:
        return [info.sql for info in self.queries]


class TestSave(PersistenceTestCase):

    async def test_insert_assigns_primary_key(self) -> None:
        user = self.User(username='virk', email='virk@adonisjs.com')
        assert await user.save() is True
        assert user.is_persisted
        assert user.id == 1
        assert not user.is_dirty
        assert self.sql() == ['INSERT INTO "users" ("username", "email") VALUES (?, ?)']

    async def test_clean_save_issues_no_query(self) -> None:
        user = await self.User.create({'username': 'virk'})
        self.queries.clear()
        assert await user.save() is False
        assert self.queries == []

    async def test_update_writes_dirty_columns_only(self) -> None:
        user = await self.User.create({'username': 'virk', 'email': 'virk@adonisjs.com'})
        self.queries.clear()

        user.username = 'romain'
        assert await user.save() is True
        assert self.sql() == ['UPDATE "users" SET "username" = ? WHERE "id" = ?']
        assert self.queries[0].params == ['romain', user.id]

        fresh = await self.User.find(user.id)
        assert fresh.username == 'romain'
        assert fresh.email == 'virk@adonisjs.com'

    async def test_saving_twice_issues_one_write(self) -> None:
        user = self.User(username='virk')
        await user.save()
        await user.save()
        assert len(self.queries) == 1

    async def test_integrity_errors_propagate(self) -> None:
        await self.User.create({'username': 'virk', 'email': 'virk@adonisjs.com'})
        with pytest.raises(Exception) as exc_info:
            await self.User.create({'username': 'romain', 'email': 'virk@adonisjs.com'})
        assert 'UNIQUE' in str(exc_info.value)


class TestTimestamps(PersistenceTestCase):

    async def test_created_and_updated_at_on_insert(self) -> None:
        article = await self.Article.create({'title': 'Hello'})
        assert isinstance(article.created_at, datetime)
        assert article.updated_at == article.created_at

        fresh = await self.Article.find(article.id)
        assert fresh.created_at == article.created_at

    async def test_updated_at_on_update(self) -> None:
        article = await self.Article.create({'title': 'Hello'})
        article.created_at = datetime(2000, 1, 1)
        article.updated_at = datetime(2000, 1, 1)
        await article.save()
        self.queries.clear()

        article.title = 'Hello world'
        await article.save()
        assert 'updated_at' in self.sql()[0]
        assert article.updated_at > datetime(2000, 1, 1)
        assert article.created_at == datetime(2000, 1, 1)

    async def test_timestamp_columns_can_be_disabled(self) -> None:
        Base = declarative_base(self.db)

        class Note(Base):
            body = Column(str)
            created_at = Column(datetime)
            __options__ = ModelOptions(created_at_column=None)

        await self.db.create_table(Note)
        note = await Note.create({'body': 'x'})
        assert note.created_at is None


class TestHooks(PersistenceTestCase):

    async def test_insert_and_update_hook_order(self) -> None:
        calls: List[str] = []
        for name in ('before_save', 'after_save', 'before_create', 'after_create',
                     'before_update', 'after_update'):
            self.User.add_hook(name, lambda instance, name=name: calls.append(name))

        user = await self.User.create({'username': 'virk'})
        assert calls == ['before_save', 'before_create', 'after_create', 'after_save']

        calls.clear()
        user.username = 'romain'
        await user.save()
        assert calls == ['before_save', 'before_update', 'after_update', 'after_save']

    async def test_clean_save_runs_no_hooks(self) -> None:
        calls: List[str] = []
        user = await self.User.create({'username': 'virk'})
        self.User.add_hook('before_save', lambda instance: calls.append('before_save'))
        await user.save()
        assert calls == []

    async def test_async_hook_can_modify_instance(self) -> None:
        @event.listens_for(self.User, 'before_create')
        async def normalize(instance: Any) -> None:
            instance.username = instance.username.strip()

        user = await self.User.create({'username': '  virk  '})
        assert (await self.User.find(user.id)).username == 'virk'

    async def test_failing_hook_aborts_write(self) -> None:
        def reject(instance: Any) -> None:
            raise ValueError('rejected')

        self.User.add_hook('before_create', reject)
        user = self.User(username='virk')
        with pytest.raises(ValueError):
            await user.save()
        assert not user.is_persisted
        assert await self.User.get_count() == 0

    async def test_after_hook_failure_propagates(self) -> None:
        self.User.add_hook('after_save', lambda instance: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            await self.User.create({'username': 'virk'})
        # 写入已经发生，钩子异常只是向上传播
        assert await self.User.get_count() == 1

    async def test_delete_hooks(self) -> None:
        calls: List[Any] = []
        self.User.add_hook('before_delete', lambda instance: calls.append(('before', instance.is_deleted)))
        self.User.add_hook('after_delete', lambda instance: calls.append(('after', instance.is_deleted)))

        user = await self.User.create({'username': 'virk'})
        await user.delete()
        assert calls == [('before', False), ('after', True)]

    async def test_hooks_registered_in_boot(self) -> None:
        Base = declarative_base(self.db)
        seen: List[str] = []

        class Member(Base):
            name = Column(str)

            @classmethod
            def boot(cls) -> None:
                cls.add_hook('before_save', lambda instance: seen.append(instance.name))

        await self.db.create_table(Member)
        await Member.create({'name': 'virk'})
        assert seen == ['virk']

    async def test_read_hooks(self) -> None:
        found: List[Any] = []
        fetched: List[int] = []
        paginated: List[Any] = []
        self.User.add_hook('after_find', found.append)
        self.User.add_hook('after_fetch', lambda rows: fetched.append(len(rows)))
        self.User.add_hook('after_paginate', lambda rows, paginator: paginated.append((len(rows), paginator.total)))

        await self.User.create_many([{'username': 'virk'}, {'username': 'romain'}])
        user = await self.User.find(1)
        await self.User.all()
        await self.User.query().paginate(1, 1)

        assert found == [user]
        assert fetched == [2]
        assert paginated == [(1, 2)]

    async def test_bulk_writes_bypass_hooks(self) -> None:
        calls: List[str] = []
        self.User.add_hook('before_update', lambda instance: calls.append('update'))
        self.User.add_hook('before_delete', lambda instance: calls.append('delete'))

        await self.User.create_many([{'username': 'virk'}, {'username': 'romain'}])
        assert await self.User.query().update({'points': 10}) == 2
        assert await self.User.query().where('username', 'virk').delete() == 1
        assert calls == []


class TestDeleteAndRefresh(PersistenceTestCase):

    async def test_delete(self) -> None:
        user = await self.User.create({'username': 'virk'})
        self.queries.clear()
        await user.delete()
        assert self.sql() == ['DELETE FROM "users" WHERE "id" = ?']
        assert await self.User.find(user.id) is None

    async def test_delete_unsaved(self) -> None:
        with pytest.raises(QueryError):
            await self.User(username='virk').delete()

    async def test_refresh(self) -> None:
        user = await self.User.create({'username': 'virk'})
        await self.db.table('users').where('id', user.id).update({'username': 'romain'})
        user.points = 5
        await user.refresh()
        assert user.username == 'romain'
        assert user.points is None
        assert not user.is_dirty

    async def test_refresh_missing_row(self) -> None:
        user = await self.User.create({'username': 'virk'})
        await self.User.query().delete()
        with pytest.raises(RecordNotFoundError):
            await user.refresh()


class TestCreateHelpers(PersistenceTestCase):

    async def test_create_many_saves_each_row(self) -> None:
        created: List[str] = []
        self.User.add_hook('after_create', lambda instance: created.append(instance.username))

        users = await self.User.create_many([{'username': 'virk'}, {'username': 'romain'}])
        assert [u.id for u in users] == [1, 2]
        assert created == ['virk', 'romain']

    async def test_find_or_create(self) -> None:
        first = await self.User.find_or_create({'email': 'virk@adonisjs.com'}, {'username': 'virk'})
        again = await self.User.find_or_create({'email': 'virk@adonisjs.com'}, {'username': 'other'})
        assert first.id == again.id
        assert again.username == 'virk'
        assert await self.User.get_count() == 1

    async def test_find_or_new(self) -> None:
        user = await self.User.find_or_new({'email': 'virk@adonisjs.com'}, {'username': 'virk'})
        assert user.is_new
        assert user.username == 'virk'
        assert await self.User.get_count() == 0

    async def test_update_or_create(self) -> None:
        user = await self.User.update_or_create({'email': 'virk@adonisjs.com'}, {'username': 'virk'})
        updated = await self.User.update_or_create({'email': 'virk@adonisjs.com'}, {'username': 'romain'})
        assert updated.id == user.id
        assert (await self.User.find(user.id)).username == 'romain'

    async def test_truncate(self) -> None:
        await self.User.create_many([{'username': 'virk'}, {'username': 'romain'}])
        await self.User.truncate()
        assert await self.User.get_count() == 0
