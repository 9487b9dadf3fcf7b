"""
Lucent 序列化测试
"""

import json
import unittest
from datetime import date, datetime
from typing import Any

import pytest

from lucent import (
    BelongsTo,
    Column,
    Database,
    HasMany,
    ModelOptions,
    computed,
    declarative_base,
)


class TestSerializeInstance:
    """单个实例的序列化规则"""

    @pytest.fixture
    def User(self) -> Any:
        Base = declarative_base()

        class User(Base):
            username = Column(str)
            password = Column(str)
            first_name = Column(str, serialize_as='firstName')
            internal_note = Column(str, serialize_as=None)
            role = Column(str, serializer=lambda v: (v or 'guest').upper())
            created_at = Column(datetime)
            __options__ = ModelOptions(hidden=['password'])

            @computed
            def display_name(self) -> str:
                return f'@{self.username}'

            @computed(serialize_as='postsCount')
            def posts_count(self) -> Any:
                return self.extras.get('posts_count')

        return User

    def make(self, User: Any) -> Any:
        return User.hydrate({
            'id': 1,
            'username': 'virk',
            'password': 'secret',
            'first_name': 'Harminder',
            'internal_note': 'vip',
            'role': 'admin',
            'created_at': '2020-05-01 10:30:00',
            'posts_count': 3,
        })

    def test_hidden_and_renamed_fields(self, User: Any) -> None:
        data = self.make(User).serialize()
        assert 'password' not in data
        assert 'internal_note' not in data
        assert data['firstName'] == 'Harminder'
        assert 'first_name' not in data

    def test_column_serializer(self, User: Any) -> None:
        assert self.make(User).serialize()['role'] == 'ADMIN'
        assert User(username='x').serialize()['role'] == 'GUEST'

    def test_dates_are_cast(self, User: Any) -> None:
        assert self.make(User).serialize()['created_at'] == '2020-05-01T10:30:00'

    def test_computed_fields(self, User: Any) -> None:
        data = self.make(User).serialize()
        assert data['display_name'] == '@virk'
        assert data['postsCount'] == 3

    def test_extras_not_serialized_by_default(self, User: Any) -> None:
        assert 'meta' not in self.make(User).serialize()

    def test_instance_visible_overrides_options(self, User: Any) -> None:
        user = self.make(User).set_visible(['id', 'username', 'password'])
        assert user.serialize() == {'id': 1, 'username': 'virk', 'password': 'secret'}

    def test_instance_hidden_overrides_options(self, User: Any) -> None:
        data = self.make(User).set_hidden(['role']).serialize()
        assert data['password'] == 'secret'
        assert 'role' not in data

    def test_to_json(self, User: Any) -> None:
        payload = json.loads(self.make(User).to_json())
        assert payload['username'] == 'virk'
        assert payload['created_at'] == '2020-05-01T10:30:00'

    def test_visible_option(self) -> None:
        Base = declarative_base()

        class Token(Base):
            value = Column(str)
            expires_on = Column(date)
            __options__ = ModelOptions(visible=['id', 'expires_on'])

        token = Token.hydrate({'id': 1, 'value': 'abc', 'expires_on': '2021-01-01'})
        assert token.serialize() == {'id': 1, 'expires_on': '2021-01-01'}

    def test_serialize_extras(self) -> None:
        Base = declarative_base()

        class Post(Base):
            title = Column(str)
            __options__ = ModelOptions(serialize_extras=True)

        post = Post.hydrate({'id': 1, 'title': 'Hello', 'comments_count': 2})
        assert post.serialize() == {'id': 1, 'title': 'Hello', 'meta': {'comments_count': 2}}


class TestSerializeRelations(unittest.IsolatedAsyncioTestCase):
    """已加载的关联按各自模型规则递归序列化"""

    async def asyncSetUp(self) -> None:
        self.db = Database()
        Base = declarative_base(self.db)

        class User(Base):
            username = Column(str)
            password = Column(str)
            __options__ = ModelOptions(hidden=['password'])
            posts = HasMany('Post')

        class Post(Base):
            user_id = Column(int)
            title = Column(str)
            __options__ = ModelOptions(hidden=['user_id'])
            author = BelongsTo('User')

        self.User, self.Post = User, Post
        await self.db.create_table(User)
        await self.db.create_table(Post)
        user = await User.create({'username': 'virk', 'password': 'secret'})
        await user.related('posts').create_many([{'title': 'Adonis 101'}, {'title': 'Lucid 101'}])

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_preloaded_relations_are_nested(self) -> None:
        users = await self.User.query().preload('posts', lambda q: q.order_by('id')).fetch()
        assert users.serialize() == [{
            'id': 1,
            'username': 'virk',
            'posts': [{'id': 1, 'title': 'Adonis 101'}, {'id': 2, 'title': 'Lucid 101'}],
        }]

    async def test_hidden_fields_stay_hidden_when_nested(self) -> None:
        posts = await self.Post.query().where('id', 1).preload('author').fetch()
        assert posts.serialize() == [{
            'id': 1,
            'title': 'Adonis 101',
            'author': {'id': 1, 'username': 'virk'},
        }]

    async def test_unloaded_relations_are_omitted(self) -> None:
        user = await self.User.find(1)
        assert 'posts' not in user.serialize()

    async def test_relation_can_be_hidden(self) -> None:
        user = await self.User.find(1)
        await user.load('posts')
        user.set_hidden(['password', 'posts'])
        assert user.serialize() == {'id': 1, 'username': 'virk'}

    async def test_query_level_visibility(self) -> None:
        users = await self.User.query().set_visible(['username', 'password']).fetch()
        assert users[0].serialize() == {'username': 'virk', 'password': 'secret'}

        users = await self.User.query().set_hidden(['id']).fetch()
        assert users[0].serialize() == {'username': 'virk', 'password': 'secret'}

    async def test_paginator_json(self) -> None:
        page = await self.Post.query().paginate(1, 1)
        payload = json.loads(page.to_json())
        assert payload == {
            'total': 2, 'perPage': 1, 'lastPage': 2, 'page': 1,
            'data': [{'id': 1, 'title': 'Adonis 101'}],
        }
