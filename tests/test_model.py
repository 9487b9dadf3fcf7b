"""
Lucent 模型定义与属性存取测试

覆盖列声明、约定推导、fill / merge、脏检查、冻结与主键保护、boot。
"""

import unittest
from datetime import date, datetime
from typing import Any, List

import pytest

from lucent import (
    Column,
    ColumnNotFoundError,
    ConfigurationError,
    Database,
    FrozenInstanceError,
    ModelOptions,
    PrimaryKeyError,
    declarative_base,
)


class TestModelDefinition:
    """类定义期行为（无需数据库）"""

    def test_default_table_name(self) -> None:
        Base = declarative_base()

        class UserProfile(Base):
            bio = Column(str)

        class Category(Base):
            name = Column(str)

        assert UserProfile.__tablename__ == 'user_profiles'
        assert Category.__tablename__ == 'categories'

    def test_explicit_table_name(self) -> None:
        Base = declarative_base()

        class Person(Base):
            __tablename__ = 'people'
            name = Column(str)

        assert Person.__tablename__ == 'people'

    def test_implicit_id_primary_key(self) -> None:
        Base = declarative_base()

        class Tag(Base):
            name = Column(str)

        assert Tag.__primary_key__ == 'id'
        assert list(Tag.__columns__)[0] == 'id'
        assert Tag.__columns__['id'].primary_key

    def test_custom_primary_key(self) -> None:
        Base = declarative_base()

        class Country(Base):
            code = Column(str, primary_key=True)
            name = Column(str)

        assert Country.__primary_key__ == 'code'
        assert 'id' not in Country.__columns__

    def test_multiple_primary_keys_rejected(self) -> None:
        Base = declarative_base()
        with pytest.raises(ConfigurationError):
            class Broken(Base):
                a = Column(int, primary_key=True)
                b = Column(int, primary_key=True)

    def test_column_storage_name(self) -> None:
        Base = declarative_base()

        class User(Base):
            user_name = Column('username', str)

        assert User.column_name('user_name') == 'username'
        assert User.__column_names__['username'] == 'user_name'
        assert User.column_name('unknown') == 'unknown'

    def test_class_access_returns_column(self) -> None:
        Base = declarative_base()

        class User(Base):
            name = Column(str)

        assert isinstance(User.name, Column)
        assert User.name.to_dict()['type'] == 'str'

    def test_hidden_and_visible_are_exclusive(self) -> None:
        with pytest.raises(ConfigurationError):
            ModelOptions(hidden=['password'], visible=['id'])

    def test_registry_lookup(self) -> None:
        Base = declarative_base()

        class Skill(Base):
            name = Column(str)

        assert Base.__registry__.get('Skill') is Skill
        assert Base.__registry__.get('skills') is Skill


class TestAttributeStore:
    """属性存取与脏检查（内存实例）"""

    @pytest.fixture
    def User(self) -> Any:
        Base = declarative_base()

        class User(Base):
            username = Column(str)
            email = Column(str, setter=lambda v: v.lower() if v else v)
            nickname = Column(str, getter=lambda v: v or 'anonymous')
            age = Column(int)

        return User

    def test_constructor_and_descriptors(self, User: Any) -> None:
        user = User(username='virk', age=30)
        assert user.username == 'virk'
        assert user.get('age') == 30
        user.age = 31
        assert user.get('age') == 31
        assert user.email is None

    def test_unknown_field(self, User: Any) -> None:
        user = User()
        with pytest.raises(ColumnNotFoundError):
            user.set('unknown', 1)
        with pytest.raises(ColumnNotFoundError):
            user.get('unknown')
        with pytest.raises(ColumnNotFoundError):
            User(unknown=1)

    def test_getter_and_setter(self, User: Any) -> None:
        user = User(email='VIRK@Example.COM')
        assert user.email == 'virk@example.com'
        assert user.nickname == 'anonymous'
        user.nickname = 'v'
        assert user.nickname == 'v'

    def test_fill_replaces_attributes(self, User: Any) -> None:
        user = User(username='virk', age=30)
        user.fill({'email': 'virk@adonisjs.com'})
        assert user.username is None
        assert user.age is None
        assert user.email == 'virk@adonisjs.com'

    def test_merge_patches_attributes(self, User: Any) -> None:
        user = User(username='virk', age=30)
        user.merge({'age': 31})
        assert user.username == 'virk'
        assert user.age == 31

    def test_new_instance_is_dirty(self, User: Any) -> None:
        user = User(username='virk')
        assert user.is_new
        assert user.is_dirty
        assert user.dirty == {'username': 'virk'}

    def test_hydrated_instance_is_clean(self, User: Any) -> None:
        user = User.hydrate({'id': 1, 'username': 'virk', 'email': None, 'nickname': None, 'age': 30})
        assert user.is_persisted
        assert not user.is_dirty
        user.age = 31
        assert user.dirty == {'age': 31}
        user.age = 30
        assert not user.is_dirty

    def test_hydrate_keeps_non_columns_in_extras(self, User: Any) -> None:
        user = User.hydrate({'id': 1, 'username': 'virk', 'posts_count': 3})
        assert user.extras == {'posts_count': 3}
        assert 'posts_count' not in user.attributes

    def test_fill_keeps_primary_key_of_persisted_instance(self, User: Any) -> None:
        user = User.hydrate({'id': 7, 'username': 'virk', 'age': 30})
        user.fill({'username': 'romain'})
        assert user.id == 7
        assert user.dirty == {'username': 'romain', 'age': None}

    def test_primary_key_is_immutable_once_persisted(self, User: Any) -> None:
        user = User.hydrate({'id': 7, 'username': 'virk'})
        user.id = 7
        with pytest.raises(PrimaryKeyError) as exc_info:
            user.id = 8
        assert exc_info.value.pk == 7

    def test_new_instance_may_set_primary_key(self, User: Any) -> None:
        user = User(id=5)
        user.id = 6
        assert user.id == 6

    def test_to_dict_and_repr(self, User: Any) -> None:
        user = User(username='virk')
        assert user.to_dict() == {'username': 'virk'}
        assert 'new' in repr(user)


class TestDateFields:
    """日期字段的写入格式化与读取解析"""

    def test_typed_columns_and_option_dates(self) -> None:
        Base = declarative_base()

        class Event(Base):
            starts_at = Column(datetime)
            day = Column(date)
            archived_at = Column(str)
            __options__ = ModelOptions(dates=['archived_at'])

        assert Event.is_date_field('starts_at')
        assert Event.is_date_field('day')
        assert Event.is_date_field('archived_at')
        assert not Event.is_date_field('id')

        stored = Event.prepare_for_storage({
            'starts_at': datetime(2020, 5, 1, 10, 30, 0),
            'day': date(2020, 5, 1),
            'archived_at': datetime(2021, 1, 1, 0, 0, 0),
        })
        assert stored == {
            'starts_at': '2020-05-01 10:30:00',
            'day': '2020-05-01',
            'archived_at': '2021-01-01 00:00:00',
        }

        event_row = Event.hydrate({'id': 1, 'starts_at': '2020-05-01 10:30:00',
                                   'day': '2020-05-01', 'archived_at': '2021-01-01 00:00:00'})
        assert event_row.starts_at == datetime(2020, 5, 1, 10, 30, 0)
        assert event_row.day == date(2020, 5, 1)
        assert event_row.archived_at == datetime(2021, 1, 1, 0, 0, 0)

    def test_format_date_is_overridable(self) -> None:
        Base = declarative_base()

        class Log(Base):
            logged_at = Column(datetime)

            @classmethod
            def format_date(cls, field: str, value: Any) -> Any:
                return value.strftime('%Y/%m/%d')

        assert Log.prepare_for_storage({'logged_at': datetime(2020, 1, 2)}) == {'logged_at': '2020/01/02'}

    def test_bool_and_json_columns(self) -> None:
        Base = declarative_base()

        class Setting(Base):
            enabled = Column(bool)
            payload = Column(dict)

        assert Setting.prepare_for_storage({'enabled': True, 'payload': {'a': 1}}) == {
            'enabled': 1, 'payload': '{"a": 1}',
        }
        setting = Setting.hydrate({'id': 1, 'enabled': 0, 'payload': '{"a": 1}'})
        assert setting.enabled is False
        assert setting.payload == {'a': 1}


class TestFrozenInstance(unittest.IsolatedAsyncioTestCase):
    """删除后的实例被冻结"""

    async def asyncSetUp(self) -> None:
        self.db = Database()
        Base = declarative_base(self.db)

        class User(Base):
            username = Column(str)

        self.User = User
        await self.db.create_table(User)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_writes_after_delete_raise(self) -> None:
        user = await self.User.create({'username': 'virk'})
        await user.delete()

        assert user.is_deleted
        with pytest.raises(FrozenInstanceError):
            user.username = 'romain'
        with pytest.raises(FrozenInstanceError):
            user.fill({'username': 'romain'})
        with pytest.raises(FrozenInstanceError):
            await user.save()
        with pytest.raises(FrozenInstanceError):
            await user.delete()
        assert await self.User.get_count() == 0


class TestBoot(unittest.IsolatedAsyncioTestCase):
    """boot 每个模型类只执行一次"""

    async def asyncSetUp(self) -> None:
        self.db = Database()

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_boot_runs_once(self) -> None:
        Base = declarative_base(self.db)
        calls: List[str] = []

        class User(Base):
            username = Column(str)

            @classmethod
            def boot(cls) -> None:
                calls.append(cls.__name__)

        await self.db.create_table(User)
        User.query()
        User.query()
        await User.create({'username': 'virk'})
        assert calls == ['User']

    async def test_failed_boot_can_retry(self) -> None:
        Base = declarative_base(self.db)
        attempts: List[int] = []

        class User(Base):
            username = Column(str)

            @classmethod
            def boot(cls) -> None:
                attempts.append(1)
                if len(attempts) == 1:
                    raise RuntimeError('boom')

        with pytest.raises(RuntimeError):
            User.query()
        User.query()
        assert len(attempts) == 2

    async def test_unbound_model(self) -> None:
        Base = declarative_base()

        class Orphan(Base):
            name = Column(str)

        with pytest.raises(ConfigurationError):
            Orphan.query()
