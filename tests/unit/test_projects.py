import uuid
import pytest
from unittest.mock import AsyncMock, MagicMock
from core.exceptions import EntityNotFoundError, SchemaValidationError
from models.project import Project
from services.projects import ProjectService, storage_fields

USERS = [
    {"key": "uid", "type": "text", "primary": True, "nullable": True},
    {"key": "name", "type": "text"},
]


def test_storage_fields_appends_saved_params():
    fields = storage_fields(USERS, [
        {"key": "page", "type": "number", "default": "1"},
        {"key": "city", "save_to_database": True},
        {"key": "day", "type": "date", "save_to_database": True},
        {"key": "name", "type": "text", "save_to_database": True},
    ])

    assert [f.key for f in fields] == ["uid", "name", "city", "day"]
    assert fields[2].type == "text"
    assert fields[3].type == "date"
    assert fields[3].nullable is True and fields[3].primary is False


@pytest.fixture
def session():
    db = AsyncMock()
    db.add = MagicMock()

    async def refresh(obj):
        if obj.id is None:
            obj.id = uuid.uuid4()

    db.refresh.side_effect = refresh
    return db


@pytest.fixture
def versions():
    manager = MagicMock()
    manager.provision_config = AsyncMock()
    manager.provision_data_unit = AsyncMock()
    manager.save_schema = AsyncMock()
    manager.bump_version = AsyncMock(return_value=2)
    return manager


@pytest.fixture
def project():
    return Project(
        id=uuid.uuid4(),
        name="users",
        api_url="https://api.example.com/users",
        method="GET",
        request_params=[{"key": "page", "type": "number", "default": "1"}],
        target_chain=None,
        response_structure=[
            {"key": "uid", "type": "text", "nullable": True, "primary": True, "unique": False},
            {"key": "name", "type": "text", "nullable": True, "primary": False, "unique": False},
        ],
        version=1,
    )


class TestCreate:

    @pytest.mark.asyncio
    async def test_provisions_version_one(self, session, versions):
        service = ProjectService(session, versions)

        project = await service.create({
            "name": "users",
            "api_url": "https://api.example.com/users",
            "method": "post",
            "response_structure": USERS,
        })

        assert project.version == 1
        assert project.method == "POST"
        session.commit.assert_awaited_once()
        versions.provision_config.assert_awaited_once_with(project.id)

        project_id, version, fields = versions.provision_data_unit.call_args.args
        assert (project_id, version) == (project.id, 1)
        assert [f.key for f in fields] == ["uid", "name"]
        versions.save_schema.assert_awaited_once_with(project.id, 1, fields)

    @pytest.mark.asyncio
    async def test_invalid_schema_writes_nothing(self, session, versions):
        service = ProjectService(session, versions)

        with pytest.raises(SchemaValidationError):
            await service.create({
                "name": "users",
                "api_url": "https://api.example.com/users",
                "response_structure": [{"key": "uid", "type": "text", "primary": True, "nullable": False}],
            })

        session.add.assert_not_called()
        versions.provision_config.assert_not_awaited()


class TestUpdate:

    @pytest.mark.asyncio
    async def test_plain_edit_keeps_version(self, session, versions, project):
        session.get.return_value = project
        service = ProjectService(session, versions)

        updated = await service.update(project.id, {"name": "members", "method": "put"})

        assert updated.name == "members"
        assert updated.method == "PUT"
        assert updated.version == 1
        versions.bump_version.assert_not_awaited()
        versions.provision_data_unit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unchanged_structure_keeps_version(self, session, versions, project):
        session.get.return_value = project
        service = ProjectService(session, versions)

        await service.update(project.id, {"response_structure": USERS})

        assert project.version == 1
        versions.bump_version.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_schema_change_bumps_version(self, session, versions, project):
        session.get.return_value = project
        service = ProjectService(session, versions)

        await service.update(project.id, {
            "response_structure": USERS + [{"key": "email", "type": "email"}],
        })

        assert project.version == 2
        versions.bump_version.assert_awaited_once_with(project.id)
        project_id, version, fields = versions.provision_data_unit.call_args.args
        assert version == 2
        assert [f.key for f in fields] == ["uid", "name", "email"]
        versions.save_schema.assert_awaited_once_with(project.id, 2, fields)

    @pytest.mark.asyncio
    async def test_newly_saved_param_bumps_version(self, session, versions, project):
        session.get.return_value = project
        service = ProjectService(session, versions)

        await service.update(project.id, {
            "request_params": [{"key": "page", "type": "number", "default": "1", "save_to_database": True}],
        })

        assert project.version == 2
        fields = versions.provision_data_unit.call_args.args[2]
        assert fields[-1].key == "page"

    @pytest.mark.asyncio
    async def test_invalid_schema_change_keeps_version(self, session, versions, project):
        session.get.return_value = project
        service = ProjectService(session, versions)

        with pytest.raises(SchemaValidationError):
            await service.update(project.id, {"response_structure": [{"key": "id", "type": "text"}]})

        assert project.version == 1
        versions.bump_version.assert_not_awaited()
        session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_project(session, versions):
    session.get.return_value = None

    with pytest.raises(EntityNotFoundError):
        await ProjectService(session, versions).remove(uuid.uuid4())

    session.delete.assert_not_awaited()
