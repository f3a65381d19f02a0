import types

import pytest

from examguard.config import Settings
from examguard.database import factory as factory_module
from examguard.database import oracle_adapter as oracle_module
from examguard.database.facade import ProctoringDatabase
from examguard.database.factory import AdapterFactory
from examguard.database.oracle_adapter import OracleAdapter
from examguard.database.relational_adapter import RelationalAdapter


class StubPool:
    async def close(self):
        pass


@pytest.fixture
def config():
    return Settings(DATABASE_URL="sqlite+aiosqlite://", USE_ORACLE=False, OWNER_OPEN_ID="owner")


async def test_selection_is_cached(config):
    factory = AdapterFactory(config)

    first = await factory.get_adapter()
    config.USE_ORACLE = True
    second = await factory.get_adapter()

    assert first is second
    assert isinstance(first, RelationalAdapter)
    assert first.owner_open_id == "owner"
    await factory.close()


async def test_oracle_selected_when_available(monkeypatch, config):
    monkeypatch.setattr(oracle_module, "oracledb", types.SimpleNamespace(create_pool_async=lambda **kwargs: StubPool()))
    config.USE_ORACLE = True
    factory = AdapterFactory(config)

    adapter = await factory.get_adapter()

    assert isinstance(adapter, OracleAdapter)
    assert factory.fell_back is False
    assert factory.get_status()["backend"] == "oracle"


async def test_falls_back_when_oracle_unavailable(monkeypatch, config):
    monkeypatch.setattr(oracle_module, "oracledb", None)
    config.USE_ORACLE = True
    factory = AdapterFactory(config)

    adapter = await factory.get_adapter()

    assert isinstance(adapter, RelationalAdapter)
    status = factory.get_status()
    assert status["fell_back"] is True
    assert status["oracle_requested"] is True
    await factory.close()


def test_status_before_selection(config):
    assert AdapterFactory(config).get_status() == {"selected": False, "oracle_requested": False}


async def test_default_adapter_is_process_wide(monkeypatch, config):
    monkeypatch.setattr(factory_module, "_default_factory", AdapterFactory(config))

    first = await factory_module.get_database_adapter()
    second = await factory_module.get_database_adapter()
    assert first is second

    await factory_module.close_database_adapter()
    assert factory_module._default_factory is None


async def test_facade_binds_selected_adapter(config):
    factory = AdapterFactory(config)

    db = await ProctoringDatabase.from_factory(factory)

    assert db.adapter is await factory.get_adapter()
    assert db.backend == "relational"
    await factory.close()


def test_oracle_dsn_from_parts():
    config = Settings(ORACLE_CONNECT_STRING=None, ORACLE_HOST="db.internal", ORACLE_PORT=1522, ORACLE_DB="EXAMS")
    assert config.oracle_dsn == "db.internal:1522/EXAMS"

    config = Settings(ORACLE_CONNECT_STRING="tcps://db.internal:2484/EXAMS")
    assert config.oracle_dsn == "tcps://db.internal:2484/EXAMS"
