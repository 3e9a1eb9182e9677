import typing

import pytest
from _pytest.config.argparsing import Parser
from _pytest.fixtures import SubRequest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from graph_orm import SessionFactory, build_graph
from graph_orm.config import Config
from graph_orm.storages import IdGeneration, Storage
from graph_orm.storages.memory import MemoryStorage
from graph_orm.storages.sqlalchemy import SqlAlchemyStorage

IN_MEMORY_SQLITE = "sqlite://"


def pytest_addoption(parser: Parser) -> None:
    parser.addoption("--sqlalchemy-url", action="store", default=IN_MEMORY_SQLITE)


@pytest.fixture()
def engine(request: SubRequest) -> typing.Generator[Engine, None, None]:
    connection_url = request.config.getoption("--sqlalchemy-url", default=IN_MEMORY_SQLITE)
    if connection_url == IN_MEMORY_SQLITE:
        engine = create_engine(connection_url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(connection_url)
    yield engine
    engine.dispose()


@pytest.fixture()
def sqlalchemy_storage(engine: Engine) -> typing.Generator[SqlAlchemyStorage, None, None]:
    storage = SqlAlchemyStorage(engine)
    yield storage
    storage.registry.metadata.drop_all(engine)


@pytest.fixture(params=["memory", "sqlalchemy"])
def storage(request: SubRequest) -> Storage:
    if request.param == "memory":
        return MemoryStorage()
    return request.getfixturevalue("sqlalchemy_storage")


@pytest.fixture()
def make_sessions(storage: Storage) -> typing.Callable[..., SessionFactory]:
    def make(*entity_classes: type, config: typing.Optional[Config] = None) -> SessionFactory:
        return SessionFactory(storage, build_graph(entity_classes), config)

    return make


@pytest.fixture()
def make_memory_sessions() -> typing.Callable[..., SessionFactory]:
    def make(
        *entity_classes: type, id_generation: IdGeneration = IdGeneration.CLIENT_SEQUENCE, storage_cls: type = MemoryStorage
    ) -> SessionFactory:
        return SessionFactory(storage_cls(id_generation), build_graph(entity_classes))

    return make
