import os
import typing

import attr
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from graph_orm.storages import IdGeneration, Storage
from graph_orm.storages.memory import MemoryStorage
from graph_orm.storages.sqlalchemy import SqlAlchemyStorage

MEMORY_URL = "memory://"

_TRUE = {"1", "true", "yes", "on"}


def _flag(value: typing.Union[str, bool]) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in _TRUE


@attr.s(auto_attribs=True, frozen=True)
class Config:
    database_url: str = MEMORY_URL
    id_generation: IdGeneration = attr.ib(default=IdGeneration.CLIENT_SEQUENCE, converter=IdGeneration)
    # flush pending changes when a session used as a context manager exits cleanly
    flush_on_close: bool = attr.ib(default=True, converter=_flag)
    echo: bool = attr.ib(default=False, converter=_flag)

    ENV_PREFIX: typing.ClassVar[str] = "GRAPH_ORM_"

    @classmethod
    def from_env(cls, environ: typing.Optional[typing.Mapping[str, str]] = None, **overrides: typing.Any) -> "Config":
        environ = os.environ if environ is None else environ
        values: typing.Dict[str, typing.Any] = {}
        for field in attr.fields(cls):
            raw = environ.get(f"{cls.ENV_PREFIX}{field.name.upper()}")
            if raw is not None:
                values[field.name] = raw
        values.update(overrides)
        return cls(**values)

    def create_storage(self) -> Storage:
        if self.database_url == MEMORY_URL:
            return MemoryStorage(self.id_generation)

        kwargs: typing.Dict[str, typing.Any] = {"echo": self.echo}
        if self.database_url in ("sqlite://", "sqlite:///:memory:"):
            # a single shared connection, otherwise every checkout sees a fresh empty database
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        return SqlAlchemyStorage(create_engine(self.database_url, **kwargs), self.id_generation)
