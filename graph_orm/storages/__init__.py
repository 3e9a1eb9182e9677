"""Storage collaborator interface consumed by the session.

Rows are plain dicts in storage representation (see ``graph_orm.storages.types``),
keyed by column name. Tables and key columns are derived from the relationship
graph when the storage is prepared.
"""
import abc
import enum
import typing

from graph_orm.exceptions import GraphOrmError

Row = typing.Dict[str, typing.Any]


class IdGeneration(enum.Enum):
    # ids drawn by the identity registry before the first write
    CLIENT_SEQUENCE = "CLIENT_SEQUENCE"
    # ids produced by the storage on insert
    STORAGE_ASSIGNED = "STORAGE_ASSIGNED"


class StorageError(GraphOrmError):
    pass


class Storage(abc.ABC):
    id_generation: IdGeneration = IdGeneration.CLIENT_SEQUENCE

    @abc.abstractmethod
    def prepare(self, graph: typing.Any) -> None:
        pass

    @abc.abstractmethod
    def get_by_key(self, table: str, key: typing.Any) -> Row:
        """Return the committed row or raise ``NotFound``."""

    @abc.abstractmethod
    def get_by_foreign_key(self, table: str, column: str, value: typing.Any) -> typing.List[Row]:
        pass

    @abc.abstractmethod
    def scan(self, table: str) -> typing.List[Row]:
        pass

    @abc.abstractmethod
    def max_key(self, table: str) -> typing.Any:
        pass

    @abc.abstractmethod
    def begin_transaction(self) -> typing.Any:
        pass

    @abc.abstractmethod
    def commit(self, transaction: typing.Any) -> None:
        pass

    @abc.abstractmethod
    def rollback(self, transaction: typing.Any) -> None:
        pass

    @abc.abstractmethod
    def write(self, table: str, row: Row, transaction: typing.Any, insert: bool = False) -> typing.Any:
        """Insert or update ``row`` and return its key (generated when the key column is ``None``).

        With ``insert`` the row must be new: an existing key raises instead of being overwritten.
        """

    @abc.abstractmethod
    def delete(self, table: str, key: typing.Any, transaction: typing.Any) -> None:
        pass
