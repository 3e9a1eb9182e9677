import logging
import typing

import attr
from sqlalchemy import Table, func, select
from sqlalchemy.engine import Connection, Engine, Transaction

from graph_orm.exceptions import NotFound
from graph_orm.storages import IdGeneration, Row, Storage, StorageError
from graph_orm.storages.sqlalchemy.constructing_table.visitor import TableConstructingVisitor
from graph_orm.storages.sqlalchemy.registry import SaRegistry

logger = logging.getLogger(__name__)


@attr.s(auto_attribs=True)
class SaTransaction:
    connection: Connection
    transaction: Transaction


class SqlAlchemyStorage(Storage):
    """Storage collaborator on top of SQLAlchemy Core.

    Tables are derived from the relationship graph: one table per entity, value
    objects flattened into prefixed columns and one foreign key column per owning
    ``ToOne``. Every flush runs in a single connection-level transaction.
    """

    def __init__(
        self,
        engine: Engine,
        id_generation: IdGeneration = IdGeneration.CLIENT_SEQUENCE,
        create_tables: bool = True,
        registry: typing.Optional[SaRegistry] = None,
    ) -> None:
        self.engine = engine
        self.id_generation = id_generation
        self.registry = registry or SaRegistry()
        self._create_tables = create_tables

    def prepare(self, graph: typing.Any) -> None:
        visitor = TableConstructingVisitor(graph, self.registry, self.id_generation)
        for entity_cls in graph.entities():
            if graph.table_name(entity_cls) not in self.registry.tables:
                visitor.traverse_from(graph.node(entity_cls))
        if self._create_tables:
            self.registry.metadata.create_all(self.engine)

    def table(self, name: str) -> Table:
        try:
            return self.registry.tables[name]
        except KeyError:
            raise StorageError(f"Unknown table {name}") from None

    def _key_column(self, name: str) -> typing.Any:
        return self.table(name).c[self.registry.keys[name]]

    def get_by_key(self, table: str, key: typing.Any) -> Row:
        query = select(self.table(table)).where(self._key_column(table) == key)
        with self.engine.connect() as connection:
            row = connection.execute(query).mappings().first()
        if row is None:
            raise NotFound(table, key)
        return dict(row)

    def get_by_foreign_key(self, table: str, column: str, value: typing.Any) -> typing.List[Row]:
        sa_table = self.table(table)
        query = select(sa_table).where(sa_table.c[column] == value).order_by(self._key_column(table))
        with self.engine.connect() as connection:
            return [dict(row) for row in connection.execute(query).mappings()]

    def scan(self, table: str) -> typing.List[Row]:
        query = select(self.table(table)).order_by(self._key_column(table))
        with self.engine.connect() as connection:
            return [dict(row) for row in connection.execute(query).mappings()]

    def max_key(self, table: str) -> typing.Any:
        key_column = self._key_column(table)
        if key_column.type.python_type is not int:
            return None
        with self.engine.connect() as connection:
            return connection.execute(select(func.max(key_column))).scalar()

    def begin_transaction(self) -> SaTransaction:
        connection = self.engine.connect()
        return SaTransaction(connection, connection.begin())

    def commit(self, transaction: SaTransaction) -> None:
        try:
            transaction.transaction.commit()
        finally:
            transaction.connection.close()

    def rollback(self, transaction: SaTransaction) -> None:
        try:
            if transaction.transaction.is_active:
                transaction.transaction.rollback()
        finally:
            transaction.connection.close()

    def write(self, table: str, row: Row, transaction: SaTransaction, insert: bool = False) -> typing.Any:
        sa_table = self.table(table)
        key_name = self.registry.keys[table]
        key = row.get(key_name)
        connection = transaction.connection
        values = {name: value for name, value in row.items() if name != key_name}
        if key is None:
            result = connection.execute(sa_table.insert().values(**values))
            return result.inserted_primary_key[0]
        if insert:
            # a taken key surfaces as the driver's IntegrityError
            connection.execute(sa_table.insert().values(**row))
            return key

        if not values:
            if connection.execute(select(self._key_column(table)).where(self._key_column(table) == key)).first() is None:
                connection.execute(sa_table.insert().values(**row))
            return key
        result = connection.execute(sa_table.update().where(self._key_column(table) == key).values(**values))
        if result.rowcount == 0:
            connection.execute(sa_table.insert().values(**row))
        return key

    def delete(self, table: str, key: typing.Any, transaction: SaTransaction) -> None:
        transaction.connection.execute(self.table(table).delete().where(self._key_column(table) == key))
