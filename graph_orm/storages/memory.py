"""Transactional in-process storage.

Writes are staged on the transaction and only become visible on commit.
Foreign keys are checked immediately on each write and delete, the way a
relational database with non-deferred constraints would.
"""
import itertools
import logging
import threading
import typing
import uuid

import attr

from graph_orm.exceptions import NotFound
from graph_orm.storages import IdGeneration, Row, Storage, StorageError

logger = logging.getLogger(__name__)

_DELETED = object()


@attr.s(auto_attribs=True)
class MemoryTransaction:
    staged: typing.Dict[typing.Tuple[str, typing.Any], typing.Any] = attr.Factory(dict)
    # keys that must still be free when the transaction commits
    inserted: typing.Set[typing.Tuple[str, typing.Any]] = attr.Factory(set)
    active: bool = True


@attr.s(auto_attribs=True)
class TableInfo:
    key: str
    key_type: type
    # foreign key column -> referenced table
    foreign_keys: typing.Dict[str, str] = attr.Factory(dict)


class MemoryStorage(Storage):
    def __init__(self, id_generation: IdGeneration = IdGeneration.CLIENT_SEQUENCE) -> None:
        self.id_generation = id_generation
        self._tables: typing.Dict[str, typing.Dict[typing.Any, Row]] = {}
        self._info: typing.Dict[str, TableInfo] = {}
        self._sequences: typing.Dict[str, typing.Iterator[int]] = {}
        self._lock = threading.RLock()

    def prepare(self, graph: typing.Any) -> None:
        for entity_cls in graph.entities():
            table = graph.table_name(entity_cls)
            foreign_keys = {
                graph.foreign_key_column(relationship): graph.table_name(relationship.target)
                for relationship in graph.owning(entity_cls)
            }
            self._info[table] = TableInfo(entity_cls.__identity__, graph.identity_type(entity_cls), foreign_keys)
            self._tables.setdefault(table, {})

    def _table(self, table: str) -> typing.Dict[typing.Any, Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise StorageError(f"Unknown table {table}") from None

    def get_by_key(self, table: str, key: typing.Any) -> Row:
        with self._lock:
            try:
                return dict(self._table(table)[key])
            except KeyError:
                raise NotFound(table, key) from None

    def get_by_foreign_key(self, table: str, column: str, value: typing.Any) -> typing.List[Row]:
        with self._lock:
            rows = self._table(table)
            return [dict(rows[key]) for key in sorted(rows, key=_sort_key) if rows[key].get(column) == value]

    def scan(self, table: str) -> typing.List[Row]:
        with self._lock:
            rows = self._table(table)
            return [dict(rows[key]) for key in sorted(rows, key=_sort_key)]

    def max_key(self, table: str) -> typing.Any:
        with self._lock:
            keys = [key for key in self._table(table) if isinstance(key, int)]
            return max(keys, default=None)

    def begin_transaction(self) -> MemoryTransaction:
        return MemoryTransaction()

    def commit(self, transaction: MemoryTransaction) -> None:
        self._check_active(transaction)
        with self._lock:
            for table, key in transaction.inserted:
                if key in self._tables[table]:
                    raise StorageError(f"{table} row {key!r} already exists")
            for (table, key), row in transaction.staged.items():
                if row is _DELETED:
                    self._tables[table].pop(key, None)
                else:
                    self._tables[table][key] = row
        transaction.active = False
        logger.debug("Committed %d staged changes", len(transaction.staged))

    def rollback(self, transaction: MemoryTransaction) -> None:
        transaction.staged.clear()
        transaction.active = False

    def write(self, table: str, row: Row, transaction: MemoryTransaction, insert: bool = False) -> typing.Any:
        self._check_active(transaction)
        info = self._info[table]
        key = row.get(info.key)
        if key is None:
            if self.id_generation is not IdGeneration.STORAGE_ASSIGNED:
                raise StorageError(f"Row for {table} has no key")
            key = self._next_key(table, info)
        elif insert and self._staged_row(transaction, table, key) is not None:
            raise StorageError(f"{table} row {key!r} already exists")
        row = dict(row, **{info.key: key})

        for column, referenced in info.foreign_keys.items():
            value = row.get(column)
            if referenced == table and value == key:
                continue
            if value is not None and self._staged_row(transaction, referenced, value) is None:
                raise StorageError(f"{table}.{column} references missing {referenced} row {value!r}")

        transaction.staged[(table, key)] = row
        if insert:
            transaction.inserted.add((table, key))
        return key

    def delete(self, table: str, key: typing.Any, transaction: MemoryTransaction) -> None:
        self._check_active(transaction)
        if self._staged_row(transaction, table, key) is None:
            raise StorageError(f"{table} row {key!r} does not exist")
        for referencing, info in self._info.items():
            for column, referenced in info.foreign_keys.items():
                if referenced != table:
                    continue
                if any(row.get(column) == key for row in self._staged_rows(transaction, referencing)):
                    raise StorageError(f"{table} row {key!r} is still referenced by {referencing}.{column}")
        transaction.staged[(table, key)] = _DELETED

    def _next_key(self, table: str, info: TableInfo) -> typing.Any:
        if info.key_type is uuid.UUID:
            return str(uuid.uuid4())
        with self._lock:
            if table not in self._sequences:
                self._sequences[table] = itertools.count((self.max_key(table) or 0) + 1)
            return next(self._sequences[table])

    def _staged_row(self, transaction: MemoryTransaction, table: str, key: typing.Any) -> typing.Optional[Row]:
        staged = transaction.staged.get((table, key))
        if staged is _DELETED:
            return None
        if staged is not None:
            return staged
        with self._lock:
            return self._tables.get(table, {}).get(key)

    def _staged_rows(self, transaction: MemoryTransaction, table: str) -> typing.List[Row]:
        with self._lock:
            keys = set(self._tables.get(table, {})) | {k for t, k in transaction.staged if t == table}
            rows = [self._staged_row(transaction, table, key) for key in keys]
        return [row for row in rows if row is not None]

    @staticmethod
    def _check_active(transaction: MemoryTransaction) -> None:
        if not transaction.active:
            raise StorageError("Transaction is no longer active")


def _sort_key(key: typing.Any) -> typing.Tuple[str, typing.Any]:
    return (type(key).__name__, key)
