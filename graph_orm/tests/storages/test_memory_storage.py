import threading
import uuid

import pytest

from graph_orm import Entity, Identity, NotFound, ToOne, build_graph
from graph_orm.storages import IdGeneration, StorageError
from graph_orm.storages.memory import MemoryStorage


class Folder(Entity):
    id: Identity[int]
    name: str

    parent = ToOne("Folder")


class Document(Entity):
    guid: Identity[uuid.UUID]
    title: str

    folder = ToOne(Folder)


@pytest.fixture()
def storage() -> MemoryStorage:
    storage = MemoryStorage()
    storage.prepare(build_graph([Folder, Document]))
    return storage


def commit(storage: MemoryStorage, table: str, *rows: dict) -> None:
    transaction = storage.begin_transaction()
    for row in rows:
        storage.write(table, row, transaction)
    storage.commit(transaction)


def test_staged_writes_are_invisible_until_commit(storage: MemoryStorage) -> None:
    transaction = storage.begin_transaction()
    storage.write("folders", {"id": 1, "name": "root", "parent_id": None}, transaction)

    with pytest.raises(NotFound):
        storage.get_by_key("folders", 1)

    storage.commit(transaction)

    assert storage.get_by_key("folders", 1) == {"id": 1, "name": "root", "parent_id": None}


def test_rollback_discards_staged_writes(storage: MemoryStorage) -> None:
    transaction = storage.begin_transaction()
    storage.write("folders", {"id": 1, "name": "root", "parent_id": None}, transaction)
    storage.rollback(transaction)

    assert storage.scan("folders") == []
    with pytest.raises(StorageError):
        storage.write("folders", {"id": 2, "name": "late", "parent_id": None}, transaction)


def test_rows_are_copies(storage: MemoryStorage) -> None:
    commit(storage, "folders", {"id": 1, "name": "root", "parent_id": None})

    storage.get_by_key("folders", 1)["name"] = "changed"

    assert storage.get_by_key("folders", 1)["name"] == "root"


def test_insert_never_overwrites(storage: MemoryStorage) -> None:
    commit(storage, "folders", {"id": 1, "name": "root", "parent_id": None})
    transaction = storage.begin_transaction()

    with pytest.raises(StorageError, match="already exists"):
        storage.write("folders", {"id": 1, "name": "intruder", "parent_id": None}, transaction, insert=True)

    storage.write("folders", {"id": 1, "name": "renamed", "parent_id": None}, transaction)
    storage.commit(transaction)

    assert storage.get_by_key("folders", 1)["name"] == "renamed"


def test_insert_conflicts_are_checked_again_on_commit(storage: MemoryStorage) -> None:
    first, second = storage.begin_transaction(), storage.begin_transaction()
    storage.write("folders", {"id": 1, "name": "first", "parent_id": None}, first, insert=True)
    storage.write("folders", {"id": 1, "name": "second", "parent_id": None}, second, insert=True)
    storage.commit(first)

    with pytest.raises(StorageError, match="already exists"):
        storage.commit(second)
    storage.rollback(second)

    assert storage.scan("folders") == [{"id": 1, "name": "first", "parent_id": None}]


def test_write_checks_foreign_keys(storage: MemoryStorage) -> None:
    transaction = storage.begin_transaction()

    with pytest.raises(StorageError, match="missing folders"):
        storage.write("folders", {"id": 2, "name": "child", "parent_id": 1}, transaction)

    storage.write("folders", {"id": 1, "name": "root", "parent_id": None}, transaction)
    storage.write("folders", {"id": 2, "name": "child", "parent_id": 1}, transaction)
    storage.write("folders", {"id": 3, "name": "loop", "parent_id": 3}, transaction)
    storage.commit(transaction)

    assert [row["name"] for row in storage.get_by_foreign_key("folders", "parent_id", 1)] == ["child"]


def test_delete_checks_incoming_references(storage: MemoryStorage) -> None:
    commit(
        storage,
        "folders",
        {"id": 1, "name": "root", "parent_id": None},
        {"id": 2, "name": "child", "parent_id": 1},
    )
    transaction = storage.begin_transaction()

    with pytest.raises(StorageError, match="still referenced"):
        storage.delete("folders", 1, transaction)

    storage.delete("folders", 2, transaction)
    storage.delete("folders", 1, transaction)
    storage.commit(transaction)

    assert storage.scan("folders") == []


def test_delete_of_missing_row_fails(storage: MemoryStorage) -> None:
    with pytest.raises(StorageError):
        storage.delete("folders", 1, storage.begin_transaction())


def test_unknown_table(storage: MemoryStorage) -> None:
    with pytest.raises(StorageError):
        storage.scan("nothing")


def test_storage_assigned_keys() -> None:
    storage = MemoryStorage(IdGeneration.STORAGE_ASSIGNED)
    storage.prepare(build_graph([Folder, Document]))
    commit(storage, "folders", {"id": 7, "name": "old", "parent_id": None})
    transaction = storage.begin_transaction()

    folder_key = storage.write("folders", {"id": None, "name": "new", "parent_id": None}, transaction)
    document_key = storage.write("documents", {"guid": None, "title": "memo", "folder_id": folder_key}, transaction)

    assert folder_key == 8
    assert uuid.UUID(document_key)
    assert storage.max_key("folders") == 7


def test_client_sequence_requires_keys(storage: MemoryStorage) -> None:
    with pytest.raises(StorageError, match="no key"):
        storage.write("folders", {"id": None, "name": "new", "parent_id": None}, storage.begin_transaction())


def test_concurrent_transactions(storage: MemoryStorage) -> None:
    commit(storage, "folders", {"id": 1, "name": "root", "parent_id": None})
    errors = []

    def fill(offset: int) -> None:
        try:
            for key in range(offset, offset + 50):
                transaction = storage.begin_transaction()
                storage.write("folders", {"id": key, "name": "child", "parent_id": 1}, transaction, insert=True)
                storage.commit(transaction)
        except Exception as error:
            errors.append(error)

    threads = [threading.Thread(target=fill, args=(100 * index + 2,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(storage.get_by_foreign_key("folders", "parent_id", 1)) == 400
