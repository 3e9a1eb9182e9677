import logging
import typing

import pytest

from graph_orm import ALL, Entity, Fetch, Identity, SessionFactory, Status, ToMany, ToOne, status_of
from graph_orm.exceptions import FlushFailed
from graph_orm.storages import IdGeneration, StorageError
from graph_orm.storages.memory import MemoryStorage


class FailingStorage(MemoryStorage):
    """Raises on the n-th write after ``fail_on`` is set, and on lookups while ``lookup_error`` is set."""

    def __init__(self, id_generation: IdGeneration = IdGeneration.CLIENT_SEQUENCE) -> None:
        super().__init__(id_generation)
        self.writes = 0
        self.fail_on: typing.Optional[int] = None
        self.lookup_error: typing.Optional[Exception] = None

    def arm(self, fail_on: typing.Optional[int]) -> None:
        self.writes = 0
        self.fail_on = fail_on

    def write(self, table, row, transaction, insert=False):
        self.writes += 1
        if self.writes == self.fail_on:
            raise StorageError(f"disk full while writing {table}")
        return super().write(table, row, transaction, insert=insert)

    def get_by_foreign_key(self, table, column, value):
        if self.lookup_error is not None:
            raise self.lookup_error
        return super().get_by_foreign_key(table, column, value)

    def max_key(self, table):
        if self.lookup_error is not None:
            raise self.lookup_error
        return super().max_key(table)


class Wallet(Entity):
    id: Identity[int]
    owner: str

    payments = ToMany("Payment", mapped_by="wallet", cascade=ALL)


class Payment(Entity):
    id: Identity[int]
    amount: int

    wallet = ToOne(Wallet, back_populates="payments", fetch=Fetch.LAZY, nullable=False)


def amounts(sessions: SessionFactory, wallet_id: int) -> typing.List[int]:
    with sessions() as session:
        return [payment.amount for payment in session.get(Wallet, wallet_id).payments]


@pytest.fixture()
def sessions(make_memory_sessions) -> SessionFactory:
    return make_memory_sessions(Wallet, Payment, storage_cls=FailingStorage)


@pytest.fixture()
def wallet_id(sessions: SessionFactory) -> int:
    with sessions() as session:
        wallet = Wallet(owner="Ada")
        for amount in (10, 20):
            wallet.payments.add(Payment(amount=amount), sync=True)
        session.persist(wallet)
    return wallet.id


def test_failed_flush_commits_nothing_and_restores_session(
    sessions: SessionFactory, wallet_id: int, caplog: pytest.LogCaptureFixture
) -> None:
    session = sessions()
    wallet = session.get(Wallet, wallet_id)
    old_payment = wallet.payments.all()[0]
    new_payment = Payment(amount=30)
    wallet.owner = "Grace"
    wallet.payments.add(new_payment, sync=True)
    session.persist(new_payment)
    session.remove(old_payment)
    sessions.storage.arm(fail_on=2)

    with caplog.at_level(logging.WARNING, logger="graph_orm.session"):
        with pytest.raises(FlushFailed) as excinfo:
            session.flush()

    assert excinfo.value.entity is wallet
    assert isinstance(excinfo.value.cause, StorageError)
    assert "rolled back" in caplog.text
    with sessions() as other:
        assert other.get(Wallet, wallet_id).owner == "Ada"
    assert amounts(sessions, wallet_id) == [10, 20]

    assert session.is_dirty(wallet)
    assert session.contains(new_payment)
    assert status_of(old_payment) is Status.REMOVED

    sessions.storage.arm(fail_on=None)
    session.flush()
    session.close()

    with sessions() as other:
        assert other.get(Wallet, wallet_id).owner == "Grace"
    assert amounts(sessions, wallet_id) == [20, 30]


def test_failed_flush_unbinds_storage_assigned_ids(make_memory_sessions) -> None:
    sessions = make_memory_sessions(
        Wallet, Payment, id_generation=IdGeneration.STORAGE_ASSIGNED, storage_cls=FailingStorage
    )
    with sessions() as session:
        wallet = Wallet(owner="Ada")
        for amount in (10, 20):
            wallet.payments.add(Payment(amount=amount), sync=True)
        session.persist(wallet)
        sessions.storage.arm(fail_on=3)

        with pytest.raises(FlushFailed):
            session.flush()

        assert wallet.id is None
        assert [payment.id for payment in wallet.payments] == [None, None]
        assert status_of(wallet) is Status.MANAGED
        assert session.all(Wallet) == [wallet]

        sessions.storage.arm(fail_on=None)
        session.flush()

        assert wallet.id is not None
        assert session.get(Wallet, wallet.id) is wallet

    assert amounts(sessions, wallet.id) == [10, 20]


LOOKUP_ERRORS = [StorageError("index unavailable"), ConnectionError("server closed the connection")]


@pytest.mark.parametrize("error", LOOKUP_ERRORS, ids=["storage", "driver"])
def test_failed_reference_check_restores_session(sessions: SessionFactory, wallet_id: int, error: Exception) -> None:
    session = sessions()
    wallet = session.get(Wallet, wallet_id)
    payments = wallet.payments.all()
    session.remove(wallet)
    sessions.storage.lookup_error = error

    with pytest.raises(FlushFailed) as excinfo:
        session.flush()

    assert excinfo.value.cause is error
    assert [status_of(entity) for entity in [wallet] + payments] == [Status.REMOVED] * 3

    sessions.storage.lookup_error = None
    assert amounts(sessions, wallet_id) == [10, 20]
    session.flush()
    session.close()

    with sessions() as other:
        assert other.find(Wallet, wallet_id) is None
        assert other.all(Payment) == []


@pytest.mark.parametrize("error", LOOKUP_ERRORS, ids=["storage", "driver"])
def test_failed_id_assignment_restores_session(make_memory_sessions, error: Exception) -> None:
    sessions = make_memory_sessions(Wallet, Payment, storage_cls=FailingStorage)
    session = sessions()
    wallet = Wallet(owner="Ada")
    session.persist(wallet)
    session.flush()
    # reached only by the cascade at flush time
    payment = Payment(amount=10)
    wallet.payments.add(payment, sync=True)
    sessions.storage.lookup_error = error

    with pytest.raises(FlushFailed) as excinfo:
        session.flush()

    assert excinfo.value.cause is error
    assert payment.id is None
    assert status_of(payment) is Status.TRANSIENT
    assert not session.contains(payment)

    sessions.storage.lookup_error = None
    session.flush()
    session.close()

    assert payment.id == 1
    assert amounts(sessions, wallet.id) == [10]
