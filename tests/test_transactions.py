"""
Tests for managed and manual transactions.
"""

from typing import Optional

import pytest

from conftest import make_database
from fluent_odm import ConfigurationError, Model, ValidationError, has_many
from fluent_odm.drivers import TransientTransactionError
from fluent_odm.transaction import TransactionClient

pytestmark = [pytest.mark.anyio, pytest.mark.usefixtures("database")]

db = make_database()


class Wallet(Model, database=db):
    owner: str
    balance: int = 0

    entries = has_many(lambda: Entry)


class Entry(Model, database=db):
    amount: int
    wallet_id: Optional[str] = None


def stored(collection):
    return db.connection().documents(collection)


class TestManaged:
    """Test transactions run through a callback."""

    async def test_commit(self):
        """The callback's writes are published and its result returned."""
        async def open_wallet(trx):
            wallet = await Wallet.create(owner="alice", balance=10, client=trx)
            await wallet.entries.create(amount=10)
            return wallet.id

        wallet_id = await db.transaction(open_wallet)

        assert [doc["_id"] for doc in stored("wallet")] == [wallet_id]
        assert stored("entry")[0]["wallet_id"] == wallet_id

    async def test_rollback_on_error(self):
        """An error discards every write and propagates."""
        async def failing(trx):
            await Wallet.create(owner="alice", client=trx)
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await db.transaction(failing)

        assert stored("wallet") == []

    async def test_writes_are_invisible_until_commit(self):
        """Work outside the transaction does not see uncommitted writes."""
        seen = []

        async def work(trx):
            await Wallet.create(owner="alice", client=trx)
            seen.append(await Wallet.query().count())
            seen.append(await Wallet.query(trx).count())

        await db.transaction(work)

        assert seen == [0, 1]
        assert await Wallet.query().count() == 1

    async def test_transient_errors_retry(self):
        """A transient failure reruns the whole callback."""
        attempts = []

        async def flaky(trx):
            attempts.append(trx)
            await Wallet.create(owner=f"try{len(attempts)}", client=trx)
            if len(attempts) == 1:
                raise TransientTransactionError("write conflict")
            return "done"

        assert await db.transaction(flaky) == "done"
        assert len(attempts) == 2
        assert [doc["owner"] for doc in stored("wallet")] == ["try2"]

    async def test_transient_errors_give_up(self):
        """Retries stop after max_attempts."""
        attempts = []

        async def always_conflicting(trx):
            attempts.append(1)
            raise TransientTransactionError("write conflict")

        with pytest.raises(TransientTransactionError):
            await db.transaction(always_conflicting, max_attempts=2)
        assert len(attempts) == 2

    async def test_client_completed_afterwards(self):
        """The client cannot be reused once the callback finished."""
        clients = []

        async def keep(trx):
            clients.append(trx)

        await db.transaction(keep)

        assert clients[0].is_completed
        with pytest.raises(ValidationError):
            await clients[0].commit()


class TestManual:
    """Test transactions committed or rolled back by the caller."""

    async def test_commit(self):
        trx = await db.transaction()
        assert isinstance(trx, TransactionClient)

        await Wallet.create(owner="alice", client=trx)
        assert stored("wallet") == []

        await trx.commit()
        assert trx.is_completed
        assert [doc["owner"] for doc in stored("wallet")] == ["alice"]

    async def test_rollback(self):
        trx = await db.transaction()
        await Wallet.create(owner="alice", client=trx)

        await trx.rollback()

        assert stored("wallet") == []
        with pytest.raises(ValidationError):
            await trx.rollback()

    async def test_query_updates_and_deletes(self):
        """Bulk query writes run in the transaction."""
        await Wallet.create(owner="alice", balance=5)
        await Wallet.create(owner="bob", balance=5)

        trx = await db.transaction()
        assert await trx.query(Wallet).where("owner", "alice").update(balance=50) == 1
        assert await Wallet.query(trx).where("owner", "bob").delete() == 1
        await trx.rollback()

        assert {doc["owner"]: doc["balance"] for doc in stored("wallet")} == {"alice": 5, "bob": 5}

    async def test_loaded_models_carry_the_transaction(self):
        """Models read through a transaction write through it too."""
        await Wallet.create(owner="alice", balance=5)

        trx = await db.transaction()
        wallet = await Wallet.query(trx).where("owner", "alice").first()
        assert wallet.transaction is trx

        wallet.balance = 100
        await wallet.save()
        assert stored("wallet")[0]["balance"] == 5
        await trx.commit()

        assert stored("wallet")[0]["balance"] == 100

    async def test_context_manager_commits(self):
        async with await db.transaction() as trx:
            await Wallet.create(owner="alice", client=trx)
        assert len(stored("wallet")) == 1
        assert trx.is_completed

    async def test_context_manager_rolls_back(self):
        with pytest.raises(RuntimeError):
            async with await db.transaction() as trx:
                await Wallet.create(owner="alice", client=trx)
                raise RuntimeError("abort")
        assert stored("wallet") == []

    async def test_other_connection_rejected(self):
        """A transaction is bound to a single connection."""
        trx = await db.transaction()
        try:
            with pytest.raises(ConfigurationError):
                trx.collection("wallet", connection="reporting")
        finally:
            await trx.rollback()
