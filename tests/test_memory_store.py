"""
Tests for the in-memory document store and its query-language evaluation.
"""

import re

import pytest

from fluent_odm.drivers import DuplicateKeyError, MemoryStore, TransientTransactionError
from fluent_odm.drivers.matching import apply_update, get_path, matches, project, run_pipeline, sort_documents
from fluent_odm.drivers.memory import TransactionStateError


USER = {
    "_id": "u1",
    "name": "Alice",
    "age": 30,
    "tags": ["admin", "staff"],
    "profile": {"city": "Paris", "zip": "75001"},
    "addresses": [{"city": "Paris"}, {"city": "Lyon"}],
}


class TestMatching:
    """Test filter evaluation."""

    def test_equality_and_paths(self):
        assert matches(USER, {"name": "Alice"})
        assert matches(USER, {"profile.city": "Paris"})
        assert not matches(USER, {"profile.city": "Lyon"})

    def test_arrays_match_any_element(self):
        assert matches(USER, {"tags": "staff"})
        assert matches(USER, {"addresses.city": "Lyon"})
        assert get_path(USER, "addresses.city") == ["Paris", "Lyon"]

    def test_comparison_operators(self):
        assert matches(USER, {"age": {"$gte": 30, "$lt": 40}})
        assert not matches(USER, {"age": {"$gt": 30}})
        assert not matches(USER, {"age": {"$gt": "20"}})

    def test_membership(self):
        assert matches(USER, {"name": {"$in": ["Bob", "Alice"]}})
        assert matches(USER, {"name": {"$nin": ["Bob"]}})
        assert not matches(USER, {"name": {"$in": []}})

    def test_null_and_exists(self):
        """Missing fields equal None; $exists checks presence."""
        assert matches(USER, {"nickname": None})
        assert matches(USER, {"nickname": {"$exists": False}})
        assert not matches(USER, {"name": {"$exists": False}})
        assert not matches(USER, {"name": None})

    def test_regex(self):
        assert matches(USER, {"name": {"$regex": "^al", "$options": "i"}})
        assert not matches(USER, {"name": {"$regex": "^al"}})
        assert matches(USER, {"name": re.compile("ice$")})

    def test_logical_operators(self):
        assert matches(USER, {"$or": [{"age": 1}, {"name": "Alice"}]})
        assert not matches(USER, {"$and": [{"age": 30}, {"name": "Bob"}]})
        assert matches(USER, {"$nor": [{"age": 1}]})
        assert matches(USER, {"age": {"$not": {"$lt": 18}}})

    def test_array_operators(self):
        assert matches(USER, {"tags": {"$size": 2}})
        assert matches(USER, {"tags": {"$all": ["staff", "admin"]}})
        assert matches(USER, {"addresses": {"$elemMatch": {"city": "Lyon"}}})

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            matches(USER, {"age": {"$near": 1}})


class TestUpdates:
    """Test update documents."""

    def test_set_and_unset(self):
        doc = {"a": 1, "nested": {"b": 2}}
        assert apply_update(doc, {"$set": {"nested.c": 3}, "$unset": {"a": ""}})
        assert doc == {"nested": {"b": 2, "c": 3}}

    def test_no_change(self):
        doc = {"a": 1}
        assert not apply_update(doc, {"$set": {"a": 1}})

    def test_inc_push_pull(self):
        doc = {"count": 1, "items": [{"id": 1}, {"id": 2}]}
        apply_update(doc, {"$inc": {"count": 2, "fresh": 1}})
        apply_update(doc, {"$push": {"items": {"$each": [{"id": 3}]}}})
        apply_update(doc, {"$pull": {"items": {"id": 2}}})
        assert doc == {"count": 3, "fresh": 1, "items": [{"id": 1}, {"id": 3}]}


class TestShaping:
    """Test sorting, projection and pipelines."""

    DOCS = [
        {"_id": 1, "city": "Paris", "age": 30},
        {"_id": 2, "city": "Lyon", "age": 25},
        {"_id": 3, "city": "Paris", "age": 41},
        {"_id": 4, "age": 19},
    ]

    def test_sort_missing_first(self):
        result = sort_documents(self.DOCS, [("city", 1), ("age", -1)])
        assert [doc["_id"] for doc in result] == [4, 2, 3, 1]

    def test_inclusive_projection(self):
        assert project(self.DOCS[0], {"city": 1}) == {"_id": 1, "city": "Paris"}
        assert project(self.DOCS[0], {"city": 1, "_id": 0}) == {"city": "Paris"}

    def test_exclusive_projection(self):
        assert project(self.DOCS[0], {"age": 0}) == {"_id": 1, "city": "Paris"}

    def test_group_pipeline(self):
        rows = run_pipeline(self.DOCS, [
            {"$match": {"city": {"$exists": True}}},
            {"$group": {"_id": "$city", "count": {"$sum": 1}, "oldest": {"$max": "$age"}}},
            {"$sort": {"count": -1}},
        ])
        assert rows == [
            {"_id": "Paris", "count": 2, "oldest": 41},
            {"_id": "Lyon", "count": 1, "oldest": 25},
        ]

    def test_project_stage(self):
        rows = run_pipeline(self.DOCS, [
            {"$group": {"_id": {"city": "$city"}}},
            {"$project": {"_id": 0, "city": "$_id.city"}},
            {"$limit": 2},
        ])
        assert rows == [{"city": "Paris"}, {"city": "Lyon"}]

    def test_unknown_stage(self):
        with pytest.raises(ValueError):
            run_pipeline(self.DOCS, [{"$lookup": {}}])


@pytest.fixture
async def store():
    store = MemoryStore(database="test")
    await store.connect()
    yield store
    await store.close()


@pytest.mark.anyio
class TestCollection:
    """Test the collection interface."""

    async def test_insert_assigns_ids(self, store):
        users = store.collection("user")
        first = await users.insert_one({"name": "Alice"})
        second = await users.insert_one({"name": "Bob"})

        assert len(first) == 24
        assert first < second
        assert await users.count_documents({}) == 2

    async def test_duplicate_key(self, store):
        users = store.collection("user")
        await users.insert_one({"_id": "x"})
        with pytest.raises(DuplicateKeyError):
            await users.insert_one({"_id": "x"})

    async def test_documents_are_copied(self, store):
        users = store.collection("user")
        document = {"name": "Alice", "tags": ["a"]}
        await users.insert_one(document)
        document["tags"].append("b")

        found = await users.find_one({"name": "Alice"})
        found["name"] = "Changed"

        assert (await users.find_one({}))["tags"] == ["a"]
        assert (await users.find_one({}))["name"] == "Alice"

    async def test_find_options(self, store):
        users = store.collection("user")
        await users.insert_many([{"_id": index, "n": index % 3} for index in range(6)])

        found = await users.find({"n": {"$gt": 0}}, sort=[("n", -1), ("_id", 1)], skip=1, limit=2)
        assert [doc["_id"] for doc in found] == [5, 1]

    async def test_update_and_delete(self, store):
        users = store.collection("user")
        await users.insert_many([{"_id": 1, "n": 1}, {"_id": 2, "n": 1}])

        result = await users.update_many({"n": 1}, {"$set": {"n": 2}})
        assert (result.matched_count, result.modified_count) == (2, 2)
        result = await users.update_one({"n": 2}, {"$set": {"n": 2}})
        assert (result.matched_count, result.modified_count) == (1, 0)

        assert await users.delete_one({"n": 2}) == 1
        assert await users.delete_many({"n": 2}) == 1
        assert await users.count_documents({}) == 0

    async def test_distinct(self, store):
        users = store.collection("user")
        await users.insert_many([{"tags": ["a", "b"]}, {"tags": ["b", "c"]}, {"tags": "d"}])
        assert await users.distinct("tags") == ["a", "b", "c", "d"]
        assert await users.distinct("tags", {"tags": "c"}) == ["b", "c"]

    async def test_clear(self, store):
        await store.collection("user").insert_one({"name": "Alice"})
        store.clear("user")
        assert store.documents("user") == []


@pytest.mark.anyio
class TestSessions:
    """Test session transactions."""

    async def test_commit_publishes(self, store):
        session = await store.start_session()
        users = store.collection("user")

        await session.start_transaction()
        await users.insert_one({"name": "Alice"}, session=session)
        assert store.documents("user") == []
        assert await users.count_documents({}, session=session) == 1
        await session.commit_transaction()

        assert [doc["name"] for doc in store.documents("user")] == ["Alice"]
        await session.end_session()

    async def test_abort_discards(self, store):
        session = await store.start_session()
        await session.start_transaction()
        await store.collection("user").insert_one({"name": "Alice"}, session=session)
        await session.abort_transaction()

        assert store.documents("user") == []
        assert not session.in_transaction

    async def test_state_errors(self, store):
        session = await store.start_session()
        with pytest.raises(TransactionStateError):
            await session.commit_transaction()
        await session.start_transaction()
        with pytest.raises(TransactionStateError):
            await session.start_transaction()
        await session.end_session()
        with pytest.raises(TransactionStateError):
            await session.start_transaction()

    async def test_with_transaction_retries(self, store):
        session = await store.start_session()
        attempts = []

        async def work(active):
            attempts.append(1)
            await store.collection("user").insert_one({"n": len(attempts)}, session=active)
            if len(attempts) < 3:
                raise TransientTransactionError("conflict")
            return "ok"

        assert await session.with_transaction(work) == "ok"
        assert [doc["n"] for doc in store.documents("user")] == [3]
