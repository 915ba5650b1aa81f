"""
Tests for the record store implementations
"""
import asyncio

import pytest
import pytest_asyncio

from qrmenu.core.database import create_engine, create_session_factory, create_tables
from qrmenu.core.exceptions import RecordConflictError
from qrmenu.services.record_store import MemoryRecordStore, SqlRecordStore


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request):
    if request.param == "memory":
        yield MemoryRecordStore()
        return
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield SqlRecordStore(create_session_factory(engine), poll_interval=None)
    await engine.dispose()


class TestRecordStore:
    """Behaviour shared by every RecordStore"""

    @pytest.mark.asyncio
    async def test_absent_key(self, store):
        assert await store.read("menu") is None
        snapshot = await store.snapshot(["menu"])
        assert snapshot["menu"].revision == 0

    @pytest.mark.asyncio
    async def test_write_then_read(self, store):
        await store.write("menu", {"version": "1a", "imageUrls": ["u1"]})
        await store.write("menu", {"version": "1b", "imageUrls": ["u2"]})

        assert await store.read("menu") == {"version": "1b", "imageUrls": ["u2"]}
        assert (await store.snapshot(["menu"]))["menu"].revision == 2

    @pytest.mark.asyncio
    async def test_commit_writes_all_keys(self, store):
        await store.commit({"menu": {"v": 1}, "menu_history": [{"v": 0}]},
                           expected_revisions={"menu": 0, "menu_history": 0})

        snapshot = await store.snapshot(["menu", "menu_history"])
        assert snapshot["menu"].value == {"v": 1}
        assert snapshot["menu_history"].value == [{"v": 0}]

    @pytest.mark.asyncio
    async def test_stale_revision_is_rejected_atomically(self, store):
        await store.commit({"menu": {"v": 1}, "menu_history": []})

        with pytest.raises(RecordConflictError):
            await store.commit({"menu_history": [{"v": 1}], "menu": {"v": 2}},
                               expected_revisions={"menu_history": 1, "menu": 0})

        assert await store.read("menu") == {"v": 1}
        assert await store.read("menu_history") == []

    @pytest.mark.asyncio
    async def test_matching_revision_is_accepted(self, store):
        await store.write("menu", {"v": 1})

        await store.commit({"menu": {"v": 2}}, expected_revisions={"menu": 1})

        assert (await store.snapshot(["menu"]))["menu"].revision == 2

    @pytest.mark.asyncio
    async def test_expected_revision_of_unwritten_key_is_checked(self, store):
        await store.write("menu", {"v": 1})

        with pytest.raises(RecordConflictError):
            await store.commit({"menu_pending": {"v": 9}}, expected_revisions={"menu": 0})
        assert await store.read("menu_pending") is None

        await store.commit({"menu_pending": {"v": 9}}, expected_revisions={"menu": 1})
        assert await store.read("menu_pending") == {"v": 9}

    @pytest.mark.asyncio
    async def test_subscribers_are_notified(self, store):
        seen = []

        async def listener(value, error):
            seen.append(value)

        unsubscribe = await store.subscribe("menu", listener)
        await store.write("menu", {"v": 1})
        await store.write("other", {"v": 9})
        unsubscribe()
        await store.write("menu", {"v": 2})

        assert seen == [None, {"v": 1}]

    @pytest.mark.asyncio
    async def test_broken_subscriber_does_not_fail_writer(self, store):
        async def broken(value, error):
            if value is not None:
                raise RuntimeError("viewer went away")

        await store.subscribe("menu", broken)
        await store.write("menu", {"v": 1})

        assert await store.read("menu") == {"v": 1}


class TestMemoryRecordStore:
    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        store = MemoryRecordStore({"menu": {"imageUrls": ["a"]}})

        value = await store.read("menu")
        value["imageUrls"].append("b")

        assert await store.read("menu") == {"imageUrls": ["a"]}


@pytest_asyncio.fixture
async def shared_database(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")
    await create_tables(engine)
    yield create_session_factory(engine)
    await engine.dispose()


class TestSqlRecordStoreAcrossWorkers:
    """Two stores on one database, as two uvicorn workers would have"""

    @pytest.mark.asyncio
    async def test_commit_elsewhere_reaches_subscriber(self, shared_database):
        watcher = SqlRecordStore(shared_database, poll_interval=None)
        writer = SqlRecordStore(shared_database, poll_interval=None)
        seen = []

        async def listener(value, error):
            seen.append(value)

        await watcher.subscribe("menu", listener)
        await writer.write("menu", {"v": 1})

        assert await watcher.poll_changes() == ["menu"]
        assert await watcher.poll_changes() == []
        assert seen == [None, {"v": 1}]

    @pytest.mark.asyncio
    async def test_own_commit_is_delivered_once(self, shared_database):
        store = SqlRecordStore(shared_database, poll_interval=None)
        seen = []

        async def listener(value, error):
            seen.append(value)

        await store.subscribe("menu", listener)
        await store.write("menu", {"v": 1})

        assert await store.poll_changes() == []
        assert seen == [None, {"v": 1}]

    @pytest.mark.asyncio
    async def test_background_polling(self, shared_database):
        watcher = SqlRecordStore(shared_database, poll_interval=0.01)
        received = asyncio.Event()

        async def listener(value, error):
            if value is not None:
                received.set()

        unsubscribe = await watcher.subscribe("menu", listener)
        await SqlRecordStore(shared_database, poll_interval=None).write("menu", {"v": 1})

        await asyncio.wait_for(received.wait(), timeout=5)
        unsubscribe()
        assert watcher._poller is None
