"""
Key/value record store with change notification.

The menu service keeps its keys here: the current menu, its history and
the pending publish reservation. Every key carries a revision counter (0
while the key is absent) so a read-modify-write can be committed with
compare-and-set semantics.

Classes:
  - RecordStore: interface plus in-process subscriber bookkeeping
  - MemoryRecordStore: dict-backed store for development and tests
  - SqlRecordStore: SQLAlchemy async store over the ``records`` table;
    polls for commits made by other processes
"""
import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from qrmenu.core.exceptions import RecordConflictError, RecordStoreError
from qrmenu.models.record import Record

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[Any], Optional[Exception]], Awaitable[None]]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class StoredValue:
    value: Any
    revision: int


ABSENT = StoredValue(None, 0)


class RecordStore(ABC):
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        # highest revision subscribers have been told about, per key
        self._revisions: Dict[str, int] = {}

    @abstractmethod
    async def snapshot(self, keys: Iterable[str]) -> Dict[str, StoredValue]:
        """Read several keys at once, with their revisions."""

    @abstractmethod
    async def _commit(
        self, values: Dict[str, Any], expected_revisions: Dict[str, int]
    ) -> Dict[str, int]:
        """Write ``values`` and return the new revision of every written key."""

    async def read(self, key: str) -> Optional[Any]:
        return (await self.snapshot([key]))[key].value

    async def write(self, key: str, value: Any) -> None:
        await self.commit({key: value})

    async def commit(
        self,
        values: Dict[str, Any],
        expected_revisions: Optional[Dict[str, int]] = None,
    ) -> None:
        """Write all ``values`` atomically.

        For every key in ``expected_revisions`` the stored revision must
        still equal the given number, otherwise nothing is written and
        RecordConflictError is raised. Keys may be listed there without
        being written; the commit then only asserts they are unchanged.
        Subscribers are notified after the write succeeds.
        """
        revisions = await self._commit(values, expected_revisions or {})
        for key, revision in revisions.items():
            self._mark_seen(key, revision)
        await self._notify(values)

    async def subscribe(self, key: str, callback: Listener) -> Unsubscribe:
        """Register ``callback`` for changes of ``key``.

        The callback is invoked once right away with the current value (or
        the read error) and then after every commit touching ``key``.
        """
        self._listeners.setdefault(key, []).append(callback)
        try:
            stored = (await self.snapshot([key]))[key]
            value, error = stored.value, None
            self._mark_seen(key, stored.revision)
        except RecordStoreError as exc:
            value, error = None, exc
        await self._deliver(callback, key, value, error)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def unsubscribe_all(self) -> None:
        self._listeners.clear()

    def _mark_seen(self, key: str, revision: int) -> None:
        self._revisions[key] = max(revision, self._revisions.get(key, 0))

    async def _notify(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            for callback in list(self._listeners.get(key, ())):
                await self._deliver(callback, key, value, None)

    async def _deliver(self, callback: Listener, key: str, value: Any, error: Optional[Exception]) -> None:
        try:
            await callback(copy.deepcopy(value), error)
        except Exception:
            # one broken subscriber must not fail the writer
            logger.exception("Subscriber for %r failed", key)


class MemoryRecordStore(RecordStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._data: Dict[str, StoredValue] = {}
        for key, value in (initial or {}).items():
            self._data[key] = StoredValue(copy.deepcopy(value), 1)

    async def snapshot(self, keys: Iterable[str]) -> Dict[str, StoredValue]:
        result = {}
        for key in keys:
            stored = self._data.get(key, ABSENT)
            result[key] = StoredValue(copy.deepcopy(stored.value), stored.revision)
        return result

    async def _commit(
        self, values: Dict[str, Any], expected_revisions: Dict[str, int]
    ) -> Dict[str, int]:
        for key, expected in expected_revisions.items():
            current = self._data.get(key, ABSENT).revision
            if current != expected:
                raise RecordConflictError(
                    f"Record {key!r} is at revision {current}, expected {expected}"
                )
        revisions = {}
        for key, value in values.items():
            revision = self._data.get(key, ABSENT).revision + 1
            self._data[key] = StoredValue(copy.deepcopy(value), revision)
            revisions[key] = revision
        return revisions


class SqlRecordStore(RecordStore):
    """Record store over the ``records`` table.

    Several workers can share one database, so commits made elsewhere are
    picked up by polling the revisions of subscribed keys every
    ``poll_interval`` seconds while anyone is subscribed. Pass
    ``poll_interval=None`` to only hear about this instance's own commits.
    """

    def __init__(self, session_factory: async_sessionmaker, poll_interval: Optional[float] = 2.0):
        super().__init__()
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self._poller: Optional[asyncio.Task] = None

    async def snapshot(self, keys: Iterable[str]) -> Dict[str, StoredValue]:
        keys = list(keys)
        try:
            async with self.session_factory() as session:
                rows = (
                    await session.execute(select(Record).where(Record.key.in_(keys)))
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Failed to read {keys}: {exc}") from exc
        found = {row.key: StoredValue(row.value, row.revision) for row in rows}
        return {key: found.get(key, ABSENT) for key in keys}

    async def _commit(
        self, values: Dict[str, Any], expected_revisions: Dict[str, int]
    ) -> Dict[str, int]:
        revisions = {}
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    for key, expected in expected_revisions.items():
                        if key not in values:
                            await self._check(session, key, expected)
                    for key, value in values.items():
                        revisions[key] = await self._put(
                            session, key, value, expected_revisions.get(key)
                        )
        except IntegrityError as exc:
            # a concurrent writer created the key first
            raise RecordConflictError(f"Record created concurrently: {exc}") from exc
        except SQLAlchemyError as exc:
            raise RecordStoreError(f"Failed to write {list(values)}: {exc}") from exc
        return revisions

    async def _check(self, session, key: str, expected: int) -> None:
        if expected == 0:
            if await session.get(Record, key) is not None:
                raise RecordConflictError(f"Record {key!r} was created since it was read")
            return
        # no-op update so the row stays locked until the transaction ends
        result = await session.execute(
            update(Record)
            .where(Record.key == key, Record.revision == expected)
            .values(revision=Record.revision)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RecordConflictError(f"Record {key!r} changed since revision {expected}")

    async def _put(self, session, key: str, value: Any, expected: Optional[int]) -> int:
        if expected is None:
            row = await session.get(Record, key)
            if row is None:
                session.add(Record(key=key, value=value, revision=1))
                return 1
            row.value = value
            row.revision = row.revision + 1
            return row.revision
        if expected == 0:
            session.add(Record(key=key, value=value, revision=1))
            await session.flush()
            return 1
        result = await session.execute(
            update(Record)
            .where(Record.key == key, Record.revision == expected)
            .values(value=value, revision=Record.revision + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise RecordConflictError(
                f"Record {key!r} changed since revision {expected}"
            )
        return expected + 1

    async def subscribe(self, key: str, callback: Listener) -> Unsubscribe:
        unsubscribe = await super().subscribe(key, callback)
        if self.poll_interval is not None and self._poller is None:
            self._poller = asyncio.create_task(self._poll_forever())

        def stop() -> None:
            unsubscribe()
            if not any(self._listeners.values()):
                self._stop_polling()

        return stop

    def unsubscribe_all(self) -> None:
        super().unsubscribe_all()
        self._stop_polling()

    def _stop_polling(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None

    async def _poll_forever(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.poll_changes()

    async def poll_changes(self) -> List[str]:
        """Deliver subscribed keys whose revision moved past what was last seen.

        Returns the keys that changed. Read failures are logged and retried
        on the next poll.
        """
        keys = [key for key, listeners in self._listeners.items() if listeners]
        if not keys:
            return []
        try:
            stored = await self.snapshot(keys)
        except RecordStoreError as exc:
            logger.warning("Polling the record store failed: %s", exc)
            return []
        changed = []
        for key in keys:
            current = stored[key]
            if current.revision <= self._revisions.get(key, 0):
                continue
            self._mark_seen(key, current.revision)
            changed.append(key)
            logger.info("Record %r changed elsewhere (revision %d)", key, current.revision)
            for callback in list(self._listeners.get(key, ())):
                await self._deliver(callback, key, current.value, None)
        return changed
