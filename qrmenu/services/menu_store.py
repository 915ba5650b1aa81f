"""
Current menu and bounded history, kept in the record store.

``save`` and ``restore`` read the current record and history, compute the
next version tag, and commit the new record together with the rotated
history in one write. The commit is conditional on the revisions that were
read, so two admins saving at once get a MenuConflictError instead of one
upload silently replacing the other.

A publish names its page assets after the version it is about to save, so
it claims that version with ``reserve_version`` before uploading anything.
Only the holder of the reservation may save under that version; anyone
else computing the same tag gets a MenuConflictError up front.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from qrmenu.core.exceptions import MenuConflictError, RecordConflictError, RecordStoreError
from qrmenu.schemas.menu import HistoryEntry, MenuRecord
from qrmenu.services.record_store import RecordStore, Listener, Unsubscribe
from qrmenu.services.version_resolver import compute_next_version, is_canonical

logger = logging.getLogger(__name__)

MENU_KEY = "menu"
HISTORY_KEY = "menu_history"
PENDING_KEY = "menu_pending"


@dataclass(frozen=True)
class PublishReservation:
    """A claim on the next version tag, held while its assets upload."""
    version: str
    token: str
    reserved_at: datetime

    def to_store(self) -> dict:
        return {
            "version": self.version,
            "token": self.token,
            "reservedAt": self.reserved_at.isoformat(),
        }


def parse_record(value) -> Optional[MenuRecord]:
    """Stored value -> MenuRecord; None for absent or malformed values."""
    if value is None:
        return None
    try:
        return MenuRecord.model_validate(value)
    except ValidationError as exc:
        logger.warning("Ignoring malformed menu record: %s", exc.errors()[:1])
        return None


def parse_history(value) -> List[HistoryEntry]:
    if not isinstance(value, list):
        if value is not None:
            logger.warning("Stored menu history is not a list, treating as empty")
        return []
    entries = []
    for raw in value:
        try:
            entries.append(HistoryEntry.model_validate(raw))
        except ValidationError:
            logger.warning("Skipping malformed history entry")
    return entries


def parse_reservation(value: Any) -> Optional[PublishReservation]:
    if not isinstance(value, dict) or not value.get("token"):
        return None
    try:
        return PublishReservation(
            version=str(value["version"]),
            token=str(value["token"]),
            reserved_at=datetime.fromisoformat(value["reservedAt"]),
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed publish reservation")
        return None


class MenuStore:
    def __init__(
        self,
        record_store: RecordStore,
        history_limit: int = 5,
        clock: Callable[[], datetime] = None,
        reservation_ttl: timedelta = timedelta(minutes=15),
    ):
        self.record_store = record_store
        self.history_limit = history_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.reservation_ttl = reservation_ttl

    async def get_current(self) -> Optional[MenuRecord]:
        """Read the current record. Raises RecordStoreError if the store fails."""
        return parse_record(await self.record_store.read(MENU_KEY))

    async def get_history(self) -> List[HistoryEntry]:
        return parse_history(await self.record_store.read(HISTORY_KEY))

    async def find_history_entry(self, version: str) -> Optional[HistoryEntry]:
        """Most recent history entry carrying ``version``."""
        for entry in reversed(await self.get_history()):
            if entry.version == version:
                return entry
        return None

    def _live(self, reservation: Optional[PublishReservation], version: str, now: datetime) -> bool:
        # an abandoned publish stops blocking once its reservation expires
        return (
            reservation is not None
            and reservation.version == version
            and now - reservation.reserved_at < self.reservation_ttl
        )

    def _next_version(self, current: Optional[MenuRecord]) -> str:
        if current is not None and not is_canonical(current.version):
            logger.warning("Version tag %r is not canonical, restarting at 1a", current.version)
        return compute_next_version(current.version if current else None)

    async def reserve_version(self) -> PublishReservation:
        """Claim the next version tag for a publish about to upload assets.

        Raises MenuConflictError if another publish holds the same tag and
        RecordStoreError if the store cannot be read.
        """
        stored = await self.record_store.snapshot([MENU_KEY, PENDING_KEY])
        version = self._next_version(parse_record(stored[MENU_KEY].value))
        now = self.clock()
        if self._live(parse_reservation(stored[PENDING_KEY].value), version, now):
            raise MenuConflictError(f"Version {version} is already being published")

        reservation = PublishReservation(version, uuid.uuid4().hex, now)
        try:
            await self.record_store.commit(
                {PENDING_KEY: reservation.to_store()},
                expected_revisions={
                    MENU_KEY: stored[MENU_KEY].revision,
                    PENDING_KEY: stored[PENDING_KEY].revision,
                },
            )
        except RecordConflictError as exc:
            raise MenuConflictError(
                "The menu was changed by someone else; reload and try again"
            ) from exc
        logger.info("Reserved menu version %s", version)
        return reservation

    async def release(self, reservation: PublishReservation) -> None:
        """Drop a reservation whose publish failed, if it is still ours."""
        try:
            stored = (await self.record_store.snapshot([PENDING_KEY]))[PENDING_KEY]
            pending = parse_reservation(stored.value)
            if pending is None or pending.token != reservation.token:
                return
            await self.record_store.commit(
                {PENDING_KEY: {}}, expected_revisions={PENDING_KEY: stored.revision}
            )
        except RecordStoreError as exc:
            # it expires on its own
            logger.warning("Could not release reservation for %s: %s", reservation.version, exc)
            return
        logger.info("Released menu version %s", reservation.version)

    async def save(
        self,
        image_urls: List[str],
        pdf_url: Optional[str] = None,
        expected_version: Optional[str] = None,
        reservation: Optional[PublishReservation] = None,
    ) -> MenuRecord:
        """Replace the current menu with ``image_urls``.

        ``expected_version`` is the tag the caller named its uploaded assets
        with; if the store has moved on since, MenuConflictError is raised.
        A ``reservation`` implies its version and must still be held.
        """
        if reservation is not None:
            expected_version = reservation.version
        return await self._replace(list(image_urls), pdf_url, None, expected_version, reservation)

    async def restore(self, entry: HistoryEntry) -> MenuRecord:
        """Make a history entry current again under a new forward version."""
        record = entry.to_record()
        return await self._replace(list(record.image_urls), record.pdf_url, record.version, None, None)

    async def _replace(
        self,
        image_urls: List[str],
        pdf_url: Optional[str],
        restored_from: Optional[str],
        expected_version: Optional[str],
        reservation: Optional[PublishReservation],
    ) -> MenuRecord:
        stored = await self.record_store.snapshot([MENU_KEY, HISTORY_KEY, PENDING_KEY])
        current = parse_record(stored[MENU_KEY].value)
        version = self._next_version(current)
        if expected_version is not None and version != expected_version:
            raise MenuConflictError(
                f"Menu moved to {current.version if current else 'nothing'} while "
                f"version {expected_version} was being prepared"
            )

        now = self.clock()
        pending = parse_reservation(stored[PENDING_KEY].value)
        if reservation is not None:
            if pending is None or pending.token != reservation.token:
                raise MenuConflictError(f"The reservation for version {version} was lost")
        elif self._live(pending, version, now):
            raise MenuConflictError(f"Version {version} is being published by someone else")

        record = MenuRecord(
            image_urls=image_urls,
            version=version,
            last_updated=now,
            page_count=len(image_urls),
            pdf_url=pdf_url,
            restored_from=restored_from,
        )

        history = parse_history(stored[HISTORY_KEY].value)
        if current is not None and current.has_pages:
            history.append(HistoryEntry(**current.model_dump(), timestamp=now))
            history = history[-self.history_limit:]

        values = {
            MENU_KEY: record.to_store(),
            HISTORY_KEY: [entry.to_store() for entry in history],
        }
        if reservation is not None:
            values[PENDING_KEY] = {}
        try:
            await self.record_store.commit(
                values,
                expected_revisions={
                    MENU_KEY: stored[MENU_KEY].revision,
                    HISTORY_KEY: stored[HISTORY_KEY].revision,
                    PENDING_KEY: stored[PENDING_KEY].revision,
                },
            )
        except RecordConflictError as exc:
            raise MenuConflictError(
                "The menu was changed by someone else; reload and try again"
            ) from exc

        logger.info(
            "Menu %s saved (%d pages%s)",
            version, record.page_count,
            f", restored from {restored_from}" if restored_from else "",
        )
        return record

    async def subscribe(self, callback: Listener) -> Unsubscribe:
        return await self.record_store.subscribe(MENU_KEY, callback)
