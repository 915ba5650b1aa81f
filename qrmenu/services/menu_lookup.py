"""
Finding the menu to show a viewer.

Sources are tried in order; the first one that produces a record with at
least one page wins. The result says which tier answered so callers (and
tests) can tell a stored menu from one rebuilt by probing.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from qrmenu.core.exceptions import RecordStoreError
from qrmenu.schemas.menu import MenuRecord, MenuResult
from qrmenu.services.menu_store import MenuStore
from qrmenu.services.version_resolver import VersionResolver

logger = logging.getLogger(__name__)


class MenuOrigin(str, enum.Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    NOT_FOUND = "not_found"


@dataclass
class MenuLookup:
    origin: MenuOrigin
    record: Optional[MenuRecord] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.origin != MenuOrigin.NOT_FOUND

    def to_result(self) -> MenuResult:
        if not self.found:
            return MenuResult(success=False, error=self.error or "No menu available")
        return MenuResult(
            success=True,
            data=self.record,
            from_fallback=self.origin == MenuOrigin.FALLBACK,
        )


class MenuSource:
    origin = MenuOrigin.PRIMARY

    async def fetch(self) -> Optional[MenuRecord]:
        raise NotImplementedError


class StoreSource(MenuSource):
    origin = MenuOrigin.PRIMARY

    def __init__(self, menu_store: MenuStore):
        self.menu_store = menu_store

    async def fetch(self) -> Optional[MenuRecord]:
        return await self.menu_store.get_current()


class ProbeSource(MenuSource):
    origin = MenuOrigin.FALLBACK

    def __init__(self, resolver: VersionResolver):
        self.resolver = resolver

    async def fetch(self) -> Optional[MenuRecord]:
        logger.info("Looking for a menu by probing the asset host")
        return await self.resolver.discover_menu()


async def lookup_menu(sources: Sequence[MenuSource]) -> MenuLookup:
    last_error = None
    for source in sources:
        try:
            record = await source.fetch()
        except RecordStoreError as exc:
            logger.warning("%s failed: %s", type(source).__name__, exc)
            last_error = exc.message
            continue
        if record is not None and record.has_pages:
            return MenuLookup(source.origin, record)
    return MenuLookup(MenuOrigin.NOT_FOUND, error=last_error)


def default_sources(menu_store: MenuStore, resolver: VersionResolver) -> Sequence[MenuSource]:
    return (StoreSource(menu_store), ProbeSource(resolver))
