import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from qrmenu.schemas.menu import MenuResult
from qrmenu.services.menu_lookup import MenuLookup, MenuOrigin, MenuSource, lookup_menu
from qrmenu.services.menu_store import MenuStore, parse_record
from qrmenu.services.record_store import Unsubscribe

logger = logging.getLogger(__name__)

Publisher = Callable[[MenuResult], Awaitable[None]]


class MenuFeed:
    """Turns record store change notifications into MenuResults.

    Every change of the menu key produces a result; when the stored record
    is missing, empty or unreadable the fallback sources are consulted, so
    viewers keep seeing a menu while the record store is unavailable.
    """

    def __init__(self, menu_store: MenuStore, fallback_sources: Sequence[MenuSource] = ()):
        self.menu_store = menu_store
        self.fallback_sources = fallback_sources
        self.latest: Optional[MenuResult] = None
        self._publishers: List[Publisher] = []
        self._unsubscribe: Optional[Unsubscribe] = None

    def add_publisher(self, publisher: Publisher) -> None:
        self._publishers.append(publisher)

    async def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = await self.menu_store.subscribe(self._on_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def result_for(self, value: Any, error: Optional[Exception]) -> MenuResult:
        record = parse_record(value) if error is None else None
        if record is not None and record.has_pages:
            return MenuLookup(MenuOrigin.PRIMARY, record).to_result()
        lookup = await lookup_menu(self.fallback_sources)
        if not lookup.found and error is not None:
            lookup.error = str(error)
        return lookup.to_result()

    async def _on_change(self, value: Any, error: Optional[Exception]) -> None:
        if error is not None:
            logger.warning("Menu subscription error: %s", error)
        self.latest = await self.result_for(value, error)
        for publisher in list(self._publishers):
            await publisher(self.latest)
