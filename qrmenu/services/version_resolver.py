"""
Menu version tags and discovery of the latest stored menu.

Version tags are ``<integer><lowercase letter>``: 1a, 1b, ... 1z, 2a, ...
Each upload gets the next tag, and its page images are stored under names
derived from it, so the newest menu can be found by probing the asset host
when the record store has no usable pointer.
"""
import asyncio
import logging
import re
import string
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional

from qrmenu.core.exceptions import AssetHostError
from qrmenu.schemas.menu import MenuRecord
from qrmenu.services.asset_host import AssetHost, UNVERSIONED, page_asset_name

logger = logging.getLogger(__name__)

SEED_VERSION = "1a"
CANONICAL_VERSION = re.compile(r"^(\d+)([a-z])$")
LETTERS = string.ascii_lowercase


def is_canonical(version: Optional[str]) -> bool:
    return isinstance(version, str) and CANONICAL_VERSION.match(version) is not None


def compute_next_version(current: Optional[str]) -> str:
    """Return the tag that follows ``current``.

    Absent or non-canonical tags (legacy counters, unversioned menus, any
    other string) restart the sequence at ``1a``.
    """
    match = CANONICAL_VERSION.match(current) if isinstance(current, str) else None
    if match is None:
        return SEED_VERSION
    number, letter = int(match.group(1)), match.group(2)
    if letter == "z":
        return f"{number + 1}a"
    return f"{number}{chr(ord(letter) + 1)}"


def version_key(version: str):
    """Sort key giving (integer, letter) order for canonical tags."""
    match = CANONICAL_VERSION.match(version)
    if match is None:
        raise ValueError(f"Not a canonical version tag: {version!r}")
    return int(match.group(1)), match.group(2)


class VersionResolver:
    def __init__(
        self,
        asset_host: AssetHost,
        max_bucket: int = 10,
        max_pages: int = 50,
        clock: Callable[[], datetime] = None,
    ):
        self.asset_host = asset_host
        self.max_bucket = max_bucket
        self.max_pages = max_pages
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _probe(self, name: str) -> bool:
        # a failed check counts as "not there"; there is no retry
        try:
            return await self.asset_host.exists(name)
        except AssetHostError as exc:
            logger.warning("Probe of %s failed, treating as absent: %s", name, exc)
            return False

    async def discover_latest_version(self) -> Optional[str]:
        """Probe page 1 of every candidate tag and return the newest hit.

        One bucket (26 tags) is probed concurrently; buckets are walked from
        ``max_bucket`` down, so the answer matches a serial newest-first scan.
        Returns None after ``max_bucket * 26`` checks without a hit.
        """
        for number in range(self.max_bucket, 0, -1):
            bucket = [f"{number}{letter}" for letter in reversed(LETTERS)]
            hits = await asyncio.gather(
                *(self._probe(page_asset_name(version, 1)) for version in bucket)
            )
            for version, hit in zip(bucket, hits):
                if hit:
                    logger.info("Discovered menu version %s by probing", version)
                    return version
        logger.info("No versioned menu found in buckets 1..%d", self.max_bucket)
        return None

    async def iter_pages(self, version: Optional[str]) -> AsyncIterator[str]:
        """Yield page locations 1, 2, ... until the first missing page.

        Stops after ``max_pages`` pages. A gap ends the menu even if later
        pages exist.
        """
        for page_number in range(1, self.max_pages + 1):
            name = page_asset_name(version, page_number)
            if not await self._probe(name):
                return
            yield self.asset_host.url_for(name)

    async def discover_pages_for_version(self, version: Optional[str]) -> List[str]:
        return [url async for url in self.iter_pages(version)]

    async def discover_legacy_pages(self) -> List[str]:
        return await self.discover_pages_for_version(UNVERSIONED)

    async def discover_menu(self) -> Optional[MenuRecord]:
        """Rebuild a MenuRecord from the asset host alone.

        Versioned menus are preferred; menus stored before versioning
        (``menu-page-<n>``) are the last resort.
        """
        version = await self.discover_latest_version()
        if version is not None:
            urls = await self.discover_pages_for_version(version)
            if urls:
                return self._record(urls, version)
        urls = await self.discover_legacy_pages()
        if urls:
            logger.info("Found %d unversioned menu pages", len(urls))
            return self._record(urls, UNVERSIONED)
        return None

    def _record(self, urls: List[str], version: str) -> MenuRecord:
        return MenuRecord(
            image_urls=urls,
            version=version,
            last_updated=self.clock(),
            page_count=len(urls),
        )
