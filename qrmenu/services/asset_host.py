from abc import ABC, abstractmethod
from typing import Optional

MENU_FOLDER = "menus"
UNVERSIONED = "unversioned"


def page_asset_name(version: Optional[str], page_number: int) -> str:
    """Object name of one rendered page.

    These names are probed by discovery and must stay bit-exact:
    ``menus/menu-<version>-page-<n>.jpg``, or ``menus/menu-page-<n>.jpg``
    for menus stored before versioning existed.
    """
    if version is None or version == UNVERSIONED:
        return f"{MENU_FOLDER}/menu-page-{page_number}.jpg"
    return f"{MENU_FOLDER}/menu-{version}-page-{page_number}.jpg"


def source_document_name(version: str) -> str:
    return f"{MENU_FOLDER}/menu-{version}.pdf"


class AssetHost(ABC):
    """Object storage addressed by name, serving public page images."""

    @abstractmethod
    async def upload_asset(self, data: bytes, name: str, content_type: str = "image/jpeg") -> str:
        """Store ``data`` under ``name`` and return its public location."""

    @abstractmethod
    async def exists(self, name: str) -> bool:
        """Presence check; raises AssetHostError if the host can't answer."""

    @abstractmethod
    def url_for(self, name: str) -> str:
        ...
