"""
Pytest fixtures and fakes for the QR menu tests
"""
from datetime import datetime, timedelta, timezone

import fitz
import pytest

from qrmenu.core.config import Settings
from qrmenu.core.exceptions import AssetHostError, RecordStoreError
from qrmenu.services.asset_host import AssetHost
from qrmenu.services.record_store import MemoryRecordStore

ASSET_BASE = "https://assets.test/qr-menu"


class FakeAssetHost(AssetHost):
    """In-memory asset host that counts existence checks."""

    def __init__(self, names=(), broken=()):
        self.objects = {name: b"" for name in names}
        self.broken = set(broken)
        self.checks = []
        self.fail_uploads = set()

    def url_for(self, name):
        return f"{ASSET_BASE}/{name}"

    async def upload_asset(self, data, name, content_type="image/jpeg"):
        if any(name.endswith(suffix) for suffix in self.fail_uploads):
            raise AssetHostError(f"upload of {name} rejected")
        self.objects[name] = data
        return self.url_for(name)

    async def exists(self, name):
        self.checks.append(name)
        if name in self.broken:
            raise AssetHostError(f"timeout checking {name}")
        return name in self.objects


class FlakyRecordStore(MemoryRecordStore):
    """MemoryRecordStore whose reads or writes can be switched off."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_reads = False
        self.fail_writes = False

    async def snapshot(self, keys):
        if self.fail_reads:
            raise RecordStoreError("record store unreachable")
        return await super().snapshot(keys)

    async def _commit(self, values, expected_revisions):
        if self.fail_writes:
            raise RecordStoreError("record store rejected the write")
        return await super()._commit(values, expected_revisions)


class StepClock:
    """Returns a new timestamp, one minute later, on every call."""

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now = self.now + timedelta(minutes=1)
        return self.now


def make_pdf(pages: int) -> bytes:
    doc = fitz.open()
    for number in range(1, pages + 1):
        page = doc.new_page(width=300, height=400)
        page.insert_text((72, 72), f"Menu page {number}")
    data = doc.tobytes()
    doc.close()
    return data


def versioned_pages(version, count):
    return [f"menus/menu-{version}-page-{n}.jpg" for n in range(1, count + 1)]


@pytest.fixture
def asset_host():
    return FakeAssetHost()


@pytest.fixture
def record_store():
    return FlakyRecordStore()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def sample_pdf():
    return make_pdf(3)


@pytest.fixture(scope="session")
def admin_password_hash():
    from qrmenu.core.security import get_password_hash
    return get_password_hash("let-me-in")


@pytest.fixture
def test_settings(admin_password_hash):
    return Settings(
        _env_file=None,
        ADMIN_USERNAME="owner",
        ADMIN_PASSWORD_HASH=admin_password_hash,
        SECRET_KEY="test-secret-key",
        PROBE_MAX_BUCKET=3,
        MINIO_PUBLIC_URL="https://assets.test",
        MENU_PUBLIC_URL="https://menu.test/menu",
    )
