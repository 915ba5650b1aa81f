"""
Tests for rendering and publishing menus
"""
import io

import pytest
from PIL import Image

from qrmenu.core.exceptions import (
    AssetHostError,
    DocumentRenderError,
    InvalidUploadError,
    MenuConflictError,
    RecordStoreError,
    UploadTooLargeError,
)
from qrmenu.services.menu_store import MenuStore
from qrmenu.services.pdf_service import PDFService
from qrmenu.services.publisher import MenuPublisher
from tests.conftest import ASSET_BASE, make_pdf


@pytest.fixture
def menu_store(record_store, clock):
    return MenuStore(record_store, clock=clock)


@pytest.fixture
def publisher(menu_store, asset_host):
    return MenuPublisher(menu_store, asset_host, PDFService(scale=1.0), max_upload_mb=1)


class TestPDFService:
    def test_page_count(self, sample_pdf):
        assert PDFService().page_count(sample_pdf) == 3

    def test_render_page_to_jpeg(self, sample_pdf):
        data = PDFService(scale=2.0).render_page_to_image(sample_pdf, 1)

        img = Image.open(io.BytesIO(data))
        assert img.format == "JPEG"
        # 300x400 pt page at 2x
        assert img.size == (600, 800)

    def test_page_out_of_range(self, sample_pdf):
        with pytest.raises(DocumentRenderError):
            PDFService().render_page_to_image(sample_pdf, 4)

    def test_not_a_pdf(self):
        with pytest.raises(DocumentRenderError):
            PDFService().page_count(b"definitely not a pdf")


class TestPublishPdf:
    """Tests for MenuPublisher.publish_pdf"""

    @pytest.mark.asyncio
    async def test_publishes_every_page(self, publisher, asset_host, menu_store, sample_pdf):
        record = await publisher.publish_pdf(sample_pdf, filename="menu.pdf")

        assert record.version == "1a"
        assert record.image_urls == [
            f"{ASSET_BASE}/menus/menu-1a-page-{n}.jpg" for n in range(1, 4)
        ]
        assert record.pdf_url == f"{ASSET_BASE}/menus/menu-1a.pdf"
        assert asset_host.objects["menus/menu-1a.pdf"] == sample_pdf
        assert asset_host.objects["menus/menu-1a-page-2.jpg"][:2] == b"\xff\xd8"
        assert (await menu_store.get_current()).version == "1a"

    @pytest.mark.asyncio
    async def test_next_upload_uses_next_version(self, publisher, menu_store, sample_pdf):
        await publisher.publish_pdf(sample_pdf, filename="menu.pdf")
        record = await publisher.publish_pdf(make_pdf(1), filename="lunch.pdf")

        assert record.version == "1b"
        assert record.page_count == 1
        history = await menu_store.get_history()
        assert [entry.version for entry in history] == ["1a"]

    @pytest.mark.asyncio
    async def test_reports_progress(self, publisher, sample_pdf):
        steps = []

        async def record_step(progress):
            steps.append(progress)

        await publisher.publish_pdf(sample_pdf, filename="menu.pdf", on_progress=record_step)

        assert [s.step for s in steps[:2]] == ["uploading-pdf", "uploading-pdf"]
        processing = [s for s in steps if s.step == "processing"]
        assert [s.progress for s in processing] == [33, 67, 100]
        assert steps[-1].step == "uploading"
        assert steps[-1].current == steps[-1].total == 3

    @pytest.mark.asyncio
    async def test_source_pdf_failure_is_not_fatal(self, publisher, asset_host, sample_pdf):
        asset_host.fail_uploads.add(".pdf")

        record = await publisher.publish_pdf(sample_pdf, filename="menu.pdf")

        assert record.pdf_url is None
        assert record.page_count == 3

    @pytest.mark.asyncio
    async def test_rejects_non_pdf(self, publisher):
        with pytest.raises(InvalidUploadError):
            await publisher.publish_pdf(b"GIF89a", filename="menu.gif", content_type="image/gif")

    @pytest.mark.asyncio
    async def test_rejects_large_upload(self, publisher):
        with pytest.raises(UploadTooLargeError):
            await publisher.publish_pdf(b"%PDF" + b"0" * (1024 * 1024), filename="menu.pdf")

    @pytest.mark.asyncio
    async def test_rejects_broken_pdf(self, publisher, asset_host):
        with pytest.raises(DocumentRenderError):
            await publisher.publish_pdf(b"%PDF-1.4 broken", filename="menu.pdf")
        assert asset_host.objects == {}

    @pytest.mark.asyncio
    async def test_store_outage_fails_before_upload(self, publisher, record_store, asset_host, sample_pdf):
        record_store.fail_reads = True

        with pytest.raises(RecordStoreError):
            await publisher.publish_pdf(sample_pdf, filename="menu.pdf")
        assert asset_host.objects == {}

    @pytest.mark.asyncio
    async def test_failed_publish_releases_its_version(self, publisher, asset_host, menu_store, sample_pdf):
        asset_host.fail_uploads.add("page-2.jpg")

        with pytest.raises(AssetHostError):
            await publisher.publish_pdf(sample_pdf, filename="menu.pdf")

        asset_host.fail_uploads.clear()
        record = await publisher.publish_pdf(sample_pdf, filename="menu.pdf")
        assert record.version == "1a"


class TestConcurrentPublish:
    """Two admins publishing at the same time"""

    @pytest.mark.asyncio
    async def test_second_publish_is_turned_away_before_uploading(self, publisher, menu_store, asset_host):
        await publisher.publish_images([b"first-page"])
        original_upload = asset_host.upload_asset
        raced = []

        async def upload_and_race(data, name, content_type="image/jpeg"):
            if not raced:
                raced.append(name)
                # the other admin publishes while our first page is uploading
                with pytest.raises(MenuConflictError):
                    await publisher.publish_images([b"B-page", b"B-page-2"])
            return await original_upload(data, name, content_type)

        asset_host.upload_asset = upload_and_race

        record = await publisher.publish_images([b"A-page"])

        assert raced == ["menus/menu-1b-page-1.jpg"]
        assert record.version == "1b"
        assert record.image_urls == [f"{ASSET_BASE}/menus/menu-1b-page-1.jpg"]
        assert asset_host.objects["menus/menu-1b-page-1.jpg"] == b"A-page"
        assert "menus/menu-1b-page-2.jpg" not in asset_host.objects
        assert b"B-page" not in asset_host.objects.values()
        assert (await menu_store.get_current()).version == "1b"

    @pytest.mark.asyncio
    async def test_publish_after_the_winner_gets_the_next_version(self, publisher, asset_host):
        first = await publisher.publish_images([b"A-page"])
        second = await publisher.publish_images([b"B-page"])

        assert (first.version, second.version) == ("1a", "1b")
        assert asset_host.objects["menus/menu-1a-page-1.jpg"] == b"A-page"
        assert asset_host.objects["menus/menu-1b-page-1.jpg"] == b"B-page"

    @pytest.mark.asyncio
    async def test_restore_during_publish_conflicts(self, publisher, menu_store, asset_host):
        await publisher.publish_images([b"one"])
        await publisher.publish_images([b"two"])
        entry = (await menu_store.get_history())[0]
        original_upload = asset_host.upload_asset

        async def upload_and_restore(data, name, content_type="image/jpeg"):
            with pytest.raises(MenuConflictError):
                await menu_store.restore(entry)
            return await original_upload(data, name, content_type)

        asset_host.upload_asset = upload_and_restore

        record = await publisher.publish_images([b"three"])

        assert record.version == "1c"
        assert record.restored_from is None


class TestPublishImages:
    @pytest.mark.asyncio
    async def test_publishes_images_in_order(self, publisher, asset_host):
        record = await publisher.publish_images([b"jpeg-1", b"jpeg-2"], pdf=b"%PDF-1.4")

        assert record.image_urls == [
            f"{ASSET_BASE}/menus/menu-1a-page-1.jpg",
            f"{ASSET_BASE}/menus/menu-1a-page-2.jpg",
        ]
        assert asset_host.objects["menus/menu-1a-page-2.jpg"] == b"jpeg-2"
        assert record.pdf_url.endswith("menus/menu-1a.pdf")

    @pytest.mark.asyncio
    async def test_without_pdf(self, publisher):
        record = await publisher.publish_images([b"jpeg-1"])

        assert record.pdf_url is None

    @pytest.mark.asyncio
    async def test_requires_images(self, publisher):
        with pytest.raises(InvalidUploadError):
            await publisher.publish_images([])

    @pytest.mark.asyncio
    async def test_rejects_empty_image(self, publisher):
        with pytest.raises(InvalidUploadError):
            await publisher.publish_images([b"jpeg-1", b""])
