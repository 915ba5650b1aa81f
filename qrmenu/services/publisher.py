"""
Publishing a new menu: render, upload, then record.

Page images are uploaded under names derived from the next version tag, so
that tag is reserved in the menu store before the first upload. A second
publish racing for the same tag is turned away before it can overwrite
any asset, and the final ``MenuStore.save`` only succeeds for the holder
of the reservation.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from starlette.concurrency import run_in_threadpool

from qrmenu.core.exceptions import AssetHostError, InvalidUploadError, UploadTooLargeError
from qrmenu.schemas.menu import MenuRecord, UploadProgress
from qrmenu.services.asset_host import AssetHost, page_asset_name, source_document_name
from qrmenu.services.menu_store import MenuStore, PublishReservation
from qrmenu.services.pdf_service import PDFService

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
IMAGE_MIMES = {"image/jpeg", "image/png", "image/webp"}

ProgressCallback = Callable[[UploadProgress], Awaitable[None]]


async def _ignore_progress(progress: UploadProgress) -> None:
    pass


def _percent(done: int, total: int) -> int:
    return round(done * 100 / total) if total else 100


class MenuPublisher:
    def __init__(
        self,
        menu_store: MenuStore,
        asset_host: AssetHost,
        pdf_service: PDFService,
        max_upload_mb: int = 50,
    ):
        self.menu_store = menu_store
        self.asset_host = asset_host
        self.pdf_service = pdf_service
        self.max_upload_bytes = max_upload_mb * 1024 * 1024

    def _check_size(self, data: bytes, label: str) -> None:
        if not data:
            raise InvalidUploadError(f"{label} is empty")
        if len(data) > self.max_upload_bytes:
            raise UploadTooLargeError(
                f"{label} is larger than {self.max_upload_bytes // (1024 * 1024)} MB"
            )

    def validate_pdf(self, data: bytes, filename: str = None, content_type: str = None) -> int:
        """Check an uploaded PDF and return its page count."""
        is_pdf = content_type == PDF_MIME or (filename or "").lower().endswith(".pdf")
        if not is_pdf:
            raise InvalidUploadError("Please upload a PDF file")
        self._check_size(data, filename or "PDF")
        return self.pdf_service.page_count(data)

    async def publish_pdf(
        self,
        data: bytes,
        filename: str = None,
        content_type: str = PDF_MIME,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MenuRecord:
        """Rasterize every page of a PDF and make it the current menu."""
        report = on_progress or _ignore_progress
        total = await run_in_threadpool(self.validate_pdf, data, filename, content_type)
        reservation = await self.menu_store.reserve_version()
        logger.info(
            "Publishing %s (%d pages) as menu %s", filename or "PDF", total, reservation.version
        )
        try:
            pdf_url = await self._upload_source(data, reservation.version, report)
            urls = []
            for page_number in range(1, total + 1):
                image = await run_in_threadpool(
                    self.pdf_service.render_page_to_image, data, page_number
                )
                await report(UploadProgress(
                    step="processing", progress=_percent(page_number, total),
                    current=page_number, total=total,
                ))
                urls.append(await self._upload_page(
                    image, reservation.version, page_number, total, report
                ))
            return await self.menu_store.save(urls, pdf_url, reservation=reservation)
        except Exception:
            await self.menu_store.release(reservation)
            raise

    async def publish_images(
        self,
        images: List[bytes],
        pdf: Optional[bytes] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MenuRecord:
        """Publish already rendered page images, in page order."""
        report = on_progress or _ignore_progress
        if not images:
            raise InvalidUploadError("Please select at least one page image")
        for index, image in enumerate(images, start=1):
            self._check_size(image, f"Page {index}")
        if pdf is not None:
            self._check_size(pdf, "PDF")

        reservation = await self.menu_store.reserve_version()
        logger.info("Publishing %d page images as menu %s", len(images), reservation.version)
        try:
            return await self._publish_images(images, pdf, reservation, report)
        except Exception:
            await self.menu_store.release(reservation)
            raise

    async def _publish_images(
        self,
        images: List[bytes],
        pdf: Optional[bytes],
        reservation: PublishReservation,
        report: ProgressCallback,
    ) -> MenuRecord:
        version = reservation.version
        pdf_url = await self._upload_source(pdf, version, report) if pdf is not None else None
        urls = []
        for page_number, image in enumerate(images, start=1):
            urls.append(await self._upload_page(image, version, page_number, len(images), report))
        return await self.menu_store.save(urls, pdf_url, reservation=reservation)

    async def _upload_page(
        self, image: bytes, version: str, page_number: int, total: int, report: ProgressCallback
    ) -> str:
        url = await self.asset_host.upload_asset(image, page_asset_name(version, page_number))
        await report(UploadProgress(
            step="uploading", progress=_percent(page_number, total),
            current=page_number, total=total,
        ))
        return url

    async def _upload_source(self, data: bytes, version: str, report: ProgressCallback) -> Optional[str]:
        await report(UploadProgress(step="uploading-pdf", progress=0))
        try:
            url = await self.asset_host.upload_asset(
                data, source_document_name(version), content_type=PDF_MIME
            )
        except AssetHostError as exc:
            # the menu itself is the page images; it is published without the PDF link
            logger.warning("Source PDF upload failed, continuing without it: %s", exc)
            return None
        await report(UploadProgress(step="uploading-pdf", progress=100))
        return url
