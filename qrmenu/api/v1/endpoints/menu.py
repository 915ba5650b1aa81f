from fastapi import APIRouter, Depends, HTTPException, Response, UploadFile, File as FileParam
from typing import List, Optional, Sequence
import logging
from qrmenu.core.deps import get_menu_sources, get_menu_store, get_publisher, get_resolver, get_upload_connections
from qrmenu.core.exceptions import MenuNotFoundError, MenuServiceError
from qrmenu.core.security import get_current_admin
from qrmenu.schemas.menu import HistoryEntry, MenuResult, RestoreRequest
from qrmenu.services.connections import ConnectionManager
from qrmenu.services.menu_lookup import MenuSource, ProbeSource, lookup_menu
from qrmenu.services.menu_store import MenuStore
from qrmenu.services.publisher import IMAGE_MIMES, MenuPublisher
from qrmenu.services.version_resolver import VersionResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/menu", tags=["Menu"])

def _http_error(exc: MenuServiceError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)

@router.get("", response_model=MenuResult)
async def get_menu(response: Response, sources: Sequence[MenuSource] = Depends(get_menu_sources)):
    result = (await lookup_menu(sources)).to_result()
    if not result.success:
        response.status_code = 404
    return result

@router.get("/history", response_model=List[HistoryEntry])
async def get_history(
    admin: str = Depends(get_current_admin),
    menu_store: MenuStore = Depends(get_menu_store),
):
    try:
        return await menu_store.get_history()
    except MenuServiceError as e:
        raise _http_error(e)

@router.post("/upload", response_model=MenuResult, status_code=201)
async def upload_pdf(
    file: UploadFile = FileParam(...),
    admin: str = Depends(get_current_admin),
    publisher: MenuPublisher = Depends(get_publisher),
    uploads: ConnectionManager = Depends(get_upload_connections),
):
    content = await file.read()
    try:
        record = await publisher.publish_pdf(
            content,
            filename=file.filename,
            content_type=file.content_type,
            on_progress=uploads.broadcast_progress,
        )
    except MenuServiceError as e:
        raise _http_error(e)
    return MenuResult(success=True, data=record)

@router.post("/images", response_model=MenuResult, status_code=201)
async def upload_images(
    files: List[UploadFile] = FileParam(...),
    pdf: Optional[UploadFile] = FileParam(None),
    admin: str = Depends(get_current_admin),
    publisher: MenuPublisher = Depends(get_publisher),
    uploads: ConnectionManager = Depends(get_upload_connections),
):
    images = []
    for file in files:
        if file.content_type not in IMAGE_MIMES:
            raise HTTPException(status_code=400, detail=f"{file.filename} is not a supported image")
        images.append(await file.read())
    pdf_content = await pdf.read() if pdf is not None else None

    try:
        record = await publisher.publish_images(
            images, pdf=pdf_content, on_progress=uploads.broadcast_progress
        )
    except MenuServiceError as e:
        raise _http_error(e)
    return MenuResult(success=True, data=record)

@router.post("/restore", response_model=MenuResult)
async def restore_menu(
    body: RestoreRequest,
    admin: str = Depends(get_current_admin),
    menu_store: MenuStore = Depends(get_menu_store),
):
    try:
        entry = await menu_store.find_history_entry(body.version)
        if entry is None:
            raise MenuNotFoundError(f"Version {body.version} is not in the history")
        record = await menu_store.restore(entry)
    except MenuServiceError as e:
        raise _http_error(e)
    return MenuResult(success=True, data=record)

@router.get("/discover", response_model=MenuResult)
async def discover_menu(
    response: Response,
    admin: str = Depends(get_current_admin),
    resolver: VersionResolver = Depends(get_resolver),
):
    result = (await lookup_menu([ProbeSource(resolver)])).to_result()
    if not result.success:
        response.status_code = 404
    return result
