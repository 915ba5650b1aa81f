from fastapi import APIRouter, Depends, Query
from qrmenu.core.deps import get_qr_service
from qrmenu.schemas.qr import QRLinks
from qrmenu.services.qr_service import QRService

router = APIRouter(prefix="/qrcode", tags=["QR Code"])

@router.get("", response_model=QRLinks)
async def get_qr_links(
    size: int = Query(200, ge=100, le=1000),
    qr_service: QRService = Depends(get_qr_service),
):
    return qr_service.links(size=size)
