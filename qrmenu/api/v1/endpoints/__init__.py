from fastapi import APIRouter
from .auth import router as auth_router
from .menu import router as menu_router
from .qr import router as qr_router
from .websocket import router as ws_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(menu_router)
router.include_router(qr_router)
