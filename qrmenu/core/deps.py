"""FastAPI dependencies resolving the services built at startup."""
from fastapi import Request

from qrmenu.core.config import Settings
from qrmenu.services.connections import ConnectionManager
from qrmenu.services.menu_lookup import MenuSource
from qrmenu.services.menu_store import MenuStore
from qrmenu.services.publisher import MenuPublisher
from qrmenu.services.qr_service import QRService
from qrmenu.services.version_resolver import VersionResolver
from typing import Sequence


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_menu_store(request: Request) -> MenuStore:
    return request.app.state.menu_store


def get_resolver(request: Request) -> VersionResolver:
    return request.app.state.resolver


def get_menu_sources(request: Request) -> Sequence[MenuSource]:
    return request.app.state.menu_sources


def get_publisher(request: Request) -> MenuPublisher:
    return request.app.state.publisher


def get_upload_connections(request: Request) -> ConnectionManager:
    return request.app.state.upload_connections


def get_qr_service(request: Request) -> QRService:
    return request.app.state.qr_service
