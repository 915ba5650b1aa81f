from contextlib import asynccontextmanager
from datetime import timedelta
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool
from qrmenu.core.config import Settings, settings as default_settings
from qrmenu.core.database import create_engine, create_session_factory, create_tables
from qrmenu.core.exceptions import MenuServiceError
from qrmenu.core.logging import configure_logging
from qrmenu.api.v1 import endpoints
from qrmenu.services.connections import ConnectionManager
from qrmenu.services.asset_host import AssetHost
from qrmenu.services.menu_feed import MenuFeed
from qrmenu.services.menu_lookup import ProbeSource, default_sources
from qrmenu.services.menu_store import MenuStore
from qrmenu.services.minio_service import MinIOAssetHost
from qrmenu.services.pdf_service import PDFService
from qrmenu.services.publisher import MenuPublisher
from qrmenu.services.qr_service import QRService
from qrmenu.services.record_store import RecordStore, SqlRecordStore
from qrmenu.services.version_resolver import VersionResolver
import logging

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, settings: Settings, record_store: RecordStore, asset_host: AssetHost):
    """Wire the services onto ``app.state``; endpoints reach them through qrmenu.core.deps."""
    resolver = VersionResolver(
        asset_host,
        max_bucket=settings.PROBE_MAX_BUCKET,
        max_pages=settings.PROBE_MAX_PAGES,
    )
    menu_store = MenuStore(
        record_store,
        history_limit=settings.HISTORY_LIMIT,
        reservation_ttl=timedelta(minutes=settings.PUBLISH_RESERVATION_MINUTES),
    )
    connections = ConnectionManager()
    menu_feed = MenuFeed(menu_store, fallback_sources=[ProbeSource(resolver)])
    menu_feed.add_publisher(connections.broadcast)

    app.state.record_store = record_store
    app.state.asset_host = asset_host
    app.state.resolver = resolver
    app.state.menu_store = menu_store
    app.state.menu_sources = default_sources(menu_store, resolver)
    app.state.publisher = MenuPublisher(
        menu_store,
        asset_host,
        PDFService(scale=settings.RENDER_SCALE, jpeg_quality=settings.JPEG_QUALITY),
        max_upload_mb=settings.MAX_UPLOAD_MB,
    )
    app.state.qr_service = QRService(settings.QR_SERVICE_URL, settings.MENU_PUBLIC_URL)
    app.state.connections = connections
    app.state.upload_connections = ConnectionManager()
    app.state.menu_feed = menu_feed


def create_app(
    settings: Settings = None,
    record_store: RecordStore = None,
    asset_host: AssetHost = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        store = record_store
        if store is None:
            engine = create_engine(settings.DATABASE_URL)
            if settings.DB_CREATE_TABLES:
                await create_tables(engine)
            store = SqlRecordStore(
                create_session_factory(engine), poll_interval=settings.RECORD_POLL_SECONDS
            )
        host = asset_host
        if host is None:
            host = MinIOAssetHost(settings)
            await run_in_threadpool(host.ensure_bucket)

        build_services(app, settings, store, host)
        await app.state.menu_feed.start()
        logger.info("%s %s started", settings.PROJECT_NAME, settings.VERSION)
        try:
            yield
        finally:
            app.state.menu_feed.stop()
            store.unsubscribe_all()
            if engine is not None:
                await engine.dispose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MenuServiceError)
    async def menu_service_error_handler(request: Request, exc: MenuServiceError):
        logger.warning("%s: %s", exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Health check
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": settings.VERSION}

    app.include_router(endpoints.router, prefix=settings.API_V1_STR)
    app.include_router(endpoints.ws_router)
    return app


app = create_app()
