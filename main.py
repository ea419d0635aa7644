import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from config import Settings
from database import create_engine_from_url, create_session_factory, init_db, check_connection
from logging_config import configure_logging
from routers import invoices_router
from services.hive_client import HiveClient
from services.hive_service import HiveService
from services.invoice_service import InvoiceService, RateProvider
from services.key_directory import KeyDirectory
from services.payment_monitor import PaymentMonitor

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    client=None,
    rate_provider: Optional[RateProvider] = None,
) -> FastAPI:
    """
    Build the application and everything it owns.

    The engine, Hive client, key directory, gateway, payment monitor and
    invoice service are created here and kept on app.state; the lifespan
    starts and stops the monitor.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    logger.info("Creating Hive service with config: %s", settings.redacted())

    engine = create_engine_from_url(settings.database_url, echo=settings.sql_echo)
    init_db(engine)
    session_factory = create_session_factory(engine)

    client = client or HiveClient(
        settings.hive_nodes,
        timeout=settings.hive_request_timeout,
    )
    key_directory = KeyDirectory(client)
    gateway = HiveService(settings, client, key_directory)
    monitor = PaymentMonitor(
        gateway,
        session_factory,
        operator=settings.hive_username,
        interval=settings.monitor_interval_seconds,
        batch_size=settings.monitor_batch_size,
        tolerance=settings.payment_tolerance,
    )
    invoice_service = InvoiceService(
        gateway,
        session_factory,
        settings.frontend_url,
        rate_provider=rate_provider,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not gateway.has_memo_key():
            logger.warning("HIVE_MEMO_KEY is not set; invoices cannot be encrypted")
        if settings.monitor_enabled:
            try:
                await run_in_threadpool(gateway.validate_config)
                monitor.start()
            except Exception:
                logger.exception("Payment monitor failed to start")
        yield
        await run_in_threadpool(monitor.stop, True, settings.monitor_interval_seconds)
        engine.dispose()

    app = FastAPI(title="Hivevoice", lifespan=lifespan)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.hive_client = client
    app.state.key_directory = key_directory
    app.state.hive_service = gateway
    app.state.payment_monitor = monitor
    app.state.invoice_service = invoice_service

    app.include_router(invoices_router)

    @app.get("/")
    def root():
        return {"message": "Hivevoice API", "version": "1.0.0"}

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "database": check_connection(engine),
            "monitor_running": monitor.is_running,
            "last_processed_block": monitor.last_processed_block,
        }

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 10000))
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=port)
