import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campusid.config import (
    AUTOSAVE_ENABLED,
    AUTOSAVE_INTERVAL_SECONDS,
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    DATA_DIR,
    LATE_THRESHOLD,
    MANUAL_ENTRY_TIME,
)
from campusid.logging_setup import add_request_logging, setup_logging
from campusid.oracle import HttpMatchOracle, MatchOracle
from campusid.routers import attendance, core, storage, users
from campusid.services.ledger import LedgerService
from ledger.codec import configure_field_size_limit
from ledger.errors import LedgerError

logger = logging.getLogger(__name__)


def create_app(
    oracle: MatchOracle | None = None,
    *,
    data_dir: Path | None = DATA_DIR,
    autosave_enabled: bool = AUTOSAVE_ENABLED,
) -> FastAPI:
    configure_field_size_limit()
    ledger = LedgerService(
        oracle or HttpMatchOracle(),
        late_threshold=LATE_THRESHOLD,
        manual_entry_time=MANUAL_ENTRY_TIME,
        autosave_interval=AUTOSAVE_INTERVAL_SECONDS,
    )

    # -----------------------------
    # Startup / shutdown
    # -----------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if data_dir is not None:
            try:
                await ledger.connect(data_dir)
            except LedgerError as e:
                logger.warning("Could not auto-connect to %s: %s", data_dir, e)
        if autosave_enabled:
            ledger.autosave.start()

        yield

        await ledger.autosave.stop()
        if ledger.store.dirty and ledger.autosave.gateway is not None:
            logger.info("Saving unsaved changes before shutdown...")
            await ledger.autosave.flush()

    app = FastAPI(title="CampusID Ledger API", lifespan=lifespan)
    app.state.ledger = ledger

    # -----------------------------
    # CORS (React dev server)
    # -----------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=CORS_ALLOW_CREDENTIALS,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )
    add_request_logging(app)

    app.include_router(core.router)
    app.include_router(users.router)
    app.include_router(attendance.router)
    app.include_router(storage.router)
    return app


setup_logging()
app = create_app()
