import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI, Request

from campusid.config import LOG_BACKUP_COUNT, LOG_FILE, LOG_LEVEL, LOG_MAX_BYTES

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

request_logger = logging.getLogger("campusid.requests")


def setup_logging(
    level: str = LOG_LEVEL,
    log_file: Path | None = LOG_FILE,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> logging.Logger:
    """
    Configure the ``campusid`` and ``ledger`` loggers.

    Always logs to the console; when ``log_file`` is set, also to a
    size-rotated file keeping ``backup_count`` old copies.
    """
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )

    for name in ("campusid", "ledger"):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # Re-running setup (tests, reload) must not stack handlers.
        for old in [h for h in logger.handlers if getattr(h, "_campusid", False)]:
            logger.removeHandler(old)
            old.close()
        for handler in handlers:
            handler.setFormatter(formatter)
            handler._campusid = True  # type: ignore[attr-defined]
            logger.addHandler(handler)

    return logging.getLogger("campusid")


def add_request_logging(app: FastAPI) -> FastAPI:
    """Log method, path, status and timing of every request.

    Bodies are not logged: they carry face images.
    """

    @app.middleware("http")
    async def log_request_time(request: Request, call_next):
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "-"

        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        request_logger.info(
            "IP=%s | %s %s | Status=%s | Time=%.4fs",
            client_ip,
            request.method,
            request.url.path,
            response.status_code,
            process_time,
        )
        response.headers["X-Process-Time"] = str(round(process_time, 4))
        return response

    return app
