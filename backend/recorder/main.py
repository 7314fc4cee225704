from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import logging
from logging.handlers import RotatingFileHandler

from recorder.config import Settings
from recorder.models.base import init_db
from recorder.api.devices import router as devices_router
from recorder.api.emails import router as emails_router
from recorder.api.meetings import router as meetings_router
from recorder.api.recordings import router as recordings_router
from recorder.api.settings import router as settings_router
from recorder.api.subscriptions import router as subscriptions_router
from recorder.services.recording_session import InvalidTransition, SessionNotFound


settings = Settings()


def _install_file_logging() -> None:
    log_file = settings.logs_dir / "backend.log"
    handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
    handler.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s"))
    root = logging.getLogger()
    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        root.addHandler(handler)
    root.setLevel(logging.INFO)


def create_app() -> FastAPI:
    app = FastAPI(title="Meeting Recorder Backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        settings.ensure_dirs()
        try:
            _install_file_logging()
        except OSError:
            logging.getLogger("recorder").warning("File logging unavailable", exc_info=True)
        init_db()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(recordings_router)
    app.include_router(meetings_router)
    app.include_router(settings_router)
    app.include_router(subscriptions_router)
    app.include_router(emails_router)
    app.include_router(devices_router)

    # Uploaded recordings, addressed by public_base_url
    app.mount("/storage", StaticFiles(directory=str(settings.storage_dir), check_dir=False), name="storage")

    @app.exception_handler(SessionNotFound)
    async def _session_not_found(request: Request, exc: SessionNotFound):  # type: ignore[override]
        return JSONResponse(status_code=404, content={"error": "Recording session not found"})

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition):  # type: ignore[override]
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logging.getLogger("recorder").exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Meeting Recorder Backend Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")

    args = parser.parse_args()

    uvicorn.run(
        "recorder.main:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
