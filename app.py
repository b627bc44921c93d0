import json
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

try:
    from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
except Exception:  # pragma: no cover - optional dependency
    ProxyHeadersMiddleware = None  # type: ignore[assignment]

from config import settings
from routes import router
from services import http_client


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            data["run_id"] = run_id
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data)


handler = logging.StreamHandler()
handler.setFormatter(JsonFormatter())
logging.basicConfig(level=logging.INFO, handlers=[handler])
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Option Chain Proxy")
    if ProxyHeadersMiddleware is not None:
        logger.info("ProxyHeadersMiddleware enabled")
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")  # type: ignore[arg-type]
    else:
        logger.info("ProxyHeadersMiddleware unavailable; skipping")

    origins = list(settings.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    logger.info("cors origins=%s", ",".join(origins) or "-")

    app.include_router(router)

    static_dir = settings.static_dir
    if static_dir:
        if os.path.isdir(static_dir):
            app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
            logger.info("static frontend mounted dir=%s", static_dir)
        else:
            logger.warning("static frontend missing dir=%s", static_dir)

    @app.on_event("shutdown")
    async def _shutdown():
        await http_client.aclose()

    return app


app = create_app()
