"""HTTP server - dispatch API, queue stats and read-only inspection endpoints."""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from notifier.config import Config
from notifier.container import ServiceContainer
from notifier.errors import DispatchErrorCode
from notifier.services.dispatch_service import DispatchOptions

# Logging is configured by the process entry point (uvicorn or notifier.main).
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    DispatchErrorCode.INVALID_REQUEST: 400,
    DispatchErrorCode.NO_ACTIVE_CHANNEL: 409,
    DispatchErrorCode.QUEUE_PERSIST_FAILURE: 503,
}


class DispatchRequest(BaseModel):
    module: str = ""
    message: str = ""
    chatId: Optional[str | int] = None
    priority: Optional[int] = None
    delay: Optional[int] = Field(default=None, description="milliseconds before the job becomes eligible")
    parseMode: Optional[str] = None


def _container(request: Request) -> ServiceContainer:
    container: ServiceContainer | None = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="notifier not ready")
    return container


def create_app(container_factory: Callable[[], ServiceContainer] | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    `container_factory` defaults to building a container from the environment;
    tests pass one that returns a pre-wired container.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        factory = container_factory or (lambda: ServiceContainer.create(Config.from_env()))
        container = factory()
        await container.init()
        app.state.container = container
        if container.config.run_worker_in_process:
            await container.worker_pool.start()
        logger.info("Notifier API started")
        try:
            yield
        finally:
            await container.cleanup()
            app.state.container = None
            logger.info("Notifier API stopped")

    app = FastAPI(title="Notification dispatch", lifespan=lifespan)

    @app.get("/health", include_in_schema=False)
    async def health(request: Request) -> dict[str, str]:
        container = _container(request)
        ok = await container.db.health_check()
        return {"status": "ok" if ok else "degraded"}

    @app.post("/api/notifications/dispatch")
    async def dispatch(body: DispatchRequest, request: Request):
        container = _container(request)
        result = await container.dispatch_service.dispatch(
            body.module,
            body.message,
            DispatchOptions(
                chat_id=body.chatId,
                priority=body.priority,
                delay_ms=body.delay,
                parse_mode=body.parseMode,
            ),
        )
        status = 200 if result.success else _STATUS_BY_ERROR.get(result.error, 500)
        return JSONResponse(status_code=status, content=result.to_dict())

    @app.get("/api/notifications/stats")
    async def stats(request: Request) -> dict:
        container = _container(request)
        return (await container.queue_service.get_stats()).to_dict()

    @app.get("/api/notifications/modules")
    async def modules(request: Request) -> dict:
        container = _container(request)
        data = await container.module_registry.overview()
        return {"success": True, "data": data, "count": len(data)}

    @app.get("/api/notifications/jobs/{job_id}")
    async def job_detail(job_id: int, request: Request) -> dict:
        container = _container(request)
        job = await container.queue_service.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        return {"success": True, "data": job}

    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    from notifier.main import configure_logging

    configure_logging()
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
