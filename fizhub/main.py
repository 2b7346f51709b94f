from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fizhub.api.admin_routes import router as admin_router
from fizhub.api.routes import router
from fizhub.core.errors import DuplicateUID, FizHubError, WrongPhase
from fizhub.hub import Hub
from fizhub.settings import settings


def create_app(hub: Optional[Hub] = None) -> FastAPI:
    """
    Build the status API. With no hub given, one is constructed and started on
    application start-up and shut down (bounded) on application shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "hub", None) is None:
            app.state.hub = Hub()
        app.state.hub.start()
        try:
            yield
        finally:
            app.state.hub.shutdown()

    app = FastAPI(title="FizHub", lifespan=lifespan)
    app.state.hub = hub

    origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.exception_handler(FizHubError)
    async def fizhub_error_handler(request: Request, exc: FizHubError):
        # Session-rule rejections are conflicts with current state, not bad requests
        code = 409 if isinstance(exc, (WrongPhase, DuplicateUID)) else 400
        return JSONResponse(
            status_code=code,
            content={"status": "error", "error": exc.kind, "detail": str(exc)},
        )

    return app


# uvicorn fizhub.main:app
app = create_app()
