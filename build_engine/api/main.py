from typing import Optional

from fastapi import FastAPI

from build_engine.api.routes.builds import router as builds_router
from build_engine.api.routes.strategy import router as strategy_router
from build_engine.api.routes.tenants import router as tenants_router
from build_engine.container import Container


def create_app(container: Container, title: Optional[str] = None) -> FastAPI:
    app = FastAPI(title=title or "Build Engine API")
    app.state.container = container

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(builds_router)
    app.include_router(tenants_router)
    app.include_router(strategy_router)
    return app
