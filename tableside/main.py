import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tableside.core.config import CORS_ALLOW_ORIGIN_REGEX, CORS_ORIGINS, DATABASE_URL
from tableside.core.database import Database
from tableside.core.errors import TablesideError
from tableside.core.logging_setup import configure_logging
from tableside.core.result import Err
from tableside.core.startup_checks import (
    apply_migrations,
    ensure_migrations_applied,
    validate_database_environment,
)
from tableside.middleware.observability import ObservabilityMiddleware
from tableside.routers.auth import router as auth_router
from tableside.routers.orders import router as orders_router
from tableside.routers.restaurants import router as restaurants_router
from tableside.routers.sessions import router as sessions_router
from tableside.services.container import ServiceContainer

configure_logging()

logger = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


def _startup_tasks(database: Database) -> None:
    validate_database_environment(database.url)
    if database.is_sqlite:
        # Local/dev SQLite: schema straight from the models.
        database.create_all()
        return
    apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)
    ensure_migrations_applied(engine=database.engine, alembic_config_path=ALEMBIC_CONFIG_PATH)


def _domain_error_handler(request: Request, exc: TablesideError) -> JSONResponse:
    err = Err.from_exception(exc)
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "domain error kind=%s path=%s message=%s",
        err.kind.value,
        request.url.path,
        err.message,
        extra={"error_kind": err.kind.value},
    )
    return JSONResponse(status_code=exc.http_status, content=err.to_payload())


def create_app(
    database: Optional[Database] = None,
    services: Optional[ServiceContainer] = None,
    *,
    run_startup_tasks: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_database = getattr(app.state, "database", None) is None
        if owns_database:
            app.state.database = Database(DATABASE_URL)
        if getattr(app.state, "services", None) is None:
            app.state.services = ServiceContainer.build()
        if run_startup_tasks:
            _startup_tasks(app.state.database)
        logger.info("Application started")
        try:
            yield
        finally:
            if owns_database:
                app.state.database.dispose()
                app.state.database = None

    app = FastAPI(
        title="Tableside API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.database = database
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ObservabilityMiddleware)
    app.add_exception_handler(TablesideError, _domain_error_handler)

    app.include_router(auth_router)
    app.include_router(restaurants_router)
    app.include_router(sessions_router)
    app.include_router(orders_router)

    @app.get("/")
    def root():
        return {"status": "ok"}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
