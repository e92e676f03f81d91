from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from formdesk.api import files, forms, health, meta, responses
from formdesk.core.config import settings
from formdesk.core.logging import api_logger, configure_logging
from formdesk.core.middleware import (
    RequestContextMiddleware,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from formdesk.db.database import create_tables


configure_logging(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    Path(settings.STORAGE_DIR).mkdir(parents=True, exist_ok=True)
    api_logger.info("Application started", env=settings.APP_ENV, storage_dir=settings.STORAGE_DIR)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Backend API for building forms and collecting responses",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last so it runs first
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(forms.router, prefix="/api")
app.include_router(responses.router, prefix="/api")
app.include_router(responses.user_router, prefix="/api")
app.include_router(files.router, prefix="/api")
app.include_router(meta.router, prefix="/api")
app.include_router(health.router, prefix="")
