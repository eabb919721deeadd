from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1 import index
from app.api.v1 import auth
from app.api.v1 import organizations
from app.api.v1 import relationships
from app.api.v1 import questionnaires
from app.api.v1 import templates
from app.api.v1 import requirements
from app.api.v1 import supplier_portal

from app.core.config import settings
from app.core.errors import DomainError, InternalError
from app.core.logging import setup_logging
from app.db.core import init_db

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"{settings.app_name} started ({settings.environment})")
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Middlewares
origins = []

if settings.allowed_hosts:
    origins = settings.allowed_hosts.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers
def _error_response(status_code: int, code: str, message: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": code, "message": message},
        headers=headers,
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(exc.status_code, exc.code, exc.message, headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid input.") if errors else "Invalid input."
    return _error_response(status.HTTP_400_BAD_REQUEST, "validation_failed", message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(
        exc.status_code, "http_error", str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    error = InternalError()
    return _error_response(error.status_code, error.code, error.message)


# Register routes
app.include_router(index.router, prefix="/api/v1")
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
app.include_router(
    organizations.router, prefix="/api/v1/organizations", tags=["Organizations"])
app.include_router(
    relationships.router, prefix="/api/v1/relationships", tags=["Relationships"])
app.include_router(
    questionnaires.router, prefix="/api/v1/questionnaires", tags=["Questionnaires"])
app.include_router(
    templates.router, prefix="/api/v1/templates", tags=["Templates"])
app.include_router(
    requirements.router, prefix="/api/v1/requirements", tags=["Requirements"])
app.include_router(
    supplier_portal.router, prefix="/api/v1/supplier", tags=["Supplier Portal"])

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=None,
    )
