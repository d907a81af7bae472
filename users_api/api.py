"""FastAPI application exposing the users resource over HTTP."""
from __future__ import annotations

import logging
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Path, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import Settings, load_settings
from .database import MAX_ROW_ID, Database
from .errors import ErrorKind, UserServiceError
from .models import User, UserPatch
from .users import UserService

API_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

logger = logging.getLogger("users_api.api")
access_logger = logging.getLogger("users_api.http")

_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.EMAIL_EXISTS: status.HTTP_409_CONFLICT,
}

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _strip_text(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not _EMAIL_PATTERN.fullmatch(value):
        raise ValueError("email must be a valid email address")
    return value


class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("name", "email", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _strip_text(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _check_email(value)  # type: ignore[return-value]


class UserUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)

    @field_validator("name", "email", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return _strip_text(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    def to_patch(self) -> UserPatch:
        return UserPatch(name=self.name, email=self.email)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class DeleteUserResponse(BaseModel):
    success: bool
    message: str


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: datetime


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _status_for_error(exc: UserServiceError) -> int:
    return _STATUS_BY_KIND[exc.kind]


async def _handle_service_error(request: Request, exc: UserServiceError) -> JSONResponse:
    logger.info(
        "%s %s rejected (%s): %s",
        request.method,
        request.url.path,
        exc.kind.value,
        exc.message,
    )
    return JSONResponse(
        status_code=_status_for_error(exc),
        content={"detail": exc.message, "kind": exc.kind.value},
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error while processing %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred"},
    )


async def _log_requests(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    started = time.perf_counter()
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            "%s %s -> %s (%.2fms)",
            request.method,
            request.url.path,
            status_code,
            elapsed_ms,
        )


def register_user_routes(router: APIRouter, service: UserService) -> None:
    """Expose the user CRUD endpoints on ``router``."""

    @router.get("/users", response_model=List[UserResponse])
    def list_users() -> List[UserResponse]:
        return [user_to_response(user) for user in service.list_users()]

    @router.get("/users/{user_id}", response_model=UserResponse)
    def get_user(user_id: int = Path(..., ge=1, le=MAX_ROW_ID)) -> UserResponse:
        return user_to_response(service.get_user(user_id))

    @router.post(
        "/users",
        status_code=status.HTTP_201_CREATED,
        response_model=UserResponse,
    )
    def create_user(request: UserCreateRequest) -> UserResponse:
        user = service.create_user(request.name, request.email)
        logger.info("Created user %s", user.id)
        return user_to_response(user)

    @router.api_route(
        "/users/{user_id}",
        methods=["PUT", "PATCH"],
        response_model=UserResponse,
    )
    def update_user(
        request: UserUpdateRequest,
        user_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    ) -> UserResponse:
        user = service.update_user(user_id, request.to_patch())
        logger.info("Updated user %s", user.id)
        return user_to_response(user)

    @router.delete("/users/{user_id}", response_model=DeleteUserResponse)
    def delete_user(user_id: int = Path(..., ge=1, le=MAX_ROW_ID)) -> DeleteUserResponse:
        service.delete_user(user_id)
        logger.info("Deleted user %s", user_id)
        return DeleteUserResponse(success=True, message="User deleted successfully")


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the users resource.

    An injected ``database`` stays owned by the caller. When none is given the
    application builds one from ``settings`` and closes it on shutdown.
    """

    app_settings = settings or load_settings()
    owns_database = database is None
    db = database or Database(app_settings.database_path)
    db.initialize()
    service = UserService(db)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        db.initialize()
        try:
            yield
        finally:
            if owns_database:
                db.close()
                logger.info("Database connection closed")

    app = FastAPI(
        title=app_settings.service_name,
        version=API_VERSION,
        description="CRUD API for user records stored in SQLite.",
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.database = db
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(_log_requests)
    app.add_exception_handler(UserServiceError, _handle_service_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected_error)

    router = APIRouter(prefix=API_PREFIX)

    @router.get("/health", response_model=HealthResponse)
    def healthcheck() -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=app_settings.service_name,
            timestamp=datetime.now(timezone.utc),
        )

    register_user_routes(router, service)
    app.include_router(router, tags=["users"])

    @app.get("/")
    def root() -> Dict[str, object]:
        return {
            "message": f"Welcome to the {app_settings.service_name}",
            "version": API_VERSION,
            "endpoints": {
                "health": f"{API_PREFIX}/health",
                "users": f"{API_PREFIX}/users",
            },
        }

    return app


__all__ = ["create_app", "register_user_routes", "user_to_response"]
