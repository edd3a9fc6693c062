"""HTTP API over the card store.

Endpoints are plain ``def`` functions, so FastAPI runs them on its worker
thread pool; blocking filesystem calls for one client never stall requests
for another.
"""

from __future__ import annotations

import logging
import platform
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import StoreSettings, load_settings
from .errors import (
    AlreadyExistsError,
    InvalidIdentifierError,
    MissingRequiredFieldError,
    NotFoundError,
    PayloadDecodeError,
    StorageIOError,
)
from .identifiers import is_valid_client_id
from .models import BundleHandle, CardSpec
from .reload import ProxyReloader
from .store import CardStore

logger = logging.getLogger(__name__)

INVALID_ID_MESSAGE = (
    "Invalid client ID format. Use only letters, numbers, hyphens, "
    "and underscores (3-63 characters)"
)
BODY_TOO_LARGE = "Request body too large"

router = APIRouter(tags=["cards"])


class DeployRequest(CardSpec):
    """Create body: the card files plus the identifier to create them under."""
    client_id: Optional[str] = Field(None, alias="clientId")


def get_store(request: Request) -> CardStore:
    return request.app.state.store


def get_settings(request: Request) -> StoreSettings:
    return request.app.state.settings


def _reload_proxy(request: Request) -> None:
    reloader: Optional[ProxyReloader] = request.app.state.reloader
    if reloader is not None:
        reloader.reload()


def _deploy_response(handle: BundleHandle, settings: StoreSettings, message: str) -> dict:
    body = {
        "success": True,
        "clientId": handle.client_id,
        "url": settings.url_for(handle.client_id),
        "message": message,
    }
    if handle.skipped:
        body["skipped"] = [s.model_dump() for s in handle.skipped]
    return body


@router.get("/api/check-client/{client_id}")
def check_client(
    client_id: str,
    store: CardStore = Depends(get_store),
    settings: StoreSettings = Depends(get_settings),
):
    if not is_valid_client_id(client_id):
        return JSONResponse(
            status_code=400,
            content={"available": False, "error": INVALID_ID_MESSAGE},
        )
    return {
        "available": not store.exists(client_id),
        "clientId": client_id,
        "url": settings.url_for(client_id),
    }


@router.post("/api/deploy")
def deploy(
    body: DeployRequest,
    request: Request,
    store: CardStore = Depends(get_store),
    settings: StoreSettings = Depends(get_settings),
):
    missing = [name for name, value in (("clientId", body.client_id), ("html", body.html)) if not value]
    if missing:
        raise MissingRequiredFieldError(missing)

    handle = store.create(body.client_id, body)
    _reload_proxy(request)
    return _deploy_response(handle, settings, "Card deployed successfully!")


@router.put("/api/deploy/{client_id}")
def update(
    client_id: str,
    body: CardSpec,
    store: CardStore = Depends(get_store),
    settings: StoreSettings = Depends(get_settings),
):
    handle = store.update(client_id, body)
    return _deploy_response(handle, settings, "Card updated successfully!")


@router.delete("/api/deploy/{client_id}")
def delete(client_id: str, request: Request, store: CardStore = Depends(get_store)):
    store.delete(client_id)
    _reload_proxy(request)
    return {"success": True, "message": "Card unpublished successfully"}


@router.get("/health")
def health(request: Request, settings: StoreSettings = Depends(get_settings)):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "pythonVersion": platform.python_version(),
        "vcardsDir": str(settings.root_dir),
        "baseUrl": settings.base_url,
    }


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidIdentifierError)
    async def _invalid_id(request: Request, exc: InvalidIdentifierError):
        return _error(400, INVALID_ID_MESSAGE)

    @app.exception_handler(MissingRequiredFieldError)
    async def _missing(request: Request, exc: MissingRequiredFieldError):
        return _error(400, "Missing required fields", missing=exc.fields)

    @app.exception_handler(PayloadDecodeError)
    async def _decode(request: Request, exc: PayloadDecodeError):
        return _error(400, str(exc))

    @app.exception_handler(AlreadyExistsError)
    async def _exists(request: Request, exc: AlreadyExistsError):
        return _error(409, "This client ID is already taken. Please choose a different one.")

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return _error(404, "Client not found")

    @app.exception_handler(StorageIOError)
    async def _storage(request: Request, exc: StorageIOError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc,
                     exc_info=exc)
        return _error(500, "Storage failure")

    @app.exception_handler(RequestValidationError)
    async def _bad_body(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request body", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Not Found", path=request.url.path)
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, str(exc) or "Internal Server Error")


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_bytes`` with 413.

    A declared ``Content-Length`` is checked up front; bodies without one
    (chunked uploads) are counted as they are received.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            await _error(413, BODY_TOO_LARGE)(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise StarletteHTTPException(status_code=413, detail=BODY_TOO_LARGE)
            return message

        await self.app(scope, limited_receive, send)


def create_app(
    settings: Optional[StoreSettings] = None,
    store: Optional[CardStore] = None,
    reloader: Optional[ProxyReloader] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        settings: Loaded from file/environment when omitted
        store: Built from ``settings.root_dir`` when omitted
        reloader: Built from ``settings.reload_command`` when omitted; with
            neither, no reload is ever triggered
    """
    if settings is None:
        settings = load_settings()
    if store is None:
        store = CardStore(settings.root_dir, lock_timeout=settings.lock_timeout)
    if reloader is None and settings.reload_command:
        reloader = ProxyReloader(settings.reload_command)

    app = FastAPI(title="card-store", summary="Per-client card bundle deployment API")
    app.state.settings = settings
    app.state.store = store
    app.state.reloader = reloader
    app.state.started_at = time.monotonic()

    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        logger.info("%s %s - %d [%dms]", request.method, request.url.path,
                    response.status_code, duration)
        return response

    _install_error_handlers(app)
    app.include_router(router)
    return app
