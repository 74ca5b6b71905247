# chatdesk/api/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatdesk.api.chats import router as chats_router
from chatdesk.api.responses import fail
from chatdesk.api.users import router as users_router
from chatdesk.config import Settings, load_settings
from chatdesk.db import ChatStore, StoreError
from chatdesk.notify import LogNotifier, Notifier

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    err = errors[0]
    loc = [str(p) for p in err.get("loc", ()) if p != "body"]
    if not loc:
        return "request body is required"
    name = ".".join(loc)
    if err.get("type") in ("missing", "string_too_short"):
        return f"{name} is required"
    return f"{name}: {err.get('msg', 'invalid value')}"


def create_app(store: ChatStore, notifier: Optional[Notifier] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.open()
        if settings.seed:
            store.seed_defaults()
        yield
        store.close()

    app = FastAPI(title="chatdesk local API", lifespan=lifespan)
    app.state.store = store
    app.state.notifier = notifier if notifier is not None else LogNotifier()
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return fail(_validation_message(exc), status_code=400)

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        if isinstance(exc, LookupError):
            return fail(str(exc), status_code=404)
        if isinstance(exc, ValueError):
            return fail(str(exc), status_code=400)
        return fail(str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def _store_failure(request: Request, exc: SQLAlchemyError):
        logger.exception("Store error on %s", request.url.path)
        return fail(str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return fail(str(exc.detail), status_code=exc.status_code)

    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(chats_router)
    app.include_router(users_router)
    return app


def app_from_env() -> FastAPI:
    """Factory for `uvicorn --factory chatdesk.api.main:app_from_env`."""
    settings = load_settings()
    return create_app(ChatStore(settings.database_url), settings=settings)
