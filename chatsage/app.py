"""FastAPI application factory for the liveness core."""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from google.api_core import exceptions

from chatsage.errors import ConfigurationError
from chatsage.observability import configure_logging
from chatsage.runtime import Runtime, build_runtime
from chatsage.webhooks.handlers import router as webhook_router

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route("/healthz", methods=["GET", "HEAD"])
async def healthz() -> PlainTextResponse:
    return PlainTextResponse("OK")


@router.post("/keep-alive")
async def keep_alive(request: Request) -> JSONResponse:
    """Ping from the task queue. Always 200 so the queue never retries it."""
    runtime: Runtime = request.app.state.runtime
    timeout = runtime.settings.keepalive_ping_timeout_seconds
    try:
        outcome = await asyncio.wait_for(runtime.actor.handle_ping(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Keep-alive ping handling exceeded %.0fs", timeout)
        await _resume_chain(runtime)
        return JSONResponse({"status": "ok", "outcome": "timeout"})
    except Exception:
        logger.exception("Keep-alive ping handling failed")
        await _resume_chain(runtime)
        return JSONResponse({"status": "ok", "outcome": "error"})
    return JSONResponse({"status": "ok", "outcome": outcome.value})


async def _resume_chain(runtime: Runtime) -> None:
    # The interrupted ping never reached its own reschedule.
    try:
        await runtime.actor.resume_after_interrupted_ping()
    except Exception:
        logger.exception("Could not reschedule keep-alive after an interrupted ping")


@router.get("/keep-alive/status")
async def keep_alive_status(request: Request) -> dict:
    runtime: Runtime = request.app.state.runtime
    return {
        **runtime.actor.status(),
        "active_streams": runtime.state.get_active_streams(),
    }


@router.post("/admin/active-streams/clear")
async def clear_active_streams(request: Request) -> Response:
    """Manual clear of the active set (requires the admin bearer token)."""
    runtime: Runtime = request.app.state.runtime
    token = runtime.settings.admin_token
    if not token:
        return Response(status_code=404)
    supplied = request.headers.get("authorization", "")
    if not hmac.compare_digest(supplied.encode("utf-8"), f"Bearer {token}".encode("utf-8")):
        logger.warning("Rejected admin clear: bad or missing token")
        return JSONResponse({"status": "unauthorized"}, status_code=401)
    removed = await runtime.clear_active_streams()
    return JSONResponse({"status": "cleared", "removed": removed})


async def _startup(runtime: Runtime) -> None:
    settings = runtime.settings
    if settings.ensure_queue_on_startup:
        try:
            await runtime.tasks.ensure_queue()
        except (ConfigurationError, exceptions.GoogleAPICallError, asyncio.TimeoutError) as e:
            logger.error("Could not ensure keep-alive queue exists: %s", e)
    if settings.discover_on_startup:
        await runtime.discover_on_startup()


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the app. A runtime is built from settings on startup when not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime()
        rt: Runtime = app.state.runtime
        configure_logging(rt.settings.log_level, json_logs=rt.settings.log_json)
        await _startup(rt)
        logger.info("ChatSage liveness core started (%d active streams)", len(rt.state))
        try:
            yield
        finally:
            await rt.aclose()

    app = FastAPI(title="ChatSage", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(webhook_router)
    app.include_router(router)
    return app
