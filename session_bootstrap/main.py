import logging
import os
import time
from typing import Callable

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from . import runtime
from .logging_setup import configure_logging
from .redis_client import redis_status
from .runtime import SessionBootstrap, build_session_bootstrap
from .storage import RedisScope

configure_logging()
logger = logging.getLogger("session_bootstrap.app")

VERSION = os.getenv("SERVICE_VERSION", "0.1.0")


def create_app(factory: Callable[[], SessionBootstrap] = build_session_bootstrap) -> FastAPI:
    app = FastAPI(title="session-bootstrap")
    started_at = time.time()

    def _bootstrap() -> SessionBootstrap:
        if runtime.bootstrap is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="not_started")
        return runtime.bootstrap

    @app.on_event("startup")
    async def on_startup():
        runtime.bootstrap = factory()
        state = await runtime.bootstrap.manager.initialize()
        logger.info("session_bootstrap status=started version=%s auth=%s", VERSION, state.status.value)

    @app.on_event("shutdown")
    async def on_shutdown():
        if runtime.bootstrap is not None:
            runtime.bootstrap.manager.close()
            runtime.bootstrap.poller.stop()
            logger.info("session_bootstrap status=stopped")
        runtime.bootstrap = None

    @app.get("/healthz")
    def healthz():
        bootstrap = runtime.bootstrap
        durable = bootstrap.intents.durable if bootstrap else None
        return {
            "status": "ok",
            "version": VERSION,
            "auth_status": bootstrap.manager.status.value if bootstrap else None,
            "redis": redis_status(durable.redis) if isinstance(durable, RedisScope) else "disabled",
            "uptime_s": int(time.time() - started_at),
        }

    @app.get("/auth/state")
    def auth_state():
        return _bootstrap().manager.state.to_dict()

    @app.get("/auth/callback")
    async def auth_callback(request: Request):
        decision = await _bootstrap().callback_flow.complete(dict(request.query_params))
        response = RedirectResponse(decision.location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        response.headers["X-Auth-Target"] = decision.target
        if decision.notice:
            response.headers["X-Auth-Notice"] = decision.notice
        return response

    @app.post("/auth/signout")
    async def sign_out():
        ok = await _bootstrap().manager.sign_out()
        return {"ok": ok}

    return app


app = create_app()
