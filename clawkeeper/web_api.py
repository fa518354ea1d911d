"""
Admin API for the gateway supervisor.

Exposes the gateway and storage operations over HTTP so an operator (or the
control UI in front of the container) can inspect and drive them.

SECURITY: Every /api route requires a valid Cloudflare Access JWT unless
LOCAL_DEV=true. Misconfigured Access settings answer 503, bad tokens 401.
"""

import time
from collections.abc import Callable

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth.access import (
    AccessConfigurationError,
    AccessVerificationError,
    JwksFetcher,
    extract_access_token,
    fetch_jwks,
    verify_access_jwt,
)
from .auth.cache import TTLCache
from .config import GatewayEnv
from .gateway.errors import GatewayError
from .gateway.service import GatewayService
from .log_config import configure_logging, get_logger
from .sandbox.executor import LocalCommandExecutor

configure_logging()
log = get_logger("web_api")


class RestoreRequest(BaseModel):
    type: str
    name: str


def _process_summary(proc) -> dict:
    return {
        "process_id": proc.id,
        "status": proc.status.value,
        "command": proc.command,
        "start_time": proc.start_time.isoformat() if proc.start_time else None,
    }


def create_app(
    service: GatewayService | None = None,
    env_factory: Callable[[], GatewayEnv] = GatewayEnv.from_environ,
    jwks_fetcher: JwksFetcher = fetch_jwks,
    jwks_cache: TTLCache | None = None,
) -> FastAPI:
    """Build the admin app around one ``GatewayService``."""
    service = service or GatewayService(LocalCommandExecutor())
    jwks_cache = jwks_cache or TTLCache()
    app = FastAPI(title="clawkeeper")

    async def require_access(request: Request) -> GatewayEnv:
        """
        Verify the Access JWT, raising HTTPException on failure.

        Raises:
            HTTPException: 401 if the token is invalid, 503 if Access is not configured
        """
        env = env_factory()
        if env.local_dev:
            return env

        token = extract_access_token(request.headers, request.cookies)
        try:
            await verify_access_jwt(
                token,
                env.cf_access_team_domain,
                env.cf_access_aud,
                cache=jwks_cache,
                fetcher=jwks_fetcher,
            )
        except AccessConfigurationError as e:
            raise HTTPException(
                status_code=503,
                detail=f"Service unavailable: Authentication not configured. {e}",
            )
        except AccessVerificationError as e:
            log.warn("auth.rejected", reason=str(e), http_path=request.url.path)
            raise HTTPException(
                status_code=401,
                detail="Unauthorized: Invalid or missing access token",
            )
        return env

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        http_status = 500
        try:
            response = await call_next(request)
            http_status = response.status_code
            return response
        finally:
            duration_ms = int((time.time() - start_time) * 1000)
            log.info(
                "http_request",
                http_method=request.method,
                http_path=request.url.path,
                http_status=http_status,
                duration_ms=duration_ms,
                outcome="success" if http_status < 400 else "error",
            )

    @app.get("/sandbox-health")
    async def sandbox_health() -> dict:
        return {"status": "ok"}

    @app.get("/api/gateway/status")
    async def gateway_status(env: GatewayEnv = Depends(require_access)):
        try:
            proc = await service.find_existing_gateway_process()
            data = {"running": proc is not None}
            if proc:
                data.update(_process_summary(proc))
            return {"success": True, "data": data}
        except Exception as e:
            log.error("api.error", exc=e, endpoint_name="gateway_status")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    @app.post("/api/gateway/ensure")
    async def gateway_ensure(env: GatewayEnv = Depends(require_access)):
        try:
            proc = await service.ensure_gateway_running(env)
            return {"success": True, "data": _process_summary(proc)}
        except GatewayError as e:
            log.error("api.error", exc=e, endpoint_name="gateway_ensure")
            return JSONResponse(
                status_code=503,
                content={
                    "success": False,
                    "error": str(e),
                    "details": e.details,
                    "hint": e.hint,
                },
            )

    @app.post("/api/gateway/restart")
    async def gateway_restart(env: GatewayEnv = Depends(require_access)):
        try:
            result = await service.restart_gateway(env)
        except Exception as e:
            log.error("api.error", exc=e, endpoint_name="gateway_restart")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

        message = (
            "Gateway process killed, new instance starting..."
            if result.killed_previous
            else "No existing process found, starting new instance..."
        )
        return {"success": True, "data": {**result.model_dump(), "message": message}}

    @app.post("/api/storage/sync")
    async def storage_sync(env: GatewayEnv = Depends(require_access)):
        result = await service.sync_to_durable(env)
        return _result_response(result.success, result.model_dump(), result.outcome.value)

    @app.post("/api/storage/golden-backup")
    async def storage_golden_backup(env: GatewayEnv = Depends(require_access)):
        result = await service.create_golden_backup(env)
        return _result_response(result.success, result.model_dump(), result.outcome.value)

    @app.get("/api/storage/backups")
    async def storage_backups(env: GatewayEnv = Depends(require_access)):
        listing = await service.list_backups(env)
        if listing.error:
            return JSONResponse(status_code=500, content={"success": False, "error": listing.error})
        return {"success": True, "data": {"versioned": listing.versioned, "golden": listing.golden}}

    @app.post("/api/storage/restore")
    async def storage_restore(body: RestoreRequest, env: GatewayEnv = Depends(require_access)):
        result = await service.restore_from_backup(env, body.type, body.name)
        return _result_response(result.success, result.model_dump(), result.outcome.value)

    return app


# Failures caused by the request rather than by the container
_CLIENT_ERROR_STATUS = {"malformed_input": 400, "not_found": 404}


def _result_response(success: bool, data: dict, outcome: str):
    if success:
        return {"success": True, "data": data}
    if outcome == "skipped":
        # Refused by the health gate
        status_code = 409
    else:
        status_code = _CLIENT_ERROR_STATUS.get(data.get("error_kind"), 500)
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": data.get("error"),
            "details": data.get("details"),
            "skipped_reason": data.get("skipped_reason"),
            "hint": data.get("hint"),
        },
    )
