from fastapi import APIRouter
from fastapi.responses import JSONResponse

from costpulse.api.schemas import ConfigCheckRequest, ConfigCheckResponse
from costpulse.observability.logger import get_logger
from costpulse.sources.identity import AuthError
from costpulse.validation import ConfigError

log = get_logger("api")

router = APIRouter(prefix="/api")


def get_app_state():
    """Get shared app state, populated during startup."""
    from costpulse.main import app_state
    return app_state


def get_service():
    return get_app_state()["service"]


@router.get("/health")
async def get_health():
    return get_service().health()


@router.get("/dashboard")
async def get_dashboard():
    try:
        snapshot = await get_service().get_dashboard()
    except Exception as e:
        log.error("dashboard_error", error=str(e), exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    return {"success": True, **snapshot.model_dump(mode="json")}


@router.post("/refresh")
async def refresh_dashboard():
    """Force a rebuild now, independent of the scheduler."""
    try:
        snapshot = await get_service().refresh()
    except Exception as e:
        log.error("manual_refresh_failed", error=str(e), exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    return {"success": True, **snapshot.model_dump(mode="json")}


@router.get("/pricing")
async def get_pricing():
    records = await get_service().get_pricing()
    return {"success": True, "data": [r.model_dump(mode="json") for r in records]}


@router.get("/usage")
async def get_usage():
    usage = await get_service().get_usage()
    return {"success": True, "data": {model.value: record.model_dump(mode="json") for model, record in usage.items()}}


@router.get("/exchange-rates")
async def get_exchange_rates():
    rates = await get_service().get_exchange_rates()
    return {"success": True, "data": rates.model_dump(mode="json")}


@router.post("/test-config", response_model=ConfigCheckResponse, response_model_exclude_none=True)
async def check_config(body: ConfigCheckRequest):
    try:
        await get_service().test_config(body.model_dump())
    except ConfigError as e:
        log.info("config_test_rejected", errors=e.errors)
        return JSONResponse(
            status_code=400,
            content=ConfigCheckResponse(success=False, error=str(e), errors=e.errors).model_dump(exclude_none=True),
        )
    except AuthError as e:
        log.info("config_test_auth_failed", error=str(e))
        return JSONResponse(
            status_code=400,
            content=ConfigCheckResponse(success=False, error=str(e)).model_dump(exclude_none=True),
        )
    return ConfigCheckResponse(success=True, message="Configuration is valid")
