import json
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from costpulse.api.routes import router as api_router
from costpulse.api.websocket import pong_message
from costpulse.config import settings
from costpulse.core.scheduler import Scheduler
from costpulse.core.service import DashboardService
from costpulse.observability.logger import get_logger, setup_logging

setup_logging(settings.log_level)
log = get_logger("main")

# Shared application state, read by the API routes
app_state = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("costpulse_starting", region=settings.azure_region)

    service = DashboardService.from_settings(settings)
    scheduler = Scheduler(
        service,
        refresh_interval=settings.refresh_interval_seconds,
        exchange_interval=settings.exchange_rate_interval_seconds,
        initial_delay=settings.initial_refresh_delay_seconds,
    )
    app_state.update({
        "service": service,
        "scheduler": scheduler,
    })
    scheduler.start()

    log.info("costpulse_ready", credentials_configured=service.token_provider.is_configured())

    yield

    log.info("costpulse_shutting_down")
    await scheduler.stop()


app = FastAPI(title="costpulse", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def _is_ping(data: str) -> bool:
    if data.strip().lower() == "ping":
        return True
    try:
        message = json.loads(data)
    except ValueError:
        return False
    return isinstance(message, dict) and message.get("type") == "ping"


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    hub = app_state["service"].hub
    await websocket.accept()
    await hub.subscribe(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            if _is_ping(data):
                await websocket.send_text(json.dumps(pong_message()))
            else:
                log.info("ws_message", data=data[:200])
    except WebSocketDisconnect:
        hub.unsubscribe(websocket)


def run():
    uvicorn.run("costpulse.main:app", host=settings.host, port=settings.port)
