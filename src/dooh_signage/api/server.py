"""
FastAPI application exposing the screen's state to local views.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI, WebSocket
from fastapi.responses import JSONResponse

from ..ads import resolve_ad
from ..store import Store
from .state import StateBroadcaster, snapshot_payload

LOGGER = logging.getLogger(__name__)


def create_app(store: Store, screen_id: str = "default_screen") -> FastAPI:
    app = FastAPI(title="DOOH Signage Status")
    broadcaster = StateBroadcaster(store)
    app.state.broadcaster = broadcaster

    @app.on_event("startup")
    async def _on_startup() -> None:
        broadcaster.attach()

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        broadcaster.detach()

    router = APIRouter()

    @router.get("/healthz")
    async def healthz():
        state = store.state
        return {"screen_id": screen_id, "connected": state.connected, "error": state.error}

    @router.get("/api/state")
    async def get_state():
        return JSONResponse(content=snapshot_payload(store.state))

    @router.get("/api/ad")
    async def get_current_ad():
        token = store.state.current_ad
        asset = resolve_ad(token)
        return {
            "ad": token,
            "path": asset.path,
            "display_name": asset.display_name,
            "is_video": asset.is_video,
            "duration_seconds": store.state.ad_duration_seconds,
        }

    @router.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await broadcaster.connect(websocket)
        try:
            await broadcaster.send_snapshot(websocket)
            while True:
                await websocket.receive_text()
        except Exception:
            LOGGER.debug("View websocket receive loop ended")
        finally:
            await broadcaster.disconnect(websocket)

    app.include_router(router)
    return app
