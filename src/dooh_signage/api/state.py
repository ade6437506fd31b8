"""
Websocket broadcasting of application state snapshots to local views.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Set

from fastapi import WebSocket

from ..ads import resolve_ad
from ..store import Action, ApplicationState, Store
from .schemas import StateEnvelope

LOGGER = logging.getLogger(__name__)


def snapshot_payload(state: ApplicationState) -> dict:
    payload = state.to_dict()
    asset = resolve_ad(state.current_ad)
    payload["current_ad_asset"] = {"path": asset.path, "display_name": asset.display_name}
    return payload


class StateBroadcaster:
    """Tracks view websockets and pushes a snapshot after every state change."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self.active_connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._unsubscribe = None
        self._pending: Optional[asyncio.Task] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_state_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        LOGGER.info("View websocket connected (%d clients)", len(self.active_connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self.active_connections.discard(websocket)
        LOGGER.info("View websocket disconnected (%d clients)", len(self.active_connections))

    async def send_snapshot(self, websocket: WebSocket) -> None:
        await websocket.send_text(self._encode(self.store.state))

    def _on_state_change(self, state: ApplicationState, action: Action) -> None:
        if not self.active_connections:
            return
        # coalesce bursts of actions into one push of the latest state
        if self._pending is None or self._pending.done():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._pending = loop.create_task(self._broadcast())

    async def _broadcast(self) -> None:
        await asyncio.sleep(0)
        message = self._encode(self.store.state)
        dead: List[WebSocket] = []
        for websocket in list(self.active_connections):
            try:
                await websocket.send_text(message)
            except Exception:
                LOGGER.warning("View websocket send failed, scheduling disconnect")
                dead.append(websocket)
        for websocket in dead:
            await self.disconnect(websocket)

    @staticmethod
    def _encode(state: ApplicationState) -> str:
        return StateEnvelope(payload=snapshot_payload(state)).model_dump_json()
