"""WebSocket transport for real-time PRISM events.

Agency staff join ``agency:{agency_id}``; client users join
``client:{client_id}``. The server only pushes; the one supported incoming
message is a ``ping`` keep-alive.
"""

import asyncio
import json
import logging
import uuid as uuid_mod
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from prism.app.config import get_settings
from prism.domain.enums import AGENCY_ROLES
from prism.infra.database import async_session
from prism.services.auth_service import decode_token, get_user_by_id
from prism.services.notification_dispatcher import agency_group, client_group

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


class ConnectionManager:
    """Manages WebSocket connections with group support.

    Broadcasting targets a specific group so unrelated parties never see
    each other's events.
    """

    def __init__(self, send_timeout_seconds: Optional[float] = None):
        if send_timeout_seconds is None:
            send_timeout_seconds = get_settings().websocket_send_timeout_seconds
        self.send_timeout_seconds = send_timeout_seconds
        # connection_id -> WebSocket
        self.active_connections: dict[str, WebSocket] = {}
        # group_name -> set of connection_ids
        self.groups: dict[str, set[str]] = {}

    async def connect(
        self, websocket: WebSocket, connection_id: str, group: Optional[str] = None
    ):
        """Accept a WebSocket and optionally add it to a group."""
        await websocket.accept()
        self.active_connections[connection_id] = websocket
        if group:
            self.add_to_group(connection_id, group)

    def add_to_group(self, connection_id: str, group: str):
        self.groups.setdefault(group, set()).add(connection_id)

    def disconnect(self, connection_id: str):
        """Remove a connection from all groups and drop it."""
        self.active_connections.pop(connection_id, None)
        for members in self.groups.values():
            members.discard(connection_id)

    async def send_json(self, connection_id: str, data: dict):
        ws = self.active_connections.get(connection_id)
        if ws:
            try:
                await ws.send_json(data)
            except Exception:
                logger.warning("Failed to send to %s, removing", connection_id)
                self.disconnect(connection_id)

    async def broadcast_to_group(self, group: str, data: dict) -> int:
        """Send ``data`` to every live member of ``group``; return the delivery count.

        Sends run concurrently, each bounded by ``send_timeout_seconds``. A
        socket that errors or stalls is dropped.
        """
        targets = [
            (cid, self.active_connections[cid])
            for cid in list(self.groups.get(group, set()))
            if cid in self.active_connections
        ]
        results = await asyncio.gather(
            *(
                asyncio.wait_for(ws.send_json(data), timeout=self.send_timeout_seconds)
                for _, ws in targets
            ),
            return_exceptions=True,
        )
        delivered = 0
        for (cid, _), result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Broadcast to %s failed (%r), removing", cid, result)
                self.disconnect(cid)
            else:
                delivered += 1
        return delivered


manager = ConnectionManager()


class WebSocketPublisher:
    """NotificationDispatcher publisher backed by a ConnectionManager."""

    def __init__(self, connection_manager: ConnectionManager = manager):
        self.manager = connection_manager

    async def publish(self, groups: list[str], message: dict) -> None:
        counts = await asyncio.gather(
            *(self.manager.broadcast_to_group(group, message) for group in groups)
        )
        logger.debug(
            "Delivered %s to %s",
            message.get("type"),
            ", ".join(f"{g}={n}" for g, n in zip(groups, counts)),
        )


@router.websocket("/ws")
async def events(websocket: WebSocket, token: str = Query(default="")):
    """Real-time event stream for an authenticated user.

    Supported incoming messages:
        {"type": "ping"}  ->  server replies {"type": "pong"}
    """
    payload = decode_token(token) if token else None
    if not payload or "sub" not in payload:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with async_session() as session:
        user = await get_user_by_id(session, payload["sub"])
    if user is None or not user.is_active:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if user.role in {r.value for r in AGENCY_ROLES}:
        group = agency_group(user.agency_id)
    elif user.client_id:
        group = client_group(user.client_id)
    else:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection_id = f"{user.id}_{uuid_mod.uuid4().hex[:8]}"
    await manager.connect(websocket, connection_id, group=group)
    logger.info("WebSocket connected: %s -> %s", connection_id, group)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await manager.send_json(connection_id, {"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(connection_id)
        logger.info("WebSocket disconnected: %s", connection_id)
    except Exception as e:
        logger.error("WebSocket error for %s: %s", connection_id, e)
        manager.disconnect(connection_id)
