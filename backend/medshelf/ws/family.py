"""WebSocket handler for the live family view."""

import asyncio
import json
import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from medshelf.database import async_session_maker
from medshelf.models.user import User
from medshelf.schemas.family import FamilySnapshot
from medshelf.services.family_feed import FamilyChangeFeed, FamilyLiveView, build_family_snapshot
from medshelf.services.family_service import FamilyService
from medshelf.utils.auth import get_user_from_token

logger = logging.getLogger(__name__)


async def load_family_state(token: str) -> tuple[Optional[User], Optional[FamilySnapshot]]:
    """Resolve the token's user and their family's current snapshot."""
    async with async_session_maker() as db:
        user = await get_user_from_token(token, db)
        if user is None:
            return None, None
        family = await FamilyService(db).get_user_family(user)
        return user, build_family_snapshot(family) if family is not None else None


def family_message(snapshot: Optional[FamilySnapshot]) -> dict:
    return {
        "type": "family",
        "data": snapshot.model_dump(mode="json") if snapshot is not None else None,
    }


async def websocket_family(ws: WebSocket, feed: FamilyChangeFeed, token: str | None = None):
    """Stream the caller's family snapshot until they disconnect."""
    if not token:
        await ws.close(code=4001, reason="Missing token")
        return

    user, snapshot = await load_family_state(token)
    if user is None:
        await ws.close(code=4001, reason="Invalid token")
        return

    await ws.accept()
    view = FamilyLiveView(feed, user.id)
    view.attach(user.family_id if snapshot is not None else None, snapshot)

    async def pump() -> None:
        async for update in view:
            await ws.send_json(family_message(update))

    pump_task = asyncio.create_task(pump())

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
                msg_type = msg.get("type", "") if isinstance(msg, dict) else ""

                if msg_type == "ping":
                    await ws.send_json({"type": "pong"})
                elif msg_type == "refresh":
                    # Re-read the user, e.g. after joining a family
                    user, snapshot = await load_family_state(token)
                    if user is None:
                        await ws.close(code=4001, reason="Invalid token")
                        break
                    view.attach(user.family_id if snapshot is not None else None, snapshot)
                else:
                    await ws.send_json({"type": "error", "message": f"Unknown type: {msg_type}"})
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON"})
    except WebSocketDisconnect:
        logger.debug(f"Live family view closed for user {user.id}")
    finally:
        view.close()
        pump_task.cancel()
