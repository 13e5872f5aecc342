"""
services/realtime/router.py
WebSocket fan-out of a user's realtime stream.
Connect with ws://<host>/realtime/ws?token=<access token>.
"""

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from config.redis_client import get_redis
from services.realtime.channel import RealtimeChannel
from shared.middleware.auth import decode_token
from shared.utils.errors import Unauthenticated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["Realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str = Query(...)):
    redis = get_redis()
    try:
        token_data = await decode_token(token, redis)
    except Unauthenticated as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.detail)
        return

    await websocket.accept()
    channel = RealtimeChannel(redis)

    async def forward():
        async for event in channel.listen(token_data.user_id):
            await websocket.send_json(event)

    async def drain():
        # Client frames are ignored; receiving is how a disconnect is noticed
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(forward()), asyncio.create_task(drain())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"Realtime socket for {token_data.user_id} closed: {exc}")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
