# marketplace/api/routers/realtime.py
import asyncio

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from marketplace.api.deps import get_subscriber_factory
from marketplace.data.database import get_db
from marketplace.repos.user_repo import UserRepo
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/orders")
async def order_events(
    websocket: WebSocket,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    subscriber_factory=Depends(get_subscriber_factory),
):
    """
    Streams order and preview events for the caller's own orders. The channel
    is derived from the stored user and role, never from client input.
    """
    user = UserRepo(db).get_user(user_id)
    if not user:
        await websocket.close(code=4404)
        return

    await websocket.accept()

    with subscriber_factory(user) as subscriber:

        async def pump():
            while True:
                event = await run_in_threadpool(subscriber.poll, 1.0)
                if event is not None:
                    await websocket.send_json(event)

        async def drain():
            # client messages are ignored, receiving only detects the disconnect
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(pump()), asyncio.create_task(drain())]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        error = next(iter(done)).exception()
        if isinstance(error, WebSocketDisconnect):
            logger.info(f"Realtime client for user {user_id} disconnected")
            return

        logger.error(f"Realtime stream for user {user_id} stopped: {error!r}", exc_info=error)
        try:
            await websocket.close(code=1011)
        except RuntimeError as e:
            logger.warning(f"Could not close realtime socket for user {user_id}: {e}")
