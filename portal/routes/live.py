import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from portal.core.logger_factory import setup_logger
from portal.domain.actors import Registrant, Reviewer, Role
from portal.routes.deps import get_actor, get_notifier
from portal.services.fanout import BROADCAST, FanoutNotifier, Subscription, role_topic, subject_topic

logger = setup_logger(__name__)

router = APIRouter(tags=["live"])

# How long one threadpool wait on the subscription queue may last
POLL_SECONDS = 0.5


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        message = await run_in_threadpool(subscription.get, POLL_SECONDS)
        if message is not None:
            await websocket.send_json(message)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients only listen; anything they send is ignored.
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/ws")
async def lifecycle_events(
    websocket: WebSocket,
    actor: Registrant | Reviewer = Depends(get_actor),
    notifier: FanoutNotifier = Depends(get_notifier),
):
    """Stream lifecycle events for the caller's role and subject."""
    role = Role.ADMIN if isinstance(actor, Reviewer) else Role.STUDENT
    await websocket.accept()
    subscription = notifier.hub.subscribe(role, subject_id=actor.subject_id)
    logger.info(f"Subscriber {subscription.id} connected ({role.value} {actor.subject_id})")
    tasks = []
    try:
        await websocket.send_json(
            {
                "event": "subscribed",
                "topics": [BROADCAST, role_topic(role), subject_topic(actor.subject_id)],
                "data": {"subscriptionId": subscription.id},
            }
        )
        tasks = [
            asyncio.create_task(_forward(websocket, subscription)),
            asyncio.create_task(_wait_for_disconnect(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            # A failed send means the client went away.
            if not task.cancelled() and task.exception() is not None:
                logger.info(f"Subscriber {subscription.id} send failed: {task.exception()}")
    finally:
        for task in tasks:
            task.cancel()
        notifier.hub.unsubscribe(subscription)
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Subscriber {subscription.id} disconnected, {subscription.dropped} message(s) dropped")
