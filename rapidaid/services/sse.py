import asyncio
import json
import logging
from typing import Any, Dict, Set

from fastapi import Request

logger = logging.getLogger(__name__)

CLIENT_QUEUE_SIZE = 100


def format_event(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class EventBroadcaster:
    """Fans dashboard events (toasts, sounds) out to every connected SSE client."""

    def __init__(self):
        self.clients: Set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)
        self.clients.add(queue)
        logger.info(f"New client connected. Total clients: {len(self.clients)}")
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self.clients.discard(queue)
        logger.info(f"Client disconnected. Remaining clients: {len(self.clients)}")

    def publish(self, event: str, data: Dict[str, Any]) -> int:
        """Queues the event for every client and returns how many received it."""
        if not self.clients:
            logger.info(f"No connected clients to receive '{event}' event")
            return 0

        message = format_event(event, data)
        delivered = 0
        for client_queue in list(self.clients):
            try:
                client_queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Client queue full, dropping '{event}' event for one client")
        return delivered


async def event_stream(request: Request, broadcaster: EventBroadcaster, keepalive_seconds: float = 1.0):
    """
    Yields server-sent events for one dashboard client.

    Waits for events published on the broadcaster and sends a keep-alive
    comment whenever nothing arrived within `keepalive_seconds`.
    """
    client_queue = broadcaster.subscribe()
    try:
        while True:
            if await request.is_disconnected():
                logger.warning("Client disconnected, stopping event stream.")
                break

            try:
                message = await asyncio.wait_for(client_queue.get(), timeout=keepalive_seconds)
                yield message
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
    finally:
        broadcaster.unsubscribe(client_queue)
        logger.info("Event stream finished.")
