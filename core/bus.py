"""Event bus for bridge notifications"""
import asyncio
from typing import Callable, Dict, List
import logging

from .events import Event

logger = logging.getLogger(__name__)


class EventBus:
    """Optional notification channel layered over the engines"""

    def __init__(self):
        self.queue: asyncio.Queue[Event] = asyncio.Queue()
        self.handlers: Dict[str, List[Callable]] = {}
        self._running = False

    def publish_nowait(self, event: Event):
        """Publish from synchronous code (stream callbacks)"""
        self.queue.put_nowait(event)
        logger.debug(f"Published {event.type} from {event.engine}")

    async def publish(self, event: Event):
        """Publish event to bus"""
        await self.queue.put(event)
        logger.debug(f"Published {event.type} from {event.engine}")

    def subscribe(self, event_type: str, handler: Callable):
        """Subscribe handler to event type ("*" receives everything)"""
        self.handlers.setdefault(event_type, []).append(handler)
        logger.info(f"Subscribed handler to {event_type}")

    async def run(self):
        """Event loop - dispatch events to handlers"""
        self._running = True
        logger.info("Event bus started")

        while self._running:
            try:
                event = await self.queue.get()
                if event.type == "__stop__":
                    break

                handlers = self.handlers.get(event.type, []) + self.handlers.get("*", [])
                if not handlers:
                    logger.debug(f"No handlers for {event.type}")

                for handler in handlers:
                    await self._safe_handle(handler, event)

            except asyncio.CancelledError:
                logger.info("Event bus cancelled")
                break
            except Exception as e:
                logger.error(f"Event bus error: {e}", exc_info=True)

        self._running = False

    async def _safe_handle(self, handler: Callable, event: Event):
        """Handle event with error catching"""
        try:
            result = handler(event)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(
                f"Handler error for {event.type}: {e}",
                exc_info=True,
                extra={"engine": event.engine}
            )

    async def stop(self):
        """Stop event bus"""
        self._running = False
        # Wake the queue with a sentinel to unblock run()
        await self.queue.put(Event(type="__stop__", engine="__system__"))
        logger.info("Event bus stopping")
