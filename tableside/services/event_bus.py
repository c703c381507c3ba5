from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

OrderEventHandler = Callable[[Dict[str, Any]], None]


class EventBus:
    """Synchronous order-event fan-out, run after the order commit.

    Handlers see a plain dict payload. One that raises is logged with the
    order it was handling and the remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[OrderEventHandler]] = {}

    def subscribe(self, event_name: str, handler: OrderEventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def emit(self, event_name: str, payload: Dict[str, Any]) -> int:
        delivered = 0
        for handler in tuple(self._handlers.get(event_name, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception(
                    "order event handler %s failed event=%s order_id=%s",
                    getattr(handler, "__name__", repr(handler)),
                    event_name,
                    payload.get("order_id"),
                )
                continue
            delivered += 1
        return delivered
