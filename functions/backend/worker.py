"""
Worker loop applying queued deficiency events to the card board.

State watchers publish "{propertyId}/{deficiencyId}/state/{state}" topics. Each
event is attempted once; failures are logged and the loop moves on.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from backend.context import HandlerContext
from backend.dependencies import get_handler_context
from integrations.card_triggers import handle_event

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


def process_next(
    *,
    ctx: Optional[HandlerContext] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and process one event from the queue. Returns True if an event was consumed.
    """
    ctx = ctx or get_handler_context()
    message = ctx.queue.consume(block=block, timeout=timeout)
    if not message:
        return False

    try:
        handled = handle_event(ctx, message)
        logger.info("Event %s %s", message, "applied" if handled else "skipped")
    except Exception as e:
        logger.exception("Event %s failed: %s", message, e)
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    ctx = get_handler_context()
    while True:
        processed = process_next(ctx=ctx, block=True, timeout=int(poll_interval_seconds))
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    run_loop()
