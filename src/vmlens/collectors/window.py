"""Trailing time windows on the target's monotonic clock."""

from __future__ import annotations

import logging
import time

from vmlens.core.errors import VmLensError
from vmlens.protocol.client import ProtocolClient, call_with_timeout

logger = logging.getLogger(__name__)


async def trailing_window(
    client: ProtocolClient,
    window_us: int,
    timeout: float = 10.0,
    log: logging.Logger = logger,
) -> tuple[int, int]:
    """``(origin_us, extent_us)`` covering the last ``window_us`` microseconds.

    Uses the target's own clock; the local wall clock is only used when the
    target cannot report one in time.
    """
    try:
        clock = await call_with_timeout(client.get_vm_timeline_micros(), timeout, "getVMTimelineMicros")
        now = int(clock.get("timestamp"))
    except (VmLensError, TypeError, ValueError) as exc:
        log.debug("Target clock unavailable (%s), using local clock", exc)
        now = time.time_ns() // 1000
    return max(0, now - window_us), window_us
