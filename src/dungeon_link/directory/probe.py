"""One-shot endpoint reachability probe."""

from __future__ import annotations

import asyncio
import time

import aiohttp

from dungeon_link.const import PROBE_TIMEOUT_SECONDS
from dungeon_link.directory.models import ProbeResult, ServerEndpoint
from dungeon_link.instrumentation import timed_async
from dungeon_link.logging_abstraction import get_logger

logger = get_logger(__name__)


@timed_async("probe_endpoint")
async def probe_endpoint(
    endpoint: ServerEndpoint,
    timeout_s: float = PROBE_TIMEOUT_SECONDS,
    session: aiohttp.ClientSession | None = None,
) -> ProbeResult:
    """Open and immediately close a websocket to measure reachability.

    Args:
        endpoint: Endpoint to probe
        timeout_s: Give up after this many seconds
        session: Shared ClientSession (a temporary one is used when None)

    Returns:
        ProbeResult; never raises for network failures

    """
    lp = "probe_endpoint:"
    start_time = time.perf_counter()
    owns_session = session is None
    http_session = session or aiohttp.ClientSession()
    try:
        ws = await asyncio.wait_for(http_session.ws_connect(endpoint.url), timeout=timeout_s)
        latency_ms = (time.perf_counter() - start_time) * 1000
        await ws.close()
    except TimeoutError:
        logger.info("%s ✗ %s timed out", lp, endpoint.url, extra={"endpoint_id": endpoint.id, "timeout_s": timeout_s})
        return ProbeResult(endpoint_id=endpoint.id, reachable=False, error="Connection timeout")
    except (aiohttp.ClientError, OSError) as e:
        logger.info("%s ✗ %s unreachable", lp, endpoint.url, extra={"endpoint_id": endpoint.id, "error": str(e)})
        return ProbeResult(endpoint_id=endpoint.id, reachable=False, error=str(e) or "Connection failed")
    else:
        logger.info(
            "%s ✓ %s reachable",
            lp,
            endpoint.url,
            extra={"endpoint_id": endpoint.id, "latency_ms": round(latency_ms, 1)},
        )
        return ProbeResult(endpoint_id=endpoint.id, reachable=True, latency_ms=latency_ms)
    finally:
        if owns_session:
            await http_session.close()
