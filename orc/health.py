from __future__ import annotations

import time

import httpx


def probe_url(url: str, timeout_s: float = 5.0, transport: httpx.BaseTransport | None = None) -> tuple[bool, str, float | None]:
    """GET an application endpoint exposed by the routing rule.

    Any status below 400 counts as serving.
    Returns (is_serving, message, latency_ms).
    """
    start = time.time()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=True, transport=transport) as client:
            resp = client.get(url)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if resp.status_code >= 400:
            return False, f"HTTP {resp.status_code}", latency_ms
        return True, f"HTTP {resp.status_code}", latency_ms
    except httpx.TimeoutException:
        return False, "Timed out", round((time.time() - start) * 1000.0, 2)
    except httpx.HTTPError as e:
        return False, f"No response: {type(e).__name__}: {e}", None
