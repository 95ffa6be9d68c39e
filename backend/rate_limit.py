# rate_limit.py — In-memory sliding-window limiter for mutating endpoints
import os
import time
import logging
from collections import defaultdict, deque
from typing import Deque, Dict

from fastapi import HTTPException, Request

logger = logging.getLogger("planets.rate_limit")

RATE_LIMIT_WINDOW_MS = int(os.getenv("RATE_LIMIT_WINDOW_MS", "300"))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "1"))
RATE_LIMIT_ENABLED = os.getenv("ENVIRONMENT", "development") != "test"


class RateLimiter:
    """Allows `max_requests` per client within a rolling `window_ms`"""

    def __init__(self, window_ms: int, max_requests: int):
        self.window = window_ms / 1000.0
        self.max_requests = max_requests
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep = time.monotonic()

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        cutoff = now - self.window
        if now - self._last_sweep >= self.window:
            self._sweep(cutoff)
            self._last_sweep = now

        hits = self._hits[key]
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        return True

    def _sweep(self, cutoff: float) -> None:
        """Forget clients with no hit inside the window"""
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def tracked_clients(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()


mutation_limiter = RateLimiter(RATE_LIMIT_WINDOW_MS, RATE_LIMIT_MAX_REQUESTS)


async def rate_limit(request: Request) -> None:
    """FastAPI dependency; 429 when the caller exceeds the mutation rate"""
    if not RATE_LIMIT_ENABLED:
        return
    client = request.client.host if request.client else "unknown"
    if not mutation_limiter.allow(client):
        logger.info(f"Rate limit exceeded for {client} on {request.url.path}")
        raise HTTPException(status_code=429, detail="Too many requests, please try again later.")
