from __future__ import annotations

import logging
import math
import time
from collections import deque
from typing import Deque, Dict, Iterable, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from settings import SETTINGS

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


def route_group(path: str) -> str:
    """``/api/v1/chat/message`` -> ``chat``; anything outside the API is ``root``."""
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 3 and parts[0] == "api":
        return parts[2]
    return "root"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client and route group.

    End-user chat traffic and the agent console keep separate windows.
    """

    def __init__(self, app, requests_per_minute: int | None = None, exempt_paths: Iterable[str] = ("/health",)) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute or SETTINGS.rate_limit_per_minute
        self.exempt_paths = frozenset(exempt_paths)
        self._windows: Dict[Tuple[str, str], Deque[float]] = {}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)
        client = request.client.host if request.client else "unknown"
        key = (client, route_group(path))
        now = time.monotonic()
        window = self._windows.setdefault(key, deque())
        while window and now - window[0] >= WINDOW_SECONDS:
            window.popleft()
        if len(window) >= self.requests_per_minute:
            retry_after = max(1, math.ceil(WINDOW_SECONDS - (now - window[0])))
            logger.warning("rate_limited", extra={"client": client, "group": key[1], "retry_after": retry_after})
            return JSONResponse({"detail": "rate_limited"}, status_code=429, headers={"Retry-After": str(retry_after)})
        window.append(now)
        return await call_next(request)
