"""Common API dependencies: owner validation and rate limiting."""

import time
from collections import deque
from typing import Callable

from fastapi import HTTPException, Query, Request, status

from travelmap.config import settings


def get_owner_id(owner_id: str = Query(alias="ownerId", min_length=1, max_length=100)) -> str:
    """Every photo operation is addressed by its owner's identity."""
    owner_id = owner_id.strip()
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="ownerId is required",
        )
    return owner_id


class RateLimiter:
    """Sliding-window request limit per client address."""

    def __init__(
        self,
        name: str,
        limit: int,
        window_seconds: float,
        message: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.limit = limit
        self.window = window_seconds
        self.message = message
        self.clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    @property
    def tracked_clients(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        """Forget clients with no request inside the window."""
        for client in [c for c, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]:
            del self._hits[client]
        self._last_sweep = now

    def __call__(self, request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        now = self.clock()
        if now - self._last_sweep >= self.window:
            self._sweep(now)
        hits = self._hits.setdefault(client, deque())
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if len(hits) >= self.limit:
            retry_after = int(self.window - (now - hits[0])) + 1
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=self.message,
                headers={"Retry-After": str(retry_after)},
            )
        hits.append(now)

    def reset(self) -> None:
        self._hits.clear()


api_limiter = RateLimiter(
    "api", settings.api_rate_limit, settings.api_rate_window,
    "Too many requests, please try again later",
)
upload_limiter = RateLimiter(
    "upload", settings.upload_rate_limit, settings.upload_rate_window,
    f"Maximum {settings.upload_rate_limit} uploads per hour. Please try again later.",
)
delete_limiter = RateLimiter(
    "delete", settings.delete_rate_limit, settings.delete_rate_window,
    f"Maximum {settings.delete_rate_limit} deletes per hour. Please try again later.",
)
