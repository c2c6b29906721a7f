from collections import deque
from fastapi import HTTPException, Request, status
from typing import Deque, Dict
import threading
import time


class RateLimiter:
    """
    Per-client sliding window limit, used as a route dependency:

        @router.post("/login", dependencies=[Depends(RateLimiter("login", times=5, minutes=15))])

    State lives in process memory, so each worker counts separately.
    """

    _hits: Dict[str, Deque[float]] = {}
    _lock = threading.Lock()

    def __init__(self, scope: str, times: int, minutes: int):
        self.scope = scope
        self.times = times
        self.window = minutes * 60

    def __call__(self, request: Request) -> None:
        client_ip = request.client.host if request.client else "unknown"
        key = f"{self.scope}:{client_ip}"
        now = time.monotonic()

        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if len(hits) >= self.times:
                retry_in = int(self.window - (now - hits[0])) // 60 + 1
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"Rate limit exceeded. Try again in {retry_in} minutes",
                )
            hits.append(now)

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._hits.clear()
