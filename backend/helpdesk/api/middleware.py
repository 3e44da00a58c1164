import logging
import time

import jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from helpdesk.config import settings

logger = logging.getLogger(__name__)

# 100 requests per minute per identity
RATE_LIMIT = 100
WINDOW_SECONDS = 60


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int = RATE_LIMIT, window_seconds: int = WINDOW_SECONDS):
        super().__init__(app)
        self.limit = limit
        self.window_seconds = window_seconds
        self._requests: dict[str, list[float]] = {}
        self._last_sweep = time.time()

    def _sweep(self, window_start: float) -> None:
        """Drop identities with no requests left in the window."""
        stale = [key for key, stamps in self._requests.items() if not stamps or stamps[-1] <= window_start]
        for key in stale:
            del self._requests[key]

    def _extract_identity(self, request: Request) -> str | None:
        """Extract rate-limit key from API key or JWT Bearer token."""
        api_key = request.headers.get("x-api-key")
        if api_key:
            return f"apikey:{api_key[:8]}"

        # JWT sub claim only; the route performs full validation
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            try:
                payload = jwt.decode(
                    token,
                    settings.jwt_secret,
                    algorithms=[settings.jwt_algorithm],
                    options={"verify_exp": False},
                )
            except jwt.InvalidTokenError:
                return None
            sub = payload.get("sub")
            if sub:
                return f"jwt:{sub}"

        return None

    async def dispatch(self, request: Request, call_next):
        identity = self._extract_identity(request)
        if not identity:
            return await call_next(request)

        now = time.time()
        window_start = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(window_start)
            self._last_sweep = now

        timestamps = [t for t in self._requests.get(identity, ()) if t > window_start]
        if len(timestamps) >= self.limit:
            self._requests[identity] = timestamps
            logger.warning("Rate limit exceeded for %s", identity)
            return JSONResponse(
                status_code=429,
                content={"detail": f"Rate limit exceeded. Maximum {self.limit} requests per minute."},
            )

        timestamps.append(now)
        self._requests[identity] = timestamps
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response
