# backend/utils/idempotency.py
"""
Duplicate submission guard for mutating requests.

Process-local and in-memory: a repeated request is recognised only by the
instance that saw the first one and only within the configured window.
Horizontally scaled deployments need a shared store with the same TTL
semantics.
"""
import hashlib
import json
import logging
import math
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from config import settings

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replayed"
MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _fingerprint(raw: bytes) -> str:
    # JSON bodies are canonicalised so key order and whitespace do not matter
    try:
        canonical = json.dumps(json.loads(raw), sort_keys=True, separators=(",", ":")).encode()
    except ValueError:
        canonical = raw
    return hashlib.sha256(canonical).hexdigest()


def generate_idempotency_key(method: str, path: str, *, body: bytes = b"", query: str = "",
                             header_key: Optional[str] = None) -> Optional[str]:
    """Explicit key wins; otherwise a hash of method, path and body (or query for GET).

    DELETE without an explicit key is never deduplicated.
    """
    if header_key:
        return header_key
    method = method.upper()
    if method in {"POST", "PUT", "PATCH"}:
        return f"{method}:{path}:{_fingerprint(body or b'')}"
    if method == "GET":
        return f"{method}:{path}:{hashlib.sha256(query.encode()).hexdigest()}"
    return None


@dataclass
class IdempotencyEntry:
    token: str
    created_at: float
    window: float
    in_progress: bool = True
    status_code: Optional[int] = None
    body: Optional[bytes] = None
    content_type: Optional[str] = None


class IdempotencyStore:
    """Bounded LRU of idempotency entries. Oldest entries are evicted past max_entries."""

    def __init__(self, max_entries: Optional[int] = None, retention_seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries or settings.IDEMPOTENCY_MAX_ENTRIES
        self.retention_seconds = retention_seconds or settings.IDEMPOTENCY_RETENTION_SECONDS
        self._clock = clock
        self._entries: "OrderedDict[str, IdempotencyEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[IdempotencyEntry]:
        return self._entries.get(key)

    def claim(self, key: str, window: float) -> Tuple[Optional[str], Optional[IdempotencyEntry], float]:
        """Try to take ownership of key.

        Returns (token, None, 0) when the caller now owns the key, or
        (None, entry, age) when a live entry already exists for it.
        """
        with self._lock:
            now = self._clock()
            existing = self._entries.get(key)
            if existing is not None:
                age = now - existing.created_at
                if age < window:
                    self._entries.move_to_end(key)
                    return None, existing, age
                del self._entries[key]

            token = uuid.uuid4().hex
            self._entries[key] = IdempotencyEntry(token=token, created_at=now, window=window)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.warning("Idempotency store full, evicted %s", evicted)
            return token, None, 0.0

    def complete(self, key: str, token: str, status_code: int, body: bytes, content_type: Optional[str]):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.token != token:
                return
            entry.in_progress = False
            entry.status_code = status_code
            entry.body = body
            entry.content_type = content_type

    def discard(self, key: str, token: str):
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.token == token:
                del self._entries[key]

    def sweep(self) -> int:
        """Drop entries past retention and in-progress markers that never resolved."""
        with self._lock:
            now = self._clock()
            stale = [
                key for key, entry in self._entries.items()
                if now - entry.created_at > self.retention_seconds
                or (entry.in_progress and now - entry.created_at > entry.window * 2)
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info("Idempotency sweep removed %s entries", len(stale))
        return len(stale)

    def clear(self):
        with self._lock:
            self._entries.clear()


def _error(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"message": message, "code": code, **extra}},
    )


class DuplicatePreventionMiddleware(BaseHTTPMiddleware):
    """Replays or rejects repeated mutating requests seen within a window.

    path_windows maps a path prefix to a stricter window (e.g. the POS sales
    endpoint); other paths use window_seconds.
    """

    def __init__(self, app, store: Optional[IdempotencyStore] = None,
                 window_seconds: Optional[float] = None,
                 path_windows: Optional[Dict[str, float]] = None,
                 require_key: Optional[bool] = None):
        super().__init__(app)
        self.store = store if store is not None else IdempotencyStore()
        self.window_seconds = window_seconds or settings.IDEMPOTENCY_WINDOW_SECONDS
        self.path_windows = path_windows or {}
        self.require_key = settings.IDEMPOTENCY_REQUIRE_KEY if require_key is None else require_key

    def _window_for(self, path: str) -> float:
        for prefix, window in self.path_windows.items():
            if path.startswith(prefix):
                return window
        return self.window_seconds

    async def dispatch(self, request: Request, call_next):
        if request.method not in MUTATING_METHODS:
            return await call_next(request)

        header_key = request.headers.get(IDEMPOTENCY_HEADER)
        if not header_key and self.require_key:
            return _error(400, "Idempotency-Key header is required for this request",
                          "IDEMPOTENCY_KEY_REQUIRED")

        body = await request.body()
        key = generate_idempotency_key(request.method, request.url.path, body=body,
                                       header_key=header_key)
        if key is None:
            return await call_next(request)
        window = self._window_for(request.url.path)
        token, existing, age = self.store.claim(key, window)

        if token is None:
            logger.warning("Duplicate request detected: %s %s (age: %.0fms)",
                           request.method, request.url.path, age * 1000)
            if existing.body is not None:
                headers = {REPLAY_HEADER: "true"}
                if existing.content_type:
                    headers["content-type"] = existing.content_type
                return Response(content=existing.body, status_code=existing.status_code, headers=headers)
            return _error(409, "Duplicate request detected. Please wait before retrying.",
                          "DUPLICATE_REQUEST", retryAfter=max(1, math.ceil(window - age)))

        try:
            response = await call_next(request)
        except Exception:
            self.store.discard(key, token)
            raise

        if not 200 <= response.status_code < 300:
            # Failed requests may be retried fresh
            self.store.discard(key, token)
            return response

        content = b"".join([chunk async for chunk in response.body_iterator])
        self.store.complete(key, token, response.status_code, content,
                            response.headers.get("content-type"))
        return Response(content=content, status_code=response.status_code,
                        headers=dict(response.headers))
