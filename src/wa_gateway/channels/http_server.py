"""
HTTP Control Surface

FastAPI app exposing gateway health, status, QR and admin operations.

Routes:
    GET  /health        - liveness (no auth, not rate limited)
    GET  /status        - public status projection
    GET  /qr            - latest login QR {raw, ascii, at}
    POST /init          - start WhatsApp, body {"acceptRisk": true}
    POST /send          - send text, body {"jid": str, "text": str}
    POST /webhook-test  - sample webhook payload

When an admin token is configured every route but /health requires
"Authorization: Bearer <token>". Error bodies are {"error": str}.
"""

import logging
import secrets
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictBool, StrictStr, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from .. import __version__
from ..core.errors import InsecureBindError
from ..core.messages import InboundMessage

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "::1")

RATE_LIMIT_WINDOW_SECONDS = 60.0
RATE_LIMIT_MAX_REQUESTS = 120

CONSENT_ERROR = 'Missing consent. Send JSON: { "acceptRisk": true }'
SEND_FIELDS_ERROR = 'Missing fields. Send JSON: { "jid": string, "text": string }'


class InitRequest(BaseModel):
    acceptRisk: Optional[StrictBool] = None


class SendRequest(BaseModel):
    jid: Optional[StrictStr] = None
    text: Optional[StrictStr] = None


def is_loopback_host(host: str) -> bool:
    return host.strip().lower() in LOOPBACK_HOSTS


def ensure_safe_bind(host: str, admin_token: Optional[str]) -> None:
    """Refuse to listen on a non-loopback address without an admin token."""
    if not is_loopback_host(host) and not admin_token:
        raise InsecureBindError(
            "Refusing to bind HTTP to a non-local host without GATEWAY_ADMIN_TOKEN."
        )


class FixedWindowRateLimiter:
    """Per-client request counter, reset every window."""

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: Dict[str, Tuple[int, float]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()

        expired = [k for k, (_, reset_at) in self._buckets.items() if reset_at <= now]
        for k in expired:
            del self._buckets[k]

        count, reset_at = self._buckets.get(key, (0, 0.0))

        if reset_at <= now:
            self._buckets[key] = (1, now + self.window_seconds)
            return True

        count += 1
        self._buckets[key] = (count, reset_at)
        return count <= self.max_requests

    def __len__(self) -> int:
        return len(self._buckets)


class GatewayHTTPServer:
    """
    HTTP server for one GatewayController.

    Usage:
        server = GatewayHTTPServer(controller, host="127.0.0.1", port=8080)
        await server.start()
    """

    def __init__(
        self,
        controller,
        host: str = "127.0.0.1",
        port: int = 8080,
        admin_token: Optional[str] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
    ):
        ensure_safe_bind(host, admin_token)

        self.controller = controller
        self.status = controller.status
        self.host = host
        self.port = port
        self.admin_token = admin_token
        self.rate_limiter = rate_limiter if rate_limiter is not None else FixedWindowRateLimiter()
        self.started_at = time.monotonic()
        self._server: Optional[uvicorn.Server] = None
        self._stop_requested = False

        self.app = FastAPI(
            title="WhatsApp Gateway",
            description="Control surface for the WhatsApp gateway",
            version=__version__,
        )

        self._setup_handlers()
        self._setup_routes()

    def _setup_handlers(self):
        """Rate limiting and {"error": ...} bodies"""

        @self.app.exception_handler(StarletteHTTPException)
        async def http_error(request: Request, exc: StarletteHTTPException):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

        @self.app.middleware("http")
        async def rate_limit(request: Request, call_next):
            if request.url.path != "/health":
                client = request.client.host if request.client else "unknown"
                if not self.rate_limiter.allow(client):
                    logger.warning(f"Rate limit exceeded for {client}")
                    return JSONResponse(status_code=429, content={"error": "Rate limit exceeded"})
            return await call_next(request)

    async def require_auth(self, request: Request) -> None:
        """Bearer token check; open when no admin token is configured."""
        if not self.admin_token:
            return

        header = request.headers.get("authorization", "")
        expected = f"Bearer {self.admin_token}"
        if not secrets.compare_digest(header.encode("utf-8"), expected.encode("utf-8")):
            raise HTTPException(status_code=401, detail="Unauthorized")

    def _setup_routes(self):
        """Setup HTTP routes"""

        auth = [Depends(self.require_auth)]

        @self.app.get("/health")
        async def health():
            return {
                "ok": True,
                "state": self.status.get_snapshot().state.value,
                "uptime_ms": int((time.monotonic() - self.started_at) * 1000),
            }

        @self.app.get("/status", dependencies=auth)
        async def status():
            return self.status.to_public_status()

        @self.app.get("/qr", dependencies=auth)
        async def qr():
            snapshot = self.controller.get_qr()
            if snapshot is None:
                raise HTTPException(status_code=404, detail="No QR available")
            return snapshot.to_dict()

        @self.app.post("/init", dependencies=auth)
        async def init(request: Request):
            body = await _read_json(request)
            try:
                accept_risk = InitRequest.model_validate(body).acceptRisk
            except ValidationError:
                accept_risk = None

            if accept_risk is not True:
                raise HTTPException(status_code=400, detail=CONSENT_ERROR)

            try:
                await self.controller.start()
            except Exception as e:
                self.status.set_error(e)
                logger.error(f"POST /init failed: {e}")
                raise HTTPException(status_code=500, detail="Failed to start WhatsApp")

            return {"ok": True}

        @self.app.post("/send", dependencies=auth)
        async def send(request: Request):
            body = await _read_json(request)
            if not isinstance(body, dict):
                raise HTTPException(status_code=400, detail="Invalid JSON")

            try:
                payload = SendRequest.model_validate(body)
            except ValidationError:
                raise HTTPException(status_code=400, detail=SEND_FIELDS_ERROR)

            if not (payload.jid or "").strip() or not (payload.text or "").strip():
                raise HTTPException(status_code=400, detail=SEND_FIELDS_ERROR)

            try:
                await self.controller.send_text(payload.jid, payload.text)
            except Exception as e:
                self.status.set_error(e)
                logger.error(f"POST /send failed: {e}")
                raise HTTPException(status_code=500, detail="Failed to send")

            return {"ok": True}

        @self.app.post("/webhook-test", dependencies=auth)
        async def webhook_test():
            sample = InboundMessage(
                jid="0000000000@s.whatsapp.net",
                message_id="test",
                text="ping",
                timestamp_ms=int(time.time() * 1000),
            )
            return {"ok": True, "sample_message": sample.to_dict()}

    async def start(self):
        """Serve until stop() is called"""
        logger.info(f"HTTP listening on {self.host}:{self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        self._server = uvicorn.Server(config)
        if self._stop_requested:
            return
        await self._server.serve()

    async def stop(self):
        """Ask uvicorn to exit"""
        self._stop_requested = True
        if self._server is not None:
            self._server.should_exit = True
        logger.info("HTTP server stopped")


async def _read_json(request: Request):
    """Parsed JSON body, or None when the body is empty or not JSON."""
    try:
        return await request.json()
    except ValueError:
        return None
