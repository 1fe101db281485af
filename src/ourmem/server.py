"""HTTP and WebSocket binding of the relay.

Single aiohttp server handling all routes:
- /health - Liveness check
- /api/pair/initiate, /api/pair/confirm - One-time pairing tokens
- /api/signal, /api/signals/{couple_id}/{device_id} - Store-and-forward signaling
- /api/backup, /api/backup/{couple_id} - Encrypted backups
- /ws - Live signaling channel (join-couple / leave-couple / webrtc-signal)
"""

import base64
import binascii
import json
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import WSMsgType, web

from ourmem.errors import RateLimitedError, RelayError, ValidationError
from ourmem.formatting import isoformat
from ourmem.logging import short_id
from ourmem.service import RelayService
from ourmem.signaling import WebSocketSubscriber

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


# =============================================================================
# Rate Limiter
# =============================================================================

class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = {}
        self._clock = clock

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        recent = [t for t in self.requests.get(key, []) if t > cutoff]
        if len(recent) >= self.max_requests:
            if recent:
                self.requests[key] = recent
            else:
                self.requests.pop(key, None)
            return False
        recent.append(now)
        self.requests[key] = recent
        return True

    def sweep(self) -> int:
        """Forget clients with no request inside the window.

        Returns:
            Number of clients removed.
        """
        cutoff = self._clock() - self.window_seconds
        stale = [
            key for key, times in self.requests.items()
            if not times or times[-1] <= cutoff
        ]
        for key in stale:
            del self.requests[key]
        return len(stale)


# =============================================================================
# Helpers
# =============================================================================

def error_response(message: str, kind: str, status: int) -> web.Response:
    """Structured error body shared by every route."""
    return web.json_response({"error": message, "kind": kind}, status=status)


def _require_str(body: Dict[str, Any], *names: str) -> list[str]:
    """Pull required non-empty string fields out of a request body.

    Raises:
        ValidationError: If any field is missing or not a string.
    """
    values = []
    for name in names:
        value = body.get(name)
        if not value or not isinstance(value, str):
            raise ValidationError("Missing required fields")
        values.append(value)
    return values


async def _read_body(request: web.Request) -> Dict[str, Any]:
    """Read a JSON or form encoded body as a dict.

    Raises:
        ValidationError: If the body is not a JSON object.
    """
    if request.content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        return dict(await request.post())

    if not request.body_exists:
        return {}

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON body") from e

    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


# =============================================================================
# Middlewares
# =============================================================================

@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Translate relay errors into structured JSON responses."""
    try:
        return await handler(request)
    except RelayError as e:
        if e.status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
            return error_response("Internal server error", e.kind, e.status)
        return error_response(str(e), e.kind, e.status)
    except web.HTTPNotFound:
        return error_response("Endpoint not found", "not_found", 404)
    except web.HTTPRequestEntityTooLarge:
        return error_response("Payload too large", "payload_too_large", 413)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return error_response("Internal server error", "internal", 500)


def rate_limit_middleware(limiter: RateLimiter):
    """Per-IP rate limiting middleware."""

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        client_ip = request.remote or "unknown"
        if not limiter.is_allowed(client_ip):
            logger.warning(f"Rate limited {client_ip}")
            return error_response(
                "Too many requests", RateLimitedError.kind, RateLimitedError.status
            )
        return await handler(request)

    return middleware


# =============================================================================
# Relay Server
# =============================================================================

class RelayServer:
    """aiohttp application exposing a RelayService."""

    # Room for base64 and multipart framing on top of the blob ceiling
    BODY_OVERHEAD = 4 / 3
    BODY_SLACK = 64 * 1024

    def __init__(
        self,
        service: RelayService,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """Initialize relay server.

        Args:
            service: Relay operations to expose.
            rate_limiter: Optional per-IP limiter (disabled when None).
        """
        self.service = service

        middlewares = []
        if rate_limiter is not None:
            middlewares.append(rate_limit_middleware(rate_limiter))
            if service.sweeper is not None:
                service.sweeper.add(rate_limiter)
        middlewares.append(error_middleware)

        client_max_size = int(
            service.vault.max_bytes * self.BODY_OVERHEAD + self.BODY_SLACK
        )
        self.app = web.Application(
            middlewares=middlewares, client_max_size=client_max_size
        )
        self._setup_routes()
        self.app.on_shutdown.append(self._on_shutdown)

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)

        # Pairing
        self.app.router.add_post("/api/pair/initiate", self._handle_pair_initiate)
        self.app.router.add_post("/api/pair/confirm", self._handle_pair_confirm)

        # Signaling (store-and-forward)
        self.app.router.add_post("/api/signal", self._handle_signal)
        self.app.router.add_get(
            "/api/signals/{couple_id}/{device_id}", self._handle_drain_signals
        )

        # Backups
        self.app.router.add_post("/api/backup", self._handle_backup_store)
        self.app.router.add_get("/api/backup/{couple_id}", self._handle_backup_retrieve)

        # Live channel
        self.app.router.add_get("/ws", self._handle_websocket)

    # =========================================================================
    # Health
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response(self.service.health())

    # =========================================================================
    # Pairing
    # =========================================================================

    async def _handle_pair_initiate(self, request: web.Request) -> web.Response:
        """Register a pending pairing request."""
        body = await _read_body(request)
        couple_id, token_hash = _require_str(body, "coupleId", "pairingTokenHash")

        device_info = body.get("deviceInfo") or {}
        if not isinstance(device_info, dict):
            raise ValidationError("deviceInfo must be an object")

        pairing = await self.service.initiate_pairing(couple_id, token_hash, device_info)

        return web.json_response({
            "success": True,
            "message": "Pairing request initiated",
            "expiresAt": isoformat(pairing.expires_at),
        })

    async def _handle_pair_confirm(self, request: web.Request) -> web.Response:
        """Consume a pending pairing request."""
        body = await _read_body(request)
        couple_id, token_hash = _require_str(body, "coupleId", "pairingTokenHash")

        await self.service.confirm_pairing(couple_id, token_hash)

        return web.json_response({
            "success": True,
            "message": "Pairing confirmed",
        })

    # =========================================================================
    # Signaling
    # =========================================================================

    async def _handle_signal(self, request: web.Request) -> web.Response:
        """Store a signal and push it to live subscribers."""
        body = await _read_body(request)
        couple_id, from_device_id, to_device_id = _require_str(
            body, "coupleId", "fromDeviceId", "toDeviceId"
        )

        await self.service.send_signal(
            couple_id, from_device_id, to_device_id, body.get("signalPayload")
        )
        return web.json_response({"success": True})

    async def _handle_drain_signals(self, request: web.Request) -> web.Response:
        """Return and delete queued signals for a device."""
        couple_id = request.match_info["couple_id"]
        device_id = request.match_info["device_id"]

        envelopes = await self.service.drain_signals(couple_id, device_id)
        return web.json_response({"signals": [e.to_dict() for e in envelopes]})

    # =========================================================================
    # Backups
    # =========================================================================

    async def _handle_backup_store(self, request: web.Request) -> web.Response:
        """Store an encrypted backup (multipart file or base64 field)."""
        body = await _read_body(request)
        couple_id = body.get("coupleId")
        upload = body.get("backup")
        encrypted_data = body.get("encryptedData")

        if not couple_id or not isinstance(couple_id, str):
            raise ValidationError("Missing required fields")

        meta: Dict[str, Any] = {}
        if isinstance(upload, web.FileField):
            blob = upload.file.read()
            meta["filename"] = upload.filename
            meta["contentType"] = upload.content_type
        elif isinstance(encrypted_data, str) and encrypted_data:
            try:
                blob = base64.b64decode(encrypted_data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError("encryptedData must be base64") from e
        else:
            raise ValidationError("Missing required fields")

        record = await self.service.store_backup(couple_id, blob, meta)

        return web.json_response({
            "success": True,
            "objectUrl": record.object_url,
            "message": "Backup uploaded successfully",
        })

    async def _handle_backup_retrieve(self, request: web.Request) -> web.StreamResponse:
        """Serve the latest backup for a couple."""
        couple_id = request.match_info["couple_id"]
        record = await self.service.retrieve_backup(couple_id)

        url = record.external_url or ""
        if url.startswith(("http://", "https://")):
            raise web.HTTPFound(url)

        blob = await self.service.vault.read(record)
        return web.Response(
            body=blob,
            content_type="application/zip",
            headers={"Content-Disposition": 'attachment; filename="backup.zip"'},
        )

    # =========================================================================
    # Live channel
    # =========================================================================

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Live signaling channel.

        Clients send JSON messages of type ``join-couple``, ``leave-couple``
        and ``webrtc-signal``; signals from other members of joined
        couples are pushed as ``webrtc-signal`` events.
        """
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        subscriber = WebSocketSubscriber(secrets.token_hex(8), ws)
        logger.info(f"Client connected: {subscriber.subscriber_id}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._handle_ws_message(subscriber, ws, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        f"WebSocket error for {subscriber.subscriber_id}: "
                        f"{ws.exception()}"
                    )
        finally:
            self.service.hub.disconnect(subscriber)
            logger.info(f"Client disconnected: {subscriber.subscriber_id}")

        return ws

    async def _handle_ws_message(
        self,
        subscriber: WebSocketSubscriber,
        ws: web.WebSocketResponse,
        raw: str,
    ) -> None:
        """Dispatch one live channel message."""
        try:
            try:
                message = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValidationError("Invalid JSON message") from e
            if not isinstance(message, dict):
                raise ValidationError("Invalid JSON message")

            msg_type = message.get("type")
            if msg_type == "join-couple":
                (couple_id,) = _require_str(message, "coupleId")
                self.service.hub.subscribe(subscriber, couple_id)
                await ws.send_json({"type": "joined", "coupleId": couple_id})
            elif msg_type == "leave-couple":
                (couple_id,) = _require_str(message, "coupleId")
                self.service.hub.unsubscribe(subscriber, couple_id)
                await ws.send_json({"type": "left", "coupleId": couple_id})
            elif msg_type == "webrtc-signal":
                couple_id, from_device_id, to_device_id = _require_str(
                    message, "coupleId", "fromDeviceId", "toDeviceId"
                )
                await self.service.send_signal(
                    couple_id,
                    from_device_id,
                    to_device_id,
                    message.get("signalPayload"),
                    origin=subscriber,
                )
            else:
                raise ValidationError(f"Unknown message type: {msg_type}")
        except RelayError as e:
            logger.warning(
                f"Rejected message from {short_id(subscriber.subscriber_id)}: {e}"
            )
            if not ws.closed:
                await ws.send_json({"type": "error", "error": str(e), "kind": e.kind})

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.service.hub.close_all()

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the service and the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        await self.service.start()

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Relay server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Stop the server and the service."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        await self.service.stop()
        logger.info("Relay server closed")
