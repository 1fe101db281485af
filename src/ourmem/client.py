"""Device-side client for the relay.

RelayClient wraps the HTTP routes; LiveChannel wraps the /ws channel.
Error responses are raised as the same RelayError subclasses the server
uses, resolved from the body's ``kind`` and the HTTP status.
"""

import json
import logging
from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, Optional
from urllib.parse import quote

import aiohttp
from yarl import URL

from ourmem.errors import ValidationError, error_for
from ourmem.logging import short_id

logger = logging.getLogger(__name__)


def is_signal_for(event: Dict[str, Any], device_id: str) -> bool:
    """Whether a live event is a signal this device should handle.

    Live push reaches every other connection of the couple, so each device
    keeps only signals addressed to it and drops its own.
    """
    return (
        event.get("type") == "webrtc-signal"
        and event.get("toDeviceId") == device_id
        and event.get("fromDeviceId") != device_id
    )


def _segment(value: str) -> str:
    # Ids may contain "/" or "?"; keep them inside one path segment
    return quote(value, safe="")


async def _raise_for_error(resp: aiohttp.ClientResponse) -> None:
    if resp.status < 400:
        return

    message = resp.reason or f"HTTP {resp.status}"
    kind = None
    try:
        body = await resp.json(content_type=None)
    except (json.JSONDecodeError, aiohttp.ContentTypeError, UnicodeDecodeError):
        body = None
    if isinstance(body, dict):
        message = body.get("error") or message
        kind = body.get("kind")

    raise error_for(kind, resp.status)(message)


class RelayClient:
    """HTTP client for the relay.

    Usage:
        async with RelayClient("http://127.0.0.1:3000") as client:
            await client.initiate_pairing(couple_id, digest)
    """

    REQUEST_TIMEOUT = 30.0  # seconds

    def __init__(
        self,
        base_url: str,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize client.

        Args:
            base_url: Relay URL, e.g. ``http://127.0.0.1:3000``.
            http_session: Optional aiohttp session (for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        await self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("Client not initialized - use async context manager")
        return self._session

    async def _json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        session = self._require_session()
        async with session.request(
            method,
            URL(f"{self._base_url}{path}", encoded=True),
            timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT),
            **kwargs,
        ) as resp:
            await _raise_for_error(resp)
            return await resp.json()

    async def health(self) -> Dict[str, Any]:
        """Fetch the relay's health report."""
        return await self._json("GET", "/health")

    async def initiate_pairing(
        self,
        couple_id: str,
        token_hash: str,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Register a pairing request.

        Raises:
            ValidationError: If a field is missing.
            ConflictError: If a live request already exists for the couple.
        """
        body: Dict[str, Any] = {"coupleId": couple_id, "pairingTokenHash": token_hash}
        if device_info:
            body["deviceInfo"] = device_info
        return await self._json("POST", "/api/pair/initiate", json=body)

    async def confirm_pairing(self, couple_id: str, token_hash: str) -> Dict[str, Any]:
        """Consume a pairing request.

        Raises:
            NotFoundError: If no live request matches.
        """
        return await self._json(
            "POST",
            "/api/pair/confirm",
            json={"coupleId": couple_id, "pairingTokenHash": token_hash},
        )

    async def send_signal(
        self,
        couple_id: str,
        from_device_id: str,
        to_device_id: str,
        payload: Any,
    ) -> None:
        """Send a signaling payload through the relay."""
        await self._json(
            "POST",
            "/api/signal",
            json={
                "coupleId": couple_id,
                "fromDeviceId": from_device_id,
                "toDeviceId": to_device_id,
                "signalPayload": payload,
            },
        )

    async def drain_signals(self, couple_id: str, device_id: str) -> list[Dict[str, Any]]:
        """Fetch and delete every pending signal for a device."""
        data = await self._json(
            "GET", f"/api/signals/{_segment(couple_id)}/{_segment(device_id)}"
        )
        signals = data.get("signals", [])
        logger.debug(
            f"Drained {len(signals)} signal(s) for device {short_id(device_id)}"
        )
        return signals

    async def upload_backup(
        self,
        couple_id: str,
        blob: bytes,
        filename: str = "backup.zip",
    ) -> Dict[str, Any]:
        """Upload an already encrypted backup archive.

        Raises:
            PayloadTooLargeError: If the relay rejects the size.
        """
        form = aiohttp.FormData()
        form.add_field("coupleId", couple_id)
        form.add_field(
            "backup", blob, filename=filename, content_type="application/zip"
        )
        return await self._json("POST", "/api/backup", data=form)

    async def download_backup(self, couple_id: str) -> bytes:
        """Download the latest backup for a couple.

        Raises:
            NotFoundError: If the couple has no backup.
        """
        session = self._require_session()
        async with session.get(
            URL(f"{self._base_url}/api/backup/{_segment(couple_id)}", encoded=True),
            timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT),
        ) as resp:
            await _raise_for_error(resp)
            return await resp.read()

    async def live(self) -> "LiveChannel":
        """Open the live signaling channel."""
        session = self._require_session()
        ws = await session.ws_connect(f"{self._base_url}/ws")
        return LiveChannel(ws)

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None


class LiveChannel:
    """Client end of the /ws live signaling channel.

    Events that arrive while waiting for a join or leave acknowledgement
    are kept and returned by ``next_event`` in arrival order.
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws
        self._pending: Deque[Dict[str, Any]] = deque()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def _receive(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        msg = await self._ws.receive(timeout=timeout)
        if msg.type == aiohttp.WSMsgType.TEXT:
            return json.loads(msg.data)
        if msg.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
        ):
            raise ConnectionError("Live channel closed")
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise ConnectionError(f"Live channel error: {self._ws.exception()}")
        raise ValidationError(f"Unexpected message type: {msg.type}")

    async def _acknowledged(self, message: Dict[str, Any], ack: str) -> Dict[str, Any]:
        await self._ws.send_json(message)
        while True:
            event = await self._receive()
            if event.get("type") == ack and event.get("coupleId") == message["coupleId"]:
                return event
            if event.get("type") == "error":
                raise error_for(event.get("kind"), 400)(event.get("error", ""))
            self._pending.append(event)

    async def join(self, couple_id: str) -> None:
        """Join a couple's channel and wait for the acknowledgement."""
        await self._acknowledged({"type": "join-couple", "coupleId": couple_id}, "joined")

    async def leave(self, couple_id: str) -> None:
        """Leave a couple's channel and wait for the acknowledgement."""
        await self._acknowledged({"type": "leave-couple", "coupleId": couple_id}, "left")

    async def send_signal(
        self,
        couple_id: str,
        from_device_id: str,
        to_device_id: str,
        payload: Any,
    ) -> None:
        """Publish a signal over the live channel (no acknowledgement)."""
        await self._ws.send_json({
            "type": "webrtc-signal",
            "coupleId": couple_id,
            "fromDeviceId": from_device_id,
            "toDeviceId": to_device_id,
            "signalPayload": payload,
        })

    async def next_event(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Next pushed event.

        Raises:
            asyncio.TimeoutError: If nothing arrives within timeout.
            ConnectionError: If the channel closed.
        """
        if self._pending:
            return self._pending.popleft()
        return await self._receive(timeout=timeout)

    async def signals_for(self, device_id: str) -> AsyncIterator[Dict[str, Any]]:
        """Iterate over signals addressed to a device until the channel closes."""
        while True:
            try:
                event = await self.next_event()
            except ConnectionError:
                return
            if is_signal_for(event, device_id):
                yield event

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()
