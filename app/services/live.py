"""Service – relay microphone audio to Deepgram's live endpoint.

`LiveRelay.run` drives three coroutines for one client:

* client reader: audio packets from the browser into a bounded queue
* upstream writer: queue into the live socket, reconnecting with backoff
  whenever the socket has closed underneath it
* upstream listener: transcript events back out to the browser

Audio already sent to a socket that dropped is not replayed; only the chunk
in hand when the drop is noticed is resent on the new socket.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from deepgram import DeepgramClient, LiveOptions, LiveTranscriptionEvents

from app.errors import ConfigurationError, RelayError, TranscriptionError

logger = logging.getLogger(__name__)

EventSink = Callable[[dict], Awaitable[None]]

# Server -> client message tags
SERVER = {
    "TRANSCRIPT": "print-transcript",
    "ERROR": "error",
}

_END = object()


@dataclass
class ReconnectPolicy:
    max_attempts: int = 5
    initial_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        return min(self.initial_delay * (self.factor ** attempt), self.max_delay)


class LiveConnection(Protocol):
    is_open: bool

    async def send(self, chunk: bytes) -> bool: ...

    async def finish(self) -> None: ...


class LiveConnector(Protocol):
    async def connect(self, on_event: EventSink) -> LiveConnection: ...


class LiveRelay:
    def __init__(
        self,
        connector: LiveConnector,
        *,
        queue_size: int = 64,
        policy: ReconnectPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.connector = connector
        self.policy = policy or ReconnectPolicy()
        self._sleep = sleep
        self._audio: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._events: asyncio.Queue = asyncio.Queue()
        self._connection: LiveConnection | None = None
        self._failed_attempts = 0
        self.reconnects = 0

    async def _on_upstream_event(self, event: dict) -> None:
        await self._events.put(event)

    async def _open(self) -> LiveConnection:
        try:
            return await self.connector.connect(self._on_upstream_event)
        except RelayError:
            raise
        except Exception as exc:
            raise TranscriptionError(
                "Could not open live transcription connection",
                details={"originalError": str(exc)},
            ) from exc

    async def _reconnect(self) -> None:
        while True:
            if self._failed_attempts >= self.policy.max_attempts:
                raise TranscriptionError(
                    "Live transcription connection lost",
                    details={"attempts": self._failed_attempts},
                )
            delay = self.policy.delay(self._failed_attempts)
            self._failed_attempts += 1
            logger.info(
                "Upstream closed, reconnecting in %.2fs (attempt %d/%d)",
                delay,
                self._failed_attempts,
                self.policy.max_attempts,
            )
            await self._sleep(delay)
            try:
                self._connection = await self.connector.connect(self._on_upstream_event)
            except Exception as exc:
                logger.warning("Reconnect attempt %d failed: %s", self._failed_attempts, exc)
                continue
            self.reconnects += 1
            return

    async def _forward(self, chunk: bytes) -> None:
        while True:
            if self._connection is None or not self._connection.is_open:
                await self._reconnect()
            if await self._connection.send(chunk):
                self._failed_attempts = 0
                return

    async def _read_client(self, client_audio: AsyncIterator[bytes]) -> None:
        async for chunk in client_audio:
            if chunk:
                await self._audio.put(chunk)
        await self._audio.put(None)

    async def _write_upstream(self) -> None:
        while True:
            chunk = await self._audio.get()
            if chunk is None:
                return
            await self._forward(chunk)

    async def _listen_upstream(self, send: EventSink) -> None:
        while True:
            event = await self._events.get()
            if event is _END:
                return
            kind = event.get("type")
            if kind == "transcript":
                if event.get("transcript"):
                    await send(
                        {
                            "type": SERVER["TRANSCRIPT"],
                            "transcript": event["transcript"],
                            "is_final": bool(event.get("is_final", True)),
                        }
                    )
            elif kind == "error":
                await send({"type": SERVER["ERROR"], "detail": event.get("detail", "")})
            elif kind == "closed":
                logger.info("Upstream live connection closed")

    async def _finish(self) -> None:
        if self._connection is not None and self._connection.is_open:
            try:
                await self._connection.finish()
            except Exception as exc:  # pragma: no cover – best effort on teardown
                logger.warning("Error finishing live connection: %s", exc)

    async def run(self, client_audio: AsyncIterator[bytes], send: EventSink) -> None:
        self._connection = await self._open()
        listener = asyncio.create_task(self._listen_upstream(send))
        workers = [
            asyncio.create_task(self._read_client(client_audio)),
            asyncio.create_task(self._write_upstream()),
        ]
        try:
            done, _ = await asyncio.wait(workers, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
        except BaseException:
            listener.cancel()
            raise
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await self._finish()
            self._events.put_nowait(_END)
        await listener


# ---------------------------------------------------------------------------
# Deepgram implementation
# ---------------------------------------------------------------------------


class DeepgramLiveConnection:
    def __init__(self, client: DeepgramClient, options: dict[str, Any]):
        self._client = client
        self._options = options
        self._ws = None
        self.is_open = False

    async def start(self, on_event: EventSink) -> None:
        self._ws = self._client.listen.asyncwebsocket.v("1")

        async def on_transcript(_client, result, **kwargs):
            alternatives = result.channel.alternatives
            transcript = alternatives[0].transcript if alternatives else ""
            await on_event(
                {
                    "type": "transcript",
                    "transcript": transcript,
                    "is_final": bool(getattr(result, "is_final", True)),
                }
            )

        async def on_close(_client, *args, **kwargs):
            self.is_open = False
            await on_event({"type": "closed"})

        async def on_error(_client, error, **kwargs):
            logger.error("Deepgram live error: %s", error)
            await on_event({"type": "error", "detail": str(error)})

        self._ws.on(LiveTranscriptionEvents.Transcript, on_transcript)
        self._ws.on(LiveTranscriptionEvents.Close, on_close)
        self._ws.on(LiveTranscriptionEvents.Error, on_error)

        if await self._ws.start(LiveOptions(**self._options)) is False:
            raise TranscriptionError("Failed to start Deepgram live connection")
        self.is_open = True

    async def send(self, chunk: bytes) -> bool:
        if not self.is_open or self._ws is None:
            return False
        if await self._ws.send(chunk) is False:
            self.is_open = False
            return False
        return True

    async def finish(self) -> None:
        if self._ws is not None:
            await self._ws.finish()
        self.is_open = False


class DeepgramLiveConnector:
    def __init__(self, api_key: str, *, model: str = "nova-3"):
        self._api_key = api_key
        self.options = {"model": model, "punctuate": True, "smart_format": True}
        # Deepgram client initialised lazily
        self._client: DeepgramClient | None = None

    def _ensure_deepgram_client(self) -> DeepgramClient:
        if not self._api_key:
            raise ConfigurationError("Deepgram API key not found", code="MISSING_API_KEY")
        if self._client is None:
            self._client = DeepgramClient(self._api_key)
        return self._client

    async def connect(self, on_event: EventSink) -> DeepgramLiveConnection:
        connection = DeepgramLiveConnection(self._ensure_deepgram_client(), self.options)
        await connection.start(on_event)
        return connection
