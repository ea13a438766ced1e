from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException

from market_feed.models.stream import ConnectionState, StreamError

log = logging.getLogger("stream_transport")

DEFAULT_WS_URL = "wss://stream.binance.com:9443"
RECONNECT_DELAY_SECONDS = 0.5

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

Connector = Callable[[str], Awaitable[Any]]
MessageHandler = Callable[[Any], None]
ErrorHandler = Callable[[StreamError], None]
StateHandler = Callable[[ConnectionState], None]

default_connector: Connector = functools.partial(websockets.connect, ping_interval=20, ping_timeout=20)


class StreamTransport:
    """
    One push-feed connection carrying one or more combined streams.

    Lifecycle:
      disconnected -> connecting -> connected -> disconnecting -> disconnected
      error is reachable from connecting/connected and is left by connect()/reconnect()

    Policy:
    - there is no automatic reconnect; an unexpected close reports CLOSE_<code>
      and leaves the transport disconnected until reconnect() is called
    - frames that are not JSON report PARSE_ERROR and are otherwise ignored
    - on_state_change fires once per actual state change
    """

    def __init__(
        self,
        streams: Iterable[str],
        on_message: MessageHandler,
        on_error: Optional[ErrorHandler] = None,
        on_state_change: Optional[StateHandler] = None,
        base_url: str = DEFAULT_WS_URL,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        connector: Optional[Connector] = None,
        name: str = "stream",
    ) -> None:
        self.streams: List[str] = list(streams)
        self.base_url = base_url.rstrip("/")
        self.reconnect_delay = reconnect_delay
        self.name = name

        self._on_message = on_message
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._connector = connector or default_connector

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self.connect_attempts = 0
        self.last_error: Optional[StreamError] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return f"{self.base_url}/stream?streams={'/'.join(self.streams)}"

    def is_connected(self) -> bool:
        return self._ws is not None and self._state is ConnectionState.CONNECTED

    # -------------------------
    # Public interface
    # -------------------------
    async def connect(self) -> None:
        """
        Open the connection. Returns once it is open or has failed.
        No-op while connecting or connected.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            log.info("[%s] Already connected or connecting", self.name)
            return

        self._update_state(ConnectionState.CONNECTING)
        self.connect_attempts += 1

        opened: asyncio.Future = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(opened), name=f"{self.name}-reader")
        await opened

    async def disconnect(self) -> None:
        """Cancel any scheduled reconnect and close the connection cleanly."""
        pending = self._reconnect_task
        self._reconnect_task = None
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            pending.cancel()

        task, ws = self._task, self._ws
        self._task = None
        if task is None:
            return

        self._update_state(ConnectionState.DISCONNECTING)
        if ws is not None:
            self._ws = None
            await ws.close(code=NORMAL_CLOSURE, reason="Client disconnect")
        elif not task.done():
            # Still opening: abandon the attempt so no socket is left behind.
            task.cancel()

        if not task.done() and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        self._update_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> asyncio.Task:
        """
        Manual recovery: disconnect, then connect again after the settling delay.
        Returns the scheduled connect task.
        """
        log.info("[%s] Manual reconnect triggered", self.name)
        await self.disconnect()
        self.connect_attempts = 0
        return self._schedule_connect()

    async def update_streams(self, streams: Iterable[str]) -> asyncio.Task:
        """Replace the stream set by reconnecting with the new list."""
        self.streams = list(streams)
        log.info("[%s] Updating streams: %s", self.name, self.streams)
        await self.disconnect()
        return self._schedule_connect()

    # -------------------------
    # Internals
    # -------------------------
    def _schedule_connect(self) -> asyncio.Task:
        self._reconnect_task = asyncio.create_task(self._delayed_connect(), name=f"{self.name}-reconnect")
        return self._reconnect_task

    async def _delayed_connect(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None
        await self.connect()

    async def _run(self, opened: asyncio.Future) -> None:
        url = self.url
        log.info("[%s] Connecting to: %s", self.name, url)
        try:
            try:
                ws = await self._connector(url)
            except (InvalidURI, ValueError, TypeError) as e:
                self._fail("CREATE_ERROR", f"Failed to create WebSocket: {e}")
                return
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                self._fail("CONNECTION_ERROR", f"WebSocket connection error: {e}")
                return
            except Exception as e:
                log.exception("[%s] Unexpected error while connecting", self.name)
                self._fail("CONNECTION_ERROR", f"WebSocket connection error: {e!r}")
                return

            self._ws = ws
            self.connect_attempts = 0
            self._update_state(ConnectionState.CONNECTED)
            log.info("[%s] Connected successfully", self.name)
            opened.set_result(True)

            await self._listen(ws)
        finally:
            if not opened.done():
                opened.set_result(False)

    async def _listen(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError) as e:
                    log.warning("[%s] Failed to parse message: %r", self.name, e)
                    self._emit_error("PARSE_ERROR", "Failed to parse WebSocket message")
                    continue

                try:
                    self._on_message(message)
                except Exception as e:
                    log.exception("[%s] Message handler failed", self.name)
                    self._emit_error("PROCESS_ERROR", str(e) or "Failed to process message")
        except ConnectionClosed:
            pass
        except Exception:
            # Reader failed without a close frame; reported as an abnormal close.
            log.exception("[%s] Reader failed", self.name)

        self._on_closed(ws)

    def _on_closed(self, ws: Any) -> None:
        code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
        reason = ws.close_reason or ""
        log.info("[%s] Connection closed: %s %s", self.name, code, reason)

        # disconnect() clears _ws before closing, so anything else is server/network side.
        client_initiated = self._ws is not ws
        if not client_initiated:
            self._ws = None
            self._task = None
        elif self._ws is not None:
            # A newer connection already owns the state.
            return

        self._update_state(ConnectionState.DISCONNECTED)
        if not client_initiated and code != NORMAL_CLOSURE:
            self._emit_error(f"CLOSE_{code}", f"Connection closed unexpectedly: {reason or 'Unknown reason'}")

    def _fail(self, code: str, message: str) -> None:
        log.error("[%s] %s", self.name, message)
        self._task = None
        self._update_state(ConnectionState.ERROR)
        self._emit_error(code, message)

    def _emit_error(self, code: str, message: str) -> None:
        err = StreamError(message=message, code=code)
        self.last_error = err
        if self._on_error is not None:
            self._on_error(err)

    def _update_state(self, state: ConnectionState) -> None:
        if self._state is state:
            return
        self._state = state
        log.info("[%s] Connection state changed: %s", self.name, state.value)
        if self._on_state_change is not None:
            self._on_state_change(state)
