"""Async client for the chat hub with automatic reconnection.

Keeps one logical connection alive across network interruptions:

    DISCONNECTED -> CONNECTING -> OPEN -> RECONNECTING -> OPEN -> ...

The server keys group membership by connection id, which changes on every
physical reconnect, so every room joined through this client is joined again
before the controller reports itself open after a reconnect. Reconnect
attempts back off exponentially and never give up; call ``stop()`` to cancel.

Example::

    client = HubClient("ws://localhost:8000/chathub", token_provider=lambda: token)

    @client.on("ReceiveMessage")
    async def on_message(event: Envelope):
        print(event.data["text"])

    await client.join_chat(7)
    await client.send_message(7, "hello")
"""
from __future__ import annotations

import asyncio
import itertools
import json
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tenacity import AsyncRetrying, retry_if_exception_type, wait_exponential
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from application.ports.realtime import Envelope
from core.logging_config import get_logger


logger = get_logger(__name__)

TOKEN_QUERY_PARAM = "access_token"

EventHandler = Callable[[Envelope], Union[None, Awaitable[None]]]
TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class ClientTransport(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> Union[str, bytes]: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[ClientTransport]]


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"


class HubClientError(Exception):
    """Base error of the hub client."""


class HubConnectionLost(HubClientError):
    """The connection dropped before the invocation was answered."""


class HubInvocationError(HubClientError):
    """The server answered an invocation with an error frame."""

    def __init__(self, code: int, error_type: str, message: str):
        super().__init__(message)
        self.code = code
        self.error_type = error_type
        self.message = message


async def websocket_connector(url: str) -> ClientTransport:
    return await ws_connect(url, open_timeout=10)


def with_token(url: str, token: Optional[str]) -> str:
    """Append the bearer token as the hub's query parameter."""
    if not token:
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != TOKEN_QUERY_PARAM]
    query.append((TOKEN_QUERY_PARAM, token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class HubClient:
    """Reconnecting hub client.

    Args:
        url: hub URL, e.g. ``ws://host:8000/chathub``.
        token_provider: called before every connect attempt, so a refreshed
            token is picked up on reconnect. May be sync or async.
        connector: opens one physical connection; defaults to ``websockets``.
        backoff_initial_s / backoff_max_s: exponential reconnect backoff.
        invoke_timeout_s: how long an invocation waits for its ack.
    """

    def __init__(
        self,
        url: str,
        token_provider: Optional[TokenProvider] = None,
        *,
        connector: Optional[Connector] = None,
        backoff_initial_s: float = 0.5,
        backoff_max_s: float = 30.0,
        invoke_timeout_s: float = 10.0,
    ) -> None:
        self.url = url
        self._token_provider = token_provider
        self._connector = connector or websocket_connector
        self._backoff_initial_s = backoff_initial_s
        self._backoff_max_s = backoff_max_s
        self._invoke_timeout_s = invoke_timeout_s

        self._state = ClientState.DISCONNECTED
        self._transport: Optional[ClientTransport] = None
        self._runner: Optional[asyncio.Task] = None
        self._open_event = asyncio.Event()
        self._stopping = False
        self._opened_before = False

        self._rooms: Set[str] = set()
        self._ids = itertools.count(1)
        self._pending: Dict[str, asyncio.Future] = {}
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._state_listeners: List[Callable[[ClientState], None]] = []
        self._background_tasks: Set[asyncio.Task] = set()

        self.connection_id: Optional[str] = None
        self.reconnect_count = 0

    # -- State ----------------------------------------------------------------

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def joined_rooms(self) -> Set[str]:
        return set(self._rooms)

    def on_state_change(self, listener: Callable[[ClientState], None]) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: ClientState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.info("hub_client_state", previous=previous.value, state=state.value)
        for listener in list(self._state_listeners):
            listener(state)

    # -- Handler registration -------------------------------------------------

    def on(self, event_type: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator registering a handler for a server event (e.g. ``"ReceiveMessage"``)."""

        def decorator(fn: EventHandler) -> EventHandler:
            self._handlers[event_type].append(fn)
            return fn

        return decorator

    def off(self, event_type: str, fn: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if fn in handlers:
            handlers.remove(fn)

    # -- Lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start the connection supervisor if it is not running."""
        if self._runner is None or self._runner.done():
            self._stopping = False
            self._runner = asyncio.create_task(self._run(), name="hub-client")

    async def wait_open(self, timeout: Optional[float] = None) -> None:
        self.start()
        await asyncio.wait_for(self._open_event.wait(), timeout=timeout)

    async def stop(self) -> None:
        """Close the connection and cancel reconnection."""
        self._stopping = True
        runner, self._runner = self._runner, None
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        if runner is not None:
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
        self._open_event.clear()
        self._fail_pending(HubConnectionLost("client stopped"))
        self._set_state(ClientState.DISCONNECTED)

    async def __aenter__(self) -> "HubClient":
        await self.wait_open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # -- Commands -------------------------------------------------------------

    async def join_chat(self, room: Union[int, str]) -> dict:
        """Join a room; connects and waits first when not open."""
        room = str(room)
        await self._ensure_open()
        result = await self._invoke("JoinChat", room)
        self._rooms.add(room)
        return result

    async def leave_chat(self, room: Union[int, str]) -> None:
        """Leave a room. While not open this only forgets the room."""
        room = str(room)
        self._rooms.discard(room)
        if self._state is ClientState.OPEN:
            await self._invoke("LeaveChat", room)

    async def send_message(self, room: Union[int, str], text: str) -> dict:
        """Send a message; connects and waits first when not open."""
        await self._ensure_open()
        return await self._invoke("SendMessage", str(room), {"text": text})

    async def _ensure_open(self) -> None:
        if self._state is not ClientState.OPEN or not self._open_event.is_set():
            await self.wait_open()

    async def _invoke(self, command: str, room: str, data: Optional[dict] = None) -> dict:
        transport = self._transport
        if transport is None:
            raise HubConnectionLost("not connected")
        invocation_id = str(next(self._ids))
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = future
        frame = {"type": command, "room": room, "data": data or {}, "id": invocation_id}
        try:
            await transport.send(json.dumps(frame))
            return await asyncio.wait_for(future, timeout=self._invoke_timeout_s)
        except ConnectionClosed as exc:
            raise HubConnectionLost(str(exc)) from exc
        finally:
            self._pending.pop(invocation_id, None)

    # -- Connection supervisor ------------------------------------------------

    async def _token(self) -> Optional[str]:
        if self._token_provider is None:
            return None
        token = self._token_provider()
        if asyncio.iscoroutine(token):
            token = await token
        return token

    async def _connect_with_backoff(self) -> ClientTransport:
        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=self._backoff_initial_s, max=self._backoff_max_s),
            retry=retry_if_exception_type(Exception),
            before_sleep=lambda rs: logger.warning(
                "hub_client_connect_failed",
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception()) if rs.outcome else None,
            ),
        ):
            with attempt:
                return await self._connector(with_token(self.url, await self._token()))
        raise HubConnectionLost("connect loop ended")  # pragma: no cover

    async def _run(self) -> None:
        while not self._stopping:
            self._set_state(ClientState.RECONNECTING if self._opened_before else ClientState.CONNECTING)
            transport = await self._connect_with_backoff()
            self._transport = transport
            reader = asyncio.create_task(self._read_loop(transport), name="hub-client-reader")
            self._set_state(ClientState.OPEN)
            if self._opened_before:
                await self._rejoin()
            self._opened_before = True
            if not reader.done():
                self._open_event.set()
            await reader

            self._open_event.clear()
            self._transport = None
            if self._stopping:
                break
            self.reconnect_count += 1
            self._set_state(ClientState.RECONNECTING)

    async def _rejoin(self) -> None:
        rooms = sorted(self._rooms)
        if rooms:
            logger.info("hub_client_rejoin", rooms=rooms)
        for room in rooms:
            try:
                await self._invoke("JoinChat", room)
            except HubInvocationError as exc:
                logger.warning("hub_client_rejoin_rejected", room=room, error_type=exc.error_type)
            except HubConnectionLost:
                # Rooms stay recorded; the next reconnect tries again
                return

    async def _read_loop(self, transport: ClientTransport) -> None:
        try:
            while True:
                raw = await transport.recv()
                self._on_raw_message(raw)
        except ConnectionClosed as exc:
            logger.info("hub_client_connection_closed", code=getattr(exc.rcvd, "code", None))
        except OSError as exc:
            logger.warning("hub_client_connection_error", error=str(exc))
        finally:
            self._fail_pending(HubConnectionLost("connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(exc)

    # -- Inbound frames -------------------------------------------------------

    def _on_raw_message(self, raw: Union[str, bytes]) -> None:
        try:
            event = Envelope.model_validate(json.loads(raw))
        except ValueError as exc:
            logger.warning("hub_client_bad_frame", error=str(exc))
            return

        if event.type in ("ack", "error"):
            future = self._pending.get(event.id or "")
            if future is None or future.done():
                return
            if event.type == "ack":
                future.set_result(event.data)
            else:
                future.set_exception(
                    HubInvocationError(
                        int(event.data.get("code", 0)),
                        str(event.data.get("errorType", "Error")),
                        str(event.data.get("message", "")),
                    )
                )
            return
        if event.type == "ping":
            self._fire_task(self._send_pong())
            return
        if event.type == "welcome":
            self.connection_id = event.data.get("connectionId")
        self._invoke_handlers(event)

    async def _send_pong(self) -> None:
        transport = self._transport
        if transport is None:
            return
        try:
            await transport.send(json.dumps({"type": "pong"}))
        except ConnectionClosed:
            return

    def _fire_task(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _invoke_handlers(self, event: Envelope) -> None:
        for handler in list(self._handlers.get(event.type, [])):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as exc:
                logger.error("hub_client_handler_failed", type=event.type, error=str(exc))
