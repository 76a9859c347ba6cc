from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI, WebSocketException

from notiload.errors import LoadTestError, ProtocolError
from notiload.metrics import ErrorType


class Transport(Protocol):
    async def send(self, message: str) -> None:
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[str], Awaitable[Transport]]

# Failures a connector or transport may raise for a single connection.
TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, LoadTestError, WebSocketException)


async def websocket_connect(url: str) -> Transport:
    try:
        return await websockets.connect(url, open_timeout=None)
    except (InvalidHandshake, InvalidURI) as exc:
        msg = f"WebSocket handshake with {url} failed: {exc}"
        raise ProtocolError(msg) from exc


def classify_transport_error(exc: BaseException) -> ErrorType:
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(exc, (ProtocolError, InvalidHandshake, InvalidURI)):
        return ErrorType.PROTOCOL
    if isinstance(exc, (ConnectionClosed, OSError)):
        return ErrorType.CONNECTION
    return ErrorType.OTHER
