"""Python client for the chat hub."""
from .hub_client import (
    ClientState,
    HubClient,
    HubClientError,
    HubConnectionLost,
    HubInvocationError,
    websocket_connector,
    with_token,
)
from .timeline import RoomTimeline

__all__ = [
    "ClientState",
    "HubClient",
    "HubClientError",
    "HubConnectionLost",
    "HubInvocationError",
    "RoomTimeline",
    "websocket_connector",
    "with_token",
]
