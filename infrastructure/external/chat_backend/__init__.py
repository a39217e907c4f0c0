"""Chat backend (system of record) gRPC client."""
from .client import GrpcChatBackendClient, map_rpc_error
from .codec import SerializationError, WireModel, decoder, encode

__all__ = [
    "GrpcChatBackendClient",
    "map_rpc_error",
    "SerializationError",
    "WireModel",
    "decoder",
    "encode",
]
