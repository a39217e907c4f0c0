"""JSON payload codec for backend gRPC calls.

The backend's messages are exchanged using the proto3 JSON mapping
(lowerCamelCase field names, default values may be omitted), so wire
models are pydantic models aliased to camelCase.
"""
from __future__ import annotations

from typing import Callable, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel


class SerializationError(Exception):
    """Raised when a wire payload cannot be encoded or decoded."""


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


M = TypeVar("M", bound=WireModel)


def encode(message: WireModel) -> bytes:
    try:
        return message.model_dump_json(by_alias=True).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(str(e)) from e


def decoder(model: Type[M]) -> Callable[[bytes], M]:
    def _decode(data: bytes) -> M:
        try:
            return model.model_validate_json(data or b"{}")
        except ValidationError as e:
            raise SerializationError(str(e)) from e

    return _decode


__all__ = ["WireModel", "SerializationError", "encode", "decoder"]
