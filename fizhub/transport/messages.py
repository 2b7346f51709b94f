from typing import Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError

from fizhub.core.errors import MalformedMessage

# Readers publish JSON; the broker hands us raw bytes. Tests and the HTTP
# surface may hand over already-decoded dicts.
RawPayload = Union[bytes, bytearray, str, dict]


class RegisterMessage(BaseModel):
    device_id: str = Field(min_length=1)
    type: str = ""
    firmware: str = ""
    ip: str = ""


class StatusMessage(BaseModel):
    device_id: str = Field(min_length=1)
    status: Literal["online", "offline"]
    rssi: int = 0


class TapMessage(BaseModel):
    device_id: str = ""
    uid: str = Field(min_length=1)
    # Unix seconds from the reader firmware; optional for older builds
    timestamp: Optional[Union[int, float, str]] = None


M = TypeVar("M", bound=BaseModel)


def decode(model: Type[M], payload: RawPayload) -> M:
    """Decode a raw transport payload into `model`, raising MalformedMessage on any failure."""
    try:
        if isinstance(payload, dict):
            return model.model_validate(payload)
        if isinstance(payload, (bytes, bytearray, str)):
            return model.model_validate_json(payload)
    except ValidationError as e:
        raise MalformedMessage(f"{model.__name__}: {e.error_count()} validation error(s)") from e
    raise MalformedMessage(f"{model.__name__}: unsupported payload type {type(payload).__name__}")
