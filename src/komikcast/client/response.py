"""Response decoding -- from :class:`httpx.Response` to the payload callers want.

The Komikcast API sometimes wraps payloads in an envelope::

    {"status": "success", "data": [...]}
    {"status": "error", "message": "Comic not found"}

and sometimes returns the payload bare. :func:`decode_body` makes the two
cases explicit as a tagged variant -- :class:`Enveloped` or
:class:`RawPayload` -- by attempting to validate the envelope shape and
falling back to the raw shape. :func:`unwrap_payload` then resolves the
variant to data or raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from komikcast.errors import RawError, normalize

ENVELOPE_FAILED_MESSAGE = "Permintaan API gagal."
EMPTY_RESPONSE_MESSAGE = "Format respons API tidak valid."


class _EnvelopeShape(BaseModel):
    """Validation shape of an enveloped body; only ``status`` is required."""

    model_config = ConfigDict(extra="allow")

    status: Any
    data: Any = None
    message: Any = None
    error: Any = None


@dataclass(frozen=True)
class Enveloped:
    """A body carrying an explicit success/failure indicator."""

    status: Any
    has_data: bool
    data: Any
    message: Optional[str]
    rest: dict[str, Any] = field(default_factory=dict)
    tag: Literal["enveloped"] = "enveloped"

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class RawPayload:
    """A body that is already the data."""

    payload: Any
    tag: Literal["raw"] = "raw"


Decoded = Union[Enveloped, RawPayload]


def extract_response_data(response: httpx.Response) -> Any:
    """Return the response body as JSON, else text, else ``None`` when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def decode_body(body: Any) -> Decoded:
    """Classify *body* as :class:`Enveloped` or :class:`RawPayload`."""
    if not isinstance(body, dict):
        return RawPayload(payload=body)
    try:
        shape = _EnvelopeShape.model_validate(body)
    except PydanticValidationError:
        return RawPayload(payload=body)

    message = shape.message or shape.error
    return Enveloped(
        status=shape.status,
        has_data="data" in shape.model_fields_set,
        data=shape.data,
        message=str(message) if message else None,
        rest={k: v for k, v in body.items() if k != "status"},
    )


def unwrap_payload(body: Any) -> Any:
    """Resolve *body* to the inner payload.

    * success envelope -- ``data`` when present, else the body minus
      ``status``;
    * any other envelope status -- raises the normalized error built from
      the envelope's message;
    * no envelope -- the body itself.

    Raises:
        KomikcastError: For failure envelopes and empty bodies.
    """
    if body is None:
        raise normalize(RawError(message=EMPTY_RESPONSE_MESSAGE))

    decoded = decode_body(body)
    if isinstance(decoded, RawPayload):
        return decoded.payload
    if decoded.succeeded:
        return decoded.data if decoded.has_data else decoded.rest
    raise normalize(
        RawError(message=decoded.message or ENVELOPE_FAILED_MESSAGE, data=body)
    )
