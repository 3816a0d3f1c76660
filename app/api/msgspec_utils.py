"""msgspec request decoding and response encoding for the worker admin routes."""

from __future__ import annotations

from typing import TypeVar

import msgspec
from fastapi import HTTPException, Request, status
from starlette.responses import Response

_ENCODER = msgspec.json.Encoder()

T = TypeVar("T", bound=msgspec.Struct)


async def decode_msgspec_request(request: Request, struct_type: type[T]) -> T:
  """Decode a JSON body into `struct_type`; an empty or malformed body is a 400."""
  body = await request.body()
  if not body.strip():
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body is required.")
  try:
    return msgspec.json.decode(body, type=struct_type)
  except msgspec.ValidationError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid request payload: {exc}") from exc
  except msgspec.DecodeError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body is not valid JSON.") from exc


def encode_msgspec_response(payload: msgspec.Struct, *, status_code: int = status.HTTP_200_OK) -> Response:
  return Response(content=_ENCODER.encode(payload), status_code=status_code, media_type="application/json")
