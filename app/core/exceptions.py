"""Exception handlers for the admin API.

4xx details reach the client unchanged; anything 5xx is reduced to a generic
message and the request id so operators can find the traceback in the logs.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import get_settings

logger = logging.getLogger(__name__)

INTERNAL_ERROR_DETAIL = "Internal Server Error"


def _json_safe(value: Any) -> Any:
  """Reduce validation error context to JSON primitives."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  return str(value)


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _error_response(status_code: int, detail: Any, request: Request, headers: dict[str, str] | None = None) -> JSONResponse:
  body: dict[str, Any] = {"detail": detail}
  request_id = _request_id(request)
  if request_id:
    body["requestId"] = request_id
  return JSONResponse(status_code=status_code, content=body, headers=headers)


def scrub_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop submitted values from validation errors; request bodies may carry operator input."""
  scrubbed: list[dict[str, Any]] = []
  for error in errors:
    item = {key: value for key, value in error.items() if key != "input"}
    if isinstance(item.get("ctx"), dict):
      item["ctx"] = {key: value for key, value in item["ctx"].items() if key != "input"}
    scrubbed.append(_json_safe(item))
  return scrubbed


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  logger.error("Unhandled error request_id=%s %s %s: %s", _request_id(request), request.method, request.url.path, type(exc).__name__, exc_info=exc)
  return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_DETAIL, request)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  errors = scrub_validation_errors(exc.errors())
  logger.warning("Rejected request request_id=%s %s %s errors=%s", _request_id(request), request.method, request.url.path, errors)
  return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, errors, request)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  if exc.status_code >= 500:
    logger.error("HTTP %s request_id=%s %s: %s", exc.status_code, _request_id(request), request.url.path, exc.detail)
    return _error_response(exc.status_code, INTERNAL_ERROR_DETAIL, request)
  if get_settings().log_http_4xx:
    logger.warning("HTTP %s request_id=%s %s: %s", exc.status_code, _request_id(request), request.url.path, _json_safe(exc.detail))
  return _error_response(exc.status_code, exc.detail, request, headers=getattr(exc, "headers", None))


def register_exception_handlers(app: FastAPI) -> None:
  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
