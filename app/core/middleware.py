"""ASGI middleware that tags admin API requests with an id and logs one line per request."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware:
  """Attach `request_id` to the request state and echo it as `x-request-id`.

  The summary line carries the operator from `x-admin-user` so hydration
  submissions and worker actions can be traced back to who made them.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = Headers(scope=scope).get("x-request-id") or uuid.uuid4().hex
    actor = Headers(scope=scope).get("x-admin-user") or "-"
    scope.setdefault("state", {})["request_id"] = request_id
    started = time.perf_counter()
    response: dict[str, Any] = {"status": 0}

    async def send_with_request_id(message: Message) -> None:
      if message["type"] == "http.response.start":
        response["status"] = message["status"]
        MutableHeaders(scope=message).setdefault("x-request-id", request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      level = logging.DEBUG if scope.get("path") in QUIET_PATHS else logging.INFO
      logger.log(level, "%s %s -> %s actor=%s request_id=%s %.1fms", scope.get("method", "?"), scope.get("path", ""), response["status"], actor, request_id, elapsed_ms)
