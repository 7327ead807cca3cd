"""HTTP webhook relay.

Maps ``POST /<route>`` to a topic from the configured route map and publishes
the request as an event.

Example:
    OC_EVENTS_WEBHOOK_ROUTES="github=ci-events"
    POST /github {"message": "build failed on main"}
    -> event on topic "ci-events" with body "build failed on main"

Security:
- When a secret is configured, the X-OC-Events-Secret header must match it
- Request body size is clamped to MAX_BODY_BYTES
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import sqlite3
from typing import Any

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from oc_events.bus import EventBus
from oc_events.config import WebhookSettings
from oc_events.context import ScopeInput
from oc_events.errors import OcEventsError
from oc_events.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-OC-Events-Secret"

# Maximum body size for webhook payloads (1 MiB)
MAX_BODY_BYTES = 1024 * 1024

_BODY_FIELDS = ("body", "message", "text")


class EventResponse(BaseModel):
    id: str
    topic: str
    body: str
    metadata: str | None = None
    correlation_id: str | None = None
    parent_id: str | None = None
    status: str
    source: str
    org_id: str | None = None
    workspace_id: str | None = None
    project_id: str | None = None
    repo_id: str | None = None
    created_at: int
    processed_at: int | None = None
    claimed_by: str | None = None
    claimed_at: int | None = None
    expires_at: int | None = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def match_topic(route: str, routes: dict[str, str]) -> str | None:
    key = route.split("?", 1)[0].strip("/")
    if not key:
        return None
    return routes.get(key)


def verify_secret(provided: str | None, secret: str | None) -> bool:
    if not secret:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), secret.encode())


def parse_payload(raw: str) -> tuple[str, str | None]:
    """Return ``(body, metadata)`` for a request payload.

    JSON objects supply the body from ``body``, ``message`` or ``text`` and are
    kept whole as metadata. Anything else is used verbatim as the body.
    """
    if not raw.strip():
        return "", None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw, None
    if not isinstance(parsed, dict):
        return raw, None

    body: Any = ""
    for key in _BODY_FIELDS:
        if parsed.get(key) is not None:
            body = parsed[key]
            break
    if not isinstance(body, str):
        body = json.dumps(body)
    return body, json.dumps(parsed, indent=2)


def create_app(bus: EventBus, settings: WebhookSettings) -> FastAPI:
    """Build the relay application for ``bus``."""
    app = FastAPI(title="oc-events webhook relay")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/{route:path}", response_model=EventResponse)
    async def relay(route: str, request: Request):
        cl_header = request.headers.get("content-length")
        if cl_header and cl_header.isdigit() and int(cl_header) > MAX_BODY_BYTES:
            return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "payload_too_large")

        if not verify_secret(request.headers.get(SECRET_HEADER), settings.secret):
            logger.warning(f"Webhook rejected for route {route!r}: bad secret")
            return _error(status.HTTP_403_FORBIDDEN, "forbidden")

        topic = match_topic(route, settings.routes)
        if not topic:
            logger.warning(f"Webhook received for unknown route: {route!r}")
            return _error(status.HTTP_404_NOT_FOUND, "not_found")

        raw = await request.body()
        if len(raw) > MAX_BODY_BYTES:
            return _error(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "payload_too_large")

        body, metadata = parse_payload(raw.decode("utf-8", errors="replace"))
        if not body:
            return _error(status.HTTP_400_BAD_REQUEST, "body is required")

        params = request.query_params
        overrides = ScopeInput(
            org=params.get("org"),
            workspace=params.get("workspace"),
            project=params.get("project"),
            repo=params.get("repo"),
        )

        try:
            scope = await asyncio.to_thread(bus.resolve_scope, overrides)
            event = await asyncio.to_thread(
                bus.publish,
                topic=topic,
                body=body,
                scope=scope,
                metadata=metadata,
                source=settings.source,
            )
        except StorageUnavailableError as e:
            logger.error(f"Webhook publish failed for route {route!r}: {e}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "server_error")
        except OcEventsError as e:
            logger.warning(f"Webhook publish rejected for route {route!r}: {e}")
            return _error(status.HTTP_400_BAD_REQUEST, str(e))
        except sqlite3.Error as e:
            logger.exception(f"Webhook publish failed for route {route!r}: {e}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "server_error")

        logger.info(f"Webhook {route!r} published event {event.id} to {topic}")
        return EventResponse(**event.to_dict())

    return app
