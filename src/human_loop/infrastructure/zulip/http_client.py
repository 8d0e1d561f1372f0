"""Concrete Zulip HTTP adapter for message, subscription, and event-queue operations."""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass
from http.client import HTTPException
from typing import Protocol
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from human_loop.domain.errors import ProtocolError, QueueInvalidError, TransientTransportError
from human_loop.domain.event_queue import EventQueueSubscription
from human_loop.infrastructure.logging import DebugLogger, NullDebugLogger

_BAD_EVENT_QUEUE_ID = "BAD_EVENT_QUEUE_ID"
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class ZulipHttpResponse:
    """Normalized HTTP response data returned by transport implementations."""

    status_code: int
    body_bytes: bytes


@dataclass(frozen=True)
class ZulipUserProfile:
    """Identity of the authenticated bot account."""

    email: str
    full_name: str
    user_id: int


@dataclass(frozen=True)
class ZulipStreamInfo:
    """Stream the bot is subscribed to."""

    name: str
    description: str | None = None
    stream_id: int | None = None


class ZulipHttpTransportPort(Protocol):
    """Transport protocol used by Zulip HTTP adapter."""

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> ZulipHttpResponse:
        """Execute one HTTP request and return normalized response data.

        Network-level failures are raised as `OSError` subclasses.
        """


class UrllibZulipHttpTransport:
    """urllib-based async transport implementation for Zulip HTTP calls."""

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> ZulipHttpResponse:
        """Execute HTTP request in a worker thread and normalize HTTP errors."""

        return await asyncio.to_thread(
            self._request_sync,
            method=method,
            url=url,
            headers=headers,
            body=body,
            timeout_seconds=timeout_seconds,
        )

    def _request_sync(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> ZulipHttpResponse:
        request = Request(url=url, data=body, headers=headers, method=method)
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                status_code = int(response.getcode())
                payload = response.read()
                return ZulipHttpResponse(status_code=status_code, body_bytes=payload)
        except HTTPError as error:
            payload = error.read()
            return ZulipHttpResponse(status_code=int(error.code), body_bytes=payload)


class ZulipHttpClient:
    """Zulip REST API adapter using HTTP basic auth with bot credentials."""

    def __init__(
        self,
        *,
        server_url: str,
        bot_email: str,
        bot_api_key: str,
        transport: ZulipHttpTransportPort | None = None,
        timeout_seconds: float = 90.0,
        debug_logger: DebugLogger | None = None,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self._auth_header = _basic_auth_header(bot_email, bot_api_key)
        self._transport = transport or UrllibZulipHttpTransport()
        self._timeout_seconds = timeout_seconds
        self._debug = debug_logger or NullDebugLogger()

    async def send_message(self, *, stream: str, topic: str, content: str) -> int:
        """Post a stream message and return the created Zulip message id."""

        self._debug.debug("ZulipHttpClient.send_message called", {"stream": stream, "topic": topic})
        response = await self._request_json(
            operation="send_message",
            method="POST",
            path="/api/v1/messages",
            form={"type": "stream", "to": stream, "topic": topic, "content": content},
        )
        message_id = _require_int(response, key="id", operation="send_message")
        self._debug.debug("ZulipHttpClient.send_message success", {"message_id": message_id})
        return message_id

    async def ensure_subscribed(self, *, stream: str) -> None:
        """Subscribe the bot to a stream; idempotent when already subscribed."""

        self._debug.debug("ZulipHttpClient.ensure_subscribed called", {"stream": stream})
        await self._request_json(
            operation="ensure_subscribed",
            method="POST",
            path="/api/v1/users/me/subscriptions",
            form={"subscriptions": json.dumps([{"name": stream}])},
        )

    async def create_stream(self, *, name: str, description: str | None = None) -> None:
        """Create a stream (or subscribe to it when it already exists)."""

        self._debug.debug(
            "ZulipHttpClient.create_stream called",
            {"name": name, "description": description},
        )
        subscription: dict[str, str] = {"name": name}
        if description:
            subscription["description"] = description
        await self._request_json(
            operation="create_stream",
            method="POST",
            path="/api/v1/users/me/subscriptions",
            form={"subscriptions": json.dumps([subscription])},
        )

    async def register_event_queue(self, *, stream: str, topic: str) -> EventQueueSubscription:
        """Register a message event queue narrowed to one stream/topic."""

        narrow = [["stream", stream], ["topic", topic]]
        self._debug.debug(
            "ZulipHttpClient.register_event_queue called",
            {"stream": stream, "topic": topic, "narrow": narrow},
        )
        response = await self._request_json(
            operation="register_event_queue",
            method="POST",
            path="/api/v1/register",
            form={
                "event_types": json.dumps(["message"]),
                "narrow": json.dumps(narrow),
                "all_public_streams": "true",
            },
        )
        queue_id = response.get("queue_id")
        if not isinstance(queue_id, str) or not queue_id:
            raise ProtocolError(
                "register_event_queue response missing queue_id",
                operation="register_event_queue",
            )
        subscription = EventQueueSubscription(
            queue_id=queue_id,
            last_event_id=_require_int(
                response,
                key="last_event_id",
                operation="register_event_queue",
            ),
            stream=stream,
            topic=topic,
        )
        self._debug.debug(
            "ZulipHttpClient.register_event_queue success",
            {"queue_id": subscription.queue_id, "last_event_id": subscription.last_event_id},
        )
        return subscription

    async def get_events(self, *, queue_id: str, last_event_id: int) -> dict[str, object]:
        """Long-poll the event queue; Zulip holds the request until events exist."""

        query = {
            "queue_id": queue_id,
            "last_event_id": str(last_event_id),
            "dont_block": "false",
        }
        return await self._request_json(
            operation="get_events",
            method="GET",
            path=f"/api/v1/events?{urlencode(query)}",
            form=None,
        )

    async def deregister_queue(self, *, queue_id: str) -> None:
        """Delete an event queue on the server."""

        self._debug.debug("ZulipHttpClient.deregister_queue called", {"queue_id": queue_id})
        await self._request_json(
            operation="deregister_queue",
            method="DELETE",
            path="/api/v1/events",
            form={"queue_id": queue_id},
        )

    async def validate_credentials(self) -> ZulipUserProfile:
        """Fetch the authenticated bot profile, proving the credentials work."""

        response = await self._request_json(
            operation="validate_credentials",
            method="GET",
            path="/api/v1/users/me",
            form=None,
        )
        email = response.get("email")
        full_name = response.get("full_name")
        if not isinstance(email, str) or not isinstance(full_name, str):
            raise ProtocolError(
                "validate_credentials response missing profile fields",
                operation="validate_credentials",
            )
        return ZulipUserProfile(
            email=email,
            full_name=full_name,
            user_id=_require_int(response, key="user_id", operation="validate_credentials"),
        )

    async def check_stream_exists(self, *, name: str) -> bool:
        """Return whether a stream with this exact name is visible to the bot."""

        response = await self._request_json(
            operation="check_stream_exists",
            method="GET",
            path=f"/api/v1/streams?{urlencode({'include_subscribed': 'true'})}",
            form=None,
        )
        streams = response.get("streams")
        if not isinstance(streams, list):
            return False
        return any(isinstance(stream, dict) and stream.get("name") == name for stream in streams)

    async def get_stream_subscriptions(self) -> list[ZulipStreamInfo]:
        """Return streams the bot is subscribed to."""

        response = await self._request_json(
            operation="get_stream_subscriptions",
            method="GET",
            path="/api/v1/users/me/subscriptions",
            form=None,
        )
        subscriptions = response.get("subscriptions")
        if not isinstance(subscriptions, list):
            return []

        streams: list[ZulipStreamInfo] = []
        for subscription in subscriptions:
            if not isinstance(subscription, dict):
                continue
            name = subscription.get("name")
            if not isinstance(name, str):
                continue
            description = subscription.get("description")
            stream_id = subscription.get("stream_id")
            streams.append(
                ZulipStreamInfo(
                    name=name,
                    description=description if isinstance(description, str) else None,
                    stream_id=stream_id if isinstance(stream_id, int) else None,
                )
            )
        return streams

    async def _request_json(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        form: dict[str, str] | None,
    ) -> dict[str, object]:
        headers = {"Authorization": self._auth_header}
        body: bytes | None = None
        if form is not None:
            headers["Content-Type"] = _FORM_CONTENT_TYPE
            body = urlencode(form).encode("utf-8")

        url = f"{self._server_url}{path}"
        try:
            response = await self._transport.request(
                method=method,
                url=url,
                headers=headers,
                body=body,
                timeout_seconds=self._timeout_seconds,
            )
        except (OSError, HTTPException) as error:
            raise TransientTransportError(
                f"{operation} transport failure: {error}",
                operation=operation,
            ) from error

        _raise_for_status(response=response, operation=operation)

        try:
            decoded = json.loads(response.body_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as error:
            raise ProtocolError(
                f"{operation} returned invalid JSON payload",
                operation=operation,
                status_code=response.status_code,
            ) from error
        if not isinstance(decoded, dict):
            raise ProtocolError(
                f"{operation} returned non-object JSON payload",
                operation=operation,
                status_code=response.status_code,
            )
        return decoded


def _basic_auth_header(bot_email: str, bot_api_key: str) -> str:
    credentials = f"{bot_email}:{bot_api_key}".encode()
    return f"Basic {base64.b64encode(credentials).decode('ascii')}"


def _raise_for_status(*, response: ZulipHttpResponse, operation: str) -> None:
    status_code = response.status_code
    if 200 <= status_code < 300:
        return

    details = _decode_error_payload(response.body_bytes)
    message = f"{operation} failed with status {status_code}: {details}"
    if status_code >= 500:
        raise TransientTransportError(message, operation=operation, status_code=status_code)
    if status_code == 400 and _BAD_EVENT_QUEUE_ID in details:
        raise QueueInvalidError(
            message,
            operation=operation,
            status_code=status_code,
            details=details,
        )
    raise ProtocolError(message, operation=operation, status_code=status_code, details=details)


def _require_int(payload: dict[str, object], *, key: str, operation: str) -> int:
    value = payload.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise ProtocolError(f"{operation} response missing {key}", operation=operation)


def _decode_error_payload(payload: bytes) -> str:
    if not payload:
        return "empty response body"
    try:
        decoded = payload.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary>"
    return decoded[:200]
