#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SSE Transport - auto-reconnecting Server-Sent Events reader over httpx.

Behaves like a browser EventSource:
- parses text/event-stream framing (data/event/id/retry fields, comments)
- reconnects after network loss or end of stream, sending Last-Event-ID
- honours the server's "retry:" reconnection delay
- fails closed (no reconnect) when the server refuses the stream with a 4xx
  status or answers with a non event-stream content type

Delivery is at-least-once and order is not guaranteed across reconnects;
consumers must be idempotent.
"""

import asyncio
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional

import httpx

from config.constants import SSE_CONTENT_TYPE, SSE_RECONNECT_DELAY_SECONDS
from config.logging_config import get_logger
from .errors import PushConnectionError

logger = get_logger(__name__)


class ReadyState(IntEnum):
    """Connection state, same values as the browser primitive"""
    CONNECTING = 0
    OPEN = 1
    CLOSED = 2


@dataclass
class ServerSentEvent:
    """One dispatched event"""
    data: str
    event: str = "message"
    id: Optional[str] = None


class SSEDecoder:
    """
    Line-oriented text/event-stream parser.

    Feed lines without their line terminator; a blank line dispatches the
    buffered event.
    """

    def __init__(self):
        self._data: List[str] = []
        self._event = ""
        self.last_event_id = ""
        self.retry: Optional[int] = None   # milliseconds

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self.retry = int(value)

        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = ""
            return None

        event = ServerSentEvent(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self.last_event_id or None,
        )
        self._data = []
        self._event = ""
        return event


class EventSource:
    """
    Supervised SSE connection with automatic reconnection.

    Usage:
        source = EventSource(url, client, on_message=handle)
        source.start()
        ...
        await source.close()
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        on_open: Optional[Callable[[], None]] = None,
        on_message: Optional[Callable[[ServerSentEvent], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        reconnect_delay: float = SSE_RECONNECT_DELAY_SECONDS,
        connect_timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            url: Stream URL (may carry the auth token as a query parameter)
            client: Shared httpx.AsyncClient
            on_open: Called each time the stream is (re)established
            on_message: Called for each dispatched event
            on_error: Called on every connection loss; a PushConnectionError
                means the source failed closed and will not reconnect
            reconnect_delay: Seconds before reconnecting (server may override)
            connect_timeout: Connect timeout in seconds (reads never time out)
            headers: Extra request headers
        """
        self.url = url
        self.client = client
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.reconnect_delay = reconnect_delay
        self.connect_timeout = connect_timeout
        self.headers = headers or {}

        self.ready_state = ReadyState.CONNECTING
        self.last_event_id: Optional[str] = None
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        """Begin connecting in a background task"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def close(self):
        """Close the stream; idempotent"""
        self._closed = True
        self.ready_state = ReadyState.CLOSED

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run(self):
        """Connect, read and reconnect until closed or refused"""
        while not self._closed:
            self.ready_state = ReadyState.CONNECTING
            try:
                await self._read_stream()
                error: Exception = ConnectionError("Event stream ended")
            except PushConnectionError as e:
                self._closed = True
                self.ready_state = ReadyState.CLOSED
                logger.error(f"Event stream refused: {e}")
                self._emit(self.on_error, e)
                return
            except httpx.HTTPError as e:
                error = e

            if self._closed:
                break

            logger.warning(f"Event stream lost ({error}), reconnecting in {self.reconnect_delay}s")
            self._emit(self.on_error, error)
            await asyncio.sleep(self.reconnect_delay)

        self.ready_state = ReadyState.CLOSED

    async def _read_stream(self):
        headers = {
            "Accept": SSE_CONTENT_TYPE,
            "Cache-Control": "no-cache",
            **self.headers,
        }
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id

        timeout = httpx.Timeout(self.connect_timeout, read=None)
        async with self.client.stream("GET", self.url, headers=headers, timeout=timeout) as response:
            if 400 <= response.status_code < 500:
                raise PushConnectionError(
                    f"HTTP {response.status_code}", status_code=response.status_code
                )
            if response.status_code != 200:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}", request=response.request, response=response
                )

            content_type = response.headers.get("content-type", "")
            if not content_type.startswith(SSE_CONTENT_TYPE):
                raise PushConnectionError(f"Unexpected content type: {content_type or 'none'}")

            self.ready_state = ReadyState.OPEN
            self._emit(self.on_open)

            decoder = SSEDecoder()
            async for line in response.aiter_lines():
                if self._closed:
                    return

                event = decoder.decode(line.rstrip("\r"))
                if decoder.retry is not None:
                    self.reconnect_delay = decoder.retry / 1000
                if event is None:
                    continue

                if event.id is not None:
                    self.last_event_id = event.id
                self._emit(self.on_message, event)

    def _emit(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Event stream callback error: {e}")
