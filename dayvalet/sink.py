"""Message sinks for engine output (conversation log, HTTP callback)."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Set

import httpx

from .bus import MESSAGE_APPENDED, Event, MessageBus
from .models import Message

logger = logging.getLogger(__name__)


class ConversationLog:
    """Append-only conversation transcript.

    Keeps messages in memory, appends each one to a JSONL file when a path
    is given, and announces it on the MessageBus. append() never raises:
    persistence problems are logged and the in-memory transcript stays
    authoritative for this process.

    Args:
        path: Optional JSONL file; existing lines are loaded on construction
        bus: Optional MessageBus receiving ``conversation:message_appended``
    """

    def __init__(self, path: Optional[str] = None, bus: Optional[MessageBus] = None):
        self._path = Path(os.path.expanduser(path)) if path else None
        self._bus = bus
        self._messages: List[Message] = []
        if self._path is not None:
            self._load()

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def _load(self) -> None:
        if not self._path.exists():
            return
        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    self._messages.append(Message.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    logger.warning(f"Skipping invalid conversation line: {e}")
        logger.info(f"Loaded {len(self._messages)} messages from {self._path}")

    def append(self, message: Message) -> None:
        self._messages.append(message)

        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")
            except OSError as e:
                logger.warning(f"Failed to persist message {message.id}: {e}")

        if self._bus is not None:
            source, event_type = MESSAGE_APPENDED
            self._bus.publish(Event(source=source, event_type=event_type, data=message.to_dict()))


class CallbackSink:
    """Forwards messages via HTTP POST to a callback URL, fire-and-forget.

    Use as a sink directly (append) or as a MessageBus subscriber
    (handle_event). Delivery runs in background tasks; drain() awaits them.

    Args:
        callback_url: URL to POST message payloads to.
        timeout: Request timeout in seconds (default 30).
        client: Optional shared httpx.AsyncClient.
    """

    def __init__(self, callback_url: str, timeout: float = 30, client: Optional[httpx.AsyncClient] = None):
        self._callback_url = callback_url
        self._timeout = timeout
        self._client = client
        self._pending: Set[asyncio.Task] = set()

    def append(self, message: Message) -> None:
        self._schedule(message.to_dict())

    def handle_event(self, event: Event) -> None:
        self._schedule(event.data)

    def _schedule(self, payload: dict) -> None:
        task = asyncio.ensure_future(self.send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def send(self, payload: dict) -> bool:
        """POST one message payload. Returns True on success, False on failure."""
        for attempt in range(2):  # 1 initial + 1 retry on connection errors
            try:
                if self._client is not None:
                    response = await self._client.post(self._callback_url, json=payload, timeout=self._timeout)
                else:
                    async with httpx.AsyncClient(timeout=self._timeout) as client:
                        response = await client.post(self._callback_url, json=payload)
                response.raise_for_status()
                logger.info(f"Callback delivered message {payload.get('id')}")
                return True
            except httpx.ConnectError as e:
                if attempt == 0:
                    logger.warning(f"Callback connection error (retrying in 2s): {e}")
                    await asyncio.sleep(2)
                else:
                    logger.error(f"Callback connection error after retry: {e}")
            except Exception as e:
                logger.error(f"Callback delivery failed for message {payload.get('id')}: {e}")
                return False
        return False
