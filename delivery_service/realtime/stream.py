"""Client side of ``GET /events/stream``.

``StreamConnection`` offers the same ``subscribe``/``poll``/``close`` surface
as an in-process ``BusConnection`` so the synchronizers do not care which one
they hold. A reader thread parses the server-sent events into a local queue.
"""
import json
import logging
import queue
import threading

import requests

from ..errors import TransientUnavailable
from .bus import BusDisconnected, ChangeEvent

logger = logging.getLogger(__name__)

_DROPPED = object()


def iter_sse(lines):
    """Yield ``(event, data)`` pairs from an iterable of decoded SSE lines."""
    name, data = "message", []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if data:
                yield name, "\n".join(data)
            name, data = "message", []
            continue
        if line.startswith(":"):
            continue  # heartbeat
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            name = value
        elif field == "data":
            data.append(value)
    if data:
        yield name, "\n".join(data)


class StreamConnection:
    def __init__(self, client, connect_timeout: float = 10):
        self._client = client
        self._queue = queue.Queue()
        self._ready = threading.Event()
        self._closed = False
        self.id = None
        self.lost_reason = None

        try:
            self._response = client.session.get(
                client.url("/events/stream"),
                headers={**client.headers(), "Accept": "text/event-stream"},
                stream=True,
                timeout=(client.timeout, None),
            )
        except requests.RequestException as e:
            raise TransientUnavailable(f"event stream unreachable: {e}") from e
        if self._response.status_code != 200:
            self._response.close()
            client.raise_for_error(self._response)

        self._reader = threading.Thread(target=self._read, name="event-stream", daemon=True)
        self._reader.start()
        if not self._ready.wait(connect_timeout) or self.id is None:
            self.close()
            raise TransientUnavailable("event stream did not announce a connection id")

    @property
    def connected(self) -> bool:
        return not self._closed and self.lost_reason is None

    def _read(self):
        try:
            for name, data in iter_sse(self._response.iter_lines(decode_unicode=True)):
                payload = json.loads(data)
                if name == "connected":
                    self.id = payload["connection_id"]
                    self._ready.set()
                elif name == "change":
                    self._queue.put(ChangeEvent.from_dict(payload))
                elif name == "disconnected":
                    self.lost_reason = payload.get("reason", "disconnected")
                    break
        except (requests.RequestException, ValueError) as e:
            if not self._closed:
                self.lost_reason = f"stream error: {e}"
        finally:
            if self.lost_reason is None and not self._closed:
                self.lost_reason = "stream ended"
            self._ready.set()
            self._queue.put(_DROPPED)

    def subscribe(self, table: str, filter=None):
        body = {"table": table}
        if filter is not None:
            body["filter"] = str(filter)
        data = self._client.request("POST", f"/events/{self.id}/subscriptions", json=body)
        return data["subscription"]["id"]

    def unsubscribe(self, subscription) -> None:
        if not self.connected:
            return
        self._client.request("DELETE", f"/events/{self.id}/subscriptions/{subscription}")

    def poll(self, timeout: float | None = None):
        if self._closed:
            raise BusDisconnected("connection closed")
        try:
            item = self._queue.get(timeout=timeout) if timeout != 0 else self._queue.get_nowait()
        except queue.Empty:
            return None
        if item is _DROPPED:
            self._queue.put(_DROPPED)
            raise BusDisconnected(self.lost_reason or "stream ended")
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.close()
        logger.debug("event stream %s closed", self.id)
