"""JSON-over-MQTT transport shared by the service and the clients.

The service only needs publish/subscribe. Customers, owners and watchers also
make blocking calls: `request()` tags the request with a fresh `corr_id` and
`reply_to`, and the matching reply is handed back from paho-mqtt's network
thread through a one-slot queue. Anything that is not a reply to an open call
goes to the registered handlers.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from typing import Any, Callable

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


def decode_payload(raw: bytes | str) -> dict[str, Any] | None:
    """Parse a JSON object payload; None for anything else."""
    try:
        data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


class MqttClient:
    def __init__(self, *, client_id: str, host: str, port: int, keepalive: int = 30) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)
        self._client.on_message = self._on_message

        self._handlers: list[MessageHandler] = []
        self._waiting: dict[str, "queue.Queue[dict[str, Any]]"] = {}
        self._lock = threading.Lock()
        self._connected = False

    def start(self) -> None:
        if self._connected:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._connected = True

    def stop(self) -> None:
        if self._connected:
            self._client.loop_stop()
            self._client.disconnect()
            self._connected = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def subscribe(self, topic: str) -> None:
        self._client.subscribe(topic, qos=0)

    def publish(self, topic: str, message: dict[str, Any]) -> None:
        self._client.publish(topic, payload=json.dumps(message, separators=(",", ":")), qos=0)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Send `message` and block until its reply arrives on `response_topic`.

        The caller subscribes to `response_topic` beforehand.
        """
        corr_id = uuid.uuid4().hex
        slot: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        with self._lock:
            self._waiting[corr_id] = slot

        try:
            self.publish(request_topic, {**message, "corr_id": corr_id, "reply_to": response_topic})
            return slot.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"{message.get('type')} got no reply within {timeout}s") from None
        finally:
            with self._lock:
                self._waiting.pop(corr_id, None)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        data = decode_payload(msg.payload)
        if data is None:
            logger.warning("dropping malformed payload on %s", msg.topic)
            return

        corr_id = data.get("corr_id")
        with self._lock:
            slot = self._waiting.get(corr_id) if isinstance(corr_id, str) else None
        if slot is not None:
            if slot.empty():
                slot.put_nowait(data)
            return

        for handler in list(self._handlers):
            try:
                handler(msg.topic, data)
            except Exception:
                # Keep the network thread alive for the other subscribers.
                logger.exception("handler failed for message on %s", msg.topic)
