from __future__ import annotations

# Live "now serving" display in the terminal.
#
# Resolves a shop code once, then follows the shop's update topic. An update
# without every field is only a hint: the watcher re-reads the state through a
# lookup request instead of trusting it.
#
# MQTT callbacks run on paho-mqtt's network thread, which also delivers the
# lookup replies. Re-reads are therefore queued and performed from the main
# loop via `poll()`.

import argparse
import queue
import time
from typing import Any

from .feed import ShopUpdate, ShopView
from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, queue_requests, queue_responses, shop_updates


class ServingWatcher:
    def __init__(self, *, mqtt: MqttClient, namespace: str, code: str) -> None:
        self.mqtt = mqtt
        self.namespace = namespace
        self.code = code
        self.view = ShopView(shop_ids=())
        self.shop_id: str | None = None
        self._reply_topic = queue_responses(mqtt.client_id, namespace)
        self._rereads: "queue.Queue[str]" = queue.Queue()

    def start(self) -> dict[str, Any]:
        self.mqtt.subscribe(self._reply_topic)
        state = self._lookup()
        if state.get("type") != "queue_state":
            return state

        self.shop_id = state["shop_id"]
        self.view.watch(self.shop_id)
        self._show_state(state)
        self.mqtt.subscribe(shop_updates(self.shop_id, self.namespace))
        self.mqtt.add_handler(self.on_update)
        return state

    def on_update(self, topic: str, msg: dict[str, Any]) -> None:
        if msg.get("type") != "shop_update":
            return
        update = ShopUpdate.from_message(msg)
        if not self.view.apply(update):
            return
        if self.view.needs_reread(update.shop_id):
            self._rereads.put(update.shop_id)
            return
        print(f"[watch {self.code}] now serving {update.serving_number} ({'open' if update.is_open else 'closed'})")

    def poll(self, timeout: float = 1.0) -> None:
        """Perform queued re-reads; waits up to `timeout` for one to arrive."""
        try:
            self._rereads.get(timeout=timeout)
        except queue.Empty:
            return
        while True:
            try:
                self._rereads.get_nowait()
            except queue.Empty:
                break
        self._show_state(self._lookup())

    def _lookup(self) -> dict[str, Any]:
        return self.mqtt.request(
            request_topic=queue_requests(self.namespace),
            response_topic=self._reply_topic,
            message={"type": "lookup_shop", "code": self.code},
            timeout=5.0,
        )

    def _show_state(self, state: dict[str, Any]) -> None:
        if state.get("type") != "queue_state":
            print(f"[watch {self.code}] error: {state.get('message', state)}")
            return
        self.view.apply(ShopUpdate(state["shop_id"], state["serving_number"], state["is_open"]))
        print(
            f"[watch {self.code}] {state['name']}: {state['status']}, now serving {state['serving_number']}, "
            f"next token {state['next_token']}"
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Follow a shop's now-serving number (MQTT)")
    parser.add_argument("--code", required=True)
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    args = parser.parse_args()

    mqtt = MqttClient(client_id=f"watch-{int(time.time() * 1000)}", host=args.mqtt_host, port=args.mqtt_port)
    mqtt.start()
    try:
        watcher = ServingWatcher(mqtt=mqtt, namespace=args.namespace, code=args.code)
        state = watcher.start()
        if state.get("type") != "queue_state":
            print(f"[watch {args.code}] error: {state.get('message', state)}")
            return
        while True:
            watcher.poll(timeout=1.0)
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()


if __name__ == "__main__":
    main()
